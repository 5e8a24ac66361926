import pytest
from web3 import Web3

from raffle.blockchain.accounts import AccountBook
from raffle.blockchain.deploy import deploy_raffle
from raffle.lottery.event_manager import EventLog

ENTRANCE_FEE = Web3.to_wei("0.01", "ether")
INTERVAL = 30
STARTING_BALANCE = Web3.to_wei(10, "ether")


class FakeClock:
    """Manually advanced clock returning integer seconds."""

    def __init__(self, now=1_700_000_000):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def events(clock):
    return EventLog(clock=clock)


@pytest.fixture
def book():
    return AccountBook()


@pytest.fixture
def config():
    return {
        "app": {"network": "local"},
        "raffle": {"entrance_fee_eth": "0.01", "interval": INTERVAL},
    }


@pytest.fixture
def deployment(config, book, events, clock):
    return deploy_raffle(config, book, events, clock=clock)


@pytest.fixture
def raffle(deployment):
    return deployment.raffle


@pytest.fixture
def coordinator(deployment):
    return deployment.coordinator


@pytest.fixture
def player(book):
    return book.new_account(STARTING_BALANCE)


@pytest.fixture
def raffle_entered(raffle, player, clock):
    """One entry and the interval elapsed: upkeep is due."""
    raffle.enter(player, ENTRANCE_FEE)
    clock.advance(INTERVAL + 1)
    return raffle
