import pytest

from raffle.blockchain.deploy import deploy_raffle
from raffle.lottery.errors import (
    InsufficientBalance,
    InsufficientFee,
    InvalidConsumer,
    NonexistentRequest,
    OnlyCoordinatorCanFulfill,
    PlayerIndexOutOfRange,
    RoundNotCalculating,
    RoundNotOpen,
    TransferFailed,
    UnknownRequest,
    UpkeepNotNeeded,
)
from raffle.lottery.models import RaffleState
from tests.conftest import ENTRANCE_FEE, INTERVAL, STARTING_BALANCE


# ============ Construction ============

def test_raffle_starts_open_and_empty(raffle, clock):
    assert raffle.raffle_state == RaffleState.OPEN
    assert raffle.number_of_players == 0
    assert raffle.recent_winner is None
    assert raffle.last_timestamp == clock.now
    assert raffle.balance == 0


def test_raffle_exposes_fixed_parameters(raffle, coordinator):
    assert raffle.entrance_fee == ENTRANCE_FEE
    assert raffle.interval == INTERVAL
    assert raffle.request_confirmations == 3
    assert raffle.num_words == 1
    assert raffle.callback_gas_limit == 500000
    assert raffle.config.vrf_coordinator == coordinator.address


# ============ Entry ============

def test_enter_records_player_and_collects_fee(raffle, player, book, events):
    raffle.enter(player, ENTRANCE_FEE)

    assert raffle.number_of_players == 1
    assert raffle.get_player(0) == player
    assert raffle.balance == ENTRANCE_FEE
    assert book.balance_of(player) == STARTING_BALANCE - ENTRANCE_FEE
    assert events.last("RaffleEntered").args == {"player": player}


def test_enter_keeps_overpayment_in_pot(raffle, player):
    raffle.enter(player, ENTRANCE_FEE * 3)
    assert raffle.balance == ENTRANCE_FEE * 3


def test_same_player_may_enter_twice(raffle, player):
    raffle.enter(player, ENTRANCE_FEE)
    raffle.enter(player, ENTRANCE_FEE)
    assert raffle.players == [player, player]


def test_enter_below_fee_is_rejected(raffle, player, events):
    with pytest.raises(InsufficientFee) as exc_info:
        raffle.enter(player, ENTRANCE_FEE - 1)

    assert exc_info.value.entrance_fee == ENTRANCE_FEE
    assert raffle.number_of_players == 0
    assert raffle.balance == 0
    assert events.events("RaffleEntered") == []


def test_enter_while_calculating_is_rejected(raffle_entered, book):
    raffle_entered.perform_upkeep()
    late = book.new_account(STARTING_BALANCE)

    with pytest.raises(RoundNotOpen):
        raffle_entered.enter(late, ENTRANCE_FEE)
    assert raffle_entered.number_of_players == 1


def test_fee_is_checked_before_state(raffle_entered, book):
    raffle_entered.perform_upkeep()
    late = book.new_account(STARTING_BALANCE)

    with pytest.raises(InsufficientFee):
        raffle_entered.enter(late, 0)


def test_enter_without_funds_leaves_ledger_unchanged(raffle, book, events):
    broke = book.new_account()

    with pytest.raises(InsufficientBalance):
        raffle.enter(broke, ENTRANCE_FEE)

    assert raffle.number_of_players == 0
    assert events.events("RaffleEntered") == []


def test_get_player_out_of_range(raffle, player):
    raffle.enter(player, ENTRANCE_FEE)

    with pytest.raises(PlayerIndexOutOfRange):
        raffle.get_player(1)
    with pytest.raises(IndexError):
        raffle.get_player(-1)


# ============ check_upkeep ============

def test_check_upkeep_true_when_all_conditions_hold(raffle_entered):
    upkeep_needed, perform_data = raffle_entered.check_upkeep(b"")
    assert upkeep_needed is True
    assert perform_data == b""


def test_check_upkeep_at_exact_interval(raffle, player, clock):
    raffle.enter(player, ENTRANCE_FEE)
    clock.advance(INTERVAL)
    assert raffle.check_upkeep().upkeep_needed


def test_check_upkeep_false_before_interval(raffle, player, clock):
    raffle.enter(player, ENTRANCE_FEE)
    clock.advance(INTERVAL - 1)

    status = raffle.check_upkeep()
    assert not status.upkeep_needed
    assert not status.time_passed
    assert status.is_open and status.has_balance and status.has_players


def test_check_upkeep_false_without_players_or_balance(raffle, clock):
    clock.advance(INTERVAL + 1)
    status = raffle.check_upkeep()
    assert not status.upkeep_needed
    assert not status.has_balance
    assert not status.has_players


def test_check_upkeep_false_with_balance_but_no_players(raffle, book, clock):
    book.mint(raffle.address, ENTRANCE_FEE)
    clock.advance(INTERVAL + 1)

    status = raffle.check_upkeep()
    assert not status.upkeep_needed
    assert status.has_balance
    assert not status.has_players


def test_check_upkeep_false_with_players_but_no_balance(config, book, events, clock, player):
    config["raffle"]["entrance_fee_eth"] = "0"
    free_raffle = deploy_raffle(config, book, events, clock=clock).raffle
    free_raffle.enter(player, 0)
    clock.advance(INTERVAL + 1)

    status = free_raffle.check_upkeep()
    assert not status.upkeep_needed
    assert status.has_players
    assert not status.has_balance


def test_check_upkeep_false_while_calculating(raffle_entered):
    raffle_entered.perform_upkeep()

    status = raffle_entered.check_upkeep()
    assert not status.upkeep_needed
    assert not status.is_open


# ============ perform_upkeep ============

def test_perform_upkeep_requests_randomness(raffle_entered, coordinator, events):
    request_id = raffle_entered.perform_upkeep()

    assert raffle_entered.raffle_state == RaffleState.CALCULATING
    assert raffle_entered.pending_request_id == request_id
    assert request_id > 0
    assert events.last("RequestedRaffleWinner").args == {"request_id": request_id}

    pending = coordinator.pending_requests()
    assert [request.request_id for request in pending] == [request_id]
    request = pending[0]
    assert request.consumer == raffle_entered.address
    assert request.num_words == 1
    assert request.minimum_request_confirmations == 3
    assert request.callback_gas_limit == raffle_entered.callback_gas_limit
    assert request.key_hash == raffle_entered.config.key_hash


def test_perform_upkeep_rejected_with_diagnostics(raffle, player, coordinator):
    raffle.enter(player, ENTRANCE_FEE)

    with pytest.raises(UpkeepNotNeeded) as exc_info:
        raffle.perform_upkeep()

    assert exc_info.value.balance == ENTRANCE_FEE
    assert exc_info.value.num_players == 1
    assert exc_info.value.raffle_state == 0
    assert raffle.raffle_state == RaffleState.OPEN
    assert coordinator.pending_requests() == []


def test_perform_upkeep_twice_issues_one_request(raffle_entered, coordinator):
    raffle_entered.perform_upkeep()

    with pytest.raises(UpkeepNotNeeded) as exc_info:
        raffle_entered.perform_upkeep()

    assert exc_info.value.raffle_state == 1
    assert len(coordinator.pending_requests()) == 1


def test_perform_upkeep_reverts_state_when_request_fails(raffle_entered, coordinator, events):
    coordinator.remove_consumer(raffle_entered.config.subscription_id, raffle_entered.address)

    with pytest.raises(InvalidConsumer):
        raffle_entered.perform_upkeep()

    assert raffle_entered.raffle_state == RaffleState.OPEN
    assert raffle_entered.pending_request_id is None
    assert events.events("RequestedRaffleWinner") == []


# ============ Fulfillment ============

def test_fulfill_picks_winner_resets_and_pays(raffle, player, book, coordinator, clock, events):
    entrants = [player] + [book.new_account(STARTING_BALANCE) for _ in range(5)]
    for entrant in entrants:
        raffle.enter(entrant, ENTRANCE_FEE)
    clock.advance(INTERVAL + 1)
    request_id = raffle.perform_upkeep()

    word = 77
    winner = entrants[word % len(entrants)]
    prize = ENTRANCE_FEE * len(entrants)
    coordinator.fulfill_random_words(request_id, [word])

    assert raffle.recent_winner == winner
    assert raffle.raffle_state == RaffleState.OPEN
    assert raffle.number_of_players == 0
    assert raffle.pending_request_id is None
    assert raffle.last_timestamp == clock.now
    assert raffle.balance == 0
    assert book.balance_of(winner) == STARTING_BALANCE + prize - ENTRANCE_FEE
    assert events.last("WinnerPicked").args == {"winner": winner}


def test_fulfill_with_derived_words(raffle_entered, player, coordinator, book):
    request_id = raffle_entered.perform_upkeep()
    coordinator.fulfill_random_words(request_id)

    # a single entrant always wins
    assert raffle_entered.recent_winner == player
    assert book.balance_of(player) == STARTING_BALANCE


def test_next_round_runs_after_payout(raffle_entered, player, coordinator, clock):
    coordinator.fulfill_random_words(raffle_entered.perform_upkeep())

    raffle_entered.enter(player, ENTRANCE_FEE)
    assert not raffle_entered.check_upkeep().upkeep_needed
    clock.advance(INTERVAL)
    second_request = raffle_entered.perform_upkeep()
    coordinator.fulfill_random_words(second_request)

    assert raffle_entered.recent_winner == player
    assert raffle_entered.number_of_players == 0


def test_fulfill_only_from_coordinator(raffle_entered, player):
    request_id = raffle_entered.perform_upkeep()

    with pytest.raises(OnlyCoordinatorCanFulfill):
        raffle_entered.raw_fulfill_random_words(player, request_id, [1])
    assert raffle_entered.raffle_state == RaffleState.CALCULATING


@pytest.mark.parametrize("caller", ["not-an-address", "", None, "0x1234"])
def test_fulfill_from_malformed_caller(raffle_entered, coordinator, caller):
    request_id = raffle_entered.perform_upkeep()

    with pytest.raises(OnlyCoordinatorCanFulfill) as exc_info:
        raffle_entered.raw_fulfill_random_words(caller, request_id, [1])

    assert exc_info.value.have == caller
    assert exc_info.value.want == coordinator.address
    assert raffle_entered.raffle_state == RaffleState.CALCULATING
    assert raffle_entered.number_of_players == 1


def test_fulfill_before_request_is_rejected(raffle_entered, coordinator):
    for request_id in (0, 1, 12345):
        with pytest.raises(NonexistentRequest):
            coordinator.fulfill_random_words(request_id)


def test_fulfill_while_open_is_rejected(raffle_entered, coordinator):
    with pytest.raises(RoundNotCalculating):
        raffle_entered.raw_fulfill_random_words(coordinator.address, 1, [5])


def test_fulfill_with_unknown_request_id(raffle_entered, coordinator):
    request_id = raffle_entered.perform_upkeep()

    with pytest.raises(UnknownRequest):
        raffle_entered.raw_fulfill_random_words(coordinator.address, request_id + 1, [5])
    assert raffle_entered.raffle_state == RaffleState.CALCULATING


def test_fulfill_with_no_words(raffle_entered, coordinator):
    request_id = raffle_entered.perform_upkeep()

    with pytest.raises(ValueError):
        raffle_entered.raw_fulfill_random_words(coordinator.address, request_id, [])


def test_second_fulfillment_is_rejected(raffle_entered, player, coordinator, book):
    request_id = raffle_entered.perform_upkeep()
    coordinator.fulfill_random_words(request_id, [3])

    with pytest.raises(NonexistentRequest):
        coordinator.fulfill_random_words(request_id, [4])
    with pytest.raises(RoundNotCalculating):
        raffle_entered.raw_fulfill_random_words(coordinator.address, request_id, [4])
    assert book.balance_of(player) == STARTING_BALANCE


# ============ Payout failure and reentrancy ============

def test_refused_payout_restores_round(raffle_entered, player, coordinator, book, events):
    request_id = raffle_entered.perform_upkeep()
    last_timestamp = raffle_entered.last_timestamp
    book.set_receive_hook(player, lambda sender, amount: False)

    with pytest.raises(TransferFailed) as exc_info:
        coordinator.fulfill_random_words(request_id)

    assert exc_info.value.recipient == player
    assert exc_info.value.amount == ENTRANCE_FEE
    assert raffle_entered.raffle_state == RaffleState.CALCULATING
    assert raffle_entered.players == [player]
    assert raffle_entered.last_timestamp == last_timestamp
    assert raffle_entered.recent_winner is None
    assert raffle_entered.balance == ENTRANCE_FEE
    assert book.balance_of(player) == STARTING_BALANCE - ENTRANCE_FEE
    assert events.events("WinnerPicked") == []
    assert [r.request_id for r in coordinator.pending_requests()] == [request_id]

    # the request stays deliverable once the winner accepts payment
    book.set_receive_hook(player, None)
    coordinator.fulfill_random_words(request_id)
    assert raffle_entered.recent_winner == player


def test_failed_payout_discards_reentrant_entry(raffle_entered, player, coordinator, book, events):
    request_id = raffle_entered.perform_upkeep()

    def enter_then_revert(sender, amount):
        raffle_entered.enter(player, ENTRANCE_FEE)
        raise RuntimeError("revert")

    book.set_receive_hook(player, enter_then_revert)

    with pytest.raises(TransferFailed):
        coordinator.fulfill_random_words(request_id)

    assert raffle_entered.players == [player]
    assert raffle_entered.balance == ENTRANCE_FEE
    assert book.balance_of(player) == STARTING_BALANCE - ENTRANCE_FEE
    assert len(events.events("RaffleEntered")) == 1


def test_winner_reentry_sees_reset_round(raffle_entered, player, coordinator, book, events):
    request_id = raffle_entered.perform_upkeep()
    observed = {}

    def reenter(sender, amount):
        observed["sender"] = sender
        observed["amount"] = amount
        observed["state"] = raffle_entered.raffle_state
        observed["players"] = raffle_entered.number_of_players
        observed["winner"] = raffle_entered.recent_winner
        raffle_entered.enter(player, ENTRANCE_FEE)

    book.set_receive_hook(player, reenter)
    coordinator.fulfill_random_words(request_id)

    assert observed == {
        "sender": raffle_entered.address,
        "amount": ENTRANCE_FEE,
        "state": RaffleState.OPEN,
        "players": 0,
        "winner": player,
    }
    assert raffle_entered.players == [player]
    assert raffle_entered.balance == ENTRANCE_FEE
    assert [event.name for event in events.recent(3)] == ["WinnerPicked", "RaffleEntered", "RandomWordsFulfilled"]


def test_snapshot_reports_round(raffle_entered, player):
    snapshot = raffle_entered.snapshot()
    assert snapshot["state"] == 0
    assert snapshot["state_label"] == "OPEN"
    assert snapshot["number_of_players"] == 1
    assert snapshot["balance_wei"] == ENTRANCE_FEE
    assert snapshot["recent_winner"] is None


@pytest.mark.parametrize("word", [0, 1, 2 ** 256 - 1])
def test_single_entrant_always_wins(raffle_entered, player, coordinator, word):
    request_id = raffle_entered.perform_upkeep()
    coordinator.fulfill_random_words(request_id, [word])
    assert raffle_entered.recent_winner == player
