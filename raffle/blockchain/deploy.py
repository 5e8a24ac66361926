"""
Raffle Deployment
Wires the coordinator, subscription and raffle together for a network preset
"""

from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Optional

from web3 import Web3

from raffle.blockchain.accounts import AccountBook
from raffle.blockchain.vrf import VRFCoordinator
from raffle.lottery.engine import Raffle
from raffle.lottery.event_manager import EventLog
from raffle.utils.config import (
    build_raffle_config,
    get_config_value,
    get_network,
    get_network_settings,
    to_wei,
)
from raffle.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class Deployment:
    """Everything created by ``deploy_raffle``."""

    network: str
    raffle: Raffle
    coordinator: VRFCoordinator
    subscription_id: int
    deployer: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "network": self.network,
            "raffle_address": self.raffle.address,
            "vrf_coordinator": self.coordinator.address,
            "subscription_id": self.subscription_id,
            "deployer": self.deployer,
        }


def deploy_coordinator(config: Dict[str, Any], book: AccountBook, events: EventLog) -> VRFCoordinator:
    """Create the coordinator at the preset address (or a fresh one)."""
    settings = get_network_settings(config)
    return VRFCoordinator(
        events,
        address=settings.get("vrf_coordinator"),
        base_fee=to_wei(settings["base_fee_link"]),
        lock=book.lock,
    )


def create_and_fund_subscription(coordinator: VRFCoordinator, owner: str, amount: int) -> int:
    subscription_id = coordinator.create_subscription(owner)
    coordinator.fund_subscription(subscription_id, amount)
    logger.info(
        "Created subscription %d for %s, funded with %s LINK",
        subscription_id,
        owner,
        Web3.from_wei(amount, "ether"),
    )
    return subscription_id


def deploy_raffle(
    config: Dict[str, Any],
    book: AccountBook,
    events: EventLog,
    coordinator: Optional[VRFCoordinator] = None,
    clock: Optional[Callable[[], int]] = None,
) -> Deployment:
    """Deploy a raffle and register it as a consumer.

    A subscription id of 0 means "create one": a new subscription is
    created and funded before the raffle is constructed, so the raffle's
    parameters never change afterwards.
    """
    network = get_network(config)
    settings = get_network_settings(config)
    logger.info(f"Deploying raffle on network '{network}'...")

    if coordinator is None:
        coordinator = deploy_coordinator(config, book, events)

    deployer = get_config_value(config, "app.deployer") or book.new_account()

    raffle_config = build_raffle_config(config, vrf_coordinator=coordinator.address)
    if raffle_config.subscription_id == 0:
        subscription_id = create_and_fund_subscription(
            coordinator, deployer, to_wei(settings["fund_amount_link"])
        )
        raffle_config = replace(raffle_config, subscription_id=subscription_id)

    raffle = Raffle(raffle_config, coordinator, book, events, clock=clock)
    coordinator.add_consumer(raffle_config.subscription_id, raffle)
    logger.info(
        "Raffle deployed at %s, consumer of subscription %d",
        raffle.address,
        raffle_config.subscription_id,
    )

    return Deployment(
        network=network,
        raffle=raffle,
        coordinator=coordinator,
        subscription_id=raffle_config.subscription_id,
        deployer=deployer,
    )
