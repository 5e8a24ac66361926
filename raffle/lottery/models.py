"""Core data models for the raffle."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Optional

REQUEST_CONFIRMATIONS = 3
NUM_WORDS = 1


class RaffleState(IntEnum):
    """Round lifecycle. The integer values are reported in diagnostics."""

    OPEN = 0
    CALCULATING = 1


@dataclass(frozen=True)
class RaffleConfig:
    """Parameters fixed when the raffle is constructed."""

    entrance_fee: int
    interval: int
    vrf_coordinator: str
    key_hash: str
    subscription_id: int
    callback_gas_limit: int
    request_confirmations: int = REQUEST_CONFIRMATIONS
    num_words: int = NUM_WORDS

    def __post_init__(self) -> None:
        if self.entrance_fee < 0:
            raise ValueError("entrance_fee must not be negative")
        if self.interval < 0:
            raise ValueError("interval must not be negative")
        if self.num_words != NUM_WORDS:
            raise ValueError(f"num_words is fixed at {NUM_WORDS}")


@dataclass
class LiveRound:
    """The single live round. Reset in place after every payout."""

    state: RaffleState
    players: List[str]
    last_timestamp: int
    pending_request_id: Optional[int] = None

    def copy(self) -> "LiveRound":
        return LiveRound(
            state=self.state,
            players=list(self.players),
            last_timestamp=self.last_timestamp,
            pending_request_id=self.pending_request_id,
        )


@dataclass(frozen=True)
class UpkeepStatus:
    """Result of the eligibility check."""

    upkeep_needed: bool
    perform_data: bytes = b""
    time_passed: bool = False
    is_open: bool = False
    has_balance: bool = False
    has_players: bool = False

    def __iter__(self):
        # allows `needed, data = raffle.check_upkeep()`
        yield self.upkeep_needed
        yield self.perform_data


@dataclass
class RandomnessRequest:
    """A randomness request held by the coordinator until it is fulfilled."""

    request_id: int
    subscription_id: int
    consumer: str
    key_hash: str
    minimum_request_confirmations: int
    callback_gas_limit: int
    num_words: int
    requested_at: float
    fulfilled: bool = False
    random_words: List[int] = field(default_factory=list)


@dataclass(frozen=True)
class RaffleEvent:
    """A notification emitted for external observers."""

    sequence: int
    name: str
    args: Dict[str, Any]
    timestamp: int
