"""
Raffle Engine - entry ledger, upkeep check, randomness request and payout
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from web3 import Web3

from raffle.blockchain.accounts import AccountBook
from raffle.lottery.errors import (
    InsufficientFee,
    NoPlayers,
    OnlyCoordinatorCanFulfill,
    PlayerIndexOutOfRange,
    RoundNotCalculating,
    RoundNotOpen,
    TransferFailed,
    UnknownRequest,
    UpkeepNotNeeded,
)
from raffle.lottery.event_manager import EventLog
from raffle.lottery.models import LiveRound, RaffleConfig, RaffleState, UpkeepStatus
from raffle.utils.common import normalize_address, validate_ethereum_address
from raffle.utils.logger import get_logger

logger = get_logger(__name__)


class Raffle:
    """Recurring raffle paid out through a VRF coordinator.

    One round is live at a time. Players enter by paying the entrance fee
    while the round is OPEN. Once ``interval`` seconds have passed and the
    round holds players and funds, ``perform_upkeep`` moves it to
    CALCULATING and requests one random word. The coordinator answers through
    ``raw_fulfill_random_words``, which picks
    ``players[word % len(players)]``, resets the round and pays the winner
    the entire balance.

    The winner index is a plain modulo of the random word. With 256-bit
    words the bias toward low indices is negligible, and it is kept as is.

    All state changes run under the account book's host lock, so callers on
    different threads are serialised. Payout bookkeeping is committed before
    value leaves the raffle; a failed payout restores the round, the winner
    and every balance.
    """

    def __init__(
        self,
        config: RaffleConfig,
        coordinator: Any,
        book: AccountBook,
        events: EventLog,
        *,
        address: Optional[str] = None,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        if normalize_address(coordinator.address) != normalize_address(config.vrf_coordinator):
            raise ValueError(
                f"Coordinator {coordinator.address} does not match configured {config.vrf_coordinator}"
            )

        self.config = config
        self.address = normalize_address(address) if address else book.new_account()
        self._coordinator = coordinator
        self._book = book
        self._events = events
        self._clock = clock or (lambda: int(time.time()))
        self._lock = book.lock

        self._round = LiveRound(state=RaffleState.OPEN, players=[], last_timestamp=self._clock())
        self._recent_winner: Optional[str] = None

        logger.info(
            "Raffle %s created: entrance fee %s ETH, interval %ss, subscription %s",
            self.address,
            Web3.from_wei(config.entrance_fee, "ether"),
            config.interval,
            config.subscription_id,
        )

    # ------------------------------------------------------------------
    # Entry admission
    # ------------------------------------------------------------------
    def enter(self, player: str, value: int) -> None:
        """Add ``player`` to the ledger, paying ``value`` into the pot.

        Raises:
            InsufficientFee: If ``value`` is below the entrance fee
            RoundNotOpen: If a winner is being calculated
            InsufficientBalance: If the player cannot pay ``value``
        """
        player = normalize_address(player)
        with self._lock:
            if value < self.config.entrance_fee:
                raise InsufficientFee(value, self.config.entrance_fee)
            if self._round.state != RaffleState.OPEN:
                raise RoundNotOpen(self._round.state)

            with self._events.transaction():
                self._book.transfer(player, self.address, value)
                self._round.players.append(player)
                self._events.emit("RaffleEntered", player=player)
            entries = len(self._round.players)

        logger.info("Player %s entered with %d wei (%d entries)", player, value, entries)

    # ------------------------------------------------------------------
    # Upkeep
    # ------------------------------------------------------------------
    def check_upkeep(self, check_data: bytes = b"") -> UpkeepStatus:
        """Return whether the round is ready to draw. ``check_data`` is unused."""
        with self._lock:
            time_passed = (self._clock() - self._round.last_timestamp) >= self.config.interval
            is_open = self._round.state == RaffleState.OPEN
            has_balance = self.balance > 0
            has_players = len(self._round.players) > 0
        return UpkeepStatus(
            upkeep_needed=time_passed and is_open and has_balance and has_players,
            perform_data=b"",
            time_passed=time_passed,
            is_open=is_open,
            has_balance=has_balance,
            has_players=has_players,
        )

    def perform_upkeep(self, perform_data: bytes = b"") -> int:
        """Close entry and request a random word; returns the request id.

        The eligibility check is evaluated again here; ``perform_data`` is
        ignored.

        Raises:
            UpkeepNotNeeded: With balance, player count and state when the
                round is not ready
        """
        with self._lock:
            if not self.check_upkeep().upkeep_needed:
                raise UpkeepNotNeeded(self.balance, len(self._round.players), self._round.state)

            with self._events.transaction():
                self._round.state = RaffleState.CALCULATING
                try:
                    request_id = self._coordinator.request_random_words(
                        key_hash=self.config.key_hash,
                        subscription_id=self.config.subscription_id,
                        minimum_request_confirmations=self.config.request_confirmations,
                        callback_gas_limit=self.config.callback_gas_limit,
                        num_words=self.config.num_words,
                        consumer=self.address,
                    )
                except Exception:
                    self._round.state = RaffleState.OPEN
                    raise
                self._round.pending_request_id = request_id
                self._events.emit("RequestedRaffleWinner", request_id=request_id)

        logger.info("Upkeep performed: requested randomness, request id %s", request_id)
        return request_id

    # ------------------------------------------------------------------
    # Fulfillment
    # ------------------------------------------------------------------
    def raw_fulfill_random_words(self, caller: str, request_id: int, random_words: Sequence[int]) -> str:
        """Coordinator callback. Returns the winner.

        Raises:
            OnlyCoordinatorCanFulfill: If ``caller`` is not the configured coordinator
        """
        if not validate_ethereum_address(caller):
            raise OnlyCoordinatorCanFulfill(caller, self.config.vrf_coordinator)
        caller = normalize_address(caller)
        if caller != self.config.vrf_coordinator:
            raise OnlyCoordinatorCanFulfill(caller, self.config.vrf_coordinator)
        return self._fulfill_random_words(request_id, random_words)

    def _fulfill_random_words(self, request_id: int, random_words: Sequence[int]) -> str:
        with self._lock:
            if not random_words:
                raise ValueError("random_words must not be empty")
            if self._round.state != RaffleState.CALCULATING:
                raise RoundNotCalculating(f"No randomness request outstanding (request {request_id})")
            if self._round.pending_request_id is not None and request_id != self._round.pending_request_id:
                raise UnknownRequest(request_id, self._round.pending_request_id)
            if not self._round.players:
                raise NoPlayers("Cannot pick a winner from an empty ledger")

            players = self._round.players
            index_of_winner = int(random_words[0]) % len(players)
            winner = players[index_of_winner]

            saved_round = self._round.copy()
            saved_winner = self._recent_winner
            saved_balances = self._book.snapshot()
            try:
                with self._events.transaction():
                    # effects first: a reentrant call from the winner sees the reset round
                    self._recent_winner = winner
                    self._round = LiveRound(
                        state=RaffleState.OPEN,
                        players=[],
                        last_timestamp=self._clock(),
                    )
                    self._events.emit("WinnerPicked", winner=winner)

                    prize = self.balance
                    if not self._book.send_value(self.address, winner, prize):
                        raise TransferFailed(winner, prize, "recipient rejected the payout")
            except Exception:
                self._round = saved_round
                self._recent_winner = saved_winner
                self._book.restore(saved_balances)
                logger.error("Payout for request %s failed; round restored", request_id)
                raise

        logger.info(
            "Request %s fulfilled: winner %s (index %d of %d), paid %s ETH",
            request_id,
            winner,
            index_of_winner,
            len(players),
            Web3.from_wei(prize, "ether"),
        )
        return winner

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------
    @property
    def entrance_fee(self) -> int:
        return self.config.entrance_fee

    @property
    def interval(self) -> int:
        return self.config.interval

    @property
    def request_confirmations(self) -> int:
        return self.config.request_confirmations

    @property
    def num_words(self) -> int:
        return self.config.num_words

    @property
    def callback_gas_limit(self) -> int:
        return self.config.callback_gas_limit

    @property
    def raffle_state(self) -> RaffleState:
        with self._lock:
            return self._round.state

    @property
    def recent_winner(self) -> Optional[str]:
        with self._lock:
            return self._recent_winner

    @property
    def number_of_players(self) -> int:
        with self._lock:
            return len(self._round.players)

    @property
    def last_timestamp(self) -> int:
        with self._lock:
            return self._round.last_timestamp

    @property
    def pending_request_id(self) -> Optional[int]:
        with self._lock:
            return self._round.pending_request_id

    @property
    def balance(self) -> int:
        return self._book.balance_of(self.address)

    @property
    def players(self) -> List[str]:
        with self._lock:
            return list(self._round.players)

    def get_player(self, index: int) -> str:
        with self._lock:
            if index < 0 or index >= len(self._round.players):
                raise PlayerIndexOutOfRange(index, len(self._round.players))
            return self._round.players[index]

    def snapshot(self) -> Dict[str, Any]:
        """Consistent view of the raffle for status endpoints."""
        with self._lock:
            return {
                "address": self.address,
                "state": int(self._round.state),
                "state_label": self._round.state.name,
                "entrance_fee_wei": self.config.entrance_fee,
                "interval": self.config.interval,
                "balance_wei": self.balance,
                "number_of_players": len(self._round.players),
                "last_timestamp": self._round.last_timestamp,
                "recent_winner": self._recent_winner,
                "pending_request_id": self._round.pending_request_id,
                "vrf_coordinator": self.config.vrf_coordinator,
                "subscription_id": self.config.subscription_id,
                "key_hash": self.config.key_hash,
                "callback_gas_limit": self.config.callback_gas_limit,
                "request_confirmations": self.config.request_confirmations,
                "num_words": self.config.num_words,
            }
