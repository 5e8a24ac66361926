"""Local VRF coordinator: subscriptions, randomness requests and fulfillment."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from threading import RLock
from typing import Any, Callable, Dict, List, Optional, Sequence

from eth_abi import encode
from eth_account import Account
from web3 import Web3

from raffle.lottery.errors import (
    InsufficientBalance,
    InvalidConsumer,
    InvalidSubscription,
    NonexistentRequest,
)
from raffle.lottery.event_manager import EventLog
from raffle.lottery.models import RandomnessRequest
from raffle.utils.common import normalize_address
from raffle.utils.logger import get_logger

logger = get_logger(__name__)

MAX_REQUEST_CONFIRMATIONS = 200
MAX_CALLBACK_GAS_LIMIT = 2_500_000
MAX_NUM_WORDS = 500


@dataclass
class Subscription:
    """Funding account for randomness requests, in LINK-wei."""

    subscription_id: int
    owner: str
    balance: int = 0
    # consumer address -> object exposing raw_fulfill_random_words
    consumers: Dict[str, Any] = field(default_factory=dict)


def derive_random_words(request_id: int, num_words: int) -> List[int]:
    """uint256(keccak256(abi.encode(request_id, i))) for i in range(num_words)."""
    return [
        int.from_bytes(Web3.keccak(encode(["uint256", "uint256"], [request_id, i])), "big")
        for i in range(num_words)
    ]


class VRFCoordinator:
    """In-process randomness oracle.

    Requests are stored until ``fulfill_random_words`` delivers them to the
    consumer that asked. A request is delivered at most once: it is marked
    fulfilled only after the consumer callback returns, so a callback that
    raises leaves the request pending.
    """

    def __init__(
        self,
        events: EventLog,
        *,
        address: Optional[str] = None,
        base_fee: int = 0,
        lock: Optional[RLock] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.address = normalize_address(address) if address else Account.create().address
        self.base_fee = base_fee
        self._events = events
        self._lock = lock or RLock()
        self._clock = clock or time.time

        self._subscriptions: Dict[int, Subscription] = {}
        self._requests: Dict[int, RandomnessRequest] = {}
        self._next_subscription_id = 1
        self._next_request_id = 1

        logger.info("VRF coordinator at %s (base fee %s LINK)", self.address, Web3.from_wei(base_fee, "ether"))

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------
    def create_subscription(self, owner: Optional[str] = None) -> int:
        owner = normalize_address(owner) if owner else self.address
        with self._lock:
            subscription_id = self._next_subscription_id
            self._next_subscription_id += 1
            self._subscriptions[subscription_id] = Subscription(subscription_id=subscription_id, owner=owner)
        self._events.emit("SubscriptionCreated", subscription_id=subscription_id, owner=owner)
        return subscription_id

    def fund_subscription(self, subscription_id: int, amount: int) -> None:
        if amount < 0:
            raise ValueError("amount must not be negative")
        with self._lock:
            subscription = self.get_subscription(subscription_id)
            old_balance = subscription.balance
            subscription.balance += amount
        self._events.emit(
            "SubscriptionFunded",
            subscription_id=subscription_id,
            old_balance=old_balance,
            new_balance=old_balance + amount,
        )

    def add_consumer(self, subscription_id: int, consumer: Any) -> None:
        """Register a consumer object; it must expose ``address`` and
        ``raw_fulfill_random_words``."""
        address = normalize_address(consumer.address)
        with self._lock:
            subscription = self.get_subscription(subscription_id)
            subscription.consumers[address] = consumer
        self._events.emit("ConsumerAdded", subscription_id=subscription_id, consumer=address)

    def remove_consumer(self, subscription_id: int, consumer_address: str) -> None:
        address = normalize_address(consumer_address)
        with self._lock:
            subscription = self.get_subscription(subscription_id)
            if address not in subscription.consumers:
                raise InvalidConsumer(subscription_id, address)
            del subscription.consumers[address]
        self._events.emit("ConsumerRemoved", subscription_id=subscription_id, consumer=address)

    def get_subscription(self, subscription_id: int) -> Subscription:
        with self._lock:
            subscription = self._subscriptions.get(subscription_id)
        if subscription is None:
            raise InvalidSubscription(subscription_id)
        return subscription

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------
    def request_random_words(
        self,
        key_hash: str,
        subscription_id: int,
        minimum_request_confirmations: int,
        callback_gas_limit: int,
        num_words: int,
        consumer: str,
    ) -> int:
        consumer = normalize_address(consumer)
        if num_words < 1 or num_words > MAX_NUM_WORDS:
            raise ValueError(f"num_words must be between 1 and {MAX_NUM_WORDS}")
        if minimum_request_confirmations > MAX_REQUEST_CONFIRMATIONS:
            raise ValueError(f"request confirmations above maximum {MAX_REQUEST_CONFIRMATIONS}")
        if callback_gas_limit > MAX_CALLBACK_GAS_LIMIT:
            raise ValueError(f"callback gas limit above maximum {MAX_CALLBACK_GAS_LIMIT}")

        with self._lock:
            subscription = self.get_subscription(subscription_id)
            if consumer not in subscription.consumers:
                raise InvalidConsumer(subscription_id, consumer)

            request_id = self._next_request_id
            self._next_request_id += 1
            self._requests[request_id] = RandomnessRequest(
                request_id=request_id,
                subscription_id=subscription_id,
                consumer=consumer,
                key_hash=key_hash,
                minimum_request_confirmations=minimum_request_confirmations,
                callback_gas_limit=callback_gas_limit,
                num_words=num_words,
                requested_at=self._clock(),
            )

        self._events.emit(
            "RandomWordsRequested",
            request_id=request_id,
            subscription_id=subscription_id,
            consumer=consumer,
            num_words=num_words,
        )
        logger.info("Randomness request %d from %s (subscription %d)", request_id, consumer, subscription_id)
        return request_id

    def fulfill_random_words(self, request_id: int, random_words: Optional[Sequence[int]] = None) -> List[int]:
        """Deliver words for ``request_id`` to its consumer.

        ``random_words`` overrides the derived words; its length must match
        the request.

        Raises:
            NonexistentRequest: If the id is unknown or already fulfilled
            InsufficientBalance: If the subscription cannot pay the base fee
        """
        with self._lock:
            request = self._requests.get(request_id)
            if request is None or request.fulfilled:
                raise NonexistentRequest(request_id)

            subscription = self.get_subscription(request.subscription_id)
            if subscription.balance < self.base_fee:
                raise InsufficientBalance(
                    f"subscription {subscription.subscription_id}", subscription.balance, self.base_fee
                )
            consumer = subscription.consumers.get(request.consumer)
            if consumer is None:
                raise InvalidConsumer(subscription.subscription_id, request.consumer)

            if random_words is None:
                words = derive_random_words(request_id, request.num_words)
            else:
                words = [int(word) for word in random_words]
                if len(words) != request.num_words:
                    raise ValueError(f"expected {request.num_words} words, got {len(words)}")

            consumer.raw_fulfill_random_words(self.address, request_id, words)

            subscription.balance -= self.base_fee
            request.fulfilled = True
            request.random_words = words

        self._events.emit(
            "RandomWordsFulfilled",
            request_id=request_id,
            payment=self.base_fee,
            success=True,
        )
        logger.info("Request %d fulfilled for %s", request_id, request.consumer)
        return words

    def get_request(self, request_id: int) -> RandomnessRequest:
        with self._lock:
            request = self._requests.get(request_id)
        if request is None:
            raise NonexistentRequest(request_id)
        return request

    def pending_requests(self) -> List[RandomnessRequest]:
        with self._lock:
            return [request for request in self._requests.values() if not request.fulfilled]

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "address": self.address,
                "base_fee": self.base_fee,
                "subscriptions": len(self._subscriptions),
                "requests": len(self._requests),
                "pending": sum(1 for request in self._requests.values() if not request.fulfilled),
            }
