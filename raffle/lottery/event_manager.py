"""In-memory notification log for the raffle and its coordinator."""

from __future__ import annotations

import time
from collections import defaultdict, deque
from contextlib import contextmanager
from threading import RLock
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from raffle.lottery.models import RaffleEvent
from raffle.utils.common import shorten_eth_address
from raffle.utils.logger import get_logger

logger = get_logger(__name__)

Listener = Callable[[RaffleEvent], None]

# "*" listeners receive every event
ALL_EVENTS = "*"


class EventLog:
    """Bounded log of emitted events with per-name listeners.

    Listeners are observers only: a listener that raises is logged and the
    emitting operation carries on.
    """

    def __init__(self, *, capacity: int = 500, clock: Optional[Callable[[], int]] = None) -> None:
        self._lock = RLock()
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)
        self._events: deque[RaffleEvent] = deque(maxlen=capacity)
        self._sequence = 0
        self._depth = 0
        self._pending: List[Tuple[str, Dict[str, Any], int]] = []
        self._clock = clock or (lambda: int(time.time()))

    # ------------------------------------------------------------------
    # Listener management
    # ------------------------------------------------------------------
    def add_listener(self, event_name: str, callback: Listener) -> None:
        with self._lock:
            self._listeners[event_name].append(callback)
        logger.debug(f"[EventLog] Adding listener for event={event_name}, callback={callback}")

    def remove_listener(self, event_name: str, callback: Listener) -> None:
        with self._lock:
            if callback in self._listeners.get(event_name, []):
                self._listeners[event_name].remove(callback)

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------
    def emit(self, name: str, **args: Any) -> None:
        """Record an event, or buffer it while a transaction is open."""
        with self._lock:
            if self._depth:
                self._pending.append((name, dict(args), self._clock()))
                return
            event = self._record(name, dict(args), self._clock())
        self._dispatch(event)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Hold back events until the outermost block completes.

        Events emitted inside a block that raises are discarded, so observers
        never see notifications from a rolled-back operation. Holds the log
        lock for the duration of the block.
        """
        with self._lock:
            mark = len(self._pending)
            self._depth += 1
            try:
                yield
            except BaseException:
                del self._pending[mark:]
                raise
            finally:
                self._depth -= 1
            if self._depth:
                return
            pending, self._pending = self._pending, []
            events = [self._record(name, args, ts) for name, args, ts in pending]
        for event in events:
            self._dispatch(event)

    def _record(self, name: str, args: Dict[str, Any], timestamp: int) -> RaffleEvent:
        self._sequence += 1
        event = RaffleEvent(sequence=self._sequence, name=name, args=args, timestamp=timestamp)
        self._events.append(event)
        return event

    def _dispatch(self, event: RaffleEvent) -> None:
        with self._lock:
            listeners = list(self._listeners.get(event.name, [])) + list(self._listeners.get(ALL_EVENTS, []))

        logger.info("[EventLog] %s", describe_event(event))
        for callback in listeners:
            try:
                callback(event)
            except Exception as exc:
                logger.error("Listener for %s failed: %s", event.name, exc)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    def recent(self, limit: Optional[int] = None) -> List[RaffleEvent]:
        with self._lock:
            items = list(self._events)
        if limit is not None:
            return items[-limit:] if limit > 0 else []
        return items

    def events(self, name: str) -> List[RaffleEvent]:
        with self._lock:
            return [event for event in self._events if event.name == name]

    def last(self, name: str) -> Optional[RaffleEvent]:
        matches = self.events(name)
        return matches[-1] if matches else None

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
        logger.debug("[EventLog] cleared")


def serialize_event(event: RaffleEvent) -> Dict[str, Any]:
    return {
        "sequence": event.sequence,
        "name": event.name,
        "args": event.args,
        "timestamp": event.timestamp,
        "message": describe_event(event),
    }


def describe_event(event: RaffleEvent) -> str:
    """Short human-readable summary of an event."""
    a = event.args
    if event.name == "RaffleEntered":
        return f"{shorten_eth_address(a.get('player'))} entered the raffle"
    if event.name == "RequestedRaffleWinner":
        return f"Randomness requested (request {a.get('request_id')})"
    if event.name == "WinnerPicked":
        return f"Winner picked: {shorten_eth_address(a.get('winner'))}"
    if event.name == "RandomWordsRequested":
        return f"Request {a.get('request_id')} from {shorten_eth_address(a.get('consumer'))}"
    if event.name == "RandomWordsFulfilled":
        return f"Request {a.get('request_id')} fulfilled"
    if "subscription_id" in a:
        return f"{event.name} for subscription {a['subscription_id']}"
    return event.name
