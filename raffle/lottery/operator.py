"""
Automation loops around the raffle.

- UpkeepKeeper: periodically runs check_upkeep and, when it holds, perform_upkeep.
- FulfillmentRelay: periodically delivers pending coordinator requests.

Neither loop retries on its own schedule beyond the next poll, and neither
times out a round left CALCULATING by an oracle that never answers.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional

from raffle.blockchain.vrf import VRFCoordinator
from raffle.lottery.engine import Raffle
from raffle.lottery.errors import UpkeepNotNeeded
from raffle.utils.logger import get_logger

logger = get_logger(__name__)


class _PollingLoop:
    """Shared start/stop handling for the asyncio polling loops."""

    name = "loop"

    def __init__(self, interval: float) -> None:
        self._interval = interval
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self.last_error: Optional[str] = None

    async def start(self) -> None:
        if self._running:
            logger.warning("%s already running", self.name)
            return
        self._running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name=self.name)
        logger.info("%s started (interval %ss)", self.name, self._interval)

    async def stop(self) -> None:
        if not self._running:
            return
        logger.info("Stopping %s", self.name)
        self._running = False
        if self._stop_event:
            self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("%s stopped", self.name)

    @property
    def is_running(self) -> bool:
        return self._running

    async def _loop(self) -> None:
        assert self._stop_event is not None
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception as exc:
                self.last_error = str(exc)
                logger.error("%s iteration failed: %s", self.name, exc)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                break
            except asyncio.TimeoutError:
                continue

    def run_once(self) -> Any:  # pragma: no cover - overridden
        raise NotImplementedError


class UpkeepKeeper(_PollingLoop):
    """Stands in for an external automation network."""

    name = "upkeep-keeper"

    def __init__(self, raffle: Raffle, *, check_interval: float = 5.0) -> None:
        super().__init__(check_interval)
        self._raffle = raffle
        self.checks = 0
        self.upkeeps_performed = 0
        self.last_request_id: Optional[int] = None

    def run_once(self) -> Optional[int]:
        """Check once and perform upkeep if needed. Returns the request id."""
        self.checks += 1
        status = self._raffle.check_upkeep()
        if not status.upkeep_needed:
            logger.debug(
                "Upkeep not needed: time_passed=%s open=%s balance=%s players=%s",
                status.time_passed,
                status.is_open,
                status.has_balance,
                status.has_players,
            )
            return None

        try:
            request_id = self._raffle.perform_upkeep(status.perform_data)
        except UpkeepNotNeeded as exc:
            # state moved between check and perform
            logger.info("Upkeep declined at perform time: %s", exc)
            return None

        self.upkeeps_performed += 1
        self.last_request_id = request_id
        return request_id

    def get_status(self) -> Dict[str, Any]:
        return {
            "status": "running" if self._running else "stopped",
            "check_interval": self._interval,
            "checks": self.checks,
            "upkeeps_performed": self.upkeeps_performed,
            "last_request_id": self.last_request_id,
            "last_error": self.last_error,
        }


class FulfillmentRelay(_PollingLoop):
    """Delivers coordinator requests once they are ``fulfillment_delay`` seconds old."""

    name = "fulfillment-relay"

    def __init__(
        self,
        coordinator: VRFCoordinator,
        *,
        poll_interval: float = 1.0,
        fulfillment_delay: float = 0.0,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        super().__init__(poll_interval)
        self._coordinator = coordinator
        self._delay = fulfillment_delay
        self._clock = clock or time.time
        self.fulfilled = 0
        self.failures = 0

    def run_once(self) -> List[int]:
        """Fulfill every due request. Failed ones stay pending for the next pass."""
        now = self._clock()
        delivered: List[int] = []
        for request in self._coordinator.pending_requests():
            if now - request.requested_at < self._delay:
                continue
            try:
                self._coordinator.fulfill_random_words(request.request_id)
            except Exception as exc:
                self.failures += 1
                self.last_error = str(exc)
                logger.error("Fulfillment of request %d failed: %s", request.request_id, exc)
                continue
            self.fulfilled += 1
            delivered.append(request.request_id)
        return delivered

    def get_status(self) -> Dict[str, Any]:
        return {
            "status": "running" if self._running else "stopped",
            "poll_interval": self._interval,
            "fulfillment_delay": self._delay,
            "fulfilled": self.fulfilled,
            "failures": self.failures,
            "pending": len(self._coordinator.pending_requests()),
            "last_error": self.last_error,
        }
