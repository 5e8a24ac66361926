#!/usr/bin/env python3
"""
Raffle Service Application

Main entry point: deploys the raffle against the local coordinator, then runs
the upkeep keeper, the fulfillment relay and the HTTP API until stopped.
"""

import asyncio
import signal
import sys
import traceback
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

# Load .env from the working directory before logging is configured
load_dotenv(Path.cwd() / ".env")

from web3 import Web3  # noqa: E402

from raffle.blockchain.accounts import AccountBook  # noqa: E402
from raffle.blockchain.deploy import Deployment, deploy_raffle  # noqa: E402
from raffle.lottery.event_manager import EventLog  # noqa: E402
from raffle.lottery.operator import FulfillmentRelay, UpkeepKeeper  # noqa: E402
from raffle.utils.config import get_config_value, load_config, to_wei  # noqa: E402
from raffle.utils.logger import get_logger  # noqa: E402
from raffle.web_server import RaffleWebServer  # noqa: E402

logger = get_logger(__name__)


class RaffleApp:
    """Raffle service application.

    Responsible for deploying the raffle and orchestrating the keeper, the
    fulfillment relay and the FastAPI web server. Handles graceful shutdown
    and logs a short startup summary for diagnostics.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config if config is not None else load_config()
        self.book = AccountBook()
        self.events = EventLog(capacity=int(get_config_value(self.config, "app.event_capacity", 500)))
        self.deployment: Optional[Deployment] = None
        self.keeper: Optional[UpkeepKeeper] = None
        self.relay: Optional[FulfillmentRelay] = None
        self.web_server: Optional[RaffleWebServer] = None
        self.running = True

        logger.info("Raffle application initialized")

    def _handle_signal(self, signum, frame):
        logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        self.running = False

    def _display_config_summary(self):
        logger.info("=" * 60)
        logger.info("CONFIGURATION SUMMARY")
        logger.info("=" * 60)
        logger.info(f"Network: {get_config_value(self.config, 'app.network', 'local')}")
        logger.info(f"Keeper enabled: {get_config_value(self.config, 'keeper.enabled', True)}")
        logger.info(f"Keeper interval: {get_config_value(self.config, 'keeper.check_interval', 5)}s")
        logger.info(f"Fulfillment delay: {get_config_value(self.config, 'vrf.fulfillment_delay', 2)}s")
        logger.info(f"Server: {get_config_value(self.config, 'server.host', '0.0.0.0')}:"
                    f"{get_config_value(self.config, 'server.port', 6080)}")
        logger.info("=" * 60)

    def initialize(self):
        """Deploy the raffle and build the keeper, relay and web server."""
        self._display_config_summary()

        self.deployment = deploy_raffle(self.config, self.book, self.events)
        self._fund_accounts()

        if _as_bool(get_config_value(self.config, "keeper.enabled", True)):
            self.keeper = UpkeepKeeper(
                self.deployment.raffle,
                check_interval=float(get_config_value(self.config, "keeper.check_interval", 5)),
            )
        if _as_bool(get_config_value(self.config, "vrf.auto_fulfill", True)):
            self.relay = FulfillmentRelay(
                self.deployment.coordinator,
                poll_interval=float(get_config_value(self.config, "vrf.poll_interval", 1)),
                fulfillment_delay=float(get_config_value(self.config, "vrf.fulfillment_delay", 2)),
            )

        self.web_server = RaffleWebServer(
            self.config,
            self.deployment,
            self.book,
            self.events,
            keeper=self.keeper,
            relay=self.relay,
        )

    def _fund_accounts(self):
        """Pre-fund configured accounts; the book is in-process on every network."""
        genesis_accounts = get_config_value(self.config, "app.genesis_accounts", {}) or {}
        if not isinstance(genesis_accounts, dict):
            raise ValueError(
                f"app.genesis_accounts must map addresses to ETH amounts, got {genesis_accounts!r}"
            )
        for address, amount_eth in genesis_accounts.items():
            self.book.mint(address, to_wei(amount_eth))
            logger.info(f"Funded {address} with {amount_eth} ETH")

    async def start(self):
        """Start services and run until a shutdown signal is received."""
        try:
            self.initialize()

            if self.keeper:
                await self.keeper.start()
            if self.relay:
                await self.relay.start()

            host = get_config_value(self.config, "server.host", "0.0.0.0")
            port = int(get_config_value(self.config, "server.port", 6080))
            server_task = asyncio.create_task(self.web_server.start(host=host, port=port))
            # give the server a moment to bind; a failed bind finishes the task
            await asyncio.sleep(0.2)
            if server_task.done() and server_task.exception():
                raise server_task.exception()

            self._display_startup_summary(host, port)

            while self.running and not server_task.done():
                await asyncio.sleep(1)

            logger.info("Shutdown signal received, stopping application...")
        finally:
            await self.stop()

    async def stop(self):
        """Stop all services."""
        self.running = False
        logger.info("Stopping raffle application")

        for name, component in (("keeper", self.keeper), ("relay", self.relay), ("web server", self.web_server)):
            if component is None:
                continue
            try:
                await component.stop()
                logger.info(f"{name} stopped")
            except Exception as e:
                logger.error(f"Error stopping {name}: {e}")

        logger.info("Raffle application stopped")

    def _display_startup_summary(self, host, port):
        raffle = self.deployment.raffle
        logger.info("=" * 60)
        logger.info("RAFFLE SERVICE STARTED")
        logger.info("=" * 60)
        logger.info(f"Raffle: {raffle.address}")
        logger.info(f"Coordinator: {self.deployment.coordinator.address}")
        logger.info(f"Subscription: {self.deployment.subscription_id}")
        logger.info(f"Entrance fee: {Web3.from_wei(raffle.entrance_fee, 'ether')} ETH")
        logger.info(f"Interval: {raffle.interval}s")
        logger.info(f"API: http://{host}:{port}/api/")
        logger.info("=" * 60)


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


async def main():
    """Main entry point for the raffle service"""
    app = RaffleApp()

    signal.signal(signal.SIGINT, app._handle_signal)
    signal.signal(signal.SIGTERM, app._handle_signal)

    try:
        await app.start()
    except KeyboardInterrupt:
        logger.info("Raffle service interrupted by user")
    except Exception as e:
        logger.error(f"Raffle service failed: {e}")
        logger.error(f"Error details: {traceback.format_exc()}")
        sys.exit(1)


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
