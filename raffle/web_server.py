"""FastAPI web server for the raffle service."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from raffle.blockchain.accounts import AccountBook
from raffle.blockchain.deploy import Deployment
from raffle.lottery.errors import (
    InsufficientBalance,
    InsufficientFee,
    PlayerIndexOutOfRange,
    RoundNotOpen,
    UpkeepNotNeeded,
)
from raffle.lottery.event_manager import EventLog, serialize_event
from raffle.lottery.operator import FulfillmentRelay, UpkeepKeeper
from raffle.utils.common import validate_ethereum_address
from raffle.utils.logger import get_logger

logger = get_logger(__name__)


class EnterRequest(BaseModel):
    player: str
    value_wei: int = Field(ge=0)


class FaucetRequest(BaseModel):
    address: str
    amount_wei: int = Field(gt=0)


class RaffleWebServer:
    """HTTP gateway: entry, upkeep and read accessors.

    There is no fulfillment route: only the coordinator calls
    the raffle back.
    """

    def __init__(
        self,
        config: Dict[str, Any],
        deployment: Deployment,
        book: AccountBook,
        events: EventLog,
        keeper: Optional[UpkeepKeeper] = None,
        relay: Optional[FulfillmentRelay] = None,
    ) -> None:
        self.config = config
        self.deployment = deployment
        self.raffle = deployment.raffle
        self.book = book
        self.events = events
        self.keeper = keeper
        self.relay = relay
        self._server = None

        self.app = FastAPI(
            title="VRF Raffle API",
            description="Entry, upkeep and status surface for the raffle",
            version="1.0.0",
        )

        self._setup_middleware()
        self._setup_routes()

    # ------------------------------------------------------------------
    # FastAPI scaffolding
    # ------------------------------------------------------------------
    def _setup_middleware(self) -> None:
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    def _setup_routes(self) -> None:  # noqa: C901
        # ------------------------------------------------------------------
        # Health & status
        # ------------------------------------------------------------------
        @self.app.get("/api/health")
        async def health_check() -> Dict[str, Any]:
            return {
                "status": "ok",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "components": {
                    "web": True,
                    "keeper": self.keeper.get_status()["status"] if self.keeper else "disabled",
                    "relay": self.relay.get_status()["status"] if self.relay else "disabled",
                    "raffle": self.raffle.raffle_state.name,
                },
            }

        @self.app.get("/api/status")
        async def system_status() -> Dict[str, Any]:
            return {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "deployment": self.deployment.to_dict(),
                "raffle": self.raffle.snapshot(),
                "upkeep": self._serialize_upkeep(),
                "keeper": self.keeper.get_status() if self.keeper else None,
                "relay": self.relay.get_status() if self.relay else None,
                "coordinator": self.deployment.coordinator.get_status(),
            }

        # ------------------------------------------------------------------
        # Raffle state
        # ------------------------------------------------------------------
        @self.app.get("/api/raffle")
        async def get_raffle() -> Dict[str, Any]:
            return self.raffle.snapshot()

        @self.app.get("/api/raffle/players")
        async def get_players() -> Dict[str, Any]:
            players = self.raffle.players
            return {"players": players, "number_of_players": len(players)}

        @self.app.get("/api/raffle/players/{index}")
        async def get_player(index: int) -> Dict[str, Any]:
            try:
                player = self.raffle.get_player(index)
            except PlayerIndexOutOfRange as exc:
                raise HTTPException(status_code=404, detail=str(exc))
            return {"index": index, "player": player}

        @self.app.post("/api/raffle/enter")
        async def enter_raffle(request: EnterRequest) -> Dict[str, Any]:
            if not validate_ethereum_address(request.player):
                raise HTTPException(status_code=400, detail=f"Invalid address: {request.player}")
            try:
                self.raffle.enter(request.player, request.value_wei)
            except InsufficientFee as exc:
                raise HTTPException(
                    status_code=402,
                    detail={"error": "InsufficientFee", "message": str(exc), "entrance_fee_wei": exc.entrance_fee},
                )
            except RoundNotOpen as exc:
                raise HTTPException(status_code=409, detail={"error": "RoundNotOpen", "message": str(exc)})
            except InsufficientBalance as exc:
                raise HTTPException(status_code=400, detail={"error": "InsufficientBalance", "message": str(exc)})
            return {
                "status": "entered",
                "player": request.player,
                "number_of_players": self.raffle.number_of_players,
                "balance_wei": self.raffle.balance,
            }

        # ------------------------------------------------------------------
        # Upkeep
        # ------------------------------------------------------------------
        @self.app.get("/api/upkeep")
        async def check_upkeep() -> Dict[str, Any]:
            return self._serialize_upkeep()

        @self.app.post("/api/upkeep")
        async def perform_upkeep() -> Dict[str, Any]:
            try:
                request_id = self.raffle.perform_upkeep()
            except UpkeepNotNeeded as exc:
                raise HTTPException(
                    status_code=409,
                    detail={
                        "error": "UpkeepNotNeeded",
                        "balance_wei": exc.balance,
                        "number_of_players": exc.num_players,
                        "raffle_state": exc.raffle_state,
                    },
                )
            return {"status": "requested", "request_id": request_id}

        # ------------------------------------------------------------------
        # Events & accounts
        # ------------------------------------------------------------------
        @self.app.get("/api/events")
        async def get_events(limit: int = 50) -> Dict[str, Any]:
            limit = max(1, min(limit, 500))
            events = self.events.recent(limit)
            return {"events": [serialize_event(event) for event in reversed(events)]}

        @self.app.get("/api/accounts/{address}")
        async def get_account(address: str) -> Dict[str, Any]:
            if not validate_ethereum_address(address):
                raise HTTPException(status_code=400, detail=f"Invalid address: {address}")
            return {"address": address, "balance_wei": self.book.balance_of(address)}

        @self.app.post("/api/faucet")
        async def faucet(request: FaucetRequest) -> Dict[str, Any]:
            if self.deployment.network != "local":
                raise HTTPException(status_code=403, detail="Faucet is only available on the local network")
            if not validate_ethereum_address(request.address):
                raise HTTPException(status_code=400, detail=f"Invalid address: {request.address}")
            self.book.mint(request.address, request.amount_wei)
            return {"address": request.address, "balance_wei": self.book.balance_of(request.address)}

    def _serialize_upkeep(self) -> Dict[str, Any]:
        status = self.raffle.check_upkeep()
        return {
            "upkeep_needed": status.upkeep_needed,
            "perform_data": "0x" + status.perform_data.hex(),
            "time_passed": status.time_passed,
            "is_open": status.is_open,
            "has_balance": status.has_balance,
            "has_players": status.has_players,
        }

    # ------------------------------------------------------------------
    # Lifecycle management
    # ------------------------------------------------------------------
    async def start(self, host: str = "0.0.0.0", port: int = 6080) -> None:
        import uvicorn

        logger.info("Starting raffle web server on %s:%s", host, port)
        config = uvicorn.Config(self.app, host=host, port=port, log_level="info", access_log=True)
        self._server = uvicorn.Server(config)
        try:
            await self._server.serve()
        finally:
            logger.info("Raffle web server stopped")

    async def stop(self) -> None:
        if self._server is not None:
            logger.info("Stopping raffle web server")
            self._server.should_exit = True
