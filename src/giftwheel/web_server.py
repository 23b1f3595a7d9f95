"""FastAPI web server for the gift wheel backend."""

from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Set, Tuple

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from giftwheel.utils.logger import get_logger
from giftwheel.wheel.draw import DrawEngine, EmptyRosterError
from giftwheel.wheel.event_manager import GiftEventManager
from giftwheel.wheel.leaderboard import TOP_VIEW_SIZE
from giftwheel.wheel.models import DrawResult
from giftwheel.wheel.normalizer import MalformedPayloadError
from giftwheel.wheel.roster import ParticipantRoster
from giftwheel.wheel.store import WheelStore

logger = get_logger(__name__)

CONNECTED_MESSAGE = "Connected to webhook server"
SSE_KEEPALIVE_SEC = 15.0


class SimulateGiftRequest(BaseModel):
    username: str = "TestUser"
    gift_count: int = Field(1, ge=1, alias="giftCount")
    coin_value: int = Field(0, ge=0, alias="coinValue")
    gift_id: str = Field("11046", alias="giftId")
    gift_name: str = Field("Galaxy", alias="giftName")


class RosterEntryRequest(BaseModel):
    name: str


class ConfigUpdateRequest(BaseModel):
    max_limit: Optional[int] = Field(None, ge=0, alias="maxLimit")
    min_coins: Optional[int] = Field(None, ge=0, alias="minCoins")
    target_gift: Optional[str] = Field(None, alias="targetGift")


class GiftWheelWebServer:
    """HTTP, WebSocket and Server-Sent Events gateway for the gift wheel."""

    BROADCAST_EVENTS = (
        "gift",
        "roster_update",
        "leaderboard_update",
        "config_update",
        "draw_result",
        "live_feed",
    )

    def __init__(
        self,
        config: Dict[str, Any],
        event_manager: GiftEventManager,
        draw_engine: DrawEngine,
    ) -> None:
        self.config = config
        self.event_manager = event_manager
        self.draw_engine = draw_engine
        self._store: WheelStore = event_manager.store
        self._roster: ParticipantRoster = event_manager.roster

        self.app = FastAPI(
            title="Gift Wheel API",
            description="Turns livestream gift webhooks into weighted wheel entries",
            version="1.0.0",
            lifespan=self._lifespan,
        )

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._broadcast_queue: Optional[asyncio.Queue[Tuple[str, Any]]] = None
        self._broadcast_task: Optional[asyncio.Task[None]] = None
        self._ws_lock: Optional[asyncio.Lock] = None
        self._listeners_registered = False
        self._websockets: Set[WebSocket] = set()
        self._sse_queues: Set[asyncio.Queue] = set()
        self._last_draw: Optional[DrawResult] = None

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

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI) -> AsyncIterator[None]:
        await self._start_broadcasting()
        try:
            yield
        finally:
            await self._stop_broadcasting()

    def _setup_routes(self) -> None:  # noqa: C901
        @self.app.get("/")
        async def index() -> HTMLResponse:
            return HTMLResponse(
                "<h1>Gift Wheel</h1>"
                "<p>POST gift webhooks to <code>/webhook</code>; "
                "subscribe on <code>/events</code> or <code>/ws/wheel</code>.</p>"
            )

        # ------------------------------------------------------------------
        # Health & status
        # ------------------------------------------------------------------
        @self.app.get("/health")
        async def health_check() -> Dict[str, Any]:
            return {"status": "ok"}

        @self.app.get("/api/status")
        async def system_status() -> Dict[str, Any]:
            settings = self._store.get_settings()
            return {
                "timestamp": datetime.utcnow().isoformat(),
                "settings": self._store.serialize_settings(settings),
                "participants": len(self._roster),
                "users": len(self._store.get_accounts()),
                "pipeline": self.event_manager.get_status(),
                "subscribers": {
                    "websocket": len(self._websockets),
                    "sse": len(self._sse_queues),
                },
            }

        # ------------------------------------------------------------------
        # Webhook ingress
        # ------------------------------------------------------------------
        @self.app.post("/webhook")
        async def receive_webhook(request: Request) -> JSONResponse:
            logger.info("=== Gift Webhook Received ===")
            try:
                payload = await request.json()
            except ValueError as exc:
                logger.error("Unparseable webhook body: %s", exc)
                return JSONResponse(status_code=400, content={"success": False, "error": "Invalid JSON body"})
            logger.debug("Full payload: %s", json.dumps(payload, default=str))

            try:
                result = self.event_manager.ingest(payload)
            except MalformedPayloadError as exc:
                logger.error("Malformed webhook payload: %s", exc)
                return JSONResponse(status_code=400, content={"success": False, "error": str(exc)})
            except Exception as exc:
                logger.exception("Error processing webhook: %s", exc)
                return JSONResponse(status_code=500, content={"success": False, "error": str(exc)})

            event = result.event
            return JSONResponse(
                status_code=200,
                content={
                    "success": True,
                    "message": "Webhook received",
                    "username": event.username,
                    "giftCount": event.repeat_count,
                    "coinValue": event.coin_value,
                    "outcome": result.outcome.value,
                },
            )

        @self.app.post("/test-webhook")
        async def test_webhook(request: SimulateGiftRequest) -> Dict[str, Any]:
            burst = self.event_manager.simulate_combo(
                username=request.username,
                gift_count=request.gift_count,
                coin_value=request.coin_value,
                gift_id=request.gift_id,
                gift_name=request.gift_name,
            )
            return {"success": True, "message": "Test webhook sent", "data": burst}

        # ------------------------------------------------------------------
        # Roster management
        # ------------------------------------------------------------------
        @self.app.get("/api/roster")
        async def get_roster() -> Dict[str, Any]:
            return self._roster.snapshot()

        @self.app.post("/api/roster")
        async def add_participant(request: RosterEntryRequest) -> Dict[str, Any]:
            name = request.name.strip()
            if not name:
                raise HTTPException(status_code=400, detail="Name cannot be empty")
            if not self._roster.append(name):
                raise HTTPException(status_code=400, detail=f"Max limit reached ({self._roster.capacity()})")
            self._store.add_live_feed(event_type="roster", message=f"Added: {name} ({len(self._roster)}/{self._roster.capacity() or '∞'})")
            return self._roster.snapshot()

        @self.app.delete("/api/roster/{name}")
        async def remove_participant(name: str) -> Dict[str, Any]:
            if not self._roster.remove_one(name):
                raise HTTPException(status_code=404, detail=f"{name} is not on the wheel")
            self._store.add_live_feed(event_type="roster", message=f"Removed: {name}")
            return self._roster.snapshot()

        @self.app.post("/api/roster/remove-last")
        async def remove_last_participant() -> Dict[str, Any]:
            removed = self._roster.remove_last()
            if removed is not None:
                self._store.add_live_feed(event_type="roster", message=f"Removed: {removed}")
            return {"removed": removed, **self._roster.snapshot()}

        @self.app.delete("/api/roster")
        async def clear_participants() -> Dict[str, Any]:
            count = self._roster.clear()
            if count:
                self._store.add_live_feed(event_type="roster", message=f"Cleared {count} participant(s)")
            return {"cleared": count, **self._roster.snapshot()}

        # ------------------------------------------------------------------
        # Settings
        # ------------------------------------------------------------------
        @self.app.get("/api/config")
        async def get_config() -> Dict[str, Any]:
            return self._store.serialize_settings(self._store.get_settings())

        @self.app.put("/api/config")
        async def update_config(request: ConfigUpdateRequest) -> Dict[str, Any]:
            kwargs: Dict[str, Any] = {"max_limit": request.max_limit, "min_coins": request.min_coins}
            if request.target_gift is not None:
                kwargs["target_gift"] = request.target_gift
            settings = self._store.update_settings(**kwargs)
            return self._store.serialize_settings(settings)

        # ------------------------------------------------------------------
        # Draw & leaderboard
        # ------------------------------------------------------------------
        @self.app.post("/api/draw")
        async def draw_winner() -> Dict[str, Any]:
            try:
                result = self.draw_engine.draw(self._roster.entries())
            except EmptyRosterError as exc:
                raise HTTPException(status_code=409, detail=str(exc))
            self._last_draw = result
            payload = self._serialize_draw(result)
            self._store.add_live_feed(
                event_type="draw",
                message=f"Winner selected: {result.winner}",
                details={"index": result.index, "winner": result.winner},
            )
            self._store.emit("draw_result", payload)
            return payload

        @self.app.get("/api/draw/last")
        async def last_draw() -> Dict[str, Any]:
            if self._last_draw is None:
                raise HTTPException(status_code=404, detail="No draw yet")
            return self._serialize_draw(self._last_draw)

        @self.app.get("/api/leaderboard")
        async def get_leaderboard(view: str = "top") -> Dict[str, Any]:
            if view not in ("top", "full"):
                raise HTTPException(status_code=400, detail="view must be 'top' or 'full'")
            limit = TOP_VIEW_SIZE if view == "top" else None
            body = self._store.serialize_leaderboard(self._store.get_leaderboard(limit=limit))
            body["view"] = view
            return body

        @self.app.get("/api/users/{username}")
        async def get_user(username: str) -> Dict[str, Any]:
            account = self._store.get_account(username)
            if account is None:
                raise HTTPException(status_code=404, detail=f"Unknown user {username}")
            return self._store.serialize_account(account)

        @self.app.delete("/api/leaderboard")
        async def reset_leaderboard() -> Dict[str, Any]:
            count = self._store.reset_statistics()
            self._store.add_live_feed(event_type="leaderboard", message=f"Reset statistics for {count} user(s)")
            return {"reset": count}

        @self.app.get("/api/activities")
        async def get_live_feed(limit: int = 10) -> Dict[str, Any]:
            limit = max(1, min(limit, 200))
            feed = self._store.get_live_feed(limit=limit)
            return {"activities": [self._store.serialize_feed_item(item) for item in reversed(feed)]}

        # ------------------------------------------------------------------
        # Delivery channels
        # ------------------------------------------------------------------
        @self.app.get("/events")
        async def event_stream(request: Request) -> StreamingResponse:
            queue: asyncio.Queue = asyncio.Queue()
            self._sse_queues.add(queue)
            logger.info("SSE client connected (%s total)", len(self._sse_queues))

            async def stream() -> AsyncIterator[str]:
                try:
                    yield self._format_sse(self._connected_message())
                    yield self._format_sse(self._message("snapshot", self._build_initial_snapshot()))
                    while True:
                        if await request.is_disconnected():
                            break
                        try:
                            message = await asyncio.wait_for(queue.get(), timeout=SSE_KEEPALIVE_SEC)
                        except asyncio.TimeoutError:
                            yield ": keep-alive\n\n"
                            continue
                        yield self._format_sse(message)
                finally:
                    self._sse_queues.discard(queue)
                    logger.info("SSE client disconnected (%s remaining)", len(self._sse_queues))

            return StreamingResponse(
                stream(),
                media_type="text/event-stream",
                headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
            )

        @self.app.websocket("/ws/wheel")
        async def websocket_endpoint(websocket: WebSocket) -> None:
            await websocket.accept()
            if self._ws_lock is None:
                self._ws_lock = asyncio.Lock()
            async with self._ws_lock:
                self._websockets.add(websocket)
            logger.info("WebSocket client connected (%s total)", len(self._websockets))
            try:
                await websocket.send_json(self._connected_message())
                await websocket.send_json(self._message("snapshot", self._build_initial_snapshot()))
                while True:
                    try:
                        await websocket.receive_text()
                    except WebSocketDisconnect:
                        break
                    except Exception as exc:  # pragma: no cover
                        logger.debug("WebSocket receive error: %s", exc)
                        break
            finally:
                async with self._ws_lock:
                    self._websockets.discard(websocket)
                logger.info("WebSocket client disconnected (%s remaining)", len(self._websockets))

    # ------------------------------------------------------------------
    # Lifecycle management
    # ------------------------------------------------------------------
    async def start(self, host: str = "0.0.0.0", port: int = 3000) -> None:
        import uvicorn

        logger.info("Starting gift wheel web server on %s:%s", host, port)
        config = uvicorn.Config(self.app, host=host, port=port, log_level="info", access_log=True)
        server = uvicorn.Server(config)
        try:
            await server.serve()
        finally:
            logger.info("Gift wheel web server stopped")

    async def stop(self) -> None:
        logger.info("Stopping gift wheel web server")
        await self._stop_broadcasting()
        if self._ws_lock is None:
            self._ws_lock = asyncio.Lock()
        async with self._ws_lock:
            for websocket in list(self._websockets):
                try:
                    await websocket.close(code=1001, reason="Server shutdown")
                except Exception as exc:  # pragma: no cover
                    logger.debug("Error closing websocket: %s", exc)
            self._websockets.clear()

    async def _start_broadcasting(self) -> None:
        self._loop = asyncio.get_running_loop()
        if self._broadcast_queue is None:
            self._broadcast_queue = asyncio.Queue()
        if self._ws_lock is None:
            self._ws_lock = asyncio.Lock()
        self._register_store_listeners()
        if self._broadcast_task is None:
            self._broadcast_task = asyncio.create_task(self._broadcast_loop(), name="wheel-web-broadcast")

    async def _stop_broadcasting(self) -> None:
        if self._broadcast_task:
            self._broadcast_task.cancel()
            try:
                await self._broadcast_task
            except asyncio.CancelledError:
                pass
            self._broadcast_task = None
        self._broadcast_queue = None

    # ------------------------------------------------------------------
    # Store listeners & broadcasting
    # ------------------------------------------------------------------
    def _register_store_listeners(self) -> None:
        if self._listeners_registered:
            return
        for event in self.BROADCAST_EVENTS:
            self._store.add_listener(event, lambda payload, evt=event: self._enqueue_broadcast(evt, payload))
        self._listeners_registered = True

    def _enqueue_broadcast(self, event_type: str, payload: Any) -> None:
        if not self._broadcast_queue or not self._loop:
            return
        try:
            self._loop.call_soon_threadsafe(self._broadcast_queue.put_nowait, (event_type, payload))
            logger.debug("Enqueued broadcast for %s", event_type)
        except RuntimeError:  # pragma: no cover - loop already closing
            logger.debug("Failed to enqueue broadcast for %s", event_type)

    async def _broadcast_loop(self) -> None:
        assert self._broadcast_queue is not None
        while True:
            try:
                event_type, payload = await self._broadcast_queue.get()
                await self._broadcast_to_clients(event_type, payload)
            except asyncio.CancelledError:
                break
            except Exception as exc:  # pragma: no cover
                logger.exception("Broadcast loop error: %s", exc)

    async def _broadcast_to_clients(self, event_type: str, payload: Any) -> None:
        message = self._message(event_type, payload)

        for queue in list(self._sse_queues):
            queue.put_nowait(message)

        if self._ws_lock is None:
            self._ws_lock = asyncio.Lock()
        async with self._ws_lock:
            if not self._websockets:
                return
            to_remove: List[WebSocket] = []
            for websocket in self._websockets:
                try:
                    await websocket.send_json(message)
                except Exception as exc:  # pragma: no cover
                    logger.debug("WebSocket send failed: %s", exc)
                    to_remove.append(websocket)
            for websocket in to_remove:
                self._websockets.discard(websocket)
        logger.debug("Broadcasted %s to %d websocket client(s)", event_type, len(self._websockets))

    def _build_initial_snapshot(self) -> Dict[str, Any]:
        return {
            "roster": self._roster.snapshot(),
            "settings": self._store.serialize_settings(self._store.get_settings()),
            "leaderboard": self._store.serialize_leaderboard(self._store.get_leaderboard(limit=TOP_VIEW_SIZE)),
            "live_feed": [self._store.serialize_feed_item(item) for item in reversed(self._store.get_live_feed(limit=10))],
        }

    # ------------------------------------------------------------------
    # Serialization helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _message(event_type: str, payload: Any) -> Dict[str, Any]:
        return {"type": event_type, "payload": payload, "timestamp": datetime.utcnow().isoformat()}

    def _connected_message(self) -> Dict[str, Any]:
        return self._message("connected", {"message": CONNECTED_MESSAGE})

    @staticmethod
    def _format_sse(message: Dict[str, Any]) -> str:
        return f"data: {json.dumps(message, default=str)}\n\n"

    @staticmethod
    def _serialize_draw(result: DrawResult) -> Dict[str, Any]:
        return {
            "index": result.index,
            "winner": result.winner,
            "participantCount": result.participant_count,
            "chance": 1.0 / result.participant_count,
            "rotation": result.rotation,
            "durationMs": result.duration_ms,
            "drawnAt": result.drawn_at.isoformat(),
        }
