"""WebSocket endpoint streaming session and incident events to the browser."""

import asyncio
import json
import queue
import threading
from datetime import datetime, timezone
from typing import Set

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from loguru import logger

router = APIRouter(prefix="/ws", tags=["websocket"])

# Event families forwarded to clients
_FORWARDED_PREFIXES = ("session:", "incident:")


class ConnectionManager:
    """Manages WebSocket connections for real-time updates."""

    def __init__(self):
        self.active_connections: Set[WebSocket] = set()
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket):
        """Accept and register a new WebSocket connection."""
        await websocket.accept()
        async with self._lock:
            self.active_connections.add(websocket)
        logger.info(f"WebSocket connected. Total connections: {len(self.active_connections)}")

    async def disconnect(self, websocket: WebSocket):
        async with self._lock:
            self.active_connections.discard(websocket)
        logger.info(f"WebSocket disconnected. Total connections: {len(self.active_connections)}")

    async def broadcast(self, message: dict):
        """Broadcast a message to all connected clients."""
        if not self.active_connections:
            return

        message_str = json.dumps(message)
        disconnected = set()

        async with self._lock:
            for connection in self.active_connections:
                try:
                    await connection.send_text(message_str)
                except Exception as e:
                    logger.warning(f"Failed to send to websocket: {e}")
                    disconnected.add(connection)

            self.active_connections -= disconnected

    async def send_to(self, websocket: WebSocket, message: dict):
        try:
            await websocket.send_text(json.dumps(message))
        except Exception as e:
            logger.warning(f"Failed to send to websocket: {e}")


# Global connection manager
manager = ConnectionManager()


@router.websocket("/session")
async def websocket_session(websocket: WebSocket):
    """Live session feed. Clients may send ``{"type": "ping"}``."""
    await manager.connect(websocket)
    mode = getattr(websocket.app.state, "chaos_mode", None)
    if mode is not None:
        await manager.send_to(websocket, {"type": "session:status", "data": mode.get_status()})
    try:
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                await manager.send_to(websocket, {"type": "error", "message": "Invalid JSON"})
                continue
            if message.get("type") == "ping":
                await manager.send_to(websocket, {"type": "pong"})
    except WebSocketDisconnect:
        pass
    finally:
        await manager.disconnect(websocket)


class SessionEventBridge:
    """Daemon thread that forwards EventBus events to WebSocket clients.

    Bridges the threaded EventBus to FastAPI's event loop: the thread drains
    a bus subscription and schedules ``manager.broadcast`` on ``loop``.
    """

    def __init__(self, event_bus, loop: asyncio.AbstractEventLoop) -> None:
        self._event_bus = event_bus
        self._loop = loop
        self._sub: queue.Queue | None = None
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._sub = self._event_bus.subscribe()
        self._thread = threading.Thread(
            target=self._bridge_loop, name="session-ws-bridge", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._sub is not None:
            self._event_bus.unsubscribe(self._sub)
        if self._thread is not None:
            self._thread.join(timeout=2.0)
            self._thread = None

    def _bridge_loop(self) -> None:
        while not self._stop.is_set():
            try:
                msg = self._sub.get(timeout=0.5)
            except queue.Empty:
                continue
            event_type = msg.get("type", "unknown")
            if not event_type.startswith(_FORWARDED_PREFIXES):
                continue
            asyncio.run_coroutine_threadsafe(
                manager.broadcast({
                    "type": event_type,
                    "data": msg.get("data", {}),
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                }),
                self._loop,
            )
