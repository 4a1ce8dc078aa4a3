"""
WebSocket push channel for displays and department dashboards.

Every new connection first receives the full board (`state:update`); after
that, queue events from the EventBus are forwarded to all open connections
as `{"event": <name>, "data": <payload>}`.

Delivery is best effort: a connection that fails to receive is dropped and
never affects the desk operation that produced the event.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket, WebSocketDisconnect

from .events import STATE_UPDATE, STUDENT_UPDATE, Event, EventBus
from .manager import EnrolmentQueue

logger = logging.getLogger(__name__)

FORWARDED = (STATE_UPDATE, STUDENT_UPDATE)


class ListenerHub:
    """
    Tracks WebSocket listeners and fans queue events out to them.

    Events may be published from any thread (HTTP handlers run on the event
    loop, MQTT callbacks on the paho network thread); sends are always
    scheduled onto the loop that owns the connections.
    """

    def __init__(self, queue: EnrolmentQueue):
        self.queue = queue
        self.active_connections: Set[WebSocket] = set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._counter = 0
        self._tasks: Set[asyncio.Task] = set()

    def attach(self, bus: EventBus):
        return bus.subscribe(self.on_event)

    async def connect(self, websocket: WebSocket) -> str:
        await websocket.accept()
        self._loop = asyncio.get_running_loop()
        self._counter += 1
        connection_id = f"conn_{self._counter}"
        self.active_connections.add(websocket)
        logger.info(f"[{connection_id}] listener connected, total: {len(self.active_connections)}")

        await websocket.send_json({"event": STATE_UPDATE, "data": self.queue.status()})
        return connection_id

    def disconnect(self, websocket: WebSocket) -> None:
        self.active_connections.discard(websocket)

    async def serve(self, websocket: WebSocket) -> None:
        """Run one listener until it disconnects. Incoming text is ignored."""
        connection_id = await self.connect(websocket)
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            self.disconnect(websocket)
            logger.info(f"[{connection_id}] listener disconnected, total: {len(self.active_connections)}")

    async def broadcast(self, message: Dict[str, Any]) -> None:
        dead = []
        for ws in list(self.active_connections):
            try:
                await ws.send_json(message)
            except Exception as e:
                logger.debug(f"dropping listener after failed send: {e}")
                dead.append(ws)
        for ws in dead:
            self.disconnect(ws)

    def on_event(self, event: Event) -> None:
        if event.name not in FORWARDED:
            return
        loop = self._loop
        if loop is None or loop.is_closed() or not self.active_connections:
            return
        message = {"event": event.name, "data": event.payload}
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            task = loop.create_task(self.broadcast(message))
            self._tasks.add(task)
            task.add_done_callback(self._task_done)
        else:
            asyncio.run_coroutine_threadsafe(self.broadcast(message), loop)

    def _task_done(self, task: "asyncio.Task") -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"broadcast failed: {task.exception()!r}")
