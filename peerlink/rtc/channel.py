"""
WebSocket client side of the relay protocol.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from collections import defaultdict, deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

LOG = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[None]]
Connector = Callable[[str], Any]

LIFECYCLE_EVENTS = ("connect", "disconnect")


def encode_frame(event: str, data: Any = None) -> str:
    frame: Dict[str, Any] = {"event": event}
    if data is not None:
        frame["data"] = data
    return json.dumps(frame, separators=(",", ":"))


class SignalingChannel:
    """
    Event-style signaling client with bounded buffering and reconnection.

    Outbound frames are queued with :meth:`send` and written in order while a
    connection is up; frames queued while disconnected are kept (up to
    ``outbox_size``) and flushed after the next successful connect.  Incoming
    frames are handed to the registered handlers one at a time, so handlers
    observe the relay's per-sender ordering.
    """

    def __init__(
        self,
        url: str,
        *,
        reconnection_attempts: int = 5,
        reconnection_delay: float = 1.0,
        outbox_size: int = 256,
        connect: Optional[Connector] = None,
    ) -> None:
        self.url = url
        self.reconnection_attempts = max(0, int(reconnection_attempts))
        self.reconnection_delay = max(0.0, float(reconnection_delay))
        self.outbox_size = max(1, int(outbox_size))
        self._connect = connect or websockets.connect

        self._handlers: Dict[str, List[Handler]] = defaultdict(list)
        self._outbox: Deque[str] = deque()
        self._wakeup = asyncio.Event()
        self._closed = False
        self._websocket: Optional[Any] = None
        self.channel_id: Optional[str] = None
        self.connected = False
        self.dropped = 0

    def on(self, event: str, handler: Handler) -> None:
        self._handlers[event].append(handler)

    def send(self, event: str, data: Any = None) -> bool:
        if self._closed:
            LOG.debug("Channel closed; discarding %s", event)
            return False
        if len(self._outbox) >= self.outbox_size:
            self.dropped += 1
            LOG.warning("Signaling outbox full; dropping %s", event)
            return False
        self._outbox.append(encode_frame(event, data))
        self._wakeup.set()
        return True

    @property
    def pending(self) -> int:
        return len(self._outbox)

    async def _emit(self, event: str, data: Any = None) -> None:
        for handler in list(self._handlers.get(event, ())):
            try:
                await handler(data)
            except Exception:
                LOG.exception("Handler for %s failed", event)

    async def run(self) -> None:
        """
        Connect and serve until closed or reconnection attempts are exhausted.
        """

        failures = 0
        while not self._closed:
            try:
                async with self._connect(self.url) as websocket:
                    failures = 0
                    await self._serve(websocket)
            except (OSError, ConnectionClosed, InvalidHandshake, InvalidURI, asyncio.TimeoutError) as exc:
                LOG.warning("Signaling connection to %s failed: %s", self.url, exc)

            if self._closed:
                break
            failures += 1
            if failures > self.reconnection_attempts:
                LOG.error("Giving up on %s after %d reconnection attempts", self.url, self.reconnection_attempts)
                break
            LOG.info(
                "Reconnecting to %s in %.1fs (attempt %d/%d)",
                self.url,
                self.reconnection_delay,
                failures,
                self.reconnection_attempts,
            )
            await asyncio.sleep(self.reconnection_delay)

    async def _serve(self, websocket: Any) -> None:
        self._websocket = websocket
        self.connected = True
        LOG.info("Signaling connected to %s", self.url)
        writer = asyncio.create_task(self._write_loop(websocket))
        try:
            await self._emit("connect")
            await self._read_loop(websocket)
        finally:
            writer.cancel()
            await asyncio.gather(writer, return_exceptions=True)
            self._websocket = None
            self.connected = False
            self.channel_id = None
            LOG.info("Signaling disconnected from %s", self.url)
            await self._emit("disconnect")

    async def _read_loop(self, websocket: Any) -> None:
        async for raw in websocket:
            try:
                frame = json.loads(raw)
            except (TypeError, ValueError):
                LOG.warning("Ignoring non-JSON frame from relay")
                continue
            if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
                LOG.warning("Ignoring frame without an event name")
                continue

            event = frame["event"]
            data = frame.get("data")
            if event == "ping":
                self.send("pong", {"ts": time.time()})
                continue
            if event == "welcome":
                if isinstance(data, dict):
                    self.channel_id = data.get("channel")
                LOG.info("Relay assigned channel %s", self.channel_id)
                continue
            if event in LIFECYCLE_EVENTS:
                continue
            await self._emit(event, data)

    async def _write_loop(self, websocket: Any) -> None:
        # frames left over from a dropped connection go out before waiting
        while True:
            while self._outbox:
                text = self._outbox[0]
                await websocket.send(text)
                self._outbox.popleft()
            self._wakeup.clear()
            await self._wakeup.wait()

    async def close(self) -> None:
        self._closed = True
        self._wakeup.set()
        websocket = self._websocket
        if websocket is not None:
            with contextlib.suppress(Exception):
                await websocket.close()
