"""
FastAPI surface of the signaling relay.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
import uuid
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError

from ..config import RelaySettings
from . import schemas

LOG = logging.getLogger(__name__)

ROOT_MESSAGE = "PeerLink WebRTC Signaling Relay"
RELAY_FULL_CODE = 1013


def encode(event: str, data: Any = None) -> str:
    frame: Dict[str, Any] = {"event": event}
    if data is not None:
        frame["data"] = data
    return json.dumps(frame, separators=(",", ":"))


@dataclass
class OutboundMessage:
    text: str
    event: str


class RelayChannel:
    """One connected endpoint: bounded send queue plus receive/send/keepalive loops."""

    def __init__(self, hub: "RelayHub", websocket: WebSocket, *, queue_size: int) -> None:
        self.hub = hub
        self.websocket = websocket
        self.channel_id = uuid.uuid4().hex
        self.send_queue: asyncio.Queue[OutboundMessage] = asyncio.Queue(maxsize=queue_size)
        self.last_pong = time.monotonic()
        self.dropped = 0
        self._stop_event = asyncio.Event()
        self._closing = False
        self.logger = LOG.getChild(f"ws.{self.channel_id[:8]}")

    @property
    def is_stopped(self) -> bool:
        return self._stop_event.is_set()

    async def run(self) -> None:
        try:
            await self.websocket.accept()
        except Exception:  # pragma: no cover
            self.logger.exception("Failed to accept WebSocket connection")
            return

        if not await self.hub.on_connect(self):
            await self.close(code=RELAY_FULL_CODE, reason="relay full")
            return

        tasks = [
            asyncio.create_task(self._recv_loop()),
            asyncio.create_task(self._send_loop()),
            asyncio.create_task(self._keepalive_loop()),
        ]
        try:
            await self._stop_event.wait()
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await self.hub.on_disconnect(self)
            await self.close(code=1000)

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        if self._closing:
            return
        self._closing = True
        self._stop_event.set()
        with contextlib.suppress(RuntimeError, WebSocketDisconnect):
            await self.websocket.close(code=code, reason=reason)

    def send(self, text: str, *, event: str = "") -> bool:
        """
        Queue ``text`` without waiting; a saturated queue drops it for this channel only.
        """

        if self.is_stopped:
            return False
        try:
            self.send_queue.put_nowait(OutboundMessage(text=text, event=event))
        except asyncio.QueueFull:
            self.dropped += 1
            self.logger.warning("Dropping %s frame due to backpressure", event or "relay")
            return False
        return True

    async def _recv_loop(self) -> None:
        try:
            while not self.is_stopped:
                try:
                    raw = await self.websocket.receive_text()
                except asyncio.CancelledError:
                    raise
                except WebSocketDisconnect:
                    break
                except Exception:  # pragma: no cover
                    self.logger.exception("Failed to receive message")
                    break

                try:
                    await self.hub.on_message(self, raw)
                except asyncio.CancelledError:
                    raise
                except Exception:  # pragma: no cover
                    self.logger.exception("Unhandled error while relaying message")
        finally:
            self._stop_event.set()

    async def _send_loop(self) -> None:
        try:
            while not self.is_stopped:
                outbound = await self.send_queue.get()
                try:
                    await self.websocket.send_text(outbound.text)
                except asyncio.CancelledError:
                    raise
                except WebSocketDisconnect:
                    break
                except RuntimeError as exc:
                    message = str(exc)
                    if "close message has been sent" in message:
                        self.logger.debug("Send after close ignored: %s", message)
                    else:
                        self.logger.exception("Failed to send message", exc_info=exc)
                    break
                except Exception:  # pragma: no cover
                    self.logger.exception("Failed to send message")
                    break
                finally:
                    self.send_queue.task_done()
        finally:
            self._stop_event.set()

    async def _keepalive_loop(self) -> None:
        interval = self.hub.ping_interval
        if interval <= 0:
            return
        while not self.is_stopped:
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            if self.is_stopped:
                break
            self.send(encode("ping", {"ts": time.time()}), event="ping")
            if (time.monotonic() - self.last_pong) > self.hub.pong_timeout:
                self.logger.warning("Ping timeout; closing relay channel")
                await self.close(code=1011, reason="ping timeout")
                break


class RelayHub:
    """
    Registered channel set plus the fan-out rule.

    The hub keeps no negotiation state: each relayed frame is forwarded, as
    received, to every channel other than its sender.
    """

    def __init__(
        self,
        *,
        queue_size: int = 64,
        ping_interval: float = 25.0,
        pong_timeout: float = 60.0,
        max_channels: int = 0,
        announce_departures: bool = False,
    ) -> None:
        self.queue_size = max(1, int(queue_size))
        self.ping_interval = max(0.0, float(ping_interval))
        self.pong_timeout = max(self.ping_interval, float(pong_timeout))
        self.max_channels = max(0, int(max_channels))
        self.announce_departures = bool(announce_departures)

        self._channels: Dict[str, RelayChannel] = {}
        self._lock = asyncio.Lock()
        self.relayed: Counter = Counter()
        self.rejected_frames = 0
        self.rejected_connections = 0
        self._departed_drops = 0

    @classmethod
    def from_settings(cls, settings: RelaySettings) -> "RelayHub":
        return cls(
            queue_size=settings.queue_size,
            ping_interval=settings.ping_interval,
            pong_timeout=settings.pong_timeout,
            max_channels=settings.max_channels,
            announce_departures=settings.announce_departures,
        )

    @property
    def channel_count(self) -> int:
        return len(self._channels)

    @property
    def dropped(self) -> int:
        return self._departed_drops + sum(channel.dropped for channel in self._channels.values())

    async def run(self, websocket: WebSocket) -> None:
        channel = RelayChannel(self, websocket, queue_size=self.queue_size)
        await channel.run()

    async def on_connect(self, channel: RelayChannel) -> bool:
        async with self._lock:
            if self.max_channels and len(self._channels) >= self.max_channels:
                self.rejected_connections += 1
                LOG.warning(
                    "Rejecting channel %s; relay already has %d channels",
                    channel.channel_id,
                    len(self._channels),
                )
                return False
            self._channels[channel.channel_id] = channel
            count = len(self._channels)
        channel.send(encode("welcome", {"channel": channel.channel_id}), event="welcome")
        LOG.info("A user connected: %s (channels=%d)", channel.channel_id, count)
        return True

    async def on_disconnect(self, channel: RelayChannel) -> None:
        async with self._lock:
            removed = self._channels.pop(channel.channel_id, None)
            count = len(self._channels)
        if removed is None:
            return
        self._departed_drops += channel.dropped
        LOG.info("User disconnected: %s (channels=%d)", channel.channel_id, count)
        if self.announce_departures:
            await self.broadcast(encode("peer-left", {}), exclude=channel, event="peer-left")

    async def on_message(self, channel: RelayChannel, raw: str) -> None:
        try:
            frame = schemas.RelayFrame.model_validate_json(raw)
        except ValidationError as exc:
            self.rejected_frames += 1
            LOG.warning("Malformed frame from %s: %s", channel.channel_id, exc.errors()[:1])
            return

        if frame.event == "pong":
            channel.last_pong = time.monotonic()
            return
        if not frame.relayed:
            self.rejected_frames += 1
            LOG.warning("Ignoring unsupported event %r from %s", frame.event, channel.channel_id)
            return

        LOG.info("%s received from %s", frame.event, channel.channel_id)
        delivered = await self.broadcast(raw, exclude=channel, event=frame.event)
        self.relayed[frame.event] += 1
        LOG.debug("%s from %s delivered to %d channel(s)", frame.event, channel.channel_id, delivered)

    async def broadcast(self, text: str, *, exclude: Optional[RelayChannel] = None, event: str = "") -> int:
        async with self._lock:
            targets = list(self._channels.values())

        delivered = 0
        for target in targets:
            if target is exclude:
                continue
            if target.send(text, event=event):
                delivered += 1
        return delivered

    def stats(self) -> schemas.RelayStatsModel:
        return schemas.RelayStatsModel(
            channels=self.channel_count,
            max_channels=self.max_channels,
            relayed=dict(self.relayed),
            dropped=self.dropped,
            rejected_frames=self.rejected_frames,
            rejected_connections=self.rejected_connections,
        )


def create_app(
    *,
    settings: Optional[RelaySettings] = None,
    hub: Optional[RelayHub] = None,
) -> FastAPI:
    relay_settings = settings or RelaySettings()
    relay = hub or RelayHub.from_settings(relay_settings)

    app = FastAPI(title="PeerLink Signaling Relay")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(relay_settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.relay = relay

    @app.get("/", response_class=PlainTextResponse)
    async def root() -> str:
        return ROOT_MESSAGE

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        await relay.run(websocket)

    @app.get("/healthz", response_model=schemas.HealthModel)
    async def healthz() -> schemas.HealthModel:
        return schemas.HealthModel(status="ok", channels=relay.channel_count)

    @app.get("/stats", response_model=schemas.RelayStatsModel)
    async def stats() -> schemas.RelayStatsModel:
        return relay.stats()

    return app
