"""
aiortc-backed implementation of the media engine protocols.

aiortc gathers ICE candidates before ``setLocalDescription`` returns and embeds
them in the committed SDP, so the adapter never fires ``icecandidate``.  Remote
candidates are still applied when a trickling peer sends them.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection, RTCSessionDescription
from aiortc.contrib.media import MediaPlayer
from aiortc.sdp import candidate_from_sdp

from ..config import MediaSettings
from ..rtc.errors import InvalidCandidate, MediaUnavailable
from ..rtc.ice import IceConfiguration
from ..rtc.media import LocalMedia
from ..rtc.webrtc import NetworkCandidate, SessionDescription

LOG = logging.getLogger(__name__)

CANDIDATE_PREFIX = "candidate:"


def build_configuration(ice: Optional[IceConfiguration]) -> RTCConfiguration:
    servers = []
    for entry in (ice or IceConfiguration()).iter_ice_servers():
        servers.append(
            RTCIceServer(
                urls=entry["urls"],
                username=entry.get("username"),
                credential=entry.get("credential"),
            )
        )
    return RTCConfiguration(iceServers=servers)


def parse_candidate(candidate: NetworkCandidate) -> Any:
    line = candidate.candidate.strip()
    if line.startswith(CANDIDATE_PREFIX):
        line = line[len(CANDIDATE_PREFIX):]
    try:
        parsed = candidate_from_sdp(line)
    except (IndexError, ValueError) as exc:
        raise InvalidCandidate(f"unparseable candidate {candidate.candidate!r}") from exc
    parsed.sdpMid = candidate.sdp_mid
    parsed.sdpMLineIndex = candidate.sdp_mline_index
    return parsed


class AiortcPeerConnection:
    """Wraps :class:`aiortc.RTCPeerConnection` behind the engine protocol."""

    def __init__(self, ice: Optional[IceConfiguration] = None) -> None:
        self._pc = RTCPeerConnection(configuration=build_configuration(ice))
        self._callbacks: Dict[str, List[Callable[..., None]]] = {}
        self._pc.on("track", self._handle_track)
        self._pc.on("connectionstatechange", self._handle_state)

    @property
    def connection_state(self) -> str:
        return self._pc.connectionState

    async def create_offer(self) -> SessionDescription:
        offer = await self._pc.createOffer()
        return SessionDescription(kind=offer.type, sdp=offer.sdp)

    async def create_answer(self) -> SessionDescription:
        answer = await self._pc.createAnswer()
        return SessionDescription(kind=answer.type, sdp=answer.sdp)

    async def set_local_description(self, description: SessionDescription) -> SessionDescription:
        await self._pc.setLocalDescription(RTCSessionDescription(sdp=description.sdp, type=description.kind))
        committed = self._pc.localDescription
        return SessionDescription(kind=committed.type, sdp=committed.sdp)

    async def set_remote_description(self, description: SessionDescription) -> None:
        await self._pc.setRemoteDescription(RTCSessionDescription(sdp=description.sdp, type=description.kind))

    async def add_ice_candidate(self, candidate: NetworkCandidate) -> None:
        if candidate.is_end_of_candidates:
            return
        await self._pc.addIceCandidate(parse_candidate(candidate))

    def add_track(self, track: Any) -> None:
        self._pc.addTrack(track)

    def on(self, event: str, callback: Callable[..., None]) -> None:
        self._callbacks.setdefault(event, []).append(callback)

    async def close(self) -> None:
        await self._pc.close()

    def _fire(self, event: str, *args: Any) -> None:
        for callback in list(self._callbacks.get(event, ())):
            callback(*args)

    def _handle_track(self, track: Any) -> None:
        LOG.info("Remote %s track received", track.kind)
        self._fire("track", track)

    def _handle_state(self) -> None:
        state = self._pc.connectionState
        LOG.info("Peer connection state is %s", state)
        self._fire("connectionstatechange", state)


class AiortcMediaSource:
    """
    Opens a capture device or media file through ffmpeg on each acquisition.
    """

    def __init__(self, settings: Optional[MediaSettings] = None) -> None:
        self.settings = settings or MediaSettings()

    def _open(self) -> MediaPlayer:
        return MediaPlayer(
            self.settings.source,
            format=self.settings.format,
            options=dict(self.settings.options) or None,
            loop=self.settings.loop,
        )

    async def acquire(self) -> LocalMedia:
        if not self.settings.source:
            raise MediaUnavailable("no media source configured")
        try:
            player = await asyncio.to_thread(self._open)
        except Exception as exc:
            raise MediaUnavailable(f"could not open {self.settings.source}: {exc}") from exc

        tracks = [track for track in (player.video, player.audio) if track is not None]
        if not tracks:
            raise MediaUnavailable(f"{self.settings.source} has no audio or video")
        LOG.info("Acquired %d local track(s) from %s", len(tracks), self.settings.source)
        return LocalMedia(tracks=tracks)


def connection_factory(ice: Optional[IceConfiguration] = None) -> Callable[[], AiortcPeerConnection]:
    def factory() -> AiortcPeerConnection:
        return AiortcPeerConnection(ice)

    return factory


__all__ = [
    "AiortcMediaSource",
    "AiortcPeerConnection",
    "build_configuration",
    "connection_factory",
    "parse_candidate",
]
