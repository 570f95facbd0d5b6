"""
Interfaces to the external media and transport engine.

The negotiator never touches capture devices or ICE/DTLS itself; it drives an
engine through the two protocols below.  :mod:`peerlink.runtime` provides the
aiortc-backed implementation, tests provide in-memory fakes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Protocol

from .webrtc import NetworkCandidate, SessionDescription

LOG = logging.getLogger(__name__)


class MediaTrack(Protocol):
    kind: str
    readyState: str

    def stop(self) -> None: ...


@dataclass
class LocalMedia:
    """Local tracks acquired for one session."""

    tracks: List[MediaTrack] = field(default_factory=list)
    on_stop: Optional[Callable[[], None]] = None
    stopped: bool = False

    def video_tracks(self) -> List[MediaTrack]:
        return [track for track in self.tracks if track.kind == "video"]

    def stop(self) -> None:
        if self.stopped:
            return
        self.stopped = True
        for track in self.tracks:
            try:
                track.stop()
            except Exception:  # pragma: no cover - engine specific
                LOG.exception("Failed to stop local %s track", track.kind)
        if self.on_stop is not None:
            self.on_stop()


class MediaSource(Protocol):
    async def acquire(self) -> LocalMedia:
        """Return local tracks or raise :class:`~peerlink.rtc.errors.MediaUnavailable`."""
        ...


class PeerConnection(Protocol):
    """
    Opaque connectivity capability exposed by the real-time media engine.

    ``set_local_description`` returns the description the engine actually
    committed; engines that gather candidates up-front embed them in it.
    ``on`` registers synchronous callbacks for ``"icecandidate"`` (called with
    a :class:`NetworkCandidate`), ``"track"`` (called with a remote track) and
    ``"connectionstatechange"`` (called with the new state string).
    """

    async def create_offer(self) -> SessionDescription: ...

    async def create_answer(self) -> SessionDescription: ...

    async def set_local_description(self, description: SessionDescription) -> SessionDescription: ...

    async def set_remote_description(self, description: SessionDescription) -> None: ...

    async def add_ice_candidate(self, candidate: NetworkCandidate) -> None: ...

    def add_track(self, track: Any) -> None: ...

    def on(self, event: str, callback: Callable[..., None]) -> None: ...

    async def close(self) -> None: ...


PeerConnectionFactory = Callable[[], PeerConnection]

__all__ = [
    "LocalMedia",
    "MediaSource",
    "MediaTrack",
    "PeerConnection",
    "PeerConnectionFactory",
]
