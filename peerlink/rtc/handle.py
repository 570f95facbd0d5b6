"""
Per-session wrapper around the engine's peer connection.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple

from .errors import InvalidCandidate, InvalidDescription, NegotiationError, ProtocolViolation
from .media import LocalMedia, PeerConnection
from .webrtc import NetworkCandidate, SessionDescription

LOG = logging.getLogger(__name__)

CandidateCallback = Callable[[NetworkCandidate], None]
TrackCallback = Callable[[Any], None]
StateCallback = Callable[[str], None]
ErrorCallback = Callable[[NegotiationError], None]


class HandleState(str, Enum):
    """Negotiation progress as seen by one connection handle."""

    NO_DESCRIPTION = "no-description"
    LOCAL_OFFER_SET = "local-offer-set"
    REMOTE_DESCRIPTION_SET = "remote-description-set"
    ESTABLISHED = "established"
    CLOSED = "closed"


class ConnectionHandle:
    """
    Owns one engine peer connection for the lifetime of a single call.

    Each handle accepts at most one local and one remote description.  Remote
    candidates that arrive before the remote description are queued and
    replayed in arrival order once it is committed.  A closed handle is never
    reused; the negotiator builds a fresh one for the next call.
    """

    def __init__(
        self,
        connection: PeerConnection,
        *,
        on_local_candidate: Optional[CandidateCallback] = None,
        on_remote_track: Optional[TrackCallback] = None,
        on_connection_state: Optional[StateCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self._connection = connection
        self._on_local_candidate = on_local_candidate
        self._on_remote_track = on_remote_track
        self._on_connection_state = on_connection_state
        self._on_error = on_error

        self.state = HandleState.NO_DESCRIPTION
        self.local_description: Optional[SessionDescription] = None
        self.remote_description: Optional[SessionDescription] = None
        self.local_media: Optional[LocalMedia] = None
        self.remote_tracks: List[Any] = []
        self._pending: List[NetworkCandidate] = []
        self.applied_candidates: List[NetworkCandidate] = []

        connection.on("icecandidate", self._handle_local_candidate)
        connection.on("track", self._handle_remote_track)
        connection.on("connectionstatechange", self._handle_connection_state)

    # ------------------------------------------------------------------ helpers

    @property
    def closed(self) -> bool:
        return self.state is HandleState.CLOSED

    @property
    def pending_candidates(self) -> Tuple[NetworkCandidate, ...]:
        return tuple(self._pending)

    def _ensure_open(self, action: str) -> None:
        if self.closed:
            raise ProtocolViolation(f"cannot {action} on a closed connection handle")

    def _handle_local_candidate(self, candidate: NetworkCandidate) -> None:
        if self.closed or self._on_local_candidate is None:
            return
        self._on_local_candidate(candidate)

    def _handle_remote_track(self, track: Any) -> None:
        if self.closed:
            return
        self.remote_tracks.append(track)
        if getattr(track, "kind", None) == "video" and getattr(track, "readyState", "live") != "live":
            LOG.error("Remote video track is not live (state=%s)", getattr(track, "readyState", None))
        if self._on_remote_track is not None:
            self._on_remote_track(track)

    def _handle_connection_state(self, state: str) -> None:
        if self.closed:
            return
        if self._on_connection_state is not None:
            self._on_connection_state(state)

    async def _apply_candidate(self, candidate: NetworkCandidate) -> bool:
        try:
            await self._connection.add_ice_candidate(candidate)
        except Exception as exc:
            error = InvalidCandidate(f"failed to apply candidate {candidate.candidate!r}: {exc}")
            LOG.warning("%s", error)
            if self._on_error is not None:
                self._on_error(error)
            return False
        self.applied_candidates.append(candidate)
        return True

    # --------------------------------------------------------------- operations

    def attach_media(self, media: LocalMedia) -> None:
        self._ensure_open("attach media")
        self.local_media = media
        for track in media.tracks:
            self._connection.add_track(track)

    async def create_offer(self) -> SessionDescription:
        self._ensure_open("create an offer")
        return await self._connection.create_offer()

    async def create_answer(self) -> SessionDescription:
        self._ensure_open("create an answer")
        if self.remote_description is None:
            raise ProtocolViolation("cannot answer before a remote offer is committed")
        return await self._connection.create_answer()

    async def set_local_description(self, description: SessionDescription) -> SessionDescription:
        self._ensure_open("set the local description")
        if self.local_description is not None:
            raise ProtocolViolation(
                f"local description already committed ({self.local_description.kind}); "
                f"refusing {description.kind}"
            )
        committed = await self._connection.set_local_description(description)
        self.local_description = committed or description
        if self.remote_description is None:
            self.state = HandleState.LOCAL_OFFER_SET
        return self.local_description

    async def set_remote_description(self, description: SessionDescription) -> int:
        """
        Commit the remote description, then flush queued candidates in order.

        Returns the number of buffered candidates that applied cleanly.
        """

        self._ensure_open("set the remote description")
        if self.remote_description is not None:
            raise ProtocolViolation(
                f"remote description already committed ({self.remote_description.kind}); "
                f"refusing {description.kind}"
            )
        try:
            await self._connection.set_remote_description(description)
        except Exception as exc:
            raise InvalidDescription(f"engine rejected remote {description.kind}: {exc}") from exc
        self.remote_description = description
        self.state = HandleState.REMOTE_DESCRIPTION_SET

        pending, self._pending = self._pending, []
        applied = 0
        for candidate in pending:
            if await self._apply_candidate(candidate):
                applied += 1
        if pending:
            LOG.debug("Flushed %d/%d buffered candidates", applied, len(pending))
        return applied

    async def add_remote_candidate(self, candidate: NetworkCandidate) -> bool:
        """
        Apply ``candidate`` now, or queue it until the remote description exists.

        Returns ``True`` only when the candidate was applied immediately.
        """

        self._ensure_open("add a candidate")
        if self.remote_description is None:
            self._pending.append(candidate)
            return False
        return await self._apply_candidate(candidate)

    def mark_established(self) -> None:
        self._ensure_open("mark the connection established")
        self.state = HandleState.ESTABLISHED

    async def close(self) -> None:
        if self.closed:
            return
        self.state = HandleState.CLOSED
        self._pending.clear()
        self.remote_tracks.clear()
        try:
            await self._connection.close()
        except Exception:  # pragma: no cover - engine specific
            LOG.exception("Failed to close peer connection")
        if self.local_media is not None:
            self.local_media.stop()
