"""
Offer/answer negotiation state machine.

Every input is a small tagged event passed to :meth:`Negotiator.dispatch`;
every state change goes through :data:`TRANSITIONS`, so the full set of legal
moves can be read (and tested) in one place.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, FrozenSet, List, Optional, Set

from .errors import (
    ChannelDisconnected,
    MediaUnavailable,
    NegotiationError,
    ProtocolViolation,
)
from .handle import ConnectionHandle
from .media import LocalMedia, MediaSource, PeerConnectionFactory
from .webrtc import NetworkCandidate, SessionDescription

LOG = logging.getLogger(__name__)

SignalSender = Callable[[str, Dict[str, Any]], None]


class NegotiationState(str, Enum):
    IDLE = "idle"
    GATHERING_MEDIA = "gathering-media"
    READY = "ready"
    OFFER_SENT = "offer-sent"
    OFFER_RECEIVED = "offer-received"
    ANSWER_EXCHANGED = "answer-exchanged"
    ESTABLISHED = "established"
    CLOSED = "closed"


S = NegotiationState

TRANSITIONS: Dict[NegotiationState, FrozenSet[NegotiationState]] = {
    S.IDLE: frozenset({S.GATHERING_MEDIA, S.CLOSED}),
    S.GATHERING_MEDIA: frozenset({S.READY, S.IDLE, S.CLOSED}),
    S.READY: frozenset({S.OFFER_SENT, S.OFFER_RECEIVED, S.CLOSED}),
    S.OFFER_SENT: frozenset({S.ANSWER_EXCHANGED, S.CLOSED}),
    S.OFFER_RECEIVED: frozenset({S.ANSWER_EXCHANGED, S.CLOSED}),
    S.ANSWER_EXCHANGED: frozenset({S.ESTABLISHED, S.CLOSED}),
    S.ESTABLISHED: frozenset({S.CLOSED}),
    S.CLOSED: frozenset({S.GATHERING_MEDIA}),
}

IN_CALL_STATES = frozenset({S.OFFER_SENT, S.OFFER_RECEIVED, S.ANSWER_EXCHANGED, S.ESTABLISHED})
NEGOTIATING_STATES = frozenset({S.OFFER_SENT, S.OFFER_RECEIVED, S.ANSWER_EXCHANGED})


# ---------------------------------------------------------------------- events


@dataclass(frozen=True)
class Start:
    """Acquire local media and build a fresh connection handle."""


@dataclass(frozen=True)
class StartCall:
    """User pressed "Start Call"."""


@dataclass(frozen=True)
class EndCall:
    """User pressed "End Call" (or something ended the call on their behalf)."""


@dataclass(frozen=True)
class RemoteOffer:
    payload: Any


@dataclass(frozen=True)
class RemoteAnswer:
    payload: Any


@dataclass(frozen=True)
class RemoteCandidate:
    payload: Any


@dataclass(frozen=True)
class ConnectivityChanged:
    state: str


@dataclass(frozen=True)
class ChannelUp:
    pass


@dataclass(frozen=True)
class ChannelDown:
    pass


@dataclass(frozen=True)
class PeerLeft:
    pass


@dataclass(frozen=True)
class NegotiationTimeout:
    generation: int


Event = Any


class Negotiator:
    """
    Drive one endpoint through media start-up, offer/answer and teardown.

    ``signal`` is called synchronously with ``(event, data)`` for every frame
    that must reach the remote peer; the channel is expected to queue it.
    Only :class:`MediaUnavailable` escapes :meth:`dispatch`; the other
    negotiation errors are logged and kept in :attr:`errors`.
    """

    def __init__(
        self,
        media: MediaSource,
        connection_factory: PeerConnectionFactory,
        signal: SignalSender,
        *,
        negotiation_timeout: Optional[float] = None,
        end_on_peer_left: bool = False,
        max_errors: int = 32,
    ) -> None:
        self._media = media
        self._connection_factory = connection_factory
        self._signal = signal
        self.negotiation_timeout = negotiation_timeout
        self.end_on_peer_left = end_on_peer_left

        self.state = NegotiationState.IDLE
        self.handle: Optional[ConnectionHandle] = None
        self.errors: Deque[NegotiationError] = deque(maxlen=max(1, int(max_errors)))
        self.history: List[NegotiationState] = [self.state]

        self._lock = asyncio.Lock()
        self._generation = 0
        self._timeout_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()
        self._listeners: List[Callable[[NegotiationState], None]] = []

        self._handlers: Dict[type, Callable[[Any], Awaitable[None]]] = {
            Start: self._on_start,
            StartCall: self._on_start_call,
            EndCall: self._on_end_call,
            RemoteOffer: self._on_remote_offer,
            RemoteAnswer: self._on_remote_answer,
            RemoteCandidate: self._on_remote_candidate,
            ConnectivityChanged: self._on_connectivity_changed,
            ChannelUp: self._on_channel_up,
            ChannelDown: self._on_channel_down,
            PeerLeft: self._on_peer_left,
            NegotiationTimeout: self._on_negotiation_timeout,
        }

    # ------------------------------------------------------------------ helpers

    @property
    def role(self) -> Optional[str]:
        handle = self.handle
        if handle is None:
            return None
        if handle.local_description is not None and handle.local_description.kind == "offer":
            return "caller"
        if handle.remote_description is not None and handle.remote_description.kind == "offer":
            return "callee"
        return None

    @property
    def in_call(self) -> bool:
        return self.state in IN_CALL_STATES

    @property
    def local_media(self) -> Optional[LocalMedia]:
        return self.handle.local_media if self.handle is not None else None

    @property
    def remote_tracks(self) -> List[Any]:
        return list(self.handle.remote_tracks) if self.handle is not None else []

    def subscribe(self, listener: Callable[[NegotiationState], None]) -> None:
        self._listeners.append(listener)

    def _transition(self, new_state: NegotiationState) -> None:
        if new_state not in TRANSITIONS[self.state]:
            raise ProtocolViolation(f"illegal transition {self.state.value} -> {new_state.value}")
        LOG.info("Negotiation %s -> %s", self.state.value, new_state.value)
        self.state = new_state
        self.history.append(new_state)
        for listener in list(self._listeners):
            try:
                listener(new_state)
            except Exception:  # pragma: no cover
                LOG.exception("State listener failed")

    def _record(self, error: NegotiationError) -> None:
        self.errors.append(error)

    def _reject(self, error: NegotiationError) -> None:
        LOG.warning("%s: %s", type(error).__name__, error)
        self._record(error)

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _require_handle(self, what: str) -> ConnectionHandle:
        if self.handle is None or self.handle.closed:
            raise ProtocolViolation(f"received {what} before the peer connection was initialised")
        return self.handle

    # ----------------------------------------------------------------- dispatch

    async def dispatch(self, event: Event) -> NegotiationState:
        handler = self._handlers.get(type(event))
        if handler is None:
            raise TypeError(f"unsupported negotiation event: {event!r}")
        async with self._lock:
            try:
                await handler(event)
            except MediaUnavailable:
                raise
            except NegotiationError as exc:
                self._reject(exc)
            return self.state

    async def start(self) -> NegotiationState:
        return await self.dispatch(Start())

    async def start_call(self) -> NegotiationState:
        return await self.dispatch(StartCall())

    async def end_call(self) -> NegotiationState:
        return await self.dispatch(EndCall())

    async def wait_idle(self) -> None:
        """Wait for background connectivity/timeout events to be processed."""

        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ----------------------------------------------------------------- handlers

    async def _on_start(self, event: Start) -> None:
        if self.state not in (S.IDLE, S.CLOSED):
            LOG.debug("Start ignored in state %s", self.state.value)
            return

        self._transition(S.GATHERING_MEDIA)
        try:
            media = await self._media.acquire()
        except MediaUnavailable as exc:
            LOG.error("Error getting user media: %s", exc)
            self._record(exc)
            self._return_to_idle()
            raise
        except Exception as exc:
            error = MediaUnavailable(f"media acquisition failed: {exc}")
            LOG.error("Error getting user media: %s", exc)
            self._record(error)
            self._return_to_idle()
            raise error from exc

        self._generation += 1
        connection = None
        try:
            connection = self._connection_factory()
            handle = ConnectionHandle(
                connection,
                on_local_candidate=self._send_local_candidate,
                on_connection_state=self._connectivity_callback(self._generation),
                on_error=self._record,
            )
            handle.attach_media(media)
        except Exception as exc:
            error = MediaUnavailable(f"could not attach local media: {exc}")
            LOG.error("Error creating peer connection: %s", exc)
            media.stop()
            if connection is not None:
                try:
                    await connection.close()
                except Exception:  # pragma: no cover
                    LOG.exception("Failed to close peer connection")
            self._record(error)
            self._return_to_idle()
            raise error from exc

        self.handle = handle
        self._transition(S.READY)

    def _return_to_idle(self) -> None:
        self._transition(S.IDLE)

    async def _on_start_call(self, event: StartCall) -> None:
        if self.state is not S.READY:
            if self.state in IN_CALL_STATES:
                LOG.info("Start call ignored; already in %s", self.state.value)
            else:
                LOG.error("Peer connection is not initialized (state=%s)", self.state.value)
            return

        handle = self._require_handle("start call")
        try:
            offer = await handle.create_offer()
            committed = await handle.set_local_description(offer)
        except NegotiationError:
            raise
        except Exception:
            LOG.exception("Error creating offer")
            return

        self._signal("offer", committed.to_wire())
        self._transition(S.OFFER_SENT)
        self._arm_timeout()

    async def _on_remote_offer(self, event: RemoteOffer) -> None:
        description = SessionDescription.from_wire(event.payload, expected="offer")
        handle = self._require_handle("an offer")
        if self.state is not S.READY:
            raise ProtocolViolation(f"offer rejected in state {self.state.value}; a description is already committed")

        await handle.set_remote_description(description)
        self._transition(S.OFFER_RECEIVED)
        self._arm_timeout()

        try:
            answer = await handle.create_answer()
            committed = await handle.set_local_description(answer)
        except NegotiationError:
            raise
        except Exception:
            LOG.exception("Error handling remote offer")
            return

        self._signal("answer", committed.to_wire())
        self._transition(S.ANSWER_EXCHANGED)

    async def _on_remote_answer(self, event: RemoteAnswer) -> None:
        description = SessionDescription.from_wire(event.payload, expected="answer")
        handle = self._require_handle("an answer")
        if self.state is not S.OFFER_SENT:
            raise ProtocolViolation(f"answer rejected in state {self.state.value}; no outstanding offer")

        await handle.set_remote_description(description)
        self._transition(S.ANSWER_EXCHANGED)

    async def _on_remote_candidate(self, event: RemoteCandidate) -> None:
        candidate = NetworkCandidate.from_message(event.payload)
        handle = self._require_handle("a candidate")
        if candidate.is_end_of_candidates:
            LOG.debug("Remote end-of-candidates marker received")
            return
        await handle.add_remote_candidate(candidate)

    async def _on_connectivity_changed(self, event: ConnectivityChanged) -> None:
        LOG.info("Connectivity state %s (negotiation %s)", event.state, self.state.value)
        if event.state != "connected":
            return
        if self.state is S.ANSWER_EXCHANGED and self.handle is not None:
            self.handle.mark_established()
            self._cancel_timeout()
            self._transition(S.ESTABLISHED)

    async def _on_channel_up(self, event: ChannelUp) -> None:
        LOG.info("Signaling channel connected (negotiation %s)", self.state.value)

    async def _on_channel_down(self, event: ChannelDown) -> None:
        if self.state in NEGOTIATING_STATES:
            self._reject(ChannelDisconnected(f"signaling channel lost while {self.state.value}"))
        else:
            LOG.info("Signaling channel disconnected (negotiation %s)", self.state.value)

    async def _on_peer_left(self, event: PeerLeft) -> None:
        if not self.end_on_peer_left:
            LOG.info("Remote peer left the relay; keeping state %s", self.state.value)
            return
        LOG.info("Remote peer left the relay; ending call")
        await self._on_end_call(EndCall())

    async def _on_negotiation_timeout(self, event: NegotiationTimeout) -> None:
        if event.generation != self._generation or self.state not in NEGOTIATING_STATES:
            return
        LOG.warning(
            "Negotiation did not complete within %.1fs (state=%s); ending call",
            self.negotiation_timeout or 0.0,
            self.state.value,
        )
        await self._on_end_call(EndCall())

    async def _on_end_call(self, event: EndCall) -> None:
        if self.state is S.CLOSED:
            return
        self._cancel_timeout()
        handle, self.handle = self.handle, None
        if handle is not None:
            await handle.close()
        self._transition(S.CLOSED)

    # ------------------------------------------------------- engine callbacks

    def _send_local_candidate(self, candidate: NetworkCandidate) -> None:
        self._signal("ice-candidate", {"candidate": candidate.to_wire()})

    def _connectivity_callback(self, generation: int) -> Callable[[str], None]:
        def _callback(state: str) -> None:
            if generation != self._generation:
                return
            self._spawn(self.dispatch(ConnectivityChanged(state)))

        return _callback

    # ------------------------------------------------------------------ timeout

    def _arm_timeout(self) -> None:
        if not self.negotiation_timeout or self.negotiation_timeout <= 0:
            return
        self._cancel_timeout()
        self._timeout_task = asyncio.ensure_future(self._expire(self._generation, self.negotiation_timeout))

    async def _expire(self, generation: int, delay: float) -> None:
        await asyncio.sleep(delay)
        self._timeout_task = None
        await self.dispatch(NegotiationTimeout(generation))

    def _cancel_timeout(self) -> None:
        task, self._timeout_task = self._timeout_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()


__all__ = [
    "ChannelDown",
    "ChannelUp",
    "ConnectivityChanged",
    "EndCall",
    "IN_CALL_STATES",
    "NegotiationState",
    "NegotiationTimeout",
    "Negotiator",
    "PeerLeft",
    "RemoteAnswer",
    "RemoteCandidate",
    "RemoteOffer",
    "Start",
    "StartCall",
    "TRANSITIONS",
]
