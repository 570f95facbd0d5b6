"""
Glue between the signaling channel, the negotiator and the call view.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Set

from .channel import SignalingChannel
from .errors import MediaUnavailable
from .media import MediaSource, PeerConnectionFactory
from .negotiator import (
    ChannelDown,
    ChannelUp,
    EndCall,
    NegotiationState,
    Negotiator,
    PeerLeft,
    RemoteAnswer,
    RemoteCandidate,
    RemoteOffer,
    Start,
    StartCall,
)
from .view import CallViewState, build_view

LOG = logging.getLogger(__name__)


class PeerSession:
    """
    One endpoint: a relay connection plus the negotiator it feeds.

    With ``auto_rearm`` the session re-acquires media right after a call ends
    so the endpoint can accept the next offer without user action.
    """

    def __init__(
        self,
        channel: SignalingChannel,
        media: MediaSource,
        connection_factory: PeerConnectionFactory,
        *,
        negotiation_timeout: Optional[float] = None,
        end_on_peer_left: bool = False,
        auto_rearm: bool = True,
    ) -> None:
        self.channel = channel
        self.auto_rearm = auto_rearm
        self.negotiator = Negotiator(
            media,
            connection_factory,
            channel.send,
            negotiation_timeout=negotiation_timeout,
            end_on_peer_left=end_on_peer_left,
        )
        self.negotiator.subscribe(self._on_state)
        self._rearm_pending = False
        self._background: Set[asyncio.Task] = set()

        channel.on("connect", self._on_connect)
        channel.on("disconnect", self._on_disconnect)
        channel.on("offer", self._on_offer)
        channel.on("answer", self._on_answer)
        channel.on("ice-candidate", self._on_candidate)
        channel.on("peer-left", self._on_peer_left)

    @property
    def state(self) -> NegotiationState:
        return self.negotiator.state

    def view(self) -> CallViewState:
        return build_view(self.negotiator)

    async def start(self) -> NegotiationState:
        """Acquire media; raises :class:`MediaUnavailable` when that fails."""

        return await self.negotiator.dispatch(Start())

    async def toggle(self) -> NegotiationState:
        """
        The single call button: start a call when idle, end it when in one.
        """

        if self.negotiator.in_call:
            return await self.end_call()
        if self.negotiator.state in (NegotiationState.IDLE, NegotiationState.CLOSED):
            self._rearm_pending = False
            await self.start()
        return await self.negotiator.dispatch(StartCall())

    async def end_call(self) -> NegotiationState:
        await self.negotiator.dispatch(EndCall())
        await self._rearm_if_needed()
        return self.negotiator.state

    async def close(self) -> None:
        self.auto_rearm = False
        await self.negotiator.dispatch(EndCall())
        await self.channel.close()

    # ------------------------------------------------------------ callbacks

    def _on_state(self, state: NegotiationState) -> None:
        if state is NegotiationState.CLOSED and self.auto_rearm:
            self._rearm_pending = True
            # timeouts close the call without going through end_call
            task = asyncio.ensure_future(self._rearm_if_needed())
            self._background.add(task)
            task.add_done_callback(self._background.discard)

    async def _on_connect(self, _: Any) -> None:
        await self.negotiator.dispatch(ChannelUp())

    async def _on_disconnect(self, _: Any) -> None:
        await self.negotiator.dispatch(ChannelDown())

    async def _on_offer(self, data: Any) -> None:
        LOG.debug("Received offer")
        await self.negotiator.dispatch(RemoteOffer(data))

    async def _on_answer(self, data: Any) -> None:
        LOG.debug("Received answer")
        await self.negotiator.dispatch(RemoteAnswer(data))

    async def _on_candidate(self, data: Any) -> None:
        await self.negotiator.dispatch(RemoteCandidate(data))

    async def _on_peer_left(self, _: Any) -> None:
        await self.negotiator.dispatch(PeerLeft())
        await self._rearm_if_needed()

    async def _rearm_if_needed(self) -> None:
        if not self._rearm_pending or not self.auto_rearm:
            return
        self._rearm_pending = False
        try:
            await self.negotiator.dispatch(Start())
        except MediaUnavailable:
            LOG.error("Could not re-acquire media after the call ended")

    async def wait_idle(self) -> None:
        """Wait for background re-arming and negotiator events to finish."""

        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        await self.negotiator.wait_idle()
