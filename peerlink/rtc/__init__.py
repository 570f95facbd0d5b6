"""
WebRTC negotiation helpers.
"""

from __future__ import annotations

from .errors import (
    ChannelDisconnected,
    InvalidCandidate,
    InvalidDescription,
    MediaUnavailable,
    NegotiationError,
    ProtocolViolation,
)
from .handle import ConnectionHandle, HandleState
from .ice import IceConfiguration
from .negotiator import NegotiationState, Negotiator
from .webrtc import NetworkCandidate, SessionDescription

__all__ = [
    "ChannelDisconnected",
    "ConnectionHandle",
    "HandleState",
    "IceConfiguration",
    "InvalidCandidate",
    "InvalidDescription",
    "MediaUnavailable",
    "NegotiationError",
    "NegotiationState",
    "Negotiator",
    "NetworkCandidate",
    "ProtocolViolation",
    "SessionDescription",
]
