"""
Error taxonomy for peer negotiation.
"""

from __future__ import annotations


class NegotiationError(RuntimeError):
    """Base class for negotiation related errors."""


class MediaUnavailable(NegotiationError):
    """Raised when local media cannot be acquired; the session cannot start."""


class InvalidDescription(NegotiationError):
    """Raised when a remote session description payload is malformed or rejected."""


class InvalidCandidate(NegotiationError):
    """Raised when a network candidate payload is malformed or cannot be applied."""


class ChannelDisconnected(NegotiationError):
    """Raised when the signaling channel drops while negotiation is in flight."""


class ProtocolViolation(NegotiationError):
    """Raised when a message arrives in a state that cannot accept it."""


__all__ = [
    "NegotiationError",
    "MediaUnavailable",
    "InvalidDescription",
    "InvalidCandidate",
    "ChannelDisconnected",
    "ProtocolViolation",
]
