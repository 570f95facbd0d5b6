"""
Negotiation artefacts exchanged between peers.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from .errors import InvalidCandidate, InvalidDescription

DESCRIPTION_KINDS = ("offer", "answer")


@dataclass(frozen=True, slots=True)
class SessionDescription:
    """
    One side's proposed or accepted media/transport configuration.

    ``sdp`` is treated as an opaque blob; only the engine interprets it.
    """

    kind: str
    sdp: str

    @classmethod
    def from_wire(cls, payload: Any, *, expected: Optional[str] = None) -> "SessionDescription":
        """
        Validate a ``{"type": ..., "sdp": ...}`` payload received from the relay.
        """

        if not isinstance(payload, dict):
            raise InvalidDescription(f"description must be an object, got {type(payload).__name__}")
        kind = payload.get("type")
        sdp = payload.get("sdp")
        if not kind or not sdp:
            raise InvalidDescription("description requires both 'type' and 'sdp'")
        if not isinstance(kind, str) or not isinstance(sdp, str):
            raise InvalidDescription("description 'type' and 'sdp' must be strings")
        if kind not in DESCRIPTION_KINDS:
            raise InvalidDescription(f"unknown description type {kind!r}")
        if expected is not None and kind != expected:
            raise InvalidDescription(f"expected {expected!r} description, got {kind!r}")
        return cls(kind=kind, sdp=sdp)

    def to_wire(self) -> Dict[str, str]:
        return {"type": self.kind, "sdp": self.sdp}


@dataclass(frozen=True, slots=True)
class NetworkCandidate:
    """Serialisable ICE candidate container."""

    candidate: str
    sdp_mid: Optional[str] = None
    sdp_mline_index: Optional[int] = None

    @classmethod
    def from_wire(cls, payload: Any) -> "NetworkCandidate":
        """
        Accept either a bare candidate line or the browser ``RTCIceCandidate`` shape.
        """

        if isinstance(payload, str):
            return cls(candidate=payload)
        if not isinstance(payload, dict):
            raise InvalidCandidate(f"candidate must be an object or string, got {type(payload).__name__}")
        candidate = payload.get("candidate")
        if not isinstance(candidate, str):
            raise InvalidCandidate("candidate payload lacks a 'candidate' string")
        sdp_mid = payload.get("sdpMid")
        if sdp_mid is not None and not isinstance(sdp_mid, str):
            raise InvalidCandidate("'sdpMid' must be a string")
        mline_index = payload.get("sdpMLineIndex")
        if mline_index is not None:
            if isinstance(mline_index, bool) or not isinstance(mline_index, int):
                raise InvalidCandidate("'sdpMLineIndex' must be an integer")
        return cls(candidate=candidate, sdp_mid=sdp_mid, sdp_mline_index=mline_index)

    @classmethod
    def from_message(cls, message: Any) -> "NetworkCandidate":
        """
        Unwrap the ``ice-candidate`` frame data (``{"candidate": <opaque>}``).
        """

        if not isinstance(message, dict) or "candidate" not in message:
            raise InvalidCandidate("ice-candidate message lacks a 'candidate' field")
        return cls.from_wire(message["candidate"])

    @property
    def is_end_of_candidates(self) -> bool:
        return not self.candidate.strip()

    def to_wire(self) -> Dict[str, Any]:
        return {
            "candidate": self.candidate,
            "sdpMid": self.sdp_mid,
            "sdpMLineIndex": self.sdp_mline_index,
        }


__all__ = ["DESCRIPTION_KINDS", "NetworkCandidate", "SessionDescription"]
