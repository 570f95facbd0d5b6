"""
Pydantic schemas mirroring the relay's REST/WS contract.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

RELAYED_EVENTS = frozenset({"offer", "answer", "ice-candidate"})


class RelayFrame(BaseModel):
    """
    Envelope of every frame on the relay socket.

    Only ``event`` is interpreted; ``data`` is carried through untouched.
    """

    event: str = Field(min_length=1, max_length=64)
    data: Optional[Any] = None
    model_config = ConfigDict(extra="allow")

    @property
    def relayed(self) -> bool:
        return self.event in RELAYED_EVENTS


class HealthModel(BaseModel):
    status: str = "ok"
    channels: int = 0


class RelayStatsModel(BaseModel):
    channels: int = 0
    max_channels: int = 0
    relayed: Dict[str, int] = Field(default_factory=dict)
    dropped: int = 0
    rejected_frames: int = 0
    rejected_connections: int = 0
