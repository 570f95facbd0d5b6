"""
Headless view model for the call UI: one toggle and two video surfaces.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional

from .negotiator import Negotiator

NO_REMOTE_STREAM = "No Remote Stream"
START_CALL = "Start Call"
END_CALL = "End Call"


def live_video_tracks(tracks: List[Any]) -> List[Any]:
    return [
        track
        for track in tracks
        if getattr(track, "kind", None) == "video" and getattr(track, "readyState", "live") == "live"
    ]


@dataclass
class VideoSurface:
    """Tracks bound to one on-screen video element."""

    tracks: List[Any] = field(default_factory=list)
    placeholder: Optional[str] = None

    @property
    def visible(self) -> bool:
        return bool(self.tracks)

    def describe(self) -> str:
        if not self.visible:
            return self.placeholder or ""
        kinds = ", ".join(sorted({getattr(track, "kind", "?") for track in self.tracks}))
        return f"{len(self.tracks)} track(s): {kinds}"


@dataclass
class CallViewState:
    is_calling: bool
    button_title: str
    state: str
    role: Optional[str]
    local_video: VideoSurface
    remote_video: VideoSurface

    def to_dict(self) -> dict:
        return {
            "isCalling": self.is_calling,
            "buttonTitle": self.button_title,
            "state": self.state,
            "role": self.role,
            "localVideo": self.local_video.describe() if self.local_video.visible else None,
            "remoteVideo": self.remote_video.describe(),
        }


def build_view(negotiator: Negotiator) -> CallViewState:
    """
    Project the negotiator onto the UI surface.

    The remote surface only shows a stream once it carries a live video track;
    until then it renders the placeholder text.
    """

    media = negotiator.local_media
    local_tracks = list(media.tracks) if media is not None and not media.stopped else []
    is_calling = negotiator.in_call
    return CallViewState(
        is_calling=is_calling,
        button_title=END_CALL if is_calling else START_CALL,
        state=negotiator.state.value,
        role=negotiator.role,
        local_video=VideoSurface(tracks=local_tracks),
        remote_video=VideoSurface(
            tracks=live_video_tracks(negotiator.remote_tracks),
            placeholder=NO_REMOTE_STREAM,
        ),
    )
