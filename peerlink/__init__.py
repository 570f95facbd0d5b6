"""
PeerLink package.

PeerLink lets two endpoints set up a direct WebRTC call by trading session
descriptions and ICE candidates through a small fan-out relay.  The relay lives
in :mod:`peerlink.relay`; the per-endpoint negotiation state machine lives in
:mod:`peerlink.rtc`.
"""

from __future__ import annotations

from .config import PeerlinkConfig, PeerSettings, RelaySettings, load_config

__all__ = [
    "PeerlinkConfig",
    "PeerSettings",
    "RelaySettings",
    "load_config",
]
