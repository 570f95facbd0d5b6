"""
Signaling relay: a stateless fan-out hub for negotiation frames.
"""

from __future__ import annotations

from .server import RelayChannel, RelayHub, create_app

__all__ = ["RelayChannel", "RelayHub", "create_app"]
