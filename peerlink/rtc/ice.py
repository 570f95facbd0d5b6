"""
ICE server configuration handed to the peer connection factory.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class IceConfiguration:
    """
    STUN/TURN servers used when gathering network candidates.

    A public STUN server is configured by default; set ``stun_server`` to
    ``None`` for LAN-only calls.  TURN is opt-in and needs credentials.
    """

    stun_server: Optional[str] = "stun:stun.l.google.com:19302"
    turn_server: Optional[str] = None
    turn_username: Optional[str] = None
    turn_credential: Optional[str] = None
    extra_servers: List[Dict[str, object]] = field(default_factory=list)

    def iter_ice_servers(self) -> List[Dict[str, object]]:
        """
        Return the flattened ``iceServers`` list in RTCConfiguration shape.
        """

        servers: List[Dict[str, object]] = []
        if self.stun_server:
            servers.append({"urls": self.stun_server})
        if self.turn_server:
            entry: Dict[str, object] = {"urls": self.turn_server}
            if self.turn_username:
                entry["username"] = self.turn_username
            if self.turn_credential:
                entry["credential"] = self.turn_credential
            servers.append(entry)
        servers.extend(dict(item) for item in self.extra_servers)
        return servers
