"""
Configuration for the relay and peer processes.

Settings come from a YAML profile file and are then overridden by environment
variables, so a deployment can keep one profile file and tune per host.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .rtc.ice import IceConfiguration

LOG = logging.getLogger(__name__)

CONFIG_DIR = Path(__file__).resolve().parent / "configs"
PROFILES_PATH = CONFIG_DIR / "profiles.yaml"
ENV_PROFILES_VAR = "PEERLINK_PROFILES"

DEFAULT_PORT = 3000


class ConfigError(ValueError):
    """Raised when a profile file or environment override is invalid."""


@dataclass
class RelaySettings:
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    queue_size: int = 64
    ping_interval: float = 25.0
    pong_timeout: float = 60.0
    max_channels: int = 0
    announce_departures: bool = False
    cors_origins: List[str] = field(default_factory=lambda: ["*"])


@dataclass
class MediaSettings:
    """
    Capture source handed to the media engine.

    ``source`` is anything ffmpeg can open (a device path or a media file);
    ``format`` selects the ffmpeg demuxer (``v4l2``, ``avfoundation``, ...).
    """

    source: Optional[str] = None
    format: Optional[str] = None
    options: Dict[str, str] = field(default_factory=dict)
    loop: bool = False


@dataclass
class PeerSettings:
    relay_url: str = f"ws://127.0.0.1:{DEFAULT_PORT}/ws"
    reconnection_attempts: int = 5
    reconnection_delay: float = 1.0
    outbox_size: int = 256
    negotiation_timeout: Optional[float] = None
    end_on_peer_left: bool = False
    auto_rearm: bool = True
    ice: IceConfiguration = field(default_factory=IceConfiguration)
    media: MediaSettings = field(default_factory=MediaSettings)


@dataclass
class PeerlinkConfig:
    profile: str = "default"
    log_level: str = "INFO"
    relay: RelaySettings = field(default_factory=RelaySettings)
    peer: PeerSettings = field(default_factory=PeerSettings)


# ---------------------------------------------------------------------- loading


def _apply(target: Any, values: Mapping[str, Any], section: str) -> None:
    known = {item.name: item for item in fields(target)}
    for key, value in values.items():
        if key not in known:
            raise ConfigError(f"unknown setting {section}.{key}")
        current = getattr(target, key)
        if isinstance(current, (IceConfiguration, MediaSettings)):
            if not isinstance(value, Mapping):
                raise ConfigError(f"{section}.{key} must be a mapping")
            _apply(current, value, f"{section}.{key}")
            continue
        setattr(target, key, value)


def _read_profiles(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            profiles = yaml.safe_load(handle) or {}
    except FileNotFoundError:
        LOG.debug("Profile file %s not found; using defaults", path)
        return {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {path}: {exc}") from exc
    if not isinstance(profiles, dict):
        raise ConfigError(f"{path} must contain a mapping of profiles")
    return profiles


def _env_number(environ: Mapping[str, str], key: str, kind: type) -> Optional[Any]:
    raw = environ.get(key)
    if raw is None or raw.strip() == "":
        return None
    try:
        return kind(raw)
    except ValueError as exc:
        raise ConfigError(f"{key} must be a {kind.__name__}, got {raw!r}") from exc


def _apply_environment(config: PeerlinkConfig, environ: Mapping[str, str]) -> None:
    port = _env_number(environ, "PORT", int)
    if port is not None:
        config.relay.port = port
    if environ.get("PEERLINK_HOST"):
        config.relay.host = environ["PEERLINK_HOST"]
    max_channels = _env_number(environ, "PEERLINK_MAX_CHANNELS", int)
    if max_channels is not None:
        config.relay.max_channels = max_channels
    if environ.get("PEERLINK_RELAY_URL"):
        config.peer.relay_url = environ["PEERLINK_RELAY_URL"]
    timeout = _env_number(environ, "PEERLINK_NEGOTIATION_TIMEOUT", float)
    if timeout is not None:
        config.peer.negotiation_timeout = timeout if timeout > 0 else None
    if environ.get("PEERLINK_LOG_LEVEL"):
        config.log_level = environ["PEERLINK_LOG_LEVEL"]


def _validate(config: PeerlinkConfig) -> None:
    if not (0 < int(config.relay.port) < 65536):
        raise ConfigError(f"relay.port out of range: {config.relay.port}")
    if int(config.relay.queue_size) < 1:
        raise ConfigError("relay.queue_size must be at least 1")
    if int(config.relay.max_channels) < 0:
        raise ConfigError("relay.max_channels must not be negative")
    timeout = config.peer.negotiation_timeout
    if timeout is not None and float(timeout) <= 0:
        raise ConfigError("peer.negotiation_timeout must be positive or null")


def load_config(
    profile: str = "default",
    path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> PeerlinkConfig:
    """
    Resolve ``profile`` from the profile file, then apply environment overrides.

    The ``default`` profile may be absent from the file; any other missing
    profile name is an error.
    """

    env = os.environ if environ is None else environ
    if path is None:
        path = Path(env[ENV_PROFILES_VAR]).expanduser() if env.get(ENV_PROFILES_VAR) else PROFILES_PATH

    profiles = _read_profiles(Path(path))
    if profile not in profiles and profile != "default":
        raise ConfigError(f"unknown profile {profile!r} in {path}")
    values = profiles.get(profile) or {}
    if not isinstance(values, Mapping):
        raise ConfigError(f"profile {profile!r} must be a mapping")

    config = PeerlinkConfig(profile=profile)
    for key, section in values.items():
        if key == "log_level":
            config.log_level = str(section)
        elif key in ("relay", "peer"):
            if not isinstance(section, Mapping):
                raise ConfigError(f"{key} section of profile {profile!r} must be a mapping")
            _apply(getattr(config, key), section, key)
        else:
            raise ConfigError(f"unknown section {key!r} in profile {profile!r}")

    _apply_environment(config, env)
    _validate(config)
    return config


__all__ = [
    "ConfigError",
    "MediaSettings",
    "PeerSettings",
    "PeerlinkConfig",
    "RelaySettings",
    "load_config",
]
