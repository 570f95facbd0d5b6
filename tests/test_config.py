"""Tests covering profile loading and environment overrides."""

from __future__ import annotations

from pathlib import Path

import pytest

from peerlink.config import PROFILES_PATH, ConfigError, load_config


def write_profiles(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "profiles.yaml"
    path.write_text(text)
    return path


def test_defaults_match_the_reference_relay() -> None:
    config = load_config(environ={})

    assert config.relay.port == 3000
    assert config.relay.max_channels == 0
    assert config.relay.announce_departures is False
    assert config.peer.negotiation_timeout is None
    assert config.peer.end_on_peer_left is False
    assert config.peer.auto_rearm is True


def test_shipped_profiles_all_load() -> None:
    for profile in ("default", "lan", "public", "debug"):
        config = load_config(profile, path=PROFILES_PATH, environ={})
        assert config.profile == profile

    lan = load_config("lan", environ={})
    assert lan.relay.max_channels == 2
    assert lan.peer.ice.iter_ice_servers() == []


def test_nested_sections_are_merged(tmp_path) -> None:
    path = write_profiles(
        tmp_path,
        """
studio:
  log_level: DEBUG
  relay:
    port: 4000
  peer:
    negotiation_timeout: 12.5
    ice:
      turn_server: turn:turn.example.com
    media:
      source: /dev/video0
      format: v4l2
""",
    )

    config = load_config("studio", path=path, environ={})

    assert config.log_level == "DEBUG"
    assert config.relay.port == 4000
    assert config.relay.queue_size == 64
    assert config.peer.negotiation_timeout == 12.5
    assert config.peer.ice.turn_server == "turn:turn.example.com"
    assert config.peer.ice.stun_server == "stun:stun.l.google.com:19302"
    assert config.peer.media.format == "v4l2"


def test_environment_overrides_profile(tmp_path) -> None:
    path = write_profiles(tmp_path, "default:\n  relay:\n    port: 4000\n")
    environ = {
        "PORT": "5000",
        "PEERLINK_HOST": "127.0.0.1",
        "PEERLINK_MAX_CHANNELS": "2",
        "PEERLINK_RELAY_URL": "ws://relay.example.com/ws",
        "PEERLINK_NEGOTIATION_TIMEOUT": "30",
        "PEERLINK_LOG_LEVEL": "warning",
    }

    config = load_config(path=path, environ=environ)

    assert config.relay.port == 5000
    assert config.relay.host == "127.0.0.1"
    assert config.relay.max_channels == 2
    assert config.peer.relay_url == "ws://relay.example.com/ws"
    assert config.peer.negotiation_timeout == 30.0
    assert config.log_level == "warning"


def test_zero_timeout_from_environment_disables_it() -> None:
    config = load_config(environ={"PEERLINK_NEGOTIATION_TIMEOUT": "0"})
    assert config.peer.negotiation_timeout is None


def test_missing_file_falls_back_to_defaults(tmp_path) -> None:
    config = load_config(path=tmp_path / "absent.yaml", environ={})
    assert config.relay.port == 3000


def test_profiles_path_from_environment(tmp_path) -> None:
    path = write_profiles(tmp_path, "edge:\n  relay:\n    port: 7000\n")
    config = load_config("edge", environ={"PEERLINK_PROFILES": str(path)})
    assert config.relay.port == 7000


@pytest.mark.parametrize(
    "text, profile",
    [
        ("default: {}\n", "missing"),
        ("default:\n  relay:\n    colour: blue\n", "default"),
        ("default:\n  metrics: {}\n", "default"),
        ("default:\n  peer:\n    ice: stun\n", "default"),
        ("default:\n  relay:\n    port: 70000\n", "default"),
        ("default:\n  relay: [1, 2]\n", "default"),
        ("- just\n- a list\n", "default"),
        ("default: [\n", "default"),
    ],
)
def test_invalid_profiles_raise(tmp_path, text, profile) -> None:
    path = write_profiles(tmp_path, text)
    with pytest.raises(ConfigError):
        load_config(profile, path=path, environ={})


def test_invalid_environment_value_raises() -> None:
    with pytest.raises(ConfigError):
        load_config(environ={"PORT": "http"})
