from __future__ import annotations

import logging

import pytest

from peerlink.config import load_config
from peerlink.main import apply_arguments, parse_args
from peerlink.utils.logging import resolve_level


def test_relay_arguments_override_profile() -> None:
    args = parse_args(["--log-level", "debug", "relay", "--host", "127.0.0.1", "--port", "8000"])
    config = apply_arguments(load_config(environ={}), args)

    assert args.command == "relay"
    assert config.relay.host == "127.0.0.1"
    assert config.relay.port == 8000
    assert config.log_level == "debug"


def test_peer_arguments_override_profile() -> None:
    args = parse_args(["--profile", "lan", "peer", "--relay-url", "ws://10.0.0.5:3000/ws", "--media", "clip.mp4", "--call"])
    config = apply_arguments(load_config(args.profile, environ={}), args)

    assert args.call is True
    assert config.peer.relay_url == "ws://10.0.0.5:3000/ws"
    assert config.peer.media.source == "clip.mp4"
    assert config.relay.port == 3000


def test_subcommand_is_required() -> None:
    with pytest.raises(SystemExit):
        parse_args([])


def test_resolve_level() -> None:
    assert resolve_level("debug") == logging.DEBUG
    assert resolve_level(None) == logging.INFO
    assert resolve_level(logging.ERROR) == logging.ERROR
    with pytest.raises(ValueError):
        resolve_level("chatty")
