"""
Process entrypoint.

``peerlink relay`` serves the signaling relay with uvicorn; ``peerlink peer``
runs one endpoint against a relay using the aiortc media engine.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from pathlib import Path
from typing import Optional

from .config import ConfigError, PeerlinkConfig, load_config
from .relay.server import create_app
from .utils.logging import configure_logging, resolve_level

LOG = logging.getLogger(__name__)


async def serve_relay(config: PeerlinkConfig) -> None:
    """
    Run the relay inside an asyncio loop until SIGINT/SIGTERM.
    """

    import uvicorn

    settings = config.relay
    app = create_app(settings=settings)
    server_config = uvicorn.Config(
        app=app,
        host=settings.host,
        port=int(settings.port),
        log_config=None,
        log_level=config.log_level.lower(),
        reload=False,
    )
    server = uvicorn.Server(config=server_config)

    def _handle_signal(signum: int, frame: Optional[object]) -> None:
        LOG.info("Received signal %s, shutting down relay...", signum)
        server.should_exit = True

    for signame in ("SIGINT", "SIGTERM"):
        signal.signal(getattr(signal, signame), _handle_signal)

    LOG.info("Signaling relay listening on %s:%s", settings.host, settings.port)
    await server.serve()


async def run_peer(config: PeerlinkConfig, *, call: bool = False) -> None:
    """
    Connect one endpoint to the relay and keep it armed for calls.

    With ``call`` the endpoint places a call as soon as the relay accepts it.
    """

    from .rtc.channel import SignalingChannel
    from .rtc.errors import MediaUnavailable
    from .rtc.session import PeerSession
    from .runtime.aiortc_adapter import AiortcMediaSource, connection_factory

    settings = config.peer
    channel = SignalingChannel(
        settings.relay_url,
        reconnection_attempts=settings.reconnection_attempts,
        reconnection_delay=settings.reconnection_delay,
        outbox_size=settings.outbox_size,
    )
    session = PeerSession(
        channel,
        AiortcMediaSource(settings.media),
        connection_factory(settings.ice),
        negotiation_timeout=settings.negotiation_timeout,
        end_on_peer_left=settings.end_on_peer_left,
        auto_rearm=settings.auto_rearm,
    )

    placed = False

    async def _place_call(_: object) -> None:
        nonlocal placed
        if call and not placed:
            placed = True
            await session.toggle()

    channel.on("connect", _place_call)

    try:
        await session.start()
    except MediaUnavailable as exc:
        LOG.error("Cannot start peer: %s", exc)
        return

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _handle_signal(signum: int, frame: Optional[object]) -> None:
        LOG.info("Received signal %s, leaving call...", signum)
        loop.call_soon_threadsafe(stop_event.set)

    for signame in ("SIGINT", "SIGTERM"):
        signal.signal(getattr(signal, signame), _handle_signal)

    runner = asyncio.create_task(channel.run())
    stopper = asyncio.create_task(stop_event.wait())
    try:
        await asyncio.wait({runner, stopper}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        await session.close()
        for task in (runner, stopper):
            task.cancel()
        await asyncio.gather(runner, stopper, return_exceptions=True)
        LOG.info("Peer stopped in state %s", session.state.value)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="PeerLink WebRTC signaling")
    parser.add_argument("--profile", default="default", help="configuration profile to load")
    parser.add_argument("--config", type=Path, default=None, help="path to a profiles YAML file")
    parser.add_argument("--log-level", default=None, help="override the profile's log level")
    commands = parser.add_subparsers(dest="command", required=True)

    relay = commands.add_parser("relay", help="run the signaling relay")
    relay.add_argument("--host", default=None, help="bind host for the relay")
    relay.add_argument("--port", type=int, default=None, help="bind port for the relay")

    peer = commands.add_parser("peer", help="run one call endpoint")
    peer.add_argument("--relay-url", default=None, help="WebSocket URL of the relay")
    peer.add_argument("--media", default=None, help="capture device or media file to send")
    peer.add_argument("--media-format", default=None, help="ffmpeg input format for --media")
    peer.add_argument("--call", action="store_true", help="place a call once connected")
    return parser.parse_args(argv)


def apply_arguments(config: PeerlinkConfig, args: argparse.Namespace) -> PeerlinkConfig:
    if args.log_level:
        config.log_level = args.log_level
    if args.command == "relay":
        if args.host:
            config.relay.host = args.host
        if args.port:
            config.relay.port = args.port
    elif args.command == "peer":
        if args.relay_url:
            config.peer.relay_url = args.relay_url
        if args.media:
            config.peer.media.source = args.media
        if args.media_format:
            config.peer.media.format = args.media_format
    return config


def run(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    try:
        config = apply_arguments(load_config(args.profile, path=args.config), args)
        level = resolve_level(config.log_level)
    except (ConfigError, ValueError) as exc:
        raise SystemExit(f"peerlink: {exc}") from exc
    configure_logging(level=level)

    try:
        if args.command == "relay":
            asyncio.run(serve_relay(config))
        else:
            asyncio.run(run_peer(config, call=args.call))
    except KeyboardInterrupt:
        LOG.info("PeerLink interrupted by user.")


if __name__ == "__main__":
    run()
