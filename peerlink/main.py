"""
Command line entrypoint.

``peerlink relay`` runs the signaling relay; ``peerlink call ROOM`` joins a
room with aiortc media and stays in the call until interrupted.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from .config import PeerlinkConfig, load_config
from .errors import SessionError
from .rtc.aiortc_adapter import AiortcPrimitive, PlayerMediaSource, RecorderRenderer
from .session import SessionManager
from .signaling.transport import WebSocketTransport
from .utils.logging import configure_logging

LOG = logging.getLogger(__name__)


async def serve_relay(config: PeerlinkConfig, host: str = "127.0.0.1", port: int = 8080) -> None:
    """
    Run the relay inside an asyncio loop.

    Parameters
    ----------
    config:
        Active profile.
    host, port:
        Bind address for the FastAPI/uvicorn server.
    """

    import uvicorn

    from .api.server import create_app

    @asynccontextmanager
    async def app_lifespan(app) -> AsyncIterator[None]:
        LOG.info("Relay starting with profile %s", config.profile)
        try:
            yield
        finally:
            await app.state.relay_manager.close_all()
            LOG.info("Relay shutting down")

    app = create_app(config=config, lifespan=app_lifespan)
    server_config = uvicorn.Config(
        app=app,
        host=host,
        port=port,
        log_config=None,
        log_level="info",
        reload=False,
    )
    server = uvicorn.Server(config=server_config)
    await server.serve()


async def run_call(
    config: PeerlinkConfig,
    room_id: str,
    *,
    source: str,
    source_format: Optional[str] = None,
    record_to: Optional[str] = None,
) -> int:
    renderer = RecorderRenderer(record_to)
    manager = SessionManager(
        transport=WebSocketTransport(config.relay_url, queue_size=config.queue_size),
        media=PlayerMediaSource(source, format=source_format),
        renderer=renderer,
        primitive_factory=lambda: AiortcPrimitive(config.ice_servers),
    )

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signame in ("SIGINT", "SIGTERM"):
        try:
            loop.add_signal_handler(getattr(signal, signame), stop_event.set)
        except (NotImplementedError, RuntimeError):  # pragma: no cover - non-POSIX loops
            signal.signal(getattr(signal, signame), lambda signum, frame: stop_event.set())

    def _on_state(state) -> None:
        LOG.info("Call state: %s", state.value)

    manager.subscribe(_on_state)
    await manager.connect()
    try:
        try:
            await manager.join(room_id)
        except SessionError as exc:
            LOG.error("Could not join room %s: %s", room_id, exc)
            return 1
        await stop_event.wait()
        LOG.info("Ending call.")
        return 0
    finally:
        await manager.disconnect()
        await renderer.close()


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="peerlink two-party call signaling")
    parser.add_argument("--profile", default="default", help="connection profile to load")
    parser.add_argument("--log-level", default="INFO", help="root log level")
    commands = parser.add_subparsers(dest="command", required=True)

    relay = commands.add_parser("relay", help="run the signaling relay server")
    relay.add_argument("--host", default="127.0.0.1", help="bind host for the relay")
    relay.add_argument("--port", type=int, default=8080, help="bind port for the relay")

    call = commands.add_parser("call", help="join a room and stay in the call")
    call.add_argument("room", help="room identifier shared with the other participant")
    call.add_argument("--relay-url", default=None, help="override the profile's relay URL")
    call.add_argument("--source", default="/dev/video0", help="camera device, file or URL to send")
    call.add_argument("--source-format", default=None, help="FFmpeg input format, e.g. v4l2")
    call.add_argument("--record", default=None, help="write remote media to this file")
    return parser.parse_args(argv)


def run(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)
    config = load_config(args.profile)

    try:
        if args.command == "relay":
            asyncio.run(serve_relay(config, host=args.host, port=args.port))
            return 0
        if args.relay_url:
            config.relay_url = args.relay_url
        return asyncio.run(
            run_call(
                config,
                args.room,
                source=args.source,
                source_format=args.source_format,
                record_to=args.record,
            )
        )
    except KeyboardInterrupt:
        LOG.info("Interrupted by user.")
        return 130


if __name__ == "__main__":
    raise SystemExit(run())
