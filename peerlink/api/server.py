"""
FastAPI relay server: forwards signaling frames between room members.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
import uuid
from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from ..config import PeerlinkConfig
from ..signaling.messages import InboundMessage, parse_outbound
from ..signaling.relay import Relay
from . import schemas

LOG = logging.getLogger(__name__)


class RelayConnection:
    """Track per-connection state and run the send/receive/keepalive loops."""

    def __init__(self, manager: "RelayManager", websocket: WebSocket, *, queue_size: int) -> None:
        self.manager = manager
        self.websocket = websocket
        self.peer_id = uuid.uuid4().hex
        self.send_queue: asyncio.Queue[Dict[str, Any]] = asyncio.Queue(maxsize=queue_size)
        self.last_pong = time.monotonic()
        self._stop_event = asyncio.Event()
        self._closing = False
        self.logger = LOG.getChild(f"ws.{self.peer_id[:8]}")

    @property
    def is_stopped(self) -> bool:
        return self._stop_event.is_set()

    async def run(self) -> None:
        try:
            await self.websocket.accept()
        except Exception:  # pragma: no cover - handshake dropped before accept
            self.logger.exception("Failed to accept WebSocket connection")
            return

        await self.manager.relay.register(self.peer_id, self.deliver)
        try:
            async with asyncio.TaskGroup() as task_group:
                task_group.create_task(self._recv_loop())
                task_group.create_task(self._send_loop())
                task_group.create_task(self._keepalive_loop())
        except asyncio.CancelledError:
            raise
        except Exception:  # pragma: no cover - loop crashed
            self.logger.exception("Relay connection crashed")
        finally:
            await self.manager.relay.unregister(self.peer_id)
            await self.close(code=1000)

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        if self._closing:
            return
        self._closing = True
        self._stop_event.set()
        with contextlib.suppress(RuntimeError, WebSocketDisconnect):
            await self.websocket.close(code=code, reason=reason)

    async def deliver(self, message: InboundMessage) -> None:
        await self.send(message.to_wire())

    async def send(self, payload: Dict[str, Any]) -> None:
        if self.is_stopped:
            return
        await self.send_queue.put(dict(payload))

    async def _recv_loop(self) -> None:
        try:
            while not self.is_stopped:
                try:
                    frame = await self.websocket.receive_json()
                except asyncio.CancelledError:
                    raise
                except WebSocketDisconnect:
                    break
                except ValueError:
                    self.logger.warning("Dropping non-JSON frame")
                    continue
                except Exception:  # pragma: no cover - safety net
                    self.logger.exception("Failed to receive message")
                    break

                if not isinstance(frame, dict):
                    continue

                frame_type = str(frame.get("type") or "").lower()
                if frame_type == "pong":
                    self.last_pong = time.monotonic()
                    continue
                if frame_type == "ping":
                    await self.send({"type": "pong", "ts": time.time()})
                    continue

                try:
                    message = parse_outbound(frame)
                except ValidationError as exc:
                    self.logger.warning("Dropping malformed %s frame: %s", frame_type or "untyped", exc)
                    continue

                try:
                    await self.manager.relay.handle(self.peer_id, message)
                except asyncio.CancelledError:
                    raise
                except Exception:  # pragma: no cover - guard rails
                    self.logger.exception("Unhandled error while relaying %s", message.type)
        finally:
            self._stop_event.set()

    async def _send_loop(self) -> None:
        try:
            while not self.is_stopped:
                try:
                    payload = await asyncio.wait_for(self.send_queue.get(), timeout=0.5)
                except asyncio.TimeoutError:
                    continue

                try:
                    await self.websocket.send_json(payload)
                except asyncio.CancelledError:
                    raise
                except WebSocketDisconnect:
                    break
                except RuntimeError as exc:
                    self.logger.debug("Send after close ignored: %s", exc)
                    break
                finally:
                    self.send_queue.task_done()
        finally:
            self._stop_event.set()

    async def _keepalive_loop(self) -> None:
        if self.manager.ping_interval <= 0:
            return
        try:
            while not self.is_stopped:
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.manager.ping_interval)
                if self.is_stopped:
                    break
                await self.send({"type": "ping", "ts": time.time()})
                if (time.monotonic() - self.last_pong) > self.manager.pong_timeout:
                    self.logger.warning("Ping timeout; closing relay connection")
                    await self.close(code=1011, reason="ping timeout")
                    break
        finally:
            self._stop_event.set()


class RelayManager:
    """Own the relay core and the live WebSocket connections."""

    def __init__(
        self,
        relay: Relay,
        *,
        queue_size: int = 256,
        ping_interval: float = 30.0,
        pong_timeout: float = 60.0,
    ) -> None:
        self.relay = relay
        self.queue_size = max(1, int(queue_size))
        self.ping_interval = max(0.0, float(ping_interval))
        self.pong_timeout = max(self.ping_interval, float(pong_timeout))
        self._connections: Dict[str, RelayConnection] = {}

    @property
    def peer_count(self) -> int:
        return len(self._connections)

    async def run(self, websocket: WebSocket) -> None:
        connection = RelayConnection(self, websocket, queue_size=self.queue_size)
        self._connections[connection.peer_id] = connection
        LOG.info("Relay client connected peer=%s", connection.peer_id)
        try:
            await connection.run()
        finally:
            self._connections.pop(connection.peer_id, None)
            LOG.info("Relay client disconnected peer=%s", connection.peer_id)

    async def close_all(self) -> None:
        connections = list(self._connections.values())
        await asyncio.gather(
            *[connection.close(code=1001, reason="server shutdown") for connection in connections],
            return_exceptions=True,
        )


def create_app(
    *,
    config: Optional[PeerlinkConfig] = None,
    relay: Optional[Relay] = None,
    lifespan: Optional[Callable[..., object]] = None,
) -> FastAPI:
    settings = config or PeerlinkConfig()
    relay_core = relay or Relay(max_room_size=settings.max_room_size)
    manager = RelayManager(
        relay_core,
        queue_size=settings.queue_size,
        ping_interval=settings.ping_interval,
        pong_timeout=settings.pong_timeout,
    )

    app = FastAPI(title="peerlink relay", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.relay = relay_core
    app.state.relay_manager = manager
    app.state.config = settings

    @app.websocket("/signal")
    async def signal_endpoint(websocket: WebSocket) -> None:
        await manager.run(websocket)

    @app.get("/healthz")
    async def healthz() -> schemas.HealthModel:
        return schemas.HealthModel(status="ok", profile=settings.profile, peers=manager.peer_count)

    @app.get("/rooms")
    async def list_rooms() -> schemas.RoomListing:
        rooms = [
            schemas.RoomModel(room_id=room_id, members=members)
            for room_id, members in sorted(relay_core.rooms().items())
        ]
        return schemas.RoomListing(rooms=rooms)

    @app.get("/ice-servers")
    async def ice_servers() -> schemas.IceServersModel:
        return schemas.IceServersModel(
            profile=settings.profile,
            ice_servers=[schemas.IceServerModel(**server) for server in settings.ice_servers],
        )

    return app


__all__ = ["RelayConnection", "RelayManager", "create_app"]
