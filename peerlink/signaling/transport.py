"""
Signaling transports.

A transport carries :mod:`peerlink.signaling.messages` frames between one
client and the relay. Inbound messages are queued and handed to the handler
one at a time by a single pump task, which keeps per-sender order and stops a
slow handler from re-entering itself.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
import uuid
from typing import Any, Awaitable, Callable, Optional, Protocol, Union

from pydantic import ValidationError
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed

from .messages import InboundMessage, OutboundMessage, parse_inbound
from .relay import Relay

LOG = logging.getLogger(__name__)

InboundHandler = Callable[[InboundMessage], Awaitable[None]]


class TransportError(ConnectionError):
    """Raised when sending on a transport that is not connected."""


class SignalingTransport(Protocol):
    def set_handler(self, handler: InboundHandler) -> None: ...

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def send(self, message: OutboundMessage) -> None: ...


class QueuedTransport:
    """Shared inbound queue and pump for concrete transports."""

    def __init__(self, *, queue_size: int = 256) -> None:
        self._handler: Optional[InboundHandler] = None
        self._inbound: asyncio.Queue[InboundMessage] = asyncio.Queue(maxsize=max(1, int(queue_size)))
        self._pump_task: Optional[asyncio.Task] = None
        self.logger = LOG.getChild(type(self).__name__)

    @property
    def connected(self) -> bool:
        return self._pump_task is not None

    def set_handler(self, handler: InboundHandler) -> None:
        self._handler = handler

    async def _deliver(self, message: InboundMessage) -> None:
        await self._inbound.put(message)

    def _start_pump(self) -> None:
        if self._pump_task is None:
            self._pump_task = asyncio.create_task(self._pump())

    async def _stop_pump(self) -> None:
        task, self._pump_task = self._pump_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _pump(self) -> None:
        while True:
            message = await self._inbound.get()
            try:
                if self._handler is None:
                    self.logger.warning("No handler installed; dropping %s", message.type)
                    continue
                await self._handler(message)
            except asyncio.CancelledError:
                raise
            except Exception:  # pragma: no cover - guard rails
                self.logger.exception("Unhandled error while processing %s", message.type)
            finally:
                self._inbound.task_done()

    async def drain(self) -> None:
        """Wait until every queued inbound message has been handled."""

        await self._inbound.join()


class MemoryTransport(QueuedTransport):
    """
    In-process transport attached directly to a :class:`Relay`.

    Useful for running two clients inside one event loop.
    """

    def __init__(self, relay: Relay, *, peer_id: Optional[str] = None, queue_size: int = 256) -> None:
        super().__init__(queue_size=queue_size)
        self.relay = relay
        self.peer_id = peer_id or uuid.uuid4().hex

    async def connect(self) -> None:
        if self.connected:
            return
        await self.relay.register(self.peer_id, self._deliver)
        self._start_pump()

    async def disconnect(self) -> None:
        if not self.connected:
            return
        await self.relay.unregister(self.peer_id)
        await self._stop_pump()

    async def send(self, message: OutboundMessage) -> None:
        if not self.connected:
            raise TransportError(f"transport for {self.peer_id} is not connected")
        await self.relay.handle(self.peer_id, message)


class WebSocketTransport(QueuedTransport):
    """Client side of the relay's ``/signal`` WebSocket endpoint."""

    def __init__(self, url: str, *, queue_size: int = 256, open_timeout: float = 10.0) -> None:
        super().__init__(queue_size=queue_size)
        self.url = url
        self.open_timeout = max(0.1, float(open_timeout))
        self._ws: Optional[ClientConnection] = None
        self._recv_task: Optional[asyncio.Task] = None

    async def connect(self) -> None:
        if self._ws is not None:
            return
        self._ws = await connect(self.url, open_timeout=self.open_timeout)
        self._start_pump()
        self._recv_task = asyncio.create_task(self._recv_loop())
        self.logger.info("Connected to relay %s", self.url)

    async def disconnect(self) -> None:
        ws, self._ws = self._ws, None
        task, self._recv_task = self._recv_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self._stop_pump()
        if ws is not None:
            with contextlib.suppress(ConnectionClosed, RuntimeError):
                await ws.close()
            self.logger.info("Disconnected from relay %s", self.url)

    async def send(self, message: OutboundMessage) -> None:
        ws = self._ws
        if ws is None:
            raise TransportError(f"not connected to {self.url}")
        await ws.send(message.to_json())

    async def _send_raw(self, payload: dict) -> None:
        ws = self._ws
        if ws is None:
            return
        with contextlib.suppress(ConnectionClosed):
            await ws.send(json.dumps(payload))

    async def _recv_loop(self) -> None:
        ws = self._ws
        if ws is None:
            return
        try:
            async for raw in ws:
                frame = self._decode(raw)
                if frame is None:
                    continue
                frame_type = str(frame.get("type") or "").lower()
                if frame_type == "ping":
                    await self._send_raw({"type": "pong", "ts": time.time()})
                    continue
                if frame_type == "pong":
                    continue
                try:
                    message = parse_inbound(frame)
                except ValidationError as exc:
                    self.logger.warning("Dropping malformed %s frame: %s", frame_type or "untyped", exc)
                    continue
                await self._deliver(message)
        except asyncio.CancelledError:
            raise
        except ConnectionClosed:
            self.logger.info("Relay closed the connection")
        except Exception:  # pragma: no cover - safety net
            self.logger.exception("Failed to receive from relay")

    def _decode(self, raw: Union[str, bytes]) -> Optional[dict[str, Any]]:
        try:
            frame = json.loads(raw)
        except (TypeError, ValueError):
            self.logger.warning("Dropping non-JSON frame from relay")
            return None
        if not isinstance(frame, dict):
            return None
        return frame


__all__ = [
    "InboundHandler",
    "MemoryTransport",
    "QueuedTransport",
    "SignalingTransport",
    "TransportError",
    "WebSocketTransport",
]
