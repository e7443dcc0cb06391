"""Fakes for the negotiation primitive, media collaborators and transport."""

from __future__ import annotations

import asyncio
from typing import List, Optional

from peerlink.errors import InvalidCandidate, InvalidDescription, MediaAccessDenied
from peerlink.rtc.webrtc import (
    ConnectionStateChanged,
    ICECandidate,
    PrimitiveEvent,
    SessionDescription,
)


class FakePrimitive:
    def __init__(self, name: str = "pc", *, auto_connect: bool = True) -> None:
        self.name = name
        self.auto_connect = auto_connect
        self.local: Optional[SessionDescription] = None
        self.remote: Optional[SessionDescription] = None
        self.applied: List[str] = []
        self.rejected_candidates: set = set()
        self.local_media = None
        self.close_calls = 0
        self.offer_gate: Optional[asyncio.Event] = None
        self.calls: List[str] = []
        # Steps ("create_offer", "create_answer", "set_local") that raise RuntimeError.
        self.fail_on: set = set()
        self.crashing_candidates: set = set()
        self._observers = []

    def subscribe(self, callback) -> None:
        self._observers.append(callback)

    def emit(self, event: PrimitiveEvent) -> None:
        for callback in list(self._observers):
            callback(event)

    def _maybe_connect(self) -> None:
        if self.auto_connect and self.local is not None and self.remote is not None:
            self.emit(ConnectionStateChanged(state="connected"))

    def _maybe_fail(self, step: str) -> None:
        if step in self.fail_on:
            raise RuntimeError(f"{step} exploded")

    async def create_offer(self) -> SessionDescription:
        self.calls.append("create_offer")
        if self.offer_gate is not None:
            await self.offer_gate.wait()
        self._maybe_fail("create_offer")
        return SessionDescription(type="offer", sdp=f"offer-from-{self.name}")

    async def create_answer(self) -> SessionDescription:
        self.calls.append("create_answer")
        self._maybe_fail("create_answer")
        return SessionDescription(type="answer", sdp=f"answer-from-{self.name}")

    async def set_local_description(self, description: SessionDescription) -> None:
        self.calls.append(f"set_local:{description.type}")
        self._maybe_fail("set_local")
        self.local = description
        self._maybe_connect()

    async def set_remote_description(self, description: SessionDescription) -> None:
        self.calls.append(f"set_remote:{description.type}")
        if description.sdp == "bogus":
            raise InvalidDescription("unparseable sdp")
        self.remote = description
        self._maybe_connect()

    async def add_ice_candidate(self, candidate: ICECandidate) -> None:
        if candidate.candidate in self.rejected_candidates:
            raise InvalidCandidate(f"stale candidate {candidate.candidate}")
        if candidate.candidate in self.crashing_candidates:
            raise RuntimeError(f"primitive crashed on {candidate.candidate}")
        self.applied.append(candidate.candidate)

    def add_local_media(self, handle) -> None:
        self.local_media = handle

    async def close(self) -> None:
        self.close_calls += 1


class FakeMedia:
    def __init__(self, *, deny: bool = False) -> None:
        self.deny = deny
        self.gate: Optional[asyncio.Event] = None
        self.acquired: List[str] = []
        self.released: List[str] = []

    async def acquire_local_media(self) -> str:
        if self.gate is not None:
            await self.gate.wait()
        if self.deny:
            raise MediaAccessDenied("permission denied")
        handle = f"local-media-{len(self.acquired) + 1}"
        self.acquired.append(handle)
        return handle

    async def release_local_media(self, handle: str) -> None:
        self.released.append(handle)


class FakeRenderer:
    def __init__(self) -> None:
        self.local: List[object] = []
        self.remote: List[object] = []

    def render_local(self, handle) -> None:
        self.local.append(handle)

    def render_remote(self, handle) -> None:
        self.remote.append(handle)


class RecordingTransport:
    def __init__(self) -> None:
        self.sent = []
        self.handler = None
        self.connected = False
        self.fail_types: set = set()

    def set_handler(self, handler) -> None:
        self.handler = handler

    async def connect(self) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    async def send(self, message) -> None:
        if message.type in self.fail_types:
            raise ConnectionError("relay gone")
        self.sent.append(message)

    def sent_types(self) -> List[str]:
        return [message.type for message in self.sent]


def candidate(value: str) -> ICECandidate:
    return ICECandidate(candidate=value, sdpMid="0", sdpMLineIndex=0)
