"""
aiortc-backed collaborators for the session core.

:class:`AiortcPrimitive` wraps one ``RTCPeerConnection``. aiortc gathers all
local candidates during ``setLocalDescription`` and embeds them in the SDP
instead of trickling them, so the primitive returns the gathered local
description and never emits :class:`~peerlink.rtc.webrtc.LocalCandidate`.
Remote candidates are still accepted for peers that trickle.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from aiortc import (
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.contrib.media import MediaBlackhole, MediaPlayer, MediaRecorder
from aiortc.exceptions import InvalidAccessError, InvalidStateError, OperationError
from aiortc.mediastreams import MediaStreamTrack
from aiortc.sdp import candidate_from_sdp

from ..errors import InvalidCandidate, InvalidDescription, MediaAccessDenied
from .webrtc import (
    ConnectionStateChanged,
    ICECandidate,
    PrimitiveEvent,
    PrimitiveObserver,
    RemoteTrack,
    SessionDescription,
)

LOG = logging.getLogger(__name__)

_NEGOTIATION_ERRORS = (ValueError, InvalidAccessError, InvalidStateError, OperationError)
# foundation component transport priority address port "typ" type
_MIN_CANDIDATE_FIELDS = 8


def build_configuration(ice_servers: Iterable[Dict[str, Any]]) -> RTCConfiguration:
    servers: List[RTCIceServer] = []
    for entry in ice_servers:
        urls = entry.get("urls")
        if not urls:
            continue
        servers.append(
            RTCIceServer(
                urls=urls,
                username=entry.get("username"),
                credential=entry.get("credential"),
            )
        )
    # An empty list disables aiortc's built-in STUN default; None would enable it.
    return RTCConfiguration(iceServers=servers)


class AiortcPrimitive:
    """Negotiation primitive over a single ``RTCPeerConnection``."""

    def __init__(self, ice_servers: Iterable[Dict[str, Any]] = ()) -> None:
        self.pc = RTCPeerConnection(configuration=build_configuration(ice_servers))
        self._observers: List[PrimitiveObserver] = []

        @self.pc.on("track")
        def _on_track(track: MediaStreamTrack) -> None:
            LOG.info("Receiving remote %s track", track.kind)
            self._notify(RemoteTrack(handle=track))

        @self.pc.on("connectionstatechange")
        def _on_connection_state() -> None:
            LOG.info("connectionState -> %s", self.pc.connectionState)
            self._notify(ConnectionStateChanged(state=self.pc.connectionState))

    def subscribe(self, callback: PrimitiveObserver) -> None:
        self._observers.append(callback)

    def _notify(self, event: PrimitiveEvent) -> None:
        for callback in list(self._observers):
            try:
                callback(event)
            except Exception:  # pragma: no cover - observer failures should not kill the connection
                LOG.exception("Primitive observer failed for %r", event)

    async def create_offer(self) -> SessionDescription:
        try:
            offer = await self.pc.createOffer()
        except _NEGOTIATION_ERRORS as exc:
            raise InvalidDescription(f"could not create offer: {exc}") from exc
        return SessionDescription(type=offer.type, sdp=offer.sdp)

    async def create_answer(self) -> SessionDescription:
        try:
            answer = await self.pc.createAnswer()
        except _NEGOTIATION_ERRORS as exc:
            raise InvalidDescription(f"could not create answer: {exc}") from exc
        return SessionDescription(type=answer.type, sdp=answer.sdp)

    async def set_local_description(self, description: SessionDescription) -> Optional[SessionDescription]:
        try:
            await self.pc.setLocalDescription(RTCSessionDescription(sdp=description.sdp, type=description.type))
        except _NEGOTIATION_ERRORS as exc:
            raise InvalidDescription(f"local {description.type} rejected: {exc}") from exc
        local = self.pc.localDescription
        if local is None:
            return None
        return SessionDescription(type=local.type, sdp=local.sdp)

    async def set_remote_description(self, description: SessionDescription) -> None:
        try:
            await self.pc.setRemoteDescription(
                RTCSessionDescription(sdp=description.sdp, type=description.type)
            )
        except _NEGOTIATION_ERRORS as exc:
            raise InvalidDescription(str(exc)) from exc

    async def add_ice_candidate(self, candidate: ICECandidate) -> None:
        value = candidate.candidate
        if not value:
            # End-of-candidates marker.
            return
        if value.startswith("candidate:"):
            value = value[len("candidate:"):]
        if len(value.split()) < _MIN_CANDIDATE_FIELDS:
            raise InvalidCandidate(f"truncated candidate {candidate.candidate!r}")
        try:
            parsed = candidate_from_sdp(value)
            parsed.sdpMid = candidate.sdp_mid
            parsed.sdpMLineIndex = candidate.sdp_mline_index
            await self.pc.addIceCandidate(parsed)
        except (AssertionError, IndexError, *_NEGOTIATION_ERRORS) as exc:
            raise InvalidCandidate(str(exc)) from exc

    def add_local_media(self, handle: "LocalMedia") -> None:
        for track in handle.tracks:
            self.pc.addTrack(track)

    async def close(self) -> None:
        await self.pc.close()


@dataclass
class LocalMedia:
    """Opaque local media handle: the player and the tracks taken from it."""

    player: Optional[MediaPlayer] = None
    tracks: List[MediaStreamTrack] = field(default_factory=list)


class PlayerMediaSource:
    """
    Capture collaborator backed by ``aiortc.contrib.media.MediaPlayer``.

    ``source`` is anything FFmpeg can open: a device (``/dev/video0`` with
    ``format="v4l2"``), a file, or a stream URL.
    """

    def __init__(
        self,
        source: str,
        *,
        format: Optional[str] = None,
        options: Optional[Dict[str, str]] = None,
        audio: bool = True,
        video: bool = True,
    ) -> None:
        self.source = source
        self.format = format
        self.options = dict(options or {})
        self.audio = audio
        self.video = video

    async def acquire_local_media(self) -> LocalMedia:
        try:
            player = await asyncio.to_thread(
                MediaPlayer, self.source, format=self.format, options=self.options or None
            )
        except Exception as exc:
            raise MediaAccessDenied(f"could not open {self.source!r}: {exc}") from exc

        tracks: List[MediaStreamTrack] = []
        if self.audio and player.audio is not None:
            tracks.append(player.audio)
        if self.video and player.video is not None:
            tracks.append(player.video)
        if not tracks:
            raise MediaAccessDenied(f"{self.source!r} has no usable audio or video")
        LOG.info("Opened local media %s (%s)", self.source, ", ".join(track.kind for track in tracks))
        return LocalMedia(player=player, tracks=tracks)

    async def release_local_media(self, handle: LocalMedia) -> None:
        for track in handle.tracks:
            track.stop()
        handle.tracks.clear()


class RecorderRenderer:
    """
    Render collaborator that writes remote media to ``path`` (or discards it).

    Local media is not rendered; there is no preview surface.
    """

    def __init__(self, path: Optional[str] = None) -> None:
        self.path = path
        self._sink: Optional[Any] = None
        self._tasks: Set[asyncio.Task] = set()

    def render_local(self, handle: LocalMedia) -> None:
        LOG.debug("Local media ready (%d track(s))", len(handle.tracks))

    def render_remote(self, handle: Optional[MediaStreamTrack]) -> None:
        if handle is None:
            sink, self._sink = self._sink, None
            if sink is not None:
                self._spawn(sink.stop())
            return
        if self._sink is None:
            self._sink = MediaRecorder(self.path) if self.path else MediaBlackhole()
        self._sink.addTrack(handle)
        # start() only launches tracks that are not running yet.
        self._spawn(self._sink.start())

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def close(self) -> None:
        self.render_remote(None)
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


__all__ = [
    "AiortcPrimitive",
    "LocalMedia",
    "PlayerMediaSource",
    "RecorderRenderer",
    "build_configuration",
]
