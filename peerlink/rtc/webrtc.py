"""
Negotiation artefacts and the collaborator contracts the session core drives.

The session core never inspects media or SDP bodies; it only moves
descriptions, candidates and opaque media handles between the negotiation
primitive, the media collaborators and the signaling transport.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Literal, Optional, Protocol, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

DescriptionType = Literal["offer", "answer"]


class SessionDescription(BaseModel):
    """Serialisable offer/answer container."""

    type: DescriptionType
    sdp: str

    model_config = ConfigDict(frozen=True)


class ICECandidate(BaseModel):
    """Serialisable ICE candidate container (``RTCIceCandidateInit`` shape)."""

    candidate: str
    sdp_mid: Optional[str] = Field(default=None, alias="sdpMid")
    sdp_mline_index: Optional[int] = Field(default=None, alias="sdpMLineIndex")

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @field_validator("candidate", mode="before")
    @classmethod
    def _strip_candidate(cls, value: object) -> str:
        return str(value or "").strip()


# Handles are opaque to the core: whatever the media collaborator returns.
MediaHandle = Any


@dataclass(frozen=True, slots=True)
class LocalCandidate:
    """The primitive discovered a local network path."""

    candidate: ICECandidate


@dataclass(frozen=True, slots=True)
class RemoteTrack:
    """The primitive started receiving remote media."""

    handle: MediaHandle


@dataclass(frozen=True, slots=True)
class ConnectionStateChanged:
    """The primitive's own connectivity state moved (``connected``, ``failed``...)."""

    state: str


PrimitiveEvent = Union[LocalCandidate, RemoteTrack, ConnectionStateChanged]
PrimitiveObserver = Callable[[PrimitiveEvent], None]


class NegotiationPrimitive(Protocol):
    """Standard offer/answer/candidate mechanism, one instance per session."""

    async def create_offer(self) -> SessionDescription: ...

    async def create_answer(self) -> SessionDescription: ...

    async def set_local_description(
        self, description: SessionDescription
    ) -> Optional[SessionDescription]:
        """
        Apply ``description`` locally.

        May return the effective local description (for instance with gathered
        candidates embedded), which is then advertised instead of the input.
        """

    async def set_remote_description(self, description: SessionDescription) -> None:
        """Raise :class:`peerlink.errors.InvalidDescription` when unusable."""

    async def add_ice_candidate(self, candidate: ICECandidate) -> None:
        """Raise :class:`peerlink.errors.InvalidCandidate` when unusable."""

    def add_local_media(self, handle: MediaHandle) -> None: ...

    def subscribe(self, callback: PrimitiveObserver) -> None: ...

    async def close(self) -> None: ...


class MediaSource(Protocol):
    """Local capture collaborator."""

    async def acquire_local_media(self) -> MediaHandle:
        """Raise :class:`peerlink.errors.MediaAccessDenied` when refused."""

    async def release_local_media(self, handle: MediaHandle) -> None: ...


class MediaRenderer(Protocol):
    """Presentation collaborator. ``None`` clears the remote view."""

    def render_local(self, handle: MediaHandle) -> None: ...

    def render_remote(self, handle: Optional[MediaHandle]) -> None: ...


PrimitiveFactory = Callable[[], NegotiationPrimitive]


__all__ = [
    "ConnectionStateChanged",
    "DescriptionType",
    "ICECandidate",
    "LocalCandidate",
    "MediaHandle",
    "MediaRenderer",
    "MediaSource",
    "NegotiationPrimitive",
    "PrimitiveEvent",
    "PrimitiveFactory",
    "PrimitiveObserver",
    "RemoteTrack",
    "SessionDescription",
]
