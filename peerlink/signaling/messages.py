"""
Pydantic models for the signaling wire protocol.

Every frame is a JSON object with a ``type`` discriminator and camelCase
fields. Messages a client sends to the relay and messages the relay delivers
to a client are two closed unions; the relay stamps the sender as ``from``
when forwarding.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Dict, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from ..rtc.webrtc import ICECandidate, SessionDescription


class SignalMessage(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def to_json(self) -> str:
        return json.dumps(self.to_wire(), separators=(",", ":"))


# ---------------------------------------------------------------- client -> relay


class JoinRoom(SignalMessage):
    type: Literal["join-room"] = "join-room"
    room_id: str = Field(alias="roomId")

    @field_validator("room_id", mode="before")
    @classmethod
    def _normalise_room(cls, value: object) -> str:
        result = str(value or "").strip()
        if not result:
            raise ValueError("roomId is required")
        return result


class CallUser(SignalMessage):
    type: Literal["call-user"] = "call-user"
    user_to_call: str = Field(alias="userToCall")
    offer: SessionDescription


class AnswerCall(SignalMessage):
    type: Literal["answer-call"] = "answer-call"
    to: str
    answer: SessionDescription


class IceCandidateOut(SignalMessage):
    type: Literal["ice-candidate"] = "ice-candidate"
    to: str
    candidate: ICECandidate


# ---------------------------------------------------------------- relay -> client


class UserJoined(SignalMessage):
    type: Literal["user-joined"] = "user-joined"
    peer_id: str = Field(alias="peerId")


class IncomingCall(SignalMessage):
    type: Literal["incoming-call"] = "incoming-call"
    sender: str = Field(alias="from")
    offer: SessionDescription


class CallAccepted(SignalMessage):
    type: Literal["call-accepted"] = "call-accepted"
    sender: str = Field(alias="from")
    answer: SessionDescription


class IceCandidateIn(SignalMessage):
    type: Literal["ice-candidate"] = "ice-candidate"
    sender: str = Field(alias="from")
    candidate: ICECandidate


OutboundMessage = Annotated[
    Union[JoinRoom, CallUser, AnswerCall, IceCandidateOut],
    Field(discriminator="type"),
]
InboundMessage = Annotated[
    Union[UserJoined, IncomingCall, CallAccepted, IceCandidateIn],
    Field(discriminator="type"),
]

_OUTBOUND = TypeAdapter(OutboundMessage)
_INBOUND = TypeAdapter(InboundMessage)


def _load(raw: Union[str, bytes, Dict[str, Any]]) -> Any:
    if isinstance(raw, (str, bytes)):
        return json.loads(raw)
    return raw


def parse_outbound(raw: Union[str, bytes, Dict[str, Any]]) -> OutboundMessage:
    """
    Validate a frame sent by a client. Raises ``pydantic.ValidationError`` or
    ``ValueError`` for malformed input.
    """

    return _OUTBOUND.validate_python(_load(raw))


def parse_inbound(raw: Union[str, bytes, Dict[str, Any]]) -> InboundMessage:
    """Validate a frame delivered by the relay."""

    return _INBOUND.validate_python(_load(raw))


__all__ = [
    "AnswerCall",
    "CallAccepted",
    "CallUser",
    "IceCandidateIn",
    "IceCandidateOut",
    "InboundMessage",
    "IncomingCall",
    "JoinRoom",
    "OutboundMessage",
    "SignalMessage",
    "UserJoined",
    "parse_inbound",
    "parse_outbound",
]
