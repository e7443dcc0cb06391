"""
Pydantic schemas for the relay's REST surface.
"""

from __future__ import annotations

from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class HealthModel(BaseModel):
    status: str = "ok"
    profile: str = "default"
    peers: int = 0


class RoomModel(BaseModel):
    room_id: str = Field(alias="roomId")
    members: int = 0
    model_config = ConfigDict(populate_by_name=True)


class RoomListing(BaseModel):
    rooms: List[RoomModel] = Field(default_factory=list)


class IceServerModel(BaseModel):
    urls: Union[str, List[str]]
    username: Optional[str] = None
    credential: Optional[str] = None


class IceServersModel(BaseModel):
    profile: str
    ice_servers: List[IceServerModel] = Field(default_factory=list, alias="iceServers")
    model_config = ConfigDict(populate_by_name=True)
