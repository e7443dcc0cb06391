"""
Room bookkeeping and message forwarding for the signaling relay.

The relay never looks inside descriptions or candidates. It tracks which peer
sits in which room, tells existing members when someone new arrives, and
forwards addressed messages with the sender stamped as ``from``. Addressed
messages only ever reach members of the sender's own room.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Awaitable, Callable, Dict, List, Optional, assert_never

from .messages import (
    AnswerCall,
    CallAccepted,
    CallUser,
    IceCandidateIn,
    IceCandidateOut,
    InboundMessage,
    IncomingCall,
    JoinRoom,
    OutboundMessage,
    UserJoined,
)

LOG = logging.getLogger(__name__)

Deliver = Callable[[InboundMessage], Awaitable[None]]


class Relay:
    """
    Transport-agnostic relay core shared by the WebSocket server and the
    in-process memory transport.
    """

    def __init__(self, *, max_room_size: int = 2) -> None:
        self.max_room_size = max(2, int(max_room_size))
        self._peers: Dict[str, Deliver] = {}
        self._rooms: Dict[str, List[str]] = defaultdict(list)
        self._peer_rooms: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------ membership

    async def register(self, peer_id: str, deliver: Deliver) -> None:
        async with self._lock:
            self._peers[peer_id] = deliver
        LOG.info("Peer %s connected", peer_id)

    async def unregister(self, peer_id: str) -> None:
        async with self._lock:
            self._peers.pop(peer_id, None)
            self._leave_locked(peer_id)
        LOG.info("Peer %s disconnected", peer_id)

    def _leave_locked(self, peer_id: str) -> None:
        room_id = self._peer_rooms.pop(peer_id, None)
        if room_id is None:
            return
        members = self._rooms.get(room_id)
        if members and peer_id in members:
            members.remove(peer_id)
            if not members:
                self._rooms.pop(room_id, None)

    def rooms(self) -> Dict[str, int]:
        return {room_id: len(members) for room_id, members in self._rooms.items()}

    def room_of(self, peer_id: str) -> Optional[str]:
        return self._peer_rooms.get(peer_id)

    # ------------------------------------------------------------------ forwarding

    async def handle(self, sender: str, message: OutboundMessage) -> None:
        if isinstance(message, JoinRoom):
            await self._join(sender, message.room_id)
        elif isinstance(message, CallUser):
            await self._forward(
                sender,
                self._resolve_targets(sender, message.user_to_call),
                IncomingCall(sender=sender, offer=message.offer),
            )
        elif isinstance(message, AnswerCall):
            await self._forward(
                sender,
                self._resolve_targets(sender, message.to),
                CallAccepted(sender=sender, answer=message.answer),
            )
        elif isinstance(message, IceCandidateOut):
            await self._forward(
                sender,
                self._resolve_targets(sender, message.to),
                IceCandidateIn(sender=sender, candidate=message.candidate),
            )
        else:
            assert_never(message)

    async def _join(self, sender: str, room_id: str) -> None:
        async with self._lock:
            if self._peer_rooms.get(sender) == room_id:
                LOG.debug("Peer %s already in room %s", sender, room_id)
                return
            members = self._rooms.get(room_id, [])
            if len(members) >= self.max_room_size:
                LOG.warning("Room %s is full; rejecting peer %s", room_id, sender)
                return
            self._leave_locked(sender)
            existing = list(members)
            self._rooms[room_id].append(sender)
            self._peer_rooms[sender] = room_id
        LOG.info("Peer %s joined room %s (%d member(s))", sender, room_id, len(existing) + 1)
        await self._forward(sender, existing, UserJoined(peer_id=sender))

    def _resolve_targets(self, sender: str, to: str) -> List[str]:
        room_id = self._peer_rooms.get(sender)
        if room_id is None:
            LOG.warning("Dropping message from %s to %s; sender has not joined a room", sender, to)
            return []
        members = self._rooms.get(room_id, [])
        if to == room_id:
            # Candidates addressed to a room go to every other member of it.
            return [peer for peer in members if peer != sender]
        if to != sender and to in members:
            return [to]
        LOG.warning("Dropping message from %s; %s is not in room %s", sender, to, room_id)
        return []

    async def _forward(self, sender: str, targets: List[str], message: InboundMessage) -> None:
        for target in targets:
            deliver = self._peers.get(target)
            if deliver is None:
                LOG.warning("Dropping %s from %s; unknown target %s", message.type, sender, target)
                continue
            try:
                await deliver(message)
            except Exception:  # pragma: no cover - one broken peer must not stall the relay
                LOG.exception("Failed to deliver %s to %s", message.type, target)


__all__ = ["Deliver", "Relay"]
