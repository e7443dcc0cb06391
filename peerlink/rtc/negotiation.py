"""
Offer/answer state machine for one two-party session.

The machine decides which signaling message to send next and drives the
negotiation primitive accordingly. Every transition that awaits the primitive
or the transport re-checks for closure once it resumes, so a result arriving
after :meth:`NegotiationStateMachine.close` is dropped instead of reviving the
session.
"""

from __future__ import annotations

import contextlib
import logging
from enum import Enum
from typing import Awaitable, Callable, Dict, Iterator, Optional

from ..errors import InvalidDescription, NegotiationFailed, StaleSignal
from ..signaling.messages import (
    AnswerCall,
    CallUser,
    IceCandidateOut,
    JoinRoom,
    OutboundMessage,
)
from .candidates import CandidateBuffer
from .webrtc import ICECandidate, NegotiationPrimitive, SessionDescription

LOG = logging.getLogger(__name__)

Emitter = Callable[[OutboundMessage], Awaitable[None]]


class NegotiationState(str, Enum):
    IDLE = "idle"
    JOINING = "joining"
    AWAITING_OFFER = "awaiting-offer"
    OFFERING = "offering"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    FAILED = "failed"
    CLOSED = "closed"


TERMINAL_STATES = frozenset({NegotiationState.IDLE, NegotiationState.CLOSED})
# States in which an unrecoverable primitive error moves the session to FAILED.
FAILABLE_STATES = frozenset({NegotiationState.NEGOTIATING, NegotiationState.CONNECTED})


class NegotiationStateMachine:
    """
    Per-session negotiation driver.

    ``emit`` sends one outbound signaling message; it is awaited so that the
    transport's per-sender ordering is preserved.
    """

    def __init__(self, room_id: str, primitive: NegotiationPrimitive, *, emit: Emitter) -> None:
        self.room_id = room_id
        self._primitive = primitive
        self._emit = emit
        self.buffer = CandidateBuffer(primitive)
        self.counterpart: Optional[str] = None
        self._state = NegotiationState.IDLE
        self._observer_counter = 0
        self._observers: Dict[int, Callable[[NegotiationState], None]] = {}
        self.logger = LOG.getChild(room_id[:16] or "room")

    # ------------------------------------------------------------------ helpers

    @property
    def state(self) -> NegotiationState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._state is NegotiationState.CLOSED

    def _transition(self, state: NegotiationState) -> None:
        if state is self._state:
            return
        self.logger.debug("%s -> %s", self._state.value, state.value)
        self._state = state
        for token, callback in list(self._observers.items()):
            try:
                callback(state)
            except Exception:  # pragma: no cover - observer failures should not break negotiation
                self.logger.exception("State observer %s failed.", token)

    def _require(self, *states: NegotiationState, signal: str) -> None:
        if self._state not in states:
            raise StaleSignal(f"{signal} ignored in state {self._state.value}")

    def _check_sender(self, sender: str, signal: str) -> None:
        if self.counterpart is not None and sender != self.counterpart:
            raise StaleSignal(f"{signal} from {sender!r} does not match counterpart {self.counterpart!r}")

    def _discarded(self, step: str) -> bool:
        if self.closed:
            self.logger.info("Discarding %s result; session already closed.", step)
            return True
        return False

    @contextlib.contextmanager
    def _guard(self, step: str) -> Iterator[None]:
        """Turn an unexpected primitive or transport error into ``FAILED``."""

        try:
            yield
        except (StaleSignal, NegotiationFailed):
            raise
        except Exception as exc:
            if self.closed:
                self.logger.info("Ignoring %s failure after close: %s", step, exc)
                return
            self._transition(NegotiationState.FAILED)
            raise NegotiationFailed(f"{step} failed: {exc}") from exc

    async def _set_remote(self, description: SessionDescription) -> bool:
        try:
            await self._primitive.set_remote_description(description)
        except InvalidDescription as exc:
            if self.closed:
                return False
            self._transition(NegotiationState.FAILED)
            raise NegotiationFailed(f"remote {description.type} rejected: {exc}") from exc
        return not self._discarded("set-remote-description")

    # ------------------------------------------------------------------ observers

    def subscribe(self, callback: Callable[[NegotiationState], None]) -> int:
        if not callable(callback):
            raise TypeError("callback must be callable")
        self._observer_counter += 1
        token = self._observer_counter
        self._observers[token] = callback
        return token

    def unsubscribe(self, token: int) -> None:
        self._observers.pop(token, None)

    # ------------------------------------------------------------------ transitions

    def begin_join(self) -> None:
        self._require(NegotiationState.IDLE, signal="join")
        self._transition(NegotiationState.JOINING)

    async def media_ready(self) -> None:
        """Local media acquired: wait for a peer and announce presence."""

        self._require(NegotiationState.JOINING, signal="media-ready")
        self._transition(NegotiationState.AWAITING_OFFER)
        await self._emit(JoinRoom(room_id=self.room_id))

    async def on_peer_joined(self, peer_id: str) -> None:
        """A second participant arrived: this side initiates."""

        self._require(NegotiationState.AWAITING_OFFER, signal="user-joined")
        self.counterpart = peer_id
        self._transition(NegotiationState.OFFERING)

        with self._guard("call-user"):
            offer = await self._primitive.create_offer()
            if self._discarded("create-offer"):
                return
            applied = await self._primitive.set_local_description(offer)
            if self._discarded("set-local-description"):
                return
            await self._emit(CallUser(user_to_call=peer_id, offer=applied or offer))

    async def on_incoming_call(self, sender: str, offer: SessionDescription) -> None:
        """
        The other participant was already present and sent an offer.

        No counterpart is known yet in ``AWAITING_OFFER``; the caller becomes
        the counterpart and candidates buffered from anyone else are dropped
        on flush.
        """

        if self._state is NegotiationState.OFFERING:
            # Glare: whoever was announced to first offers; the local offer wins.
            raise StaleSignal(f"offer from {sender!r} ignored; local offer is canonical")
        self._require(NegotiationState.AWAITING_OFFER, signal="incoming-call")
        self.counterpart = sender
        self._transition(NegotiationState.NEGOTIATING)

        with self._guard("answer-call"):
            if not await self._set_remote(offer):
                return
            answer = await self._primitive.create_answer()
            if self._discarded("create-answer"):
                return
            applied = await self._primitive.set_local_description(answer)
            if self._discarded("set-local-description"):
                return
            await self._emit(AnswerCall(to=sender, answer=applied or answer))
            if self._discarded("answer-call"):
                return
            await self.buffer.flush(self.counterpart)

    async def on_call_accepted(self, sender: str, answer: SessionDescription) -> None:
        self._require(NegotiationState.OFFERING, signal="call-accepted")
        self._check_sender(sender, "call-accepted")
        self._transition(NegotiationState.NEGOTIATING)

        with self._guard("call-accepted"):
            if not await self._set_remote(answer):
                return
            await self.buffer.flush(self.counterpart)

    async def on_remote_candidate(self, sender: str, candidate: ICECandidate) -> None:
        if self._state in TERMINAL_STATES:
            raise StaleSignal(f"ice-candidate ignored in state {self._state.value}")
        self._check_sender(sender, "ice-candidate")
        await self.buffer.offer(candidate, sender)

    async def on_local_candidate(self, candidate: ICECandidate) -> None:
        if self._state in TERMINAL_STATES:
            raise StaleSignal("local candidate after close")
        # Before the counterpart is known the relay forwards to the other room member.
        await self._emit(IceCandidateOut(to=self.counterpart or self.room_id, candidate=candidate))

    def on_connection_state(self, state: str) -> bool:
        """
        Observe the primitive's connectivity state.

        Returns ``True`` when the session has failed and must be torn down.
        """

        if state == "connected" and self._state is NegotiationState.NEGOTIATING:
            self._transition(NegotiationState.CONNECTED)
        elif state == "failed" and self._state in FAILABLE_STATES:
            self._transition(NegotiationState.FAILED)
            return True
        return False

    def close(self) -> bool:
        """
        Move to ``CLOSED`` and drop buffered candidates.

        Returns ``False`` when the machine was already closed.
        """

        if self.closed:
            return False
        self.buffer.clear()
        self._transition(NegotiationState.CLOSED)
        return True


__all__ = [
    "Emitter",
    "NegotiationState",
    "NegotiationStateMachine",
]
