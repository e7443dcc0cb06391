"""
Session manager: owns zero or one active call session per client.

All state transitions for a session are serialised behind a single
``asyncio.Lock``. :meth:`SessionManager.end` bypasses that lock:
it closes the session synchronously so that any in-flight step (media
acquisition, offer creation, a transport send) finds the session closed when
it resumes and discards its result.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Set, assert_never

from .errors import (
    AlreadyInSession,
    InvalidInput,
    JoinCancelled,
    MediaAccessDenied,
    NegotiationFailed,
    SessionError,
    StaleSignal,
)
from .rtc.negotiation import NegotiationState, NegotiationStateMachine
from .rtc.webrtc import (
    ConnectionStateChanged,
    LocalCandidate,
    MediaHandle,
    MediaRenderer,
    MediaSource,
    NegotiationPrimitive,
    PrimitiveEvent,
    PrimitiveFactory,
    RemoteTrack,
)
from .signaling.messages import (
    CallAccepted,
    IceCandidateIn,
    InboundMessage,
    IncomingCall,
    UserJoined,
)
from .signaling.router import SignalingRouter
from .signaling.transport import SignalingTransport

LOG = logging.getLogger(__name__)

StateObserver = Callable[[NegotiationState], None]


@dataclass(eq=False)
class Session:
    """
    One client's relationship to one room.

    The primitive and the local media handle are owned exclusively by the
    session; both are released exactly once by :meth:`SessionManager.end`.
    """

    room_id: str
    primitive: NegotiationPrimitive
    machine: NegotiationStateMachine
    local_media: Optional[MediaHandle] = None
    remote_media: Optional[MediaHandle] = None
    released: bool = field(default=False, repr=False)

    @property
    def state(self) -> NegotiationState:
        return self.machine.state

    @property
    def counterpart(self) -> Optional[str]:
        return self.machine.counterpart


class SessionManager:
    """
    Bind a negotiation state machine to a room and route signaling into it.

    Parameters
    ----------
    transport:
        Signaling channel to the relay. The manager owns its lifecycle through
        :meth:`connect` / :meth:`disconnect`.
    media:
        Local capture collaborator.
    renderer:
        Presentation collaborator for local and remote media.
    primitive_factory:
        Returns a fresh negotiation primitive; called once per session.
    """

    def __init__(
        self,
        transport: SignalingTransport,
        media: MediaSource,
        renderer: MediaRenderer,
        primitive_factory: PrimitiveFactory,
    ) -> None:
        self.transport = transport
        self.media = media
        self.renderer = renderer
        self.primitive_factory = primitive_factory
        self.router = SignalingRouter(self, transport)

        self._session: Optional[Session] = None
        self._lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()
        self._observer_counter = 0
        self._observers: Dict[int, StateObserver] = {}

    # ------------------------------------------------------------------ properties

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def state(self) -> NegotiationState:
        session = self._session
        if session is None:
            return NegotiationState.IDLE
        return session.state

    # ------------------------------------------------------------------ observers

    def subscribe(self, callback: StateObserver) -> int:
        if not callable(callback):
            raise TypeError("callback must be callable")
        self._observer_counter += 1
        token = self._observer_counter
        self._observers[token] = callback
        return token

    def unsubscribe(self, token: int) -> None:
        self._observers.pop(token, None)

    def _notify(self, state: NegotiationState) -> None:
        for token, callback in list(self._observers.items()):
            try:
                callback(state)
            except Exception:  # pragma: no cover - observer failures should not kill the session
                LOG.exception("Session observer %s failed.", token)

    # ------------------------------------------------------------------ transport lifecycle

    async def connect(self) -> None:
        self.transport.set_handler(self.router.dispatch)
        await self.transport.connect()

    async def disconnect(self) -> None:
        await self.end()
        await self.wait_idle()
        await self.transport.disconnect()

    # ------------------------------------------------------------------ public API

    async def join(self, room_id: str) -> Session:
        room = str(room_id or "").strip()
        if not room:
            raise InvalidInput("Enter a room ID to join.")

        async with self._lock:
            if self._session is not None:
                raise AlreadyInSession(f"already in room {self._session.room_id!r}")

            primitive = self.primitive_factory()
            machine = NegotiationStateMachine(room, primitive, emit=self.router.emit)
            machine.subscribe(self._notify)
            session = Session(room_id=room, primitive=primitive, machine=machine)
            primitive.subscribe(lambda event: self._schedule_primitive_event(session, event))
            self._session = session
            machine.begin_join()

            try:
                handle = await self.media.acquire_local_media()
            except MediaAccessDenied:
                LOG.warning("Could not access camera/microphone for room %s.", room)
                await self._teardown(session)
                raise

            if machine.closed:
                # end() ran while the camera was opening; do not resurrect.
                with contextlib.suppress(Exception):
                    await self.media.release_local_media(handle)
                raise JoinCancelled(f"session for room {room!r} ended while joining")

            session.local_media = handle
            try:
                primitive.add_local_media(handle)
                self._render_local(handle)
                await machine.media_ready()
            except Exception:
                await self._teardown(session)
                raise
            LOG.info("Joined room %s; waiting for a peer.", room)
            return session

    async def handle_signal(self, message: InboundMessage) -> None:
        """
        Route one inbound signaling message into the active session.

        Stale messages are logged and dropped. Any other failure tears the
        session down and surfaces as :class:`~peerlink.errors.NegotiationFailed`.
        """

        async with self._lock:
            session = self._session
            if session is None or session.machine.closed:
                LOG.info("Discarding %s; no active session.", message.type)
                return
            machine = session.machine
            try:
                if isinstance(message, UserJoined):
                    await machine.on_peer_joined(message.peer_id)
                elif isinstance(message, IncomingCall):
                    await machine.on_incoming_call(message.sender, message.offer)
                elif isinstance(message, CallAccepted):
                    await machine.on_call_accepted(message.sender, message.answer)
                elif isinstance(message, IceCandidateIn):
                    await machine.on_remote_candidate(message.sender, message.candidate)
                else:
                    assert_never(message)
            except StaleSignal as exc:
                LOG.info("Discarding stale signal: %s", exc)
            except NegotiationFailed:
                LOG.warning("Negotiation failed in room %s; tearing down.", session.room_id)
                await self._teardown(session)
                raise
            except Exception as exc:
                LOG.exception("Failed to handle %s in room %s; tearing down.", message.type, session.room_id)
                await self._teardown(session)
                raise NegotiationFailed(f"{message.type} failed: {exc}") from exc

    async def end(self) -> None:
        """Tear down the active session. Never raises; safe to call repeatedly."""

        session = self._session
        if session is None:
            return
        await self._teardown(session)

    # ------------------------------------------------------------------ internals

    def _render_local(self, handle: MediaHandle) -> None:
        try:
            self.renderer.render_local(handle)
        except Exception:  # pragma: no cover - presentation is best-effort
            LOG.exception("Failed to render local media.")

    async def _teardown(self, session: Session) -> None:
        session.machine.close()
        if self._session is session:
            self._session = None
        if session.released:
            return
        session.released = True

        if session.local_media is not None:
            try:
                await self.media.release_local_media(session.local_media)
            except Exception:
                LOG.exception("Failed to release local media.")
            session.local_media = None

        try:
            await session.primitive.close()
        except Exception:
            LOG.exception("Failed to close negotiation primitive.")

        if session.remote_media is not None:
            session.remote_media = None
            try:
                self.renderer.render_remote(None)
            except Exception:
                LOG.exception("Failed to clear remote media.")

        session.machine.buffer.clear()
        LOG.info("Session for room %s closed.", session.room_id)
        self._notify(NegotiationState.IDLE)

    def _schedule_primitive_event(self, session: Session, event: PrimitiveEvent) -> None:
        if session.machine.closed:
            return
        try:
            task = asyncio.get_running_loop().create_task(self._on_primitive_event(session, event))
        except RuntimeError:
            LOG.debug("No running loop for primitive event %r; dropping.", event)
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _on_primitive_event(self, session: Session, event: PrimitiveEvent) -> None:
        async with self._lock:
            if self._session is not session or session.machine.closed:
                LOG.debug("Ignoring primitive event for a closed session: %r", event)
                return
            machine = session.machine
            try:
                if isinstance(event, LocalCandidate):
                    await machine.on_local_candidate(event.candidate)
                elif isinstance(event, RemoteTrack):
                    session.remote_media = event.handle
                    self.renderer.render_remote(event.handle)
                elif isinstance(event, ConnectionStateChanged):
                    if machine.on_connection_state(event.state):
                        LOG.warning("Connection failed in room %s; tearing down.", session.room_id)
                        await self._teardown(session)
            except SessionError as exc:
                LOG.info("Dropping primitive event %r: %s", event, exc)
            except Exception:
                LOG.exception("Failed to handle primitive event %r.", event)

    async def wait_idle(self) -> None:
        """Wait for scheduled primitive events to finish (used on shutdown)."""

        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


__all__ = ["Session", "SessionManager"]
