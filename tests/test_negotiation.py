"""Tests covering the offer/answer state machine."""

from __future__ import annotations

import asyncio
from typing import List

import pytest

from peerlink.errors import NegotiationFailed, StaleSignal
from peerlink.rtc.negotiation import NegotiationState, NegotiationStateMachine
from peerlink.rtc.webrtc import SessionDescription
from peerlink.signaling.messages import AnswerCall, CallUser, IceCandidateOut, JoinRoom
from tests.fakes import FakePrimitive, candidate


def make_machine(primitive: FakePrimitive, room_id: str = "r1"):
    emitted: List[object] = []

    async def emit(message) -> None:
        emitted.append(message)

    machine = NegotiationStateMachine(room_id, primitive, emit=emit)
    return machine, emitted


async def ready(machine: NegotiationStateMachine) -> None:
    machine.begin_join()
    await machine.media_ready()


@pytest.mark.asyncio
async def test_join_announces_presence(primitive: FakePrimitive) -> None:
    machine, emitted = make_machine(primitive)
    history = [machine.state]
    machine.subscribe(history.append)

    await ready(machine)

    assert machine.state is NegotiationState.AWAITING_OFFER
    assert history == [
        NegotiationState.IDLE,
        NegotiationState.JOINING,
        NegotiationState.AWAITING_OFFER,
    ]
    assert emitted == [JoinRoom(room_id="r1")]


@pytest.mark.asyncio
async def test_peer_joined_makes_this_side_the_offerer(primitive: FakePrimitive) -> None:
    machine, emitted = make_machine(primitive)
    await ready(machine)

    await machine.on_peer_joined("peer-b")

    assert machine.state is NegotiationState.OFFERING
    assert machine.counterpart == "peer-b"
    assert primitive.calls == ["create_offer", "set_local:offer"]
    call = emitted[-1]
    assert isinstance(call, CallUser)
    assert call.user_to_call == "peer-b"
    assert call.offer.sdp == "offer-from-pc"


@pytest.mark.asyncio
async def test_incoming_offer_is_answered_then_candidates_flushed(primitive: FakePrimitive) -> None:
    machine, emitted = make_machine(primitive)
    await ready(machine)
    await machine.on_remote_candidate("peer-a", candidate("early-1"))
    await machine.on_remote_candidate("peer-a", candidate("early-2"))

    offer = SessionDescription(type="offer", sdp="offer-from-a")
    await machine.on_incoming_call("peer-a", offer)

    assert machine.state is NegotiationState.NEGOTIATING
    assert primitive.calls == ["set_remote:offer", "create_answer", "set_local:answer"]
    answer = emitted[-1]
    assert isinstance(answer, AnswerCall)
    assert answer.to == "peer-a"
    assert primitive.applied == ["early-1", "early-2"]
    assert len(machine.buffer) == 0


@pytest.mark.asyncio
async def test_answer_sets_remote_and_flushes(primitive: FakePrimitive) -> None:
    machine, _ = make_machine(primitive)
    await ready(machine)
    await machine.on_peer_joined("peer-b")
    await machine.on_remote_candidate("peer-b", candidate("c1"))
    assert primitive.applied == []

    await machine.on_call_accepted("peer-b", SessionDescription(type="answer", sdp="answer-from-b"))

    assert machine.state is NegotiationState.NEGOTIATING
    assert primitive.remote.sdp == "answer-from-b"
    assert primitive.applied == ["c1"]


@pytest.mark.asyncio
async def test_glare_offer_is_ignored_while_offering(primitive: FakePrimitive) -> None:
    machine, emitted = make_machine(primitive)
    await ready(machine)
    await machine.on_peer_joined("peer-b")
    sent_before = list(emitted)

    with pytest.raises(StaleSignal):
        await machine.on_incoming_call("peer-b", SessionDescription(type="offer", sdp="offer-from-b"))

    assert machine.state is NegotiationState.OFFERING
    assert primitive.remote is None
    assert emitted == sent_before


@pytest.mark.asyncio
async def test_answer_from_wrong_peer_is_stale(primitive: FakePrimitive) -> None:
    machine, _ = make_machine(primitive)
    await ready(machine)
    await machine.on_peer_joined("peer-b")

    with pytest.raises(StaleSignal):
        await machine.on_call_accepted("peer-x", SessionDescription(type="answer", sdp="x"))

    assert machine.state is NegotiationState.OFFERING


@pytest.mark.asyncio
async def test_answer_without_offer_is_stale(primitive: FakePrimitive) -> None:
    machine, _ = make_machine(primitive)
    await ready(machine)

    with pytest.raises(StaleSignal):
        await machine.on_call_accepted("peer-b", SessionDescription(type="answer", sdp="x"))


@pytest.mark.asyncio
async def test_invalid_remote_description_fails_negotiation(primitive: FakePrimitive) -> None:
    machine, _ = make_machine(primitive)
    await ready(machine)
    await machine.on_peer_joined("peer-b")

    with pytest.raises(NegotiationFailed):
        await machine.on_call_accepted("peer-b", SessionDescription(type="answer", sdp="bogus"))

    assert machine.state is NegotiationState.FAILED


@pytest.mark.asyncio
async def test_connection_state_drives_connected_and_failed(primitive: FakePrimitive) -> None:
    machine, _ = make_machine(primitive)
    await ready(machine)

    assert machine.on_connection_state("connected") is False
    assert machine.state is NegotiationState.AWAITING_OFFER

    await machine.on_incoming_call("peer-a", SessionDescription(type="offer", sdp="o"))
    assert machine.on_connection_state("connected") is False
    assert machine.state is NegotiationState.CONNECTED

    assert machine.on_connection_state("failed") is True
    assert machine.state is NegotiationState.FAILED


@pytest.mark.asyncio
async def test_local_candidates_go_to_counterpart_or_room(primitive: FakePrimitive) -> None:
    machine, emitted = make_machine(primitive)
    await ready(machine)

    await machine.on_local_candidate(candidate("mine-1"))
    await machine.on_peer_joined("peer-b")
    await machine.on_local_candidate(candidate("mine-2"))

    routed = [message for message in emitted if isinstance(message, IceCandidateOut)]
    assert [message.to for message in routed] == ["r1", "peer-b"]


@pytest.mark.asyncio
async def test_close_is_idempotent_and_rejects_candidates(primitive: FakePrimitive) -> None:
    machine, _ = make_machine(primitive)
    await ready(machine)
    await machine.on_remote_candidate("peer-a", candidate("c1"))

    assert machine.close() is True
    assert machine.close() is False
    assert machine.state is NegotiationState.CLOSED
    assert len(machine.buffer) == 0

    with pytest.raises(StaleSignal):
        await machine.on_remote_candidate("peer-a", candidate("c2"))


@pytest.mark.asyncio
async def test_offer_created_after_close_is_discarded(primitive: FakePrimitive) -> None:
    machine, emitted = make_machine(primitive)
    await ready(machine)
    primitive.offer_gate = asyncio.Event()

    pending = asyncio.create_task(machine.on_peer_joined("peer-b"))
    await asyncio.sleep(0)
    machine.close()
    primitive.offer_gate.set()
    await pending

    assert machine.state is NegotiationState.CLOSED
    assert primitive.local is None
    assert not any(isinstance(message, CallUser) for message in emitted)


@pytest.mark.asyncio
async def test_answer_creation_failure_fails_negotiation(primitive: FakePrimitive) -> None:
    machine, emitted = make_machine(primitive)
    await ready(machine)
    primitive.fail_on.add("create_answer")

    with pytest.raises(NegotiationFailed):
        await machine.on_incoming_call("peer-a", SessionDescription(type="offer", sdp="offer-from-a"))

    assert machine.state is NegotiationState.FAILED
    assert not any(isinstance(message, AnswerCall) for message in emitted)


@pytest.mark.asyncio
async def test_send_failure_while_offering_fails_negotiation(primitive: FakePrimitive) -> None:
    async def broken_emit(message) -> None:
        if isinstance(message, CallUser):
            raise ConnectionError("relay gone")

    machine = NegotiationStateMachine("r1", primitive, emit=broken_emit)
    await ready(machine)

    with pytest.raises(NegotiationFailed):
        await machine.on_peer_joined("peer-b")

    assert machine.state is NegotiationState.FAILED


@pytest.mark.asyncio
async def test_failure_after_close_is_not_reported(primitive: FakePrimitive) -> None:
    machine, _ = make_machine(primitive)
    await ready(machine)
    gate = asyncio.Event()
    primitive.offer_gate = gate
    primitive.fail_on.add("create_offer")

    pending = asyncio.create_task(machine.on_peer_joined("peer-b"))
    await asyncio.sleep(0)
    machine.close()
    gate.set()
    await pending

    assert machine.state is NegotiationState.CLOSED


@pytest.mark.asyncio
async def test_candidates_from_other_peers_are_dropped_once_caller_known(primitive: FakePrimitive) -> None:
    machine, _ = make_machine(primitive)
    await ready(machine)
    await machine.on_remote_candidate("peer-a", candidate("from-a"))
    await machine.on_remote_candidate("peer-x", candidate("from-x"))

    await machine.on_incoming_call("peer-a", SessionDescription(type="offer", sdp="offer-from-a"))

    assert primitive.applied == ["from-a"]
    with pytest.raises(StaleSignal):
        await machine.on_remote_candidate("peer-x", candidate("late-x"))
