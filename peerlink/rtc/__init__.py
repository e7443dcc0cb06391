"""
WebRTC negotiation core: candidate buffering and the offer/answer state machine.
"""

from __future__ import annotations

from .candidates import CandidateBuffer
from .negotiation import NegotiationState, NegotiationStateMachine
from .webrtc import ICECandidate, NegotiationPrimitive, SessionDescription

__all__ = [
    "CandidateBuffer",
    "ICECandidate",
    "NegotiationPrimitive",
    "NegotiationState",
    "NegotiationStateMachine",
    "SessionDescription",
]
