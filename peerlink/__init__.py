"""
peerlink: two-party WebRTC call signaling.

The package hosts the negotiation core (candidate buffering and the
offer/answer state machine), the session manager that binds it to a room, the
signaling protocol with its transports, and a FastAPI relay server.
"""

from __future__ import annotations

from .config import PeerlinkConfig, load_config
from .errors import SessionError
from .rtc.negotiation import NegotiationState
from .session import Session, SessionManager

__version__ = "0.1.0"

__all__ = [
    "NegotiationState",
    "PeerlinkConfig",
    "Session",
    "SessionError",
    "SessionManager",
    "load_config",
]
