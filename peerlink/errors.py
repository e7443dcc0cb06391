"""
Error taxonomy shared by the negotiation core and its collaborators.
"""

from __future__ import annotations


class SessionError(RuntimeError):
    """Base class for session related errors."""


class InvalidInput(SessionError):
    """Raised when a room identifier is empty or otherwise unusable."""


class MediaAccessDenied(SessionError):
    """Raised when the platform refuses local camera/microphone access."""


class AlreadyInSession(SessionError):
    """Raised when joining while another session is still active."""


class JoinCancelled(SessionError):
    """Raised when the session was ended while ``join`` was still in flight."""


class InvalidDescription(SessionError):
    """Raised by the negotiation primitive for an unusable offer/answer."""


class InvalidCandidate(SessionError):
    """Raised by the negotiation primitive for a malformed or stale candidate."""


class StaleSignal(SessionError):
    """A signaling message that no longer matches the current session."""


class NegotiationFailed(SessionError):
    """Negotiation aborted; the session has been torn down."""


__all__ = [
    "AlreadyInSession",
    "InvalidCandidate",
    "InvalidDescription",
    "InvalidInput",
    "JoinCancelled",
    "MediaAccessDenied",
    "NegotiationFailed",
    "SessionError",
    "StaleSignal",
]
