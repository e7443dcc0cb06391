"""
Signaling protocol, relay core and transports.
"""

from __future__ import annotations

from .messages import InboundMessage, OutboundMessage, parse_inbound, parse_outbound
from .relay import Relay
from .transport import MemoryTransport, SignalingTransport, WebSocketTransport

__all__ = [
    "InboundMessage",
    "MemoryTransport",
    "OutboundMessage",
    "Relay",
    "SignalingTransport",
    "WebSocketTransport",
    "parse_inbound",
    "parse_outbound",
]
