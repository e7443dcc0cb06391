"""
Adapter between the signaling transport and the session manager.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, Union

from pydantic import ValidationError

from ..errors import SessionError
from .messages import InboundMessage, OutboundMessage, parse_inbound
from .transport import SignalingTransport

if TYPE_CHECKING:  # pragma: no cover
    from ..session import SessionManager

LOG = logging.getLogger(__name__)


class SignalingRouter:
    """
    Feed inbound frames into the session manager and outbound intents to the transport.

    Nothing raised while handling one inbound message escapes to the transport;
    a bad frame or a failed negotiation must not stop the receive loop.
    """

    def __init__(self, manager: "SessionManager", transport: SignalingTransport) -> None:
        self.manager = manager
        self.transport = transport

    async def dispatch(self, raw: Union[InboundMessage, str, bytes, Dict[str, Any]]) -> None:
        if isinstance(raw, (str, bytes, dict)):
            try:
                message = parse_inbound(raw)
            except (ValidationError, ValueError) as exc:
                LOG.warning("Dropping malformed signaling frame: %s", exc)
                return
        else:
            message = raw

        try:
            await self.manager.handle_signal(message)
        except SessionError as exc:
            LOG.warning("Signal %s rejected: %s", message.type, exc)
        except Exception:  # pragma: no cover - handle_signal wraps its own failures
            LOG.exception("Unhandled error while routing %s", message.type)

    async def emit(self, message: OutboundMessage) -> None:
        LOG.debug("-> %s", message.type)
        await self.transport.send(message)


__all__ = ["SignalingRouter"]
