"""
Buffer for remote ICE candidates that arrive before the remote description.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from ..errors import InvalidCandidate
from .webrtc import ICECandidate, NegotiationPrimitive

LOG = logging.getLogger(__name__)


class CandidateBuffer:
    """
    Hold remote candidates until the primitive can accept them.

    Candidates are applied in receipt order. Each buffered candidate keeps the
    peer id it came from, so a flush for one counterpart skips candidates sent
    by anyone else. Once :meth:`flush` has run the buffer forwards every
    further candidate straight to the primitive.
    """

    def __init__(self, primitive: NegotiationPrimitive) -> None:
        self._primitive = primitive
        self._pending: List[Tuple[Optional[str], ICECandidate]] = []
        self._remote_description_set = False

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def pending(self) -> Tuple[ICECandidate, ...]:
        return tuple(candidate for _, candidate in self._pending)

    @property
    def remote_description_set(self) -> bool:
        return self._remote_description_set

    async def offer(self, candidate: ICECandidate, sender: Optional[str] = None) -> bool:
        """
        Buffer ``candidate`` or apply it right away.

        Returns ``False`` only when an immediate application failed.
        """

        if not self._remote_description_set or self._pending:
            # A flush may be draining the queue; keep receipt order.
            self._pending.append((sender, candidate))
            return True
        return await self._apply(candidate)

    async def flush(self, counterpart: Optional[str] = None) -> List[ICECandidate]:
        """
        Apply every buffered candidate in order and mark the remote description set.

        With ``counterpart`` given, candidates tagged with a different sender
        are dropped. Returns the candidates the primitive rejected.
        """

        failed: List[ICECandidate] = []
        self._remote_description_set = True
        while self._pending:
            sender, candidate = self._pending.pop(0)
            if counterpart is not None and sender is not None and sender != counterpart:
                LOG.info("Dropping buffered candidate from %s; negotiating with %s.", sender, counterpart)
                continue
            if not await self._apply(candidate):
                failed.append(candidate)
        if failed:
            LOG.warning("%d buffered candidate(s) could not be applied.", len(failed))
        return failed

    def clear(self) -> None:
        self._pending.clear()

    async def _apply(self, candidate: ICECandidate) -> bool:
        try:
            await self._primitive.add_ice_candidate(candidate)
        except InvalidCandidate as exc:
            LOG.warning("Error adding received ICE candidate %r: %s", candidate.candidate, exc)
            return False
        except Exception:
            LOG.exception("Primitive failed on ICE candidate %r.", candidate.candidate)
            return False
        return True


__all__ = ["CandidateBuffer"]
