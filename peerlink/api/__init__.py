"""
FastAPI relay server for peerlink signaling.
"""

from __future__ import annotations

from .server import RelayConnection, RelayManager, create_app

__all__ = ["RelayConnection", "RelayManager", "create_app"]
