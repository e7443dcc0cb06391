"""
Logging helpers for peerlink.

Clients and the relay share one log format so traces from both ends of a call
can be interleaved when debugging a negotiation.
"""

from __future__ import annotations

import logging
import sys
from typing import Iterable, Optional, Union

DEFAULT_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"

# ICE connectivity checks and codec setup log every packet-level step at INFO.
NOISY_LOGGERS = ("aioice", "aiortc", "websockets")


def resolve_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(
    level: Union[int, str] = logging.INFO,
    format: Optional[str] = None,
    *,
    library_level: Union[int, str] = logging.WARNING,
    noisy: Iterable[str] = NOISY_LOGGERS,
) -> None:
    """
    Configure the root logger once and tone down the WebRTC stack's loggers.

    ``level`` accepts either a number or a name such as ``"debug"``. At DEBUG
    the library loggers follow the root level so ICE traffic stays visible.
    """

    root_level = resolve_level(level)
    quiet_level = root_level if root_level <= logging.DEBUG else max(root_level, resolve_level(library_level))
    for name in noisy:
        logging.getLogger(name).setLevel(quiet_level)

    if logging.getLogger().handlers:
        # Respect any user provided configuration.
        return

    logging.basicConfig(
        level=root_level,
        format=format or DEFAULT_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )
