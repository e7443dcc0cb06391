"""
Profile-based configuration shared by the relay server and the call client.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

LOG = logging.getLogger(__name__)

CONFIG_DIR = Path(__file__).resolve().parent / "configs"
PROFILES_PATH = CONFIG_DIR / "profiles.yaml"

ENV_PROFILES_VAR = "PEERLINK_PROFILES"
ENV_RELAY_URL_VAR = "PEERLINK_RELAY_URL"

DEFAULT_ICE_SERVERS: List[Dict[str, Any]] = [{"urls": ["stun:stun.l.google.com:19302"]}]


class ConfigError(ValueError):
    """Raised for unknown profiles or malformed profile files."""


@dataclass
class PeerlinkConfig:
    profile: str = "default"
    relay_url: str = "ws://127.0.0.1:8080/signal"
    ice_servers: List[Dict[str, Any]] = field(default_factory=lambda: [dict(s) for s in DEFAULT_ICE_SERVERS])
    queue_size: int = 256
    ping_interval: float = 30.0
    pong_timeout: float = 60.0
    max_room_size: int = 2

    def to_dict(self) -> dict:
        return {
            "profile": self.profile,
            "relayUrl": self.relay_url,
            "iceServers": [dict(server) for server in self.ice_servers],
            "queueSize": int(self.queue_size),
            "pingInterval": float(self.ping_interval),
            "pongTimeout": float(self.pong_timeout),
            "maxRoomSize": int(self.max_room_size),
        }


def profiles_path() -> Path:
    override = os.environ.get(ENV_PROFILES_VAR)
    if override:
        return Path(override).expanduser()
    return PROFILES_PATH


def load_profiles(path: Optional[Path] = None) -> Dict[str, dict]:
    target = path or profiles_path()
    try:
        with target.open("r", encoding="utf-8") as handle:
            profiles = yaml.safe_load(handle) or {}
    except FileNotFoundError:
        LOG.warning("Profile file %s not found; using built-in defaults.", target)
        return {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid profile file {target}: {exc}") from exc
    if not isinstance(profiles, dict):
        raise ConfigError(f"profile file {target} must contain a mapping")
    return profiles


def load_config(profile: str = "default", path: Optional[Path] = None) -> PeerlinkConfig:
    profiles = load_profiles(path)
    if profiles and profile not in profiles:
        raise ConfigError(f"unknown profile {profile!r}; available: {', '.join(sorted(profiles))}")

    values = profiles.get(profile) or {}
    known = {item.name for item in fields(PeerlinkConfig)}
    kwargs: Dict[str, Any] = {}
    for key, value in values.items():
        if key not in known or key == "profile":
            LOG.warning("Ignoring unknown setting %r in profile %s", key, profile)
            continue
        kwargs[key] = value

    config = PeerlinkConfig(profile=profile, **kwargs)
    config.ice_servers = list(config.ice_servers or [])
    config.queue_size = max(1, int(config.queue_size))
    config.ping_interval = max(0.0, float(config.ping_interval))
    config.pong_timeout = max(config.ping_interval, float(config.pong_timeout))
    config.max_room_size = max(2, int(config.max_room_size))

    relay_override = os.environ.get(ENV_RELAY_URL_VAR)
    if relay_override:
        config.relay_url = relay_override
    return config


__all__ = [
    "ConfigError",
    "PeerlinkConfig",
    "load_config",
    "load_profiles",
]
