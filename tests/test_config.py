from __future__ import annotations

from pathlib import Path

import pytest

from peerlink.config import ConfigError, PeerlinkConfig, load_config, load_profiles


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("PEERLINK_PROFILES", raising=False)
    monkeypatch.delenv("PEERLINK_RELAY_URL", raising=False)


def write_profiles(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "profiles.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_bundled_profiles_load() -> None:
    profiles = load_profiles()
    assert {"default", "lan", "relay-tuned"} <= set(profiles)

    tuned = load_config("relay-tuned")
    assert tuned.profile == "relay-tuned"
    assert tuned.queue_size == 64
    assert tuned.ping_interval == 15.0
    assert load_config("lan").ice_servers == []


def test_profile_values_are_clamped_and_unknown_keys_ignored(tmp_path: Path) -> None:
    path = write_profiles(
        tmp_path,
        "custom:\n"
        "  queue_size: 0\n"
        "  ping_interval: -5\n"
        "  pong_timeout: 1\n"
        "  max_room_size: 1\n"
        "  colour: blue\n",
    )

    config = load_config("custom", path)

    assert config.queue_size == 1
    assert config.ping_interval == 0.0
    assert config.pong_timeout == 1.0
    assert config.max_room_size == 2
    assert not hasattr(config, "colour")


def test_unknown_profile_raises(tmp_path: Path) -> None:
    path = write_profiles(tmp_path, "default: {}\n")

    with pytest.raises(ConfigError):
        load_config("missing", path)


def test_missing_file_falls_back_to_defaults(tmp_path: Path) -> None:
    config = load_config("anything", tmp_path / "nope.yaml")

    assert config.profile == "anything"
    assert config.relay_url == PeerlinkConfig().relay_url


def test_malformed_file_raises(tmp_path: Path) -> None:
    path = write_profiles(tmp_path, "- just\n- a list\n")

    with pytest.raises(ConfigError):
        load_profiles(path)


def test_environment_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = write_profiles(tmp_path, "default:\n  relay_url: ws://example.invalid/signal\n")
    monkeypatch.setenv("PEERLINK_PROFILES", str(path))
    monkeypatch.setenv("PEERLINK_RELAY_URL", "ws://override:9000/signal")

    config = load_config("default")

    assert config.relay_url == "ws://override:9000/signal"
    assert config.to_dict()["relayUrl"] == "ws://override:9000/signal"
