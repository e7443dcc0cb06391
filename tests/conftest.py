from __future__ import annotations

import pytest

from tests.fakes import FakeMedia, FakePrimitive, FakeRenderer, RecordingTransport


@pytest.fixture
def primitive() -> FakePrimitive:
    return FakePrimitive()


@pytest.fixture
def media() -> FakeMedia:
    return FakeMedia()


@pytest.fixture
def renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()
