"""Shared fixtures for the capability request tests."""

from unittest.mock import MagicMock

import pytest

from presence.request import CapabilityRequest, RequestType
from presence.services import CapabilityCache
from tests.helpers import FakeManager, RecordingQuery


@pytest.fixture
def cache() -> CapabilityCache:
    return CapabilityCache(max_size=100)


@pytest.fixture
def manager(cache: CapabilityCache) -> FakeManager:
    return FakeManager(cache)


@pytest.fixture
def query() -> RecordingQuery:
    return RecordingQuery()


@pytest.fixture
def callback() -> MagicMock:
    """Sink mock exposing the three CapabilitiesCallback methods."""
    return MagicMock(spec=["on_capabilities_received", "on_complete", "on_error"])


@pytest.fixture
def make_request(manager: FakeManager, query: RecordingQuery, callback: MagicMock):
    """Factory building a configured request against the fake manager."""

    def _make(
        uris: list[str],
        request_type: RequestType = RequestType.CAPABILITY,
    ) -> CapabilityRequest:
        request = CapabilityRequest(1, request_type, manager, query)
        request.set_contact_uri(uris)
        request.set_capabilities_callback(callback)
        return request

    return _make
