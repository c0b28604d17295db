"""Tests for HttpCapabilityQuery against a mocked presence server."""

import json
import threading

import httpx
import pytest

from presence.request import ErrorCode, RequestManager, RequestResult, SourceType
from presence.services import HttpCapabilityQuery
from presence.services.network import parse_retry_after
from tests.helpers import A, B, C, make_record


class Sink:
    """Callback collecting results from the worker thread."""

    def __init__(self):
        self.records = []
        self.errors = []
        self.completed = 0
        self.done = threading.Event()

    def on_capabilities_received(self, records):
        self.records.extend(records)

    def on_complete(self):
        self.completed += 1
        self.done.set()

    def on_error(self, error_code, retry_after_ms):
        self.errors.append((error_code, retry_after_ms))
        self.done.set()


def make_query(handler) -> HttpCapabilityQuery:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return HttpCapabilityQuery("https://presence.test/", timeout=5.0, client=client)


def run(manager: RequestManager, query: HttpCapabilityQuery, uris, sink: Sink) -> int:
    task_id = manager.send_capability_request(uris, sink)
    assert sink.done.wait(5)
    query.join(5)
    return task_id


def test_parse_retry_after():
    assert parse_retry_after("30") == 30_000
    assert parse_retry_after("1.5") == 1_500
    assert parse_retry_after(None) == 0
    assert parse_retry_after("tomorrow") == 0


def test_successful_query_delivers_and_caches(cache):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "capabilities": [
                    {"contact_uri": B, "request_result": "CAPABLE", "features": ["chat"]}
                ],
                "terminated": [
                    {"contact_uri": C, "request_result": "NOT_FOUND", "features": []}
                ],
            },
        )

    cache.save([make_record(A)])
    query = make_query(handler)
    manager = RequestManager(sub_id=1, cache=cache, query=query)
    sink = Sink()

    run(manager, query, [A, B, C], sink)

    assert seen["url"] == "https://presence.test/capabilities"
    assert seen["body"] == {"type": "capability", "contacts": [B, C]}
    assert [r.contact_uri for r in sink.records] == [A, B, C]
    assert sink.records[0].source_type == SourceType.CACHED
    assert sink.records[1].source_type == SourceType.NETWORK
    assert sink.completed == 1
    assert sink.errors == []
    assert cache.lookup_one(B).is_hit
    assert cache.lookup_one(C).record.request_result == RequestResult.NOT_FOUND
    assert manager.get_pending_task_ids() == []
    assert query.get_in_flight_count() == 0


def test_forbidden_response_closes_the_gate(cache):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(403, headers={"Retry-After": "120"})

    query = make_query(handler)
    manager = RequestManager(sub_id=1, cache=cache, query=query)
    sink = Sink()

    run(manager, query, [A], sink)

    assert sink.errors == [(ErrorCode.FORBIDDEN, 120_000)]
    assert manager.is_request_forbidden()

    blocked = Sink()
    manager.send_capability_request([B], blocked)

    assert blocked.done.is_set()
    assert blocked.errors[0][0] == ErrorCode.FORBIDDEN
    assert len(calls) == 1


@pytest.mark.parametrize(
    "status, expected",
    [
        (404, ErrorCode.NOT_FOUND),
        (408, ErrorCode.REQUEST_TIMEOUT),
        (503, ErrorCode.SERVER_UNAVAILABLE),
        (500, ErrorCode.GENERIC_FAILURE),
    ],
)
def test_error_status_maps_to_error_code(cache, status, expected):
    query = make_query(lambda request: httpx.Response(status))
    manager = RequestManager(sub_id=1, cache=cache, query=query)
    sink = Sink()

    run(manager, query, [A], sink)

    assert sink.errors == [(expected, 0)]
    assert not manager.is_request_forbidden()


def test_transport_timeout_reports_request_timeout(cache):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    query = make_query(handler)
    manager = RequestManager(sub_id=1, cache=cache, query=query)
    sink = Sink()

    run(manager, query, [A], sink)

    assert sink.errors == [(ErrorCode.REQUEST_TIMEOUT, 0)]


def test_connection_error_reports_lost_network(cache):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    query = make_query(handler)
    manager = RequestManager(sub_id=1, cache=cache, query=query)
    sink = Sink()

    run(manager, query, [A], sink)

    assert sink.errors == [(ErrorCode.LOST_NETWORK, 0)]


def test_malformed_body_reports_lost_network(cache):
    query = make_query(lambda request: httpx.Response(200, content=b"not json"))
    manager = RequestManager(sub_id=1, cache=cache, query=query)
    sink = Sink()

    run(manager, query, [A], sink)

    assert sink.errors == [(ErrorCode.LOST_NETWORK, 0)]
    assert sink.completed == 0


def test_close_closes_the_client(cache):
    query = make_query(lambda request: httpx.Response(200, json={}))

    query.close()

    assert query._client.is_closed
