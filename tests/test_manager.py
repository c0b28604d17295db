"""Tests for RequestManager task bookkeeping."""

import pytest

from presence.request import ErrorCode, RequestManager, RequestType
from presence.services import ForbiddenState
from tests.helpers import A, B, C, RecordingQuery, make_record


@pytest.fixture
def request_manager(cache, query) -> RequestManager:
    return RequestManager(sub_id=7, cache=cache, query=query)


def test_fully_cached_request_is_released_immediately(
    request_manager, cache, callback
):
    cache.save([make_record(A)])

    task_id = request_manager.send_capability_request([A], callback)

    callback.on_complete.assert_called_once()
    assert request_manager.get_request(task_id) is None
    assert request_manager.get_pending_task_ids() == []


def test_network_bound_request_stays_pending_until_finished(
    request_manager, query, callback
):
    task_id = request_manager.send_capability_request([A, B], callback)

    assert request_manager.get_pending_task_ids() == [task_id]
    request, uris = query.calls[0]
    assert request.task_id == task_id
    assert request.sub_id == 7
    assert uris == [A, B]

    request.response.add_updated_capabilities([make_record(A), make_record(B)])
    request.handle_capabilities_updated()
    request.handle_request_completed(True)

    assert request_manager.get_pending_task_ids() == []
    assert request.is_finished
    callback.on_complete.assert_called_once()


def test_network_results_are_written_back_to_the_cache(
    request_manager, cache, query, callback
):
    request_manager.send_capability_request([C], callback)
    request, _ = query.calls[0]

    request.response.add_updated_capabilities([make_record(C)])
    request.handle_capabilities_updated()
    request.handle_request_completed(True)

    second = RecordingQuery()
    other = RequestManager(sub_id=7, cache=cache, query=second)
    other.send_capability_request([C], callback)

    assert second.calls == []
    assert callback.on_complete.call_count == 2


def test_availability_request_uses_availability_type(request_manager, query, callback):
    request_manager.send_availability_request(A, callback)

    request, uris = query.calls[0]
    assert request.request_type == RequestType.AVAILABILITY
    assert uris == [A]


def test_discard_makes_late_callbacks_noops(request_manager, query, callback):
    task_id = request_manager.send_capability_request([A], callback)
    request, _ = query.calls[0]

    assert request_manager.discard_request(task_id) is True
    assert request_manager.discard_request(task_id) is False

    request.handle_request_completed(True)

    callback.on_complete.assert_not_called()
    assert request_manager.get_pending_task_ids() == []


def test_discard_drops_late_network_records(request_manager, cache, query, callback):
    task_id = request_manager.send_capability_request([A, B], callback)
    request, _ = query.calls[0]

    request_manager.discard_request(task_id)
    request.response.add_updated_capabilities([make_record(A)])
    request.handle_capabilities_updated()
    request.response.add_terminated_resources([make_record(B)])
    request.handle_resource_terminated()

    assert callback.method_calls == []
    assert cache.lookup_one(A).is_hit


def test_forbidden_is_shared_across_requests(cache, query, callback):
    state = ForbiddenState("shared")
    manager = RequestManager(sub_id=1, cache=cache, query=query, forbidden_state=state)
    manager.send_capability_request([A], callback)
    request, _ = query.calls[0]

    request.response.set_network_response(403, "Forbidden", 10_000)
    request.handle_request_failed(True)

    assert manager.is_request_forbidden()
    assert 0 < manager.get_retry_after_millis() <= 10_000

    manager.send_capability_request([B], callback)

    assert len(query.calls) == 1
    assert callback.on_error.call_count == 2
    assert callback.on_error.call_args.args[0] == ErrorCode.FORBIDDEN


def test_invalid_uri_raises_before_registration(request_manager, callback):
    with pytest.raises(ValueError):
        request_manager.send_capability_request(["nope"], callback)

    assert request_manager.get_pending_task_ids() == []


def test_close_finishes_pending_requests(request_manager, query, callback):
    request_manager.send_capability_request([A], callback)
    request, _ = query.calls[0]

    request_manager.close()

    assert request.is_finished
    assert request_manager.get_pending_task_ids() == []


def test_get_status(request_manager, callback):
    task_id = request_manager.send_capability_request([A], callback)

    status = request_manager.get_status()

    assert status["sub_id"] == 7
    assert status["pending_requests"] == [task_id]
    assert status["admission"]["forbidden"] is False
    assert "hit_rate" in status["cache"]
