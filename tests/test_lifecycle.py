from datetime import timedelta

import pytest

from blood_requests.errors import ConflictError, ExpiredError
from blood_requests.models import RequestFilters, RequestStatus, ResponseStatus, Urgency
from dispatch.state_machines import can_transition, compute_expires_at, escalation_due


@pytest.mark.parametrize(
    "urgency, hours",
    [("critical", 2), ("urgent", 6), ("normal", 24)],
)
def test_expiry_is_fixed_from_urgency(dispatcher, critical_draft, urgency, hours):
    request = dispatcher.create_request({**critical_draft, "urgency": urgency})

    assert request.status == RequestStatus.PENDING
    assert request.expires_at - request.created_at == timedelta(hours=hours)


def test_compute_expires_at_is_exact(clock):
    assert compute_expires_at(Urgency.CRITICAL, clock.now) == clock.now + timedelta(hours=2)


def test_transition_table():
    assert can_transition(RequestStatus.PENDING, RequestStatus.MATCHED)
    assert can_transition(RequestStatus.MATCHED, RequestStatus.COMPLETED)
    assert can_transition(RequestStatus.MATCHED, RequestStatus.CANCELLED)
    assert not can_transition(RequestStatus.PENDING, RequestStatus.COMPLETED)
    assert not can_transition(RequestStatus.EXPIRED, RequestStatus.PENDING)
    assert not can_transition(RequestStatus.COMPLETED, RequestStatus.CANCELLED)


def test_request_expires_lazily_on_read(dispatcher, store, critical_draft, clock):
    request = dispatcher.create_request(critical_draft)

    clock.advance(hours=2)
    assert clock.now == request.expires_at
    assert dispatcher.get_request(request.id).status == RequestStatus.PENDING
    assert dispatcher.sweep_expirations() == []

    clock.advance(microseconds=1)
    assert dispatcher.get_request(request.id).status == RequestStatus.EXPIRED
    # written back, not just reported
    assert store.find_request(request.id).status == RequestStatus.EXPIRED


def test_expired_request_rejects_every_action(dispatcher, critical_draft, clock):
    request = dispatcher.create_request(critical_draft)
    clock.advance(hours=3)

    with pytest.raises(ExpiredError):
        dispatcher.submit_response(request.id, "d1", "accept")
    with pytest.raises(ExpiredError):
        dispatcher.dispatch(request.id)
    with pytest.raises(ExpiredError):
        dispatcher.try_match(request.id, "d1")
    with pytest.raises(ExpiredError):
        dispatcher.cancel_request(request.id)


def test_listing_observes_expiry(dispatcher, critical_draft, clock):
    critical = dispatcher.create_request(critical_draft)
    normal = dispatcher.create_request({**critical_draft, "urgency": "normal"})
    clock.advance(hours=3)

    expired = dispatcher.list_requests(RequestFilters(status=RequestStatus.EXPIRED))
    pending = dispatcher.list_requests(RequestFilters(status=RequestStatus.PENDING))

    assert [request.id for request in expired] == [critical.id]
    assert [request.id for request in pending] == [normal.id]


def test_sweep_expirations_returns_only_newly_expired(dispatcher, critical_draft, clock):
    critical = dispatcher.create_request(critical_draft)
    dispatcher.create_request({**critical_draft, "urgency": "urgent"})
    clock.advance(hours=3)

    assert dispatcher.sweep_expirations() == [critical.id]
    assert dispatcher.sweep_expirations() == []


def test_matched_request_does_not_expire(dispatcher, critical_draft, clock):
    request = dispatcher.create_request(critical_draft)
    dispatcher.submit_response(request.id, "d5", "accept", eta_minutes=10)

    clock.advance(hours=5)

    assert dispatcher.sweep_expirations() == []
    assert dispatcher.get_request(request.id).status == RequestStatus.MATCHED


def test_silent_request_escalates_and_reaches_wider_ring(dispatcher, transport, critical_draft, clock):
    request = dispatcher.create_request({**critical_draft, "urgency": "normal"})
    dispatcher.dispatch(request.id)
    assert "+263771000040" not in transport.recipients()

    # a quarter of 24h with no answer
    clock.advance(hours=5, minutes=59)
    assert dispatcher.sweep().escalated == []

    clock.advance(minutes=1)
    report = dispatcher.sweep()

    assert report.escalated == [request.id]
    escalated = dispatcher.get_request(request.id)
    assert escalated.escalation_count == 1
    assert escalated.expires_at == request.expires_at

    # level 1 searches 50 km, so the donor 40 km out is alerted now
    assert "+263771000040" in transport.recipients()


def test_escalation_stops_at_the_maximum_then_expires(dispatcher, critical_draft, clock):
    request = dispatcher.create_request({**critical_draft, "urgency": "normal"})

    for _ in range(3):
        clock.advance(hours=6)
        assert dispatcher.sweep().escalated == [request.id]

    clock.advance(hours=5)
    assert dispatcher.sweep().escalated == []
    assert dispatcher.get_request(request.id).escalation_count == 3

    clock.advance(hours=1)
    assert dispatcher.sweep().expired == []

    clock.advance(microseconds=1)
    report = dispatcher.sweep()
    assert report.expired == [request.id]
    assert dispatcher.get_request(request.id).status == RequestStatus.EXPIRED


def test_any_response_stops_escalation(dispatcher, critical_draft, clock):
    request = dispatcher.create_request({**critical_draft, "urgency": "normal"})
    dispatcher.submit_response(request.id, "d20", "maybe")

    clock.advance(hours=7)

    assert dispatcher.sweep().escalated == []
    assert not escalation_due(dispatcher.get_request(request.id), clock.now, 0.25, 3)


def test_complete_requires_a_match(dispatcher, critical_draft):
    request = dispatcher.create_request(critical_draft)

    with pytest.raises(ConflictError):
        dispatcher.complete_request(request.id)

    dispatcher.submit_response(request.id, "d1", "accept")
    completed = dispatcher.complete_request(request.id)

    assert completed.status == RequestStatus.COMPLETED
    assert completed.matched_donor_id == "d1"

    with pytest.raises(ConflictError):
        dispatcher.complete_request(request.id)


def test_cancel_clears_the_match_and_responses(dispatcher, critical_draft):
    request = dispatcher.create_request(critical_draft)
    dispatcher.submit_response(request.id, "d1", "accept")
    dispatcher.submit_response(request.id, "d5", "maybe")

    cancelled = dispatcher.cancel_request(request.id)

    assert cancelled.status == RequestStatus.CANCELLED
    assert cancelled.matched_donor_id is None
    assert cancelled.matched_at is None
    assert {response.status for response in dispatcher.list_responses(request.id)} == {ResponseStatus.CANCELLED}

    with pytest.raises(ConflictError):
        dispatcher.cancel_request(request.id)
