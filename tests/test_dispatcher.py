import pytest

from blood_requests.errors import ConflictError, ExpiredError, NotFoundError, ValidationError
from blood_requests.models import RequestDraft, RequestStatus, ResponseStatus
from dispatch import Dispatcher, Settings
from notifications import LoggingTransport, NotificationStatus, SkipReason
from ratelimit import RateLimitConfig, StoreMode


@pytest.mark.parametrize(
    "changes",
    [
        {"blood_type": "C+"},
        {"units_needed": 0},
        {"units_needed": "2"},
        {"urgency": "whenever"},
        {"latitude": 91.0},
        {"longitude": None},
        {"latitude": "north"},
        {"longitude": [31.05]},
        {"ward": "ICU"},
    ],
)
def test_create_rejects_invalid_input_without_writing(dispatcher, store, critical_draft, changes):
    with pytest.raises(ValidationError):
        dispatcher.create_request({**critical_draft, **changes})

    assert store.list_requests() == []


def test_create_accepts_a_draft(dispatcher, clock):
    draft = RequestDraft.new("ab+", 1, "urgent", hospital_name="Chitungwiza Central")

    request = dispatcher.create_request(draft)

    assert request.blood_type.value == "AB+"
    assert request.status == RequestStatus.PENDING
    assert request.created_at == clock.now
    assert request.location is None
    assert (request.escalation_count, request.response_count, request.matched_donor_id) == (0, 0, None)


def test_get_unknown_request(dispatcher):
    with pytest.raises(NotFoundError):
        dispatcher.get_request("missing")


def test_candidates_are_filtered_and_ranked(dispatcher, critical_draft):
    request = dispatcher.create_request(critical_draft)

    candidates = dispatcher.rank_candidates(request.id)

    # 1. a1 is A+ (cannot give to O-), off is unavailable, quiet opted out, d40 is outside 25 km
    assert [candidate.donor_id for candidate in candidates] == ["d1", "d5", "d20"]

    # 2. d1 is rested 60 days: 100 + 50 - 2 + 20
    assert candidates[0].score == pytest.approx(168.0)
    assert candidates[1].score == pytest.approx(140.0)
    assert candidates[2].score == pytest.approx(120.0)

    # 3. two minutes per km, rounded
    assert [candidate.eta_minutes for candidate in candidates] == [2, 10, 40]


def test_compatible_types_outrank_by_exact_match(dispatcher, critical_draft):
    request = dispatcher.create_request({**critical_draft, "blood_type": "A+"})

    ranked = [candidate.donor_id for candidate in dispatcher.rank_candidates(request.id)]

    assert ranked == ["a1", "d1", "d5", "d20"]


def test_end_to_end_dispatch_and_match(dispatcher, transport, critical_draft):
    request = dispatcher.create_request(critical_draft)

    # 1. First cycle alerts the three eligible donors in rank order
    first = dispatcher.dispatch(request.id)
    assert [outcome.donor_id for outcome in first.outcomes] == ["d1", "d5", "d20"]
    assert {outcome.status for outcome in first.outcomes} == {NotificationStatus.SENT}
    assert sorted(transport.recipients()) == ["+263771000001", "+263771000005", "+263771000020"]
    alert = transport.calls[0][1]
    assert alert["kind"] == "blood_request"
    assert alert["title"] == "CRITICAL blood request: O-"
    assert "Parirenyatwa" in alert["body"]

    # 2. A second cycle inside the minute is held back per donor
    second = dispatcher.dispatch(request.id)
    assert len(second.rate_limited) == 3
    assert {outcome.reason for outcome in second.outcomes} == {SkipReason.DONOR_RATE_LIMITED}
    assert all(outcome.retry_after_ms > 0 for outcome in second.outcomes)
    assert len(transport.calls) == 3

    # 3. d5 accepts and is bound straight away
    response = dispatcher.submit_response(request.id, "d5", "accept", eta_minutes=10)
    assert response.status == ResponseStatus.CONFIRMED
    assert response.confirmed_at is not None

    matched = dispatcher.get_request(request.id)
    assert matched.status == RequestStatus.MATCHED
    assert matched.matched_donor_id == "d5"
    assert matched.response_count == 1

    # 4. Matched requests are not dispatched again
    assert dispatcher.dispatch(request.id).outcomes == []


def test_late_accept_is_recorded_but_not_bound(dispatcher, critical_draft):
    request = dispatcher.create_request(critical_draft)
    dispatcher.submit_response(request.id, "d5", "accept")

    late = dispatcher.submit_response(request.id, "d1", "accept", notes="on my way anyway")

    assert late.status == ResponseStatus.PENDING
    assert dispatcher.get_request(request.id).matched_donor_id == "d5"
    assert dispatcher.get_request(request.id).response_count == 2


def test_matched_donor_cannot_answer_again(dispatcher, critical_draft):
    request = dispatcher.create_request(critical_draft)
    dispatcher.submit_response(request.id, "d5", "accept")

    with pytest.raises(ConflictError):
        dispatcher.submit_response(request.id, "d5", "decline")


def test_answering_twice_updates_the_same_response(dispatcher, critical_draft):
    request = dispatcher.create_request(critical_draft)

    first = dispatcher.submit_response(request.id, "d20", "maybe", notes="after work")
    second = dispatcher.submit_response(request.id, "d20", "decline")

    assert second.id == first.id
    assert second.kind.value == "decline"
    assert second.notes == ""
    assert len(dispatcher.list_responses(request.id)) == 1
    assert dispatcher.get_request(request.id).response_count == 1


def test_submit_response_validation(dispatcher, critical_draft):
    request = dispatcher.create_request(critical_draft)

    with pytest.raises(ValidationError):
        dispatcher.submit_response(request.id, "d1", "sure")
    with pytest.raises(ValidationError):
        dispatcher.submit_response(request.id, "d1", "accept", eta_minutes=-5)
    with pytest.raises(NotFoundError):
        dispatcher.submit_response(request.id, "ghost", "accept")
    with pytest.raises(NotFoundError):
        dispatcher.submit_response("missing", "d1", "accept")

    assert dispatcher.list_responses(request.id) == []


def test_closed_request_takes_no_responses(dispatcher, critical_draft):
    request = dispatcher.create_request(critical_draft)
    dispatcher.cancel_request(request.id)

    with pytest.raises(ConflictError):
        dispatcher.submit_response(request.id, "d1", "accept")


def test_dispatch_expired_request(dispatcher, critical_draft, clock):
    request = dispatcher.create_request(critical_draft)
    clock.advance(hours=2, microseconds=1)

    with pytest.raises(ExpiredError):
        dispatcher.dispatch(request.id)


def test_check_rate_limit_consumes_only_when_asked(dispatcher):
    config = RateLimitConfig(window_ms=60_000, max_requests=2)

    assert dispatcher.check_rate_limit("ip:10.0.0.1", config, consume=False).remaining == 2
    assert dispatcher.check_rate_limit("ip:10.0.0.1", config).allowed
    assert dispatcher.check_rate_limit("ip:10.0.0.1", config).allowed

    denied = dispatcher.check_rate_limit("ip:10.0.0.1", config)
    assert not denied.allowed
    assert denied.retry_after_ms > 0


def test_from_settings_without_services(store):
    dispatcher = Dispatcher.from_settings(store, Settings(notify_cap=3))
    try:
        assert dispatcher.rate_limiter.mode == StoreMode.LOCAL
        assert isinstance(dispatcher.notifier.transport, LoggingTransport)
        assert dispatcher.dispatch_policy.notify_cap == 3
    finally:
        dispatcher.close()
