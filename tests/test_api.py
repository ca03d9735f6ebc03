import pytest
from rest_framework.test import APIClient

from bloodbank import services
from bloodbank.models import BloodRequestRecord, DonorResponseRecord
from bloodbank.store import DjangoRequestStore
from blood_requests.errors import NotFoundError
from blood_requests.models import BloodRequest, BloodType, RequestStatus, ResponseKind, Urgency
from dispatch import Dispatcher
from dispatch.state_machines import compute_expires_at

pytestmark = pytest.mark.django_db


@pytest.fixture
def django_store(donors):
    store = DjangoRequestStore()
    for donor in donors:
        store.insert_donor(donor)
    return store


@pytest.fixture
def api_dispatcher(django_store, notifier, rate_limiter, dispatch_policy, clock, monkeypatch):
    dispatcher = Dispatcher(django_store, notifier, rate_limiter, dispatch_policy=dispatch_policy, clock=clock)
    monkeypatch.setattr(services, "get_dispatcher", lambda: dispatcher)
    return dispatcher


@pytest.fixture
def client(api_dispatcher):
    return APIClient()


@pytest.fixture
def created(client, critical_draft):
    response = client.post("/api/v1/requests/", critical_draft, format="json")
    assert response.status_code == 201
    return response.json()


def test_create_request(created, critical_draft):
    assert created["status"] == "pending"
    assert created["blood_type"] == "O-"
    assert created["urgency"] == "critical"
    assert created["latitude"] == pytest.approx(critical_draft["latitude"])
    assert created["contact_phone"] == "+263772000000"
    assert created["matched_donor_id"] is None
    assert BloodRequestRecord.objects.filter(pk=created["id"]).exists()


@pytest.mark.parametrize(
    "changes",
    [{"blood_type": "Z+"}, {"units_needed": 0}, {"urgency": "soon"}, {"latitude": 120}],
)
def test_create_rejects_invalid_payload(client, critical_draft, changes):
    response = client.post("/api/v1/requests/", {**critical_draft, **changes}, format="json")

    assert response.status_code == 400
    assert not BloodRequestRecord.objects.exists()


def test_unknown_request_is_404(client):
    assert client.get("/api/v1/requests/nope/").status_code == 404


def test_list_filters_by_status(client, created, critical_draft):
    client.post("/api/v1/requests/", {**critical_draft, "blood_type": "B+"}, format="json")

    response = client.get("/api/v1/requests/", {"blood_type": "O-"})

    assert response.status_code == 200
    assert [row["id"] for row in response.json()] == [created["id"]]


def test_candidates_and_dispatch(client, created, transport):
    candidates = client.get(f"/api/v1/requests/{created['id']}/candidates/").json()
    assert [row["donor_id"] for row in candidates] == ["d1", "d5", "d20"]
    assert candidates[0]["exact_match"] is True

    report = client.post(f"/api/v1/requests/{created['id']}/dispatch/").json()
    assert report["summary"]["sent"] == 3
    assert [row["status"] for row in report["outcomes"]] == ["sent", "sent", "sent"]
    assert len(transport.calls) == 3


def test_respond_match_and_complete(client, created):
    base = f"/api/v1/requests/{created['id']}"

    # 1. First accept binds
    accepted = client.post(f"{base}/respond/", {"donor_id": "d5", "kind": "accept", "eta_minutes": 10}, format="json")
    assert accepted.status_code == 201
    assert accepted.json()["status"] == "confirmed"

    # 2. A second donor accepts, then asks for the match explicitly
    late = client.post(f"{base}/respond/", {"donor_id": "d1", "kind": "accept"}, format="json")
    assert late.json()["status"] == "pending"

    lost = client.post(f"{base}/match/", {"donor_id": "d1"}, format="json")
    assert lost.status_code == 409
    assert lost.json()["bound"] is False
    assert lost.json()["reason"] == "already_matched"
    assert lost.json()["request"]["matched_donor_id"] == "d5"

    # 3. Responses and completion
    assert len(client.get(f"{base}/responses/").json()) == 2
    completed = client.post(f"{base}/complete/")
    assert completed.status_code == 200
    assert completed.json()["status"] == "completed"

    assert client.post(f"{base}/cancel/").status_code == 409


def test_respond_validation(client, created):
    base = f"/api/v1/requests/{created['id']}"

    assert client.post(f"{base}/respond/", {"donor_id": "d1", "kind": "yes"}, format="json").status_code == 400
    assert client.post(f"{base}/respond/", {"donor_id": "ghost", "kind": "accept"}, format="json").status_code == 404
    assert client.post(f"{base}/match/", {"donor_id": "d1"}, format="json").status_code == 400


def test_cancel_twice_conflicts(client, created):
    base = f"/api/v1/requests/{created['id']}"

    cancelled = client.post(f"{base}/cancel/")
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"

    assert client.post(f"{base}/cancel/").status_code == 409


def test_expired_request_is_gone(client, created, clock):
    clock.advance(hours=2, microseconds=1)

    response = client.post(f"/api/v1/requests/{created['id']}/respond/", {"donor_id": "d1", "kind": "accept"}, format="json")

    assert response.status_code == 410
    assert client.get(f"/api/v1/requests/{created['id']}/").json()["status"] == "expired"


def test_sweep_endpoint(client, created, clock):
    clock.advance(hours=3)

    response = client.post("/api/v1/sweep/")

    assert response.status_code == 200
    assert response.json() == {"expired": [created["id"]], "escalated": []}


def test_create_is_throttled_per_ip(client, critical_draft):
    for _ in range(20):
        assert client.post("/api/v1/requests/", critical_draft, format="json").status_code == 201

    throttled = client.post("/api/v1/requests/", critical_draft, format="json")

    assert throttled.status_code == 429
    assert int(throttled["Retry-After"]) == 60


# --- DjangoRequestStore ---


def _stored_request(store, clock):
    request = BloodRequest(
        id="req-1",
        blood_type=BloodType.O_NEG,
        units_needed=1,
        urgency=Urgency.URGENT,
        status=RequestStatus.PENDING,
        created_at=clock.now,
        expires_at=compute_expires_at(Urgency.URGENT, clock.now),
    )
    return store.insert_request(request)


def test_compare_and_set_is_conditional(django_store, clock):
    _stored_request(django_store, clock)
    expected = {"status": RequestStatus.PENDING, "matched_donor_id": None}
    changes = {"status": RequestStatus.MATCHED, "matched_donor_id": "d1", "matched_at": clock.now}

    assert django_store.compare_and_set("req-1", expected, changes) is True
    assert django_store.compare_and_set("req-1", expected, {**changes, "matched_donor_id": "d5"}) is False

    stored = django_store.find_request("req-1")
    assert stored.status == RequestStatus.MATCHED
    assert stored.matched_donor_id == "d1"

    with pytest.raises(NotFoundError):
        django_store.compare_and_set("missing", expected, changes)


def test_upsert_and_count(django_store, clock):
    _stored_request(django_store, clock)

    first, created = django_store.upsert_response("req-1", "d1", ResponseKind.MAYBE, clock.now)
    second, created_again = django_store.upsert_response("req-1", "d1", ResponseKind.ACCEPT, clock.now, eta_minutes=5)
    django_store.increment_response_count("req-1")

    assert (created, created_again) == (True, False)
    assert second.id == first.id
    assert second.kind == ResponseKind.ACCEPT
    assert DonorResponseRecord.objects.count() == 1
    assert django_store.find_request("req-1").response_count == 1

    with pytest.raises(NotFoundError):
        django_store.increment_response_count("missing")
