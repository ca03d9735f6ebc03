from datetime import timedelta

import pytest

from blood_requests.models import BloodType
from dispatch.scoring import cooldown_bonus, rank_candidates, score_candidate
from donors.policy import DonorPolicy, default_donor_policy
from routing.distance import distance_or_default, haversine_km
from routing.eta_service import estimate_eta_minutes

from conftest import CENTER, donor_at, point_north


def test_haversine_matches_known_offset():
    assert haversine_km(CENTER, point_north(10)) == pytest.approx(10, abs=1e-6)
    assert haversine_km(CENTER, CENTER) == 0


def test_unknown_location_uses_default_distance():
    assert distance_or_default(CENTER, None, 5.0) == 5.0
    assert distance_or_default(None, CENTER, 5.0) == 5.0


def test_eta_is_two_minutes_per_km_rounded_half_up():
    assert estimate_eta_minutes(0) == 0
    assert estimate_eta_minutes(1.0) == 2
    assert estimate_eta_minutes(1.25) == 3
    assert estimate_eta_minutes(7.3) == 15


def test_score_formula(clock):
    now = clock.now

    # exact match, 1 km, never donated
    assert score_candidate(BloodType.O_NEG, BloodType.O_NEG, 1.0, None, now) == pytest.approx(148)

    # compatible but not exact, 1 km
    assert score_candidate(BloodType.O_NEG, BloodType.A_POS, 1.0, None, now) == pytest.approx(98)

    # distance penalty is capped at 30
    assert score_candidate(BloodType.O_NEG, BloodType.O_NEG, 500.0, None, now) == pytest.approx(120)


def test_score_never_goes_negative(clock):
    harsh = DonorPolicy(base_score=10, max_distance_penalty=1000)
    assert score_candidate(BloodType.O_NEG, BloodType.A_POS, 100.0, None, clock.now, harsh) == 0


def test_cooldown_bonus_steps(clock):
    policy = default_donor_policy()
    now = clock.now

    assert cooldown_bonus(None, now, policy) == 0
    assert cooldown_bonus(now - timedelta(days=41), now, policy) == 0
    assert cooldown_bonus(now - timedelta(days=42), now, policy) == 10
    assert cooldown_bonus(now - timedelta(days=56), now, policy) == 20
    assert cooldown_bonus(now - timedelta(days=400), now, policy) == 20


def test_rank_orders_by_score_then_distance(clock):
    donors = [
        donor_at("far", "O-", 20),
        donor_at("near", "O-", 1),
        donor_at("mid", "O-", 5),
        donor_at("compatible_near", "O-", 1),
    ]

    ranked = rank_candidates(CENTER, BloodType.A_POS, donors, now=clock.now)

    # Same type everywhere, so distance decides; the equal pair falls back to id
    assert [candidate.donor_id for candidate in ranked] == ["compatible_near", "near", "mid", "far"]

    near = ranked[1]
    assert near.distance_km == pytest.approx(1.0)
    assert near.eta_minutes == 2
    assert near.exact_match is False


def test_exact_match_outranks_closer_compatible_donor(clock):
    donors = [donor_at("o_neg_close", "O-", 1), donor_at("a_pos_far", "A+", 10)]

    ranked = rank_candidates(CENTER, BloodType.A_POS, donors, now=clock.now)

    # 130 (150 - 20) beats 98 (100 - 2)
    assert [candidate.donor_id for candidate in ranked] == ["a_pos_far", "o_neg_close"]
    assert ranked[0].exact_match


def test_closer_still_wins_past_the_penalty_cap(clock):
    donors = [donor_at("d24", "O-", 24), donor_at("d16", "O-", 16)]

    ranked = rank_candidates(CENTER, BloodType.O_NEG, donors, now=clock.now)

    assert ranked[0].score == ranked[1].score
    assert [candidate.donor_id for candidate in ranked] == ["d16", "d24"]


def test_rested_donor_beats_slightly_closer_one(clock):
    donors = [
        donor_at("fresh", "O-", 1, last_donation_at=clock.now - timedelta(days=10)),
        donor_at("rested", "O-", 4, last_donation_at=clock.now - timedelta(days=90)),
    ]

    ranked = rank_candidates(CENTER, BloodType.O_NEG, donors, now=clock.now)

    # rested: 150 - 8 + 20 = 162, fresh: 150 - 2 = 148
    assert [candidate.donor_id for candidate in ranked] == ["rested", "fresh"]


def test_search_radius_widens_with_escalation(clock):
    donors = [donor_at("d10", "O-", 10), donor_at("d40", "O-", 40), donor_at("d500", "O-", 500)]

    def ids(level):
        ranked = rank_candidates(CENTER, BloodType.O_NEG, donors, now=clock.now, escalation_level=level)
        return [candidate.donor_id for candidate in ranked]

    assert ids(0) == ["d10"]
    assert ids(1) == ["d10", "d40"]
    assert ids(2) == ["d10", "d40"]
    assert ids(3) == ["d10", "d40", "d500"]
    # levels past the table reuse the last (unbounded) ring
    assert ids(9) == ["d10", "d40", "d500"]


def test_donor_without_location_ranks_at_default_distance(clock):
    donors = [donor_at("nowhere", "O-"), donor_at("d3", "O-", 3), donor_at("d8", "O-", 8)]

    ranked = rank_candidates(CENTER, BloodType.O_NEG, donors, now=clock.now)

    assert [candidate.donor_id for candidate in ranked] == ["d3", "nowhere", "d8"]
    assert ranked[1].distance_km == 5.0


def test_policy_rejects_unbounded_ring_before_the_end():
    with pytest.raises(ValueError):
        DonorPolicy(search_radii_km=[25.0, None, 100.0]).validate()
