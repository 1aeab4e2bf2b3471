from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from smartmatch.domain.matching import signals
from smartmatch.domain.matching.models import (
    CandidateProfile,
    InteractionEvent,
    RequesterProfile,
    SignalWeight,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _weights(**rows: tuple[float, float, float]) -> dict[str, SignalWeight]:
    return {
        name: SignalWeight(signal_name=name, pulse_weight=pulse, zone_weight=zone, decay_half_life_days=half)
        for name, (pulse, zone, half) in rows.items()
    }


def test_decay_factor_halves_at_half_life():
    assert signals.decay_factor(0, 7) == pytest.approx(1.0)
    assert signals.decay_factor(7, 7) == pytest.approx(0.5)
    assert signals.decay_factor(14, 7) == pytest.approx(0.25)


def test_behavioral_weight_ten_decays_to_five_after_one_half_life():
    events = [InteractionEvent("u1", "message_sent", NOW - timedelta(days=7))]
    scores = signals.behavioral_scores(events, _weights(message_sent=(10.0, 4.0, 7.0)), "pulse", now=NOW)
    assert scores["u1"] == pytest.approx(5.0)


def test_behavioral_uses_zone_weight_in_zone_context():
    events = [InteractionEvent("u1", "profile_view", NOW)]
    scores = signals.behavioral_scores(events, _weights(profile_view=(10.0, 4.0, 7.0)), "zone", now=NOW)
    assert scores["u1"] == pytest.approx(4.0)


def test_behavioral_skips_unknown_inactive_and_non_positive_half_life():
    weights = _weights(ok=(5.0, 5.0, 7.0), broken=(50.0, 50.0, 0.0))
    weights["off"] = SignalWeight("off", 50.0, 50.0, 7.0, is_active=False)
    events = [
        InteractionEvent("u1", "ok", NOW),
        InteractionEvent("u1", "broken", NOW),
        InteractionEvent("u1", "off", NOW),
        InteractionEvent("u1", "mystery", NOW),
    ]
    scores = signals.behavioral_scores(events, weights, "pulse", now=NOW)
    assert scores == {"u1": pytest.approx(5.0)}


def test_behavioral_is_clamped_both_ways():
    weights = _weights(like=(60.0, 60.0, 30.0), report=(-40.0, -40.0, 30.0))
    events = [InteractionEvent("fan", "like", NOW) for _ in range(3)]
    events += [InteractionEvent("foe", "report", NOW) for _ in range(3)]
    scores = signals.behavioral_scores(events, weights, "pulse", now=NOW)
    assert scores["fan"] == 100.0
    assert scores["foe"] == -50.0


def test_behavioral_future_events_do_not_grow():
    events = [InteractionEvent("u1", "like", NOW + timedelta(days=3))]
    scores = signals.behavioral_scores(events, _weights(like=(8.0, 8.0, 7.0)), "pulse", now=NOW)
    assert scores["u1"] == pytest.approx(8.0)


def test_overlap_example_two_skills_one_interest_same_org():
    requester = RequesterProfile(
        user_id="me",
        skills=("python", "sql", "design"),
        interests=("hiking", "chess"),
        organization="Acme",
    )
    candidate = CandidateProfile(
        user_id="them",
        skills=("sql", "python", "go"),
        interests=("chess",),
        organization="ACME",
    )
    result = signals.attribute_overlap(requester, candidate)
    assert result.score == 46.0
    assert result.shared_skills == ("python", "sql")
    assert result.shared_interests == ("chess",)
    assert result.goal_complementarity is False
    assert result.score * 0.20 == pytest.approx(9.2)


def test_overlap_complementarity_beats_shared_goals():
    requester = RequesterProfile(user_id="me", skills=("fundraising",), looking_for=("cto", "mentor"))
    candidate = CandidateProfile(user_id="them", skills=("cto",), looking_for=("mentor",))
    result = signals.attribute_overlap(requester, candidate)
    assert result.goal_complementarity is True
    assert result.shared_goals == ("mentor",)
    assert result.score == 25.0


def test_overlap_shared_goals_and_caps():
    skills = tuple(f"s{i}" for i in range(5))
    interests = tuple(f"i{i}" for i in range(5))
    requester = RequesterProfile(user_id="me", skills=skills, interests=interests, looking_for=("a", "b"))
    candidate = CandidateProfile(user_id="them", skills=skills, interests=interests, looking_for=("a", "b"))
    result = signals.attribute_overlap(requester, candidate)
    assert result.score == 40 + 30 + 16


def test_overlap_ignores_blank_organization():
    requester = RequesterProfile(user_id="me", organization="")
    candidate = CandidateProfile(user_id="them", organization="")
    assert signals.attribute_overlap(requester, candidate).score == 0.0


def test_session_scores_count_shared_sessions():
    bookmarks = [("a", "s1"), ("a", "s2"), ("b", "s9"), ("c", "s1")] + [("d", f"s{i}") for i in range(10)]
    scores = signals.session_scores({"s1", "s2"} | {f"s{i}" for i in range(10)}, bookmarks)
    assert scores["a"] == 30.0
    assert scores["c"] == 15.0
    assert scores["d"] == 100.0
    assert scores["b"] == 15.0


def test_session_scores_empty_when_requester_has_no_bookmarks():
    assert signals.session_scores(set(), [("a", "s1")]) == {}


def test_freshness_score():
    assert signals.freshness_score(None, now=NOW) == 0.0
    assert signals.freshness_score(NOW, now=NOW) == 100.0
    assert signals.freshness_score(NOW - timedelta(hours=10), now=NOW) == pytest.approx(80.0)
    assert signals.freshness_score(NOW - timedelta(days=3), now=NOW) == 0.0
    assert signals.freshness_score(NOW + timedelta(hours=5), now=NOW) == 100.0


def test_freshness_treats_naive_timestamps_as_utc():
    naive = (NOW - timedelta(hours=1)).replace(tzinfo=None)
    assert signals.freshness_score(naive, now=NOW) == pytest.approx(98.0)


@pytest.mark.asyncio
async def test_similarities_null_without_requester_embedding(match_store):
    match_store.embedding = False
    match_store.similarity_map = {"a": 0.9}
    assert await signals.embedding_similarities(match_store, "me", ["a"]) == {}
    assert "similarities" not in match_store.calls


@pytest.mark.asyncio
async def test_similarities_filters_to_requested_ids(match_store):
    match_store.embedding = True
    match_store.similarity_map = {"a": 0.9, "b": 0.1}
    assert await signals.embedding_similarities(match_store, "me", ["a"]) == {"a": 0.9}


@pytest.mark.asyncio
async def test_similarities_timeout_falls_back_to_null(match_store, monkeypatch):
    match_store.embedding = True

    async def _slow(query_user_id, candidate_ids):
        await asyncio.sleep(1)
        return {"a": 0.5}

    monkeypatch.setattr(match_store, "similarities", _slow)
    assert await signals.embedding_similarities(match_store, "me", ["a"], timeout=0.01) == {}


@pytest.mark.asyncio
async def test_slow_embedding_check_shares_similarity_timeout(match_store, monkeypatch):
    async def _slow(user_id):
        await asyncio.sleep(1)
        return True

    monkeypatch.setattr(match_store, "has_embedding", _slow)
    assert await signals.embedding_similarities(match_store, "me", ["a"], timeout=0.01) == {}
    assert "similarities" not in match_store.calls


@pytest.mark.asyncio
async def test_similarities_failure_falls_back_to_null(match_store):
    match_store.embedding = True
    match_store.fail = {"similarities"}
    assert await signals.embedding_similarities(match_store, "me", ["a"]) == {}


@pytest.mark.asyncio
async def test_session_affinity_is_zero_outside_zone(match_store):
    match_store.my_bookmarks = {"s1"}
    match_store.candidate_bookmarks = [("a", "s1")]
    assert await signals.session_affinity(match_store, "me", ["a"], "pulse", "evt") == {}
    assert await signals.session_affinity(match_store, "me", ["a"], "zone", "evt") == {"a": 15.0}


@pytest.mark.asyncio
async def test_behavioral_affinity_reads_weights_and_interactions(match_store):
    match_store.signal_weights = [SignalWeight("like", 10.0, 10.0, 7.0)]
    match_store.interactions = [InteractionEvent("a", "like", NOW - timedelta(days=7))]
    scores = await signals.behavioral_affinity(match_store, "me", ["a"], "pulse", now=NOW)
    assert scores["a"] == pytest.approx(5.0)


@pytest.mark.asyncio
async def test_behavioral_affinity_failure_is_neutral(match_store):
    match_store.signal_weights = [SignalWeight("like", 10.0, 10.0, 7.0)]
    match_store.fail = {"fetch_interactions"}
    assert await signals.behavioral_affinity(match_store, "me", ["a"], "pulse", now=NOW) == {}
