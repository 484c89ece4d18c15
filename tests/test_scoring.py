import math
from datetime import datetime, timedelta, timezone

import pytest

from llm_server.core.models import ConversationMatch, Message
from llm_server.core.scoring import (
    RECOMMENDATION_GOOD,
    RECOMMENDATION_PARTIAL,
    RECOMMENDATION_STRONG,
    RECOMMENDATION_WEAK,
    ScoringConfig,
    ScoringEngine,
)

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _match(conversation_id, age=None):
    timestamp = NOW - age if age is not None else None
    return ConversationMatch(conversation_id, 0.5, timestamp, [Message("user", "hi")])


def test_correct_fast_answer_scores_full_retention():
    result = ScoringEngine().evaluate(True, 0)

    assert result.score == pytest.approx(1.0)
    assert result.confidence == "high"
    assert result.recommendation == RECOMMENDATION_STRONG
    assert result.next_difficulty == "hard"


def test_wrong_answer_at_threshold_keeps_only_recency_weight():
    result = ScoringEngine().evaluate(False, 5000)

    assert result.score == pytest.approx(0.2)
    assert result.confidence == "low"
    assert result.recommendation == RECOMMENDATION_WEAK
    assert result.next_difficulty == "easy"


def test_time_score_is_linear_and_saturates():
    engine = ScoringEngine()

    assert engine.time_score(0) == 1.0
    assert engine.time_score(2500) == pytest.approx(0.5)
    assert engine.time_score(5000) == 0.0
    assert engine.time_score(12000) == 0.0
    assert engine.time_score(-300) == 1.0


def test_retention_uses_configured_weights_without_normalizing():
    engine = ScoringEngine(ScoringConfig(weights=(1.0, 1.0, 1.0)))

    assert engine.retention_score(True, 0) == pytest.approx(3.0)
    assert engine.retention_score(False, 2500) == pytest.approx(1.5)


def test_retention_is_monotone_in_correctness_and_latency():
    engine = ScoringEngine()

    assert engine.retention_score(True, 1000) > engine.retention_score(False, 1000)
    assert engine.retention_score(True, 1000) > engine.retention_score(True, 4000)


def test_confidence_tier_boundaries():
    engine = ScoringEngine()

    assert engine.confidence_tier(0.8) == "high"
    assert engine.confidence_tier(0.79) == "medium"
    assert engine.confidence_tier(0.5) == "medium"
    assert engine.confidence_tier(0.49) == "low"


def test_recommendation_tiers():
    engine = ScoringEngine()

    assert engine.recommendation(0.95) == RECOMMENDATION_STRONG
    assert engine.recommendation(0.75) == RECOMMENDATION_GOOD
    assert engine.recommendation(0.55) == RECOMMENDATION_PARTIAL
    assert engine.recommendation(0.1) == RECOMMENDATION_WEAK


def test_next_difficulty_escalates_with_retention():
    engine = ScoringEngine()

    assert engine.next_difficulty(0.85) == "hard"
    assert engine.next_difficulty(0.6) == "medium"
    assert engine.next_difficulty(0.3) == "easy"


def test_clamp_score_saturates_and_falls_back():
    clamp = ScoringEngine.clamp_score

    assert clamp(150, 0, 100, 50) == 100
    assert clamp(-3, 0, 100, 50) == 0
    assert clamp("42", 0, 100, 50) == 42
    assert clamp(None, 0, 100, 50) == 50
    assert clamp("not a number", 0, 100, 50) == 50
    assert clamp(math.nan, 0, 100, 50) == 50
    assert clamp(True, 0, 100, 50) == 50


def test_valid_hint_overrides_history():
    engine = ScoringEngine()
    matches = [_match("a", timedelta(days=30))]

    assert engine.determine_difficulty("easy", matches, NOW) == "easy"
    assert engine.determine_difficulty("extreme", matches, NOW) == "hard"


def test_difficulty_without_matches_is_easy():
    assert ScoringEngine().determine_difficulty(None, [], NOW) == "easy"


def test_difficulty_follows_share_of_recent_matches():
    engine = ScoringEngine()
    recent = timedelta(hours=2)
    old = timedelta(days=3)

    mostly_recent = [_match("a", recent), _match("b", recent), _match("c", recent), _match("d", old)]
    half_recent = [_match("a", recent), _match("b", recent), _match("c", old), _match("d", old)]
    none_recent = [_match("a", old), _match("b", old)]

    assert engine.determine_difficulty(None, mostly_recent, NOW) == "easy"
    assert engine.determine_difficulty(None, half_recent, NOW) == "medium"
    assert engine.determine_difficulty(None, none_recent, NOW) == "hard"


def test_matches_without_timestamp_are_not_recent():
    engine = ScoringEngine()
    matches = [_match("a"), _match("b")]

    assert engine.determine_difficulty(None, matches, NOW) == "hard"


def test_difficulty_for_age():
    engine = ScoringEngine()

    assert engine.difficulty_for_age(_match("a", timedelta(hours=5)), NOW) == "easy"
    assert engine.difficulty_for_age(_match("b", timedelta(days=3)), NOW) == "medium"
    assert engine.difficulty_for_age(_match("c", timedelta(days=7, hours=1)), NOW) == "medium"
    assert engine.difficulty_for_age(_match("d", timedelta(days=8)), NOW) == "hard"
    assert engine.difficulty_for_age(_match("e"), NOW) == "hard"


def test_config_from_settings_reads_weights():
    class _Settings:
        memory_evaluation_weights = (0.6, 0.3, 0.1)

    config = ScoringConfig.from_settings(_Settings())

    assert config.weights == (0.6, 0.3, 0.1)
    assert config.response_time_threshold_ms == 5000
