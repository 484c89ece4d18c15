"""Deterministic scoring and difficulty decisions.

Everything here is pure: callers pass the clock value in, nothing is cached and
no I/O happens. Thresholds and weights come from ``ScoringConfig`` so tests can
use arbitrary sets.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Sequence

from llm_server.core.models import (
    CONFIDENCE_HIGH,
    CONFIDENCE_LOW,
    CONFIDENCE_MEDIUM,
    DIFFICULTIES,
    DIFFICULTY_EASY,
    DIFFICULTY_HARD,
    DIFFICULTY_MEDIUM,
    ConversationMatch,
)

RECOMMENDATION_STRONG = "이 주제는 매우 잘 기억하고 있습니다."
RECOMMENDATION_GOOD = "이 주제는 비교적 잘 기억하고 있습니다."
RECOMMENDATION_PARTIAL = "이 주제는 부분적으로 기억하고 있습니다. 복습을 권장합니다."
RECOMMENDATION_WEAK = "이 주제는 잘 기억하지 못하고 있습니다. 자주 복습해주세요."


@dataclass(frozen=True)
class ScoringConfig:
    weights: tuple[float, float, float] = (0.5, 0.3, 0.2)
    response_time_threshold_ms: int = 5000
    high_threshold: float = 0.8
    medium_threshold: float = 0.5
    recent_window_sec: int = 86400
    medium_age_days: int = 7

    @classmethod
    def from_settings(cls, settings: Any) -> "ScoringConfig":
        return cls(weights=tuple(settings.memory_evaluation_weights))


@dataclass(frozen=True)
class RetentionResult:
    score: float
    confidence: str
    recommendation: str
    next_difficulty: str


class ScoringEngine:
    def __init__(self, config: Optional[ScoringConfig] = None) -> None:
        self.config = config or ScoringConfig()

    def time_score(self, response_time_ms: int) -> float:
        threshold = self.config.response_time_threshold_ms
        elapsed = max(0, int(response_time_ms))
        if elapsed >= threshold:
            return 0.0
        return (threshold - elapsed) / threshold

    def retention_score(self, correct: bool, response_time_ms: int) -> float:
        # Recency is not derived from conversation age yet; it stays at 1.0.
        w_correct, w_time, w_recency = self.config.weights
        correct_score = 1.0 if correct else 0.0
        recency_score = 1.0
        return w_correct * correct_score + w_time * self.time_score(response_time_ms) + w_recency * recency_score

    def confidence_tier(self, score: float) -> str:
        if score >= self.config.high_threshold:
            return CONFIDENCE_HIGH
        if score >= self.config.medium_threshold:
            return CONFIDENCE_MEDIUM
        return CONFIDENCE_LOW

    def recommendation(self, score: float) -> str:
        if score >= 0.9:
            return RECOMMENDATION_STRONG
        if score >= 0.7:
            return RECOMMENDATION_GOOD
        if score >= 0.5:
            return RECOMMENDATION_PARTIAL
        return RECOMMENDATION_WEAK

    def next_difficulty(self, score: float) -> str:
        """Higher retention asks for a harder next question."""
        if score >= self.config.high_threshold:
            return DIFFICULTY_HARD
        if score >= self.config.medium_threshold:
            return DIFFICULTY_MEDIUM
        return DIFFICULTY_EASY

    def evaluate(self, correct: bool, response_time_ms: int) -> RetentionResult:
        score = self.retention_score(correct, response_time_ms)
        return RetentionResult(
            score=score,
            confidence=self.confidence_tier(score),
            recommendation=self.recommendation(score),
            next_difficulty=self.next_difficulty(score),
        )

    @staticmethod
    def clamp_score(raw: Any, minimum: float, maximum: float, fallback: float) -> float:
        if isinstance(raw, bool) or raw is None:
            return fallback
        try:
            value = float(raw)
        except (TypeError, ValueError):
            return fallback
        if math.isnan(value):
            return fallback
        return max(minimum, min(maximum, value))

    def determine_difficulty(
        self,
        hint: Optional[str],
        matches: Sequence[ConversationMatch],
        now: datetime,
    ) -> str:
        if hint and hint in DIFFICULTIES:
            return hint
        if not matches:
            return DIFFICULTY_EASY
        recent = 0
        for match in matches:
            if match.timestamp is None:
                continue
            if (now - match.timestamp).total_seconds() < self.config.recent_window_sec:
                recent += 1
        if recent > len(matches) / 2:
            return DIFFICULTY_EASY
        if recent > 0:
            return DIFFICULTY_MEDIUM
        return DIFFICULTY_HARD

    def difficulty_for_age(self, match: ConversationMatch, now: datetime) -> str:
        days = match.age_days(now)
        if days is None:
            return DIFFICULTY_HARD
        if days <= 0:
            return DIFFICULTY_EASY
        if days <= self.config.medium_age_days:
            return DIFFICULTY_MEDIUM
        return DIFFICULTY_HARD
