from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from llm_server.core import generation
from llm_server.core.background import DetachedTaskRunner
from llm_server.core.errors import InsufficientDataError, InvalidRequestError
from llm_server.core.fanout import FanOutCoordinator, Lookup
from llm_server.core.llm_client import LLMClient
from llm_server.core.memory_client import MemoryStoreClient
from llm_server.core.metrics import metrics
from llm_server.core.models import (
    QUESTION_CLASSES,
    ConversationMatch,
    GeneratedQuestion,
    QuestionMetadata,
    utc_now,
)
from llm_server.core.question_cache import QuestionCache
from llm_server.core.scoring import ScoringEngine

logger = logging.getLogger(__name__)

GAME_SEARCH_QUERY = "conversation"
GAME_SEARCH_LIMIT = 20
TOPIC_MAX_CHARS = 50
DEFAULT_TOPIC = "일반"
EVALUATION_TYPE = "memory_evaluation"
NEXT_TOPIC_SUGGESTION = "새로운 주제 추천"


def extract_topic(match: ConversationMatch) -> str:
    if match.messages and match.messages[0].content:
        return match.messages[0].content[:TOPIC_MAX_CHARS]
    return DEFAULT_TOPIC


class GameService:
    def __init__(
        self,
        memory: MemoryStoreClient,
        llm: LLMClient,
        fanout: FanOutCoordinator,
        cache: QuestionCache,
        scoring: ScoringEngine,
        runner: DetachedTaskRunner,
        min_conversations: int = 5,
        request_timeout_ms: Optional[int] = None,
    ) -> None:
        self.memory = memory
        self.llm = llm
        self.fanout = fanout
        self.cache = cache
        self.scoring = scoring
        self.runner = runner
        self.min_conversations = min_conversations
        self._timeout_sec = request_timeout_ms / 1000.0 if request_timeout_ms else None

    def select_match(
        self,
        matches: Sequence[ConversationMatch],
        difficulty: str,
        now: datetime,
    ) -> ConversationMatch:
        for match in matches:
            if self.scoring.difficulty_for_age(match, now) == difficulty:
                return match
        return matches[0]

    async def generate_question(
        self,
        user_id: str,
        question_type: str,
        difficulty_hint: Optional[str] = None,
    ) -> GeneratedQuestion:
        question_cls = QUESTION_CLASSES.get(question_type)
        if question_cls is None:
            raise InvalidRequestError(
                f"unsupported question type: {question_type}",
                code="invalid_question_type",
            )

        result = await self.fanout.gather(
            [
                Lookup(
                    "conversations",
                    lambda: self.memory.search_conversations(GAME_SEARCH_QUERY, GAME_SEARCH_LIMIT),
                    required=True,
                    default=[],
                )
            ],
            timeout=self._timeout_sec,
        )
        matches: List[ConversationMatch] = result.get("conversations") or []
        if not matches or len(matches) < self.min_conversations:
            metrics.inc("game_question_total", {"result": "insufficient_data"})
            raise InsufficientDataError(
                f"need at least {self.min_conversations} conversations, got {len(matches)}",
                details={"required": self.min_conversations, "found": len(matches)},
            )

        now = utc_now()
        difficulty = self.scoring.determine_difficulty(difficulty_hint, matches, now)
        match = self.select_match(matches, difficulty, now)
        topic = extract_topic(match)
        logger.info("game question user=%s type=%s difficulty=%s topic=%s", user_id, question_type, difficulty, topic)

        content = await generation.generate_question_content(self.llm, question_type, match.content(), topic)
        question = question_cls(
            question_id=str(uuid.uuid4()),
            question=content.question,
            options=content.options,
            correct_answer=content.correct_answer,
            based_on_conversation=match.conversation_id,
            difficulty=difficulty,
            metadata=QuestionMetadata(
                topic=topic,
                memory_score=match.score,
                days_since_conversation=max(0, match.age_days(now) or 0),
            ),
        )
        self.cache.put(question.to_stored(user_id, self.cache.now(), self.cache.ttl_sec))
        metrics.inc("game_question_total", {"result": "ok", "type": question_type})
        return question

    async def evaluate_result(
        self,
        user_id: str,
        question_id: str,
        user_answer: str,
        is_correct: bool,
        response_time_ms: int,
        game_session_id: str = "",
    ) -> Dict[str, Any]:
        evaluation = self.scoring.evaluate(is_correct, response_time_ms)
        cached = self.cache.get(question_id)
        topic = cached.topic if cached is not None and cached.topic else DEFAULT_TOPIC
        if cached is None:
            logger.info("question %s not in cache, using default topic", question_id)

        self.runner.spawn(
            "save_evaluation",
            lambda: self._save_evaluation(
                question_id, game_session_id or user_id, topic, user_answer, is_correct, evaluation.score
            ),
        )
        metrics.inc("game_result_total", {"confidence": evaluation.confidence})

        return {
            "result_id": str(uuid.uuid4()),
            "memory_evaluation": {
                "topic": topic,
                "retention_score": evaluation.score,
                "confidence": evaluation.confidence,
                "recommendation": evaluation.recommendation,
            },
            "next_question_suggestion": {
                "difficulty": evaluation.next_difficulty,
                "topic_preference": NEXT_TOPIC_SUGGESTION,
            },
            "stored_at": utc_now().isoformat(),
        }

    async def _save_evaluation(
        self,
        question_id: str,
        session_id: str,
        topic: str,
        user_answer: str,
        is_correct: bool,
        retention_score: float,
    ) -> None:
        outcome = "정답" if is_correct else "오답"
        record = {
            "conversation_id": f"memory_eval_{uuid.uuid4()}",
            "messages": [
                {"role": "system", "content": f"사용자가 {topic}에 대한 기억력 테스트에서 {outcome}"},
            ],
            "metadata": {
                "session_id": session_id,
                "type": EVALUATION_TYPE,
                "retention_score": retention_score,
                "question_id": question_id,
                "user_answer": user_answer,
            },
        }
        await self.memory.save_conversation(record)
