from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, List, Optional

DIFFICULTY_EASY = "easy"
DIFFICULTY_MEDIUM = "medium"
DIFFICULTY_HARD = "hard"
DIFFICULTIES = (DIFFICULTY_EASY, DIFFICULTY_MEDIUM, DIFFICULTY_HARD)

CONFIDENCE_HIGH = "high"
CONFIDENCE_MEDIUM = "medium"
CONFIDENCE_LOW = "low"

QUESTION_TYPE_FILL_IN_BLANK = "fill_in_blank"
QUESTION_TYPE_MULTIPLE_CHOICE = "multiple_choice"
QUESTION_TYPES = (QUESTION_TYPE_FILL_IN_BLANK, QUESTION_TYPE_MULTIPLE_CHOICE)

ANALYSIS_DOMAINS = ("family", "life_events", "career", "hobbies")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class Message:
    role: str
    content: str


@dataclass
class ConversationMatch:
    conversation_id: str
    score: float
    timestamp: Optional[datetime]
    messages: List[Message] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ConversationMatch":
        messages = []
        for item in payload.get("messages") or []:
            if not isinstance(item, dict):
                continue
            messages.append(Message(role=str(item.get("role") or ""), content=str(item.get("content") or "")))
        try:
            score = float(payload.get("score") or 0.0)
        except (TypeError, ValueError):
            score = 0.0
        return cls(
            conversation_id=str(payload.get("conversation_id") or ""),
            score=score,
            timestamp=parse_timestamp(payload.get("timestamp")),
            messages=messages,
        )

    def content(self) -> str:
        return "\n".join(msg.content for msg in self.messages if msg.content)

    def age_days(self, now: datetime) -> Optional[int]:
        if self.timestamp is None:
            return None
        return int((now - self.timestamp).total_seconds() // 86400)


@dataclass
class ProfileFact:
    category: str
    content: str
    importance: str = ""

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ProfileFact":
        return cls(
            category=str(payload.get("category") or ""),
            content=str(payload.get("content") or ""),
            importance=str(payload.get("importance") or ""),
        )


@dataclass
class IncorrectAttempt:
    question_type: str
    question: str
    user_answer: str
    correct_answer: str
    topic: str

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "IncorrectAttempt":
        quiz = payload.get("quiz") if isinstance(payload.get("quiz"), dict) else {}
        return cls(
            question_type=str(quiz.get("question_type") or ""),
            question=str(quiz.get("question") or ""),
            user_answer=str(payload.get("user_answer") or ""),
            correct_answer=str(payload.get("correct_answer") or ""),
            topic=str(quiz.get("topic") or ""),
        )

    def summary(self) -> str:
        return (
            f"[{self.question_type}] Q: {self.question} | Your Answer: {self.user_answer} "
            f"| Correct Answer: {self.correct_answer} | Topic: {self.topic}"
        )


@dataclass
class AggregatedContext:
    conversation_matches: List[ConversationMatch] = field(default_factory=list)
    profile_facts: List[ProfileFact] = field(default_factory=list)
    prior_mistakes: List[IncorrectAttempt] = field(default_factory=list)

    @property
    def top_score(self) -> float:
        return max((match.score for match in self.conversation_matches), default=0.0)

    def context_messages(self) -> List[str]:
        lines: List[str] = []
        for match in self.conversation_matches:
            for msg in match.messages:
                if msg.role in {"user", "assistant"} and msg.content:
                    lines.append(msg.content)
        return lines


@dataclass
class QuestionOption:
    id: str
    text: str


@dataclass
class QuestionMetadata:
    topic: str
    memory_score: float
    days_since_conversation: int


@dataclass
class QuestionContent:
    """Validated question body returned by the completion provider."""

    question: str
    options: List[QuestionOption]
    correct_answer: str


@dataclass
class StoredQuestion:
    question_id: str
    user_id: str
    question_type: str
    topic: str
    difficulty: str
    created_at: float
    expires_at: float
    question: str = ""
    correct_answer: str = ""
    based_on_conversation: str = ""


@dataclass
class GeneratedQuestion:
    question_type: ClassVar[str] = ""

    question_id: str
    question: str
    options: List[QuestionOption]
    correct_answer: str
    based_on_conversation: str
    difficulty: str
    metadata: QuestionMetadata

    def to_stored(self, user_id: str, created_at: float, ttl_sec: float) -> StoredQuestion:
        return StoredQuestion(
            question_id=self.question_id,
            user_id=user_id,
            question_type=self.question_type,
            topic=self.metadata.topic,
            difficulty=self.difficulty,
            created_at=created_at,
            expires_at=created_at + ttl_sec,
            question=self.question,
            correct_answer=self.correct_answer,
            based_on_conversation=self.based_on_conversation,
        )

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        return {"question_id": payload.pop("question_id"), "question_type": self.question_type, **payload}


@dataclass
class FillInBlankQuestion(GeneratedQuestion):
    question_type: ClassVar[str] = QUESTION_TYPE_FILL_IN_BLANK


@dataclass
class MultipleChoiceQuestion(GeneratedQuestion):
    question_type: ClassVar[str] = QUESTION_TYPE_MULTIPLE_CHOICE


QUESTION_CLASSES = {
    QUESTION_TYPE_FILL_IN_BLANK: FillInBlankQuestion,
    QUESTION_TYPE_MULTIPLE_CHOICE: MultipleChoiceQuestion,
}


@dataclass
class DomainScore:
    domain: str
    score: int
    insights: List[str] = field(default_factory=list)
