from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class ChatRequest(BaseModel):
    user_id: str = Field(min_length=1)
    message: str

    @field_validator("message")
    @classmethod
    def _message_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message cannot be empty")
        return value


class GameQuestionRequest(BaseModel):
    user_id: str = Field(min_length=1)
    question_type: str
    difficulty_hint: Optional[str] = None


class GameResultRequest(BaseModel):
    user_id: str = Field(min_length=1)
    question_id: str = Field(min_length=1)
    user_answer: str
    is_correct: bool = False
    response_time_ms: int = 0
    game_session_id: str = ""


class AnalysisRequest(BaseModel):
    user_id: str


class DomainScoreIn(BaseModel):
    domain: str
    score: int = Field(ge=0, le=100)
    insights: List[str] = []


class ReportRequest(BaseModel):
    user_id: Optional[str] = None
    domains: List[DomainScoreIn]
