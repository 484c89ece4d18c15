import logging
import os
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_WEIGHTS = (0.5, 0.3, 0.2)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _split_origins(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


def parse_weights(raw: Optional[str]) -> tuple[float, float, float]:
    """Parse ``"correct,speed,recency"`` weights, falling back to the defaults."""
    if not raw:
        return DEFAULT_WEIGHTS
    parts = [item.strip() for item in raw.split(",") if item.strip()]
    if len(parts) != 3:
        logger.warning("MEMORY_EVALUATION_WEIGHTS needs three values, got %r; using defaults", raw)
        return DEFAULT_WEIGHTS
    try:
        weights = tuple(float(item) for item in parts)
    except ValueError:
        logger.warning("MEMORY_EVALUATION_WEIGHTS is not numeric: %r; using defaults", raw)
        return DEFAULT_WEIGHTS
    return weights  # type: ignore[return-value]


@dataclass
class Settings:
    port: int
    env: str
    rag_server_url: str
    rag_server_timeout_ms: int
    openai_api_key: str
    openai_base_url: str
    openai_model: str
    openai_temperature: float
    openai_max_tokens: int
    openai_timeout_ms: int
    min_conversations_for_game: int
    question_cache_ttl_sec: int
    question_cache_reap_interval_sec: int
    memory_evaluation_weights: tuple[float, float, float]
    request_timeout_ms: int
    background_write_timeout_ms: int
    log_level: str
    cors_allow_origins: list[str] = field(default_factory=list)


def load_settings() -> Settings:
    return Settings(
        port=_env_int("PORT", 3000),
        env=os.getenv("ENVIRONMENT", "development").strip(),
        rag_server_url=os.getenv("RAG_SERVER_URL", "http://localhost:8080").rstrip("/"),
        rag_server_timeout_ms=_env_int("RAG_SERVER_TIMEOUT", 5000),
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        openai_base_url=os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1").rstrip("/"),
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4").strip(),
        openai_temperature=_env_float("OPENAI_TEMPERATURE", 0.7),
        openai_max_tokens=_env_int("OPENAI_MAX_TOKENS", 3000),
        openai_timeout_ms=_env_int("OPENAI_TIMEOUT_MS", 30000),
        min_conversations_for_game=max(0, _env_int("MIN_CONVERSATIONS_FOR_GAME", 5)),
        question_cache_ttl_sec=max(1, _env_int("QUESTION_CACHE_TTL", 300)),
        question_cache_reap_interval_sec=max(1, _env_int("QUESTION_CACHE_REAP_INTERVAL", 60)),
        memory_evaluation_weights=parse_weights(os.getenv("MEMORY_EVALUATION_WEIGHTS")),
        request_timeout_ms=max(1, _env_int("REQUEST_TIMEOUT_MS", 10000)),
        background_write_timeout_ms=max(1, _env_int("BACKGROUND_WRITE_TIMEOUT_MS", 5000)),
        log_level=os.getenv("LOG_LEVEL", "info").strip().upper() or "INFO",
        cors_allow_origins=_split_origins(os.getenv("CORS_ALLOW_ORIGINS", "")),
    )


SETTINGS = load_settings()
