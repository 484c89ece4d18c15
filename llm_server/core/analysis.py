from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from llm_server.core import generation
from llm_server.core.errors import InvalidRequestError
from llm_server.core.fanout import FanOutCoordinator, Lookup
from llm_server.core.llm_client import LLMClient
from llm_server.core.memory_client import MemoryStoreClient
from llm_server.core.models import ANALYSIS_DOMAINS, DomainScore, utc_now

logger = logging.getLogger(__name__)

HISTORY_SEARCH_LIMIT = 50
INCORRECT_QUIZ_LIMIT = 20


class AnalysisService:
    """Domain analysis over a user's conversation history and missed quizzes.

    Both lookups are optional: either one failing leaves its list empty and
    the analysis runs on whatever came back.
    """

    def __init__(
        self,
        memory: MemoryStoreClient,
        llm: LLMClient,
        fanout: FanOutCoordinator,
        request_timeout_ms: Optional[int] = None,
    ) -> None:
        self.memory = memory
        self.llm = llm
        self.fanout = fanout
        self._timeout_sec = request_timeout_ms / 1000.0 if request_timeout_ms else None

    async def _conversation_history(self, user_id: str) -> List[str]:
        matches = await self.memory.search_conversations(user_id, HISTORY_SEARCH_LIMIT)
        return [msg.content for match in matches for msg in match.messages]

    async def _incorrect_quizzes(self, user_id: str) -> List[str]:
        attempts = await self.memory.get_incorrect_attempts(user_id, INCORRECT_QUIZ_LIMIT)
        return [attempt.summary() for attempt in attempts]

    async def gather_history(self, user_id: str) -> Tuple[List[str], List[str]]:
        result = await self.fanout.gather(
            [
                Lookup("conversations", lambda: self._conversation_history(user_id), default=[]),
                Lookup("incorrect_quizzes", lambda: self._incorrect_quizzes(user_id), default=[]),
            ],
            timeout=self._timeout_sec,
        )
        conversations = result.get("conversations") or []
        quizzes = result.get("incorrect_quizzes") or []
        logger.info("analysis history user=%s conversations=%d quizzes=%d", user_id, len(conversations), len(quizzes))
        return conversations, quizzes

    async def analyze_domains(self, user_id: str) -> Dict[str, Any]:
        conversations, quizzes = await self.gather_history(user_id)
        domains = await generation.analyze_domains(self.llm, conversations, quizzes)
        return {
            "user_id": user_id,
            "domains": [_domain_dict(domain) for domain in domains],
            "analyzed_at": utc_now().isoformat(),
        }

    async def analyze(self, user_id: str) -> Dict[str, Any]:
        conversations, quizzes = await self.gather_history(user_id)
        domains = await generation.analyze_domains(self.llm, conversations, quizzes)
        report = await generation.generate_report(self.llm, domains)
        return {
            "user_id": user_id,
            "domains": [_domain_dict(domain) for domain in domains],
            "report": report,
            "analyzed_at": utc_now().isoformat(),
        }

    async def generate_report(self, domains: Sequence[DomainScore]) -> Dict[str, Any]:
        validate_report_domains(domains)
        ordered = sorted(domains, key=lambda item: ANALYSIS_DOMAINS.index(item.domain))
        report = await generation.generate_report(self.llm, ordered)
        return {"report": report, "generated_at": utc_now().isoformat()}


def validate_report_domains(domains: Sequence[DomainScore]) -> None:
    if len(domains) != len(ANALYSIS_DOMAINS):
        raise InvalidRequestError(
            f"expected {len(ANALYSIS_DOMAINS)} domains, got {len(domains)}",
            details={"expected": list(ANALYSIS_DOMAINS)},
        )
    names = [domain.domain for domain in domains]
    if sorted(names) != sorted(ANALYSIS_DOMAINS):
        raise InvalidRequestError(
            f"domains must be exactly {', '.join(ANALYSIS_DOMAINS)}",
            details={"expected": list(ANALYSIS_DOMAINS), "received": names},
        )


def _domain_dict(domain: DomainScore) -> Dict[str, Any]:
    return {"domain": domain.domain, "score": domain.score, "insights": list(domain.insights)}
