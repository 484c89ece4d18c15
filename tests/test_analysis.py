import asyncio
import json

import pytest

from llm_server.core import prompts
from llm_server.core.analysis import AnalysisService
from llm_server.core.errors import InvalidRequestError, LLMError, MemoryStoreError
from llm_server.core.fanout import FanOutCoordinator
from llm_server.core.models import ConversationMatch, DomainScore, IncorrectAttempt, Message

DOMAINS_JSON = json.dumps(
    {
        "domains": [
            {"domain": "family", "score": 82, "insights": ["가족 이야기를 자세히 기억함"]},
            {"domain": "life_events", "score": 64, "insights": []},
            {"domain": "career", "score": 40, "insights": ["직장 이름을 혼동"]},
            {"domain": "hobbies", "score": 90, "insights": ["등산"]},
        ]
    },
    ensure_ascii=False,
)


class FakeMemory:
    def __init__(self, matches=None, attempts=None, fail=False):
        self.matches = matches or []
        self.attempts = attempts or []
        self.fail = fail
        self.calls = []

    async def search_conversations(self, query, limit):
        self.calls.append(("search", query, limit))
        if self.fail:
            raise MemoryStoreError("search down")
        return list(self.matches)

    async def get_incorrect_attempts(self, user_id, limit):
        self.calls.append(("attempts", user_id, limit))
        if self.fail:
            raise MemoryStoreError("quiz store down")
        return list(self.attempts)


class FakeLLM:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    async def complete(self, system_prompt, messages, temperature=None, max_tokens=None):
        self.calls.append({"system": system_prompt, "messages": messages})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _service(memory, llm):
    return AnalysisService(memory, llm, FanOutCoordinator())


def _domains(*names):
    return [DomainScore(domain=name, score=50, insights=[f"{name} 메모"]) for name in names]


def test_analyze_runs_domain_analysis_then_report():
    memory = FakeMemory(
        matches=[ConversationMatch("c1", 0.8, None, [Message("user", "딸이 결혼했어")])],
        attempts=[IncorrectAttempt("fill_in_blank", "딸의 이름은?", "민지", "수지", "가족")],
    )
    llm = FakeLLM(DOMAINS_JSON, "종합 리포트")

    result = asyncio.run(_service(memory, llm).analyze("user-1"))

    assert result["user_id"] == "user-1"
    assert result["report"] == "종합 리포트"
    assert [domain["domain"] for domain in result["domains"]] == ["family", "life_events", "career", "hobbies"]
    assert result["domains"][0] == {"domain": "family", "score": 82, "insights": ["가족 이야기를 자세히 기억함"]}
    assert ("search", "user-1", 50) in memory.calls
    assert ("attempts", "user-1", 20) in memory.calls

    analysis_prompt = llm.calls[0]["messages"][0]["content"]
    assert "딸이 결혼했어" in analysis_prompt
    assert "[fill_in_blank] Q: 딸의 이름은?" in analysis_prompt
    assert llm.calls[1]["system"] == prompts.REPORT_SYSTEM_PROMPT
    assert "가족 (family): 82점" in llm.calls[1]["messages"][0]["content"]


def test_analysis_runs_on_empty_history_when_lookups_fail():
    llm = FakeLLM(DOMAINS_JSON)

    result = asyncio.run(_service(FakeMemory(fail=True), llm).analyze_domains("user-1"))

    assert len(result["domains"]) == 4
    assert "report" not in result
    assert llm.calls[0]["messages"][0]["content"] == "대화 기록:\n- 없음\n\n틀린 퀴즈 기록:\n- 없음"


def test_generate_report_requires_exactly_four_domains():
    llm = FakeLLM("unused")
    service = _service(FakeMemory(), llm)

    with pytest.raises(InvalidRequestError):
        asyncio.run(service.generate_report(_domains("family", "career", "hobbies")))

    with pytest.raises(InvalidRequestError):
        asyncio.run(service.generate_report(_domains("family", "family", "career", "hobbies")))

    assert llm.calls == []


def test_generate_report_orders_domains():
    llm = FakeLLM("리포트")
    service = _service(FakeMemory(), llm)

    result = asyncio.run(service.generate_report(_domains("hobbies", "career", "family", "life_events")))

    assert result["report"] == "리포트"
    lines = llm.calls[0]["messages"][0]["content"].splitlines()
    assert lines[1].startswith("- 가족 (family)")
    assert lines[4].startswith("- 취미 (hobbies)")


def test_llm_failure_propagates():
    service = _service(FakeMemory(), FakeLLM(LLMError("provider down")))

    with pytest.raises(LLMError):
        asyncio.run(service.analyze("user-1"))
