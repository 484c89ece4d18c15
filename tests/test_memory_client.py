import asyncio
import json

import httpx
import pytest

from llm_server.core.errors import MemoryStoreError
from llm_server.core.memory_client import MemoryStoreClient


def _client(handler):
    return MemoryStoreClient("http://memory.test", timeout_ms=1000, transport=httpx.MockTransport(handler))


def _ok(data):
    return httpx.Response(200, json={"success": True, "data": data})


def test_search_conversations_parses_results():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        return _ok(
            {
                "results": [
                    {
                        "conversation_id": "c1",
                        "score": 0.87,
                        "timestamp": "2024-05-01T10:00:00Z",
                        "messages": [
                            {"role": "user", "content": "손녀 생일"},
                            {"role": "assistant", "content": "축하드려요"},
                        ],
                    }
                ]
            }
        )

    matches = asyncio.run(_client(handler).search_conversations("생일", 5))

    assert seen["path"] == "/api/rag/conversation/search"
    assert seen["params"] == {"query": "생일", "top_k": "5"}
    assert len(matches) == 1
    assert matches[0].conversation_id == "c1"
    assert matches[0].score == pytest.approx(0.87)
    assert matches[0].timestamp.year == 2024
    assert matches[0].content() == "손녀 생일\n축하드려요"


def test_save_conversation_posts_record():
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["body"] = json.loads(request.content)
        return _ok({"conversation_id": "saved-1"})

    record = {"conversation_id": "c1", "messages": [{"role": "user", "content": "hi"}]}
    conversation_id = asyncio.run(_client(handler).save_conversation(record))

    assert conversation_id == "saved-1"
    assert seen["method"] == "POST"
    assert seen["body"] == record


def test_missing_profile_is_empty():
    def handler(request):
        return httpx.Response(404, json={"success": False})

    assert asyncio.run(_client(handler).get_profile("user-1")) == []


def test_profile_facts_are_parsed():
    def handler(request):
        assert request.url.path == "/api/personal-info/user/user-1"
        return _ok({"items": [{"category": "allergy", "content": "땅콩", "importance": "high"}]})

    facts = asyncio.run(_client(handler).get_profile("user-1"))

    assert facts[0].category == "allergy"
    assert facts[0].content == "땅콩"


def test_server_error_raises_with_status():
    def handler(request):
        return httpx.Response(500, text="boom")

    with pytest.raises(MemoryStoreError) as excinfo:
        asyncio.run(_client(handler).get_profile("user-1"))

    assert excinfo.value.details == {"status_code": 500}


def test_unsuccessful_envelope_raises():
    def handler(request):
        return httpx.Response(200, json={"success": False, "error": {"code": "NOT_READY", "message": "index"}})

    with pytest.raises(MemoryStoreError) as excinfo:
        asyncio.run(_client(handler).search_conversations("q", 5))

    assert "NOT_READY" in str(excinfo.value)


def test_undecodable_body_raises():
    def handler(request):
        return httpx.Response(200, text="<html>")

    with pytest.raises(MemoryStoreError):
        asyncio.run(_client(handler).search_conversations("q", 5))


def test_transport_error_raises():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(MemoryStoreError):
        asyncio.run(_client(handler).get_incorrect_attempts("user-1", 5))


def test_incorrect_attempts_read_nested_quiz():
    def handler(request):
        assert dict(request.url.params) == {"user_id": "user-1", "limit": "20"}
        return _ok(
            {
                "items": [
                    {
                        "user_answer": "B",
                        "correct_answer": "A",
                        "quiz": {"question_type": "multiple_choice", "question": "어디에 갔나요?", "topic": "여행"},
                    }
                ]
            }
        )

    attempts = asyncio.run(_client(handler).get_incorrect_attempts("user-1", 20))

    assert attempts[0].question == "어디에 갔나요?"
    assert attempts[0].summary() == (
        "[multiple_choice] Q: 어디에 갔나요? | Your Answer: B | Correct Answer: A | Topic: 여행"
    )


def test_health_check():
    assert asyncio.run(_client(lambda request: httpx.Response(200)).health_check()) is True
    assert asyncio.run(_client(lambda request: httpx.Response(503)).health_check()) is False

    def refuse(request):
        raise httpx.ConnectError("refused", request=request)

    assert asyncio.run(_client(refuse).health_check()) is False
