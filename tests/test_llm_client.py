import asyncio
import json

import httpx
import pytest

from llm_server.core.errors import LLMError
from llm_server.core.llm_client import LLMClient, extract_json_payload


def _client(handler, **kwargs):
    return LLMClient(
        "https://llm.test/v1",
        "sk-test",
        "gpt-4",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def _completion(content):
    return httpx.Response(200, json={"model": "gpt-4", "choices": [{"message": {"content": content}}]})


def test_complete_sends_system_prompt_and_overrides():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return _completion("안녕하세요")

    content = asyncio.run(
        _client(handler).complete(
            "system",
            [{"role": "user", "content": "hi"}, {"role": "assistant", "content": ""}],
            temperature=0.2,
            max_tokens=100,
        )
    )

    assert content == "안녕하세요"
    assert seen["url"] == "https://llm.test/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["model"] == "gpt-4"
    assert seen["body"]["temperature"] == 0.2
    assert seen["body"]["max_tokens"] == 100
    assert seen["body"]["messages"] == [
        {"role": "system", "content": "system"},
        {"role": "user", "content": "hi"},
    ]


def test_complete_uses_configured_defaults():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return _completion("ok")

    asyncio.run(_client(handler, temperature=0.7, max_tokens=3000).complete("", [{"role": "user", "content": "x"}]))

    assert seen["body"]["temperature"] == 0.7
    assert seen["body"]["max_tokens"] == 3000
    assert seen["body"]["messages"] == [{"role": "user", "content": "x"}]


def test_empty_choices_raise():
    def handler(request):
        return httpx.Response(200, json={"choices": []})

    with pytest.raises(LLMError):
        asyncio.run(_client(handler).complete("s", [{"role": "user", "content": "x"}]))


def test_http_error_raises():
    def handler(request):
        return httpx.Response(429, json={"error": "rate limited"})

    with pytest.raises(LLMError) as excinfo:
        asyncio.run(_client(handler).complete("s", [{"role": "user", "content": "x"}]))

    assert "429" in str(excinfo.value)


def test_timeout_raises():
    def handler(request):
        raise httpx.ReadTimeout("slow provider", request=request)

    with pytest.raises(LLMError):
        asyncio.run(_client(handler).complete("s", [{"role": "user", "content": "x"}]))


def test_extract_json_payload_tolerates_fences_and_chatter():
    assert extract_json_payload('```json\n{"score": 80}\n```') == {"score": 80}
    assert extract_json_payload('평가 결과입니다: {"score": 65, "reasoning": "ok"} 감사합니다') == {
        "score": 65,
        "reasoning": "ok",
    }
    assert extract_json_payload('[{"domain": "family"}]') == [{"domain": "family"}]
    assert extract_json_payload("no json here") is None
    assert extract_json_payload(None) is None
