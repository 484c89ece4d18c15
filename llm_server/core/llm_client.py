from __future__ import annotations

import json
import logging
import re
import time
from typing import Any, Dict, List, Optional

import httpx

from llm_server.core.errors import LLMError
from llm_server.core.metrics import metrics

logger = logging.getLogger(__name__)


class LLMClient:
    """Chat-completions client for an OpenAI-compatible provider."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 3000,
        timeout_ms: int = 30000,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._timeout = max(1, timeout_ms) / 1000.0
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"content-type": "application/json"}
        if self.api_key:
            headers["authorization"] = f"Bearer {self.api_key}"
        return headers

    def _payload(
        self,
        system_prompt: str,
        messages: List[Dict[str, str]],
        temperature: Optional[float],
        max_tokens: Optional[int],
    ) -> dict:
        body_messages: List[Dict[str, str]] = []
        if system_prompt:
            body_messages.append({"role": "system", "content": system_prompt})
        for msg in messages:
            if msg.get("role") and msg.get("content"):
                body_messages.append({"role": msg["role"], "content": msg["content"]})
        body = {
            "model": self.model,
            "messages": body_messages,
            "temperature": temperature if temperature is not None else self.temperature,
        }
        resolved_max = max_tokens if max_tokens is not None else self.max_tokens
        if resolved_max:
            body["max_tokens"] = resolved_max
        return body

    async def complete(
        self,
        system_prompt: str,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        payload = self._payload(system_prompt, messages, temperature, max_tokens)
        started = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(f"{self.base_url}/chat/completions", json=payload, headers=self._headers())
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as exc:
            metrics.inc("llm_request_total", {"result": "timeout"})
            raise LLMError(f"completion timed out: {exc}") from exc
        except httpx.HTTPStatusError as exc:
            metrics.inc("llm_request_total", {"result": f"http_{exc.response.status_code}"})
            raise LLMError(f"completion failed: status {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            metrics.inc("llm_request_total", {"result": "transport_error"})
            raise LLMError(f"completion failed: {exc}") from exc
        except ValueError as exc:
            metrics.inc("llm_request_total", {"result": "invalid_json"})
            raise LLMError("completion returned an invalid body") from exc

        took_ms = int((time.perf_counter() - started) * 1000)
        metrics.observe_ms("llm_latency_ms", took_ms)
        content = _extract_content(data if isinstance(data, dict) else {})
        if not content:
            metrics.inc("llm_request_total", {"result": "empty"})
            raise LLMError("no choices returned from completion provider")
        metrics.inc("llm_request_total", {"result": "ok"})
        usage = data.get("usage") if isinstance(data, dict) else None
        if isinstance(usage, dict):
            logger.debug(
                "completion model=%s took_ms=%d total_tokens=%s",
                data.get("model") or self.model,
                took_ms,
                usage.get("total_tokens"),
            )
        return content


def _extract_content(data: dict) -> str:
    choices = data.get("choices")
    if isinstance(choices, list) and choices:
        choice = choices[0]
        if isinstance(choice, dict):
            message = choice.get("message")
            if isinstance(message, dict):
                content = message.get("content")
                if content is not None:
                    return str(content)
            text = choice.get("text")
            if text is not None:
                return str(text)
    return ""


def extract_json_payload(text: Optional[str]) -> Any:
    """Pull the JSON value out of a completion, tolerating code fences and chatter."""
    if not isinstance(text, str):
        return None
    trimmed = text.strip()
    if trimmed.startswith("```"):
        trimmed = re.sub(r"^```(?:json)?", "", trimmed).strip()
        trimmed = re.sub(r"```$", "", trimmed).strip()
    pairs = sorted((("{", "}"), ("[", "]")), key=lambda pair: _first_index(trimmed, pair[0]))
    for opener, closer in pairs:
        start = trimmed.find(opener)
        end = trimmed.rfind(closer)
        if start == -1 or end == -1 or end <= start:
            continue
        try:
            return json.loads(trimmed[start : end + 1])
        except json.JSONDecodeError:
            continue
    return None


def _first_index(text: str, token: str) -> int:
    index = text.find(token)
    return index if index != -1 else len(text)
