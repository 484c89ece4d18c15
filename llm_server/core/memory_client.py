from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from llm_server.core.errors import MemoryStoreError
from llm_server.core.metrics import metrics
from llm_server.core.models import ConversationMatch, IncorrectAttempt, ProfileFact

logger = logging.getLogger(__name__)


class MemoryStoreClient:
    """REST client for the retrieval/memory server.

    Every call opens its own ``httpx.AsyncClient`` so cancellation of one
    lookup never affects another. All failure shapes (transport, non-2xx,
    undecodable body, ``success=false``) surface as ``MemoryStoreError``.
    """

    def __init__(
        self,
        base_url: str,
        timeout_ms: int = 5000,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = max(1, timeout_ms) / 1000.0
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout, transport=self._transport)

    async def _request(self, op: str, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            async with self._client() as client:
                response = await client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            metrics.inc("memory_store_request_total", {"op": op, "result": "transport_error"})
            raise MemoryStoreError(f"{op} failed: {exc}") from exc

        if response.status_code != 200:
            metrics.inc("memory_store_request_total", {"op": op, "result": f"http_{response.status_code}"})
            raise MemoryStoreError(
                f"{op} failed: status {response.status_code}, body: {response.text[:300]}",
                details={"status_code": response.status_code},
            )
        try:
            body = response.json()
        except ValueError as exc:
            metrics.inc("memory_store_request_total", {"op": op, "result": "invalid_json"})
            raise MemoryStoreError(f"{op} failed: invalid response body") from exc

        if not isinstance(body, dict) or not body.get("success"):
            error = body.get("error") if isinstance(body, dict) else None
            metrics.inc("memory_store_request_total", {"op": op, "result": "unsuccessful"})
            if isinstance(error, dict):
                raise MemoryStoreError(f"{op} failed: {error.get('code')} - {error.get('message')}")
            raise MemoryStoreError(f"{op} failed: unknown error")

        metrics.inc("memory_store_request_total", {"op": op, "result": "ok"})
        data = body.get("data")
        return data if isinstance(data, dict) else {}

    async def search_conversations(self, query: str, limit: int) -> List[ConversationMatch]:
        data = await self._request(
            "search_conversations",
            "GET",
            "/api/rag/conversation/search",
            params={"query": query, "top_k": str(limit)},
        )
        results = data.get("results") or []
        return [ConversationMatch.from_payload(item) for item in results if isinstance(item, dict)]

    async def save_conversation(self, record: Dict[str, Any]) -> str:
        data = await self._request("save_conversation", "POST", "/api/rag/conversation/store", json=record)
        return str(data.get("conversation_id") or "")

    async def get_profile(self, user_id: str) -> List[ProfileFact]:
        try:
            data = await self._request("get_profile", "GET", f"/api/personal-info/user/{user_id}")
        except MemoryStoreError as exc:
            if isinstance(exc.details, dict) and exc.details.get("status_code") == 404:
                return []
            raise
        items = data.get("items") or []
        return [ProfileFact.from_payload(item) for item in items if isinstance(item, dict)]

    async def get_incorrect_attempts(self, user_id: str, limit: int) -> List[IncorrectAttempt]:
        data = await self._request(
            "get_incorrect_attempts",
            "GET",
            "/api/quiz/attempts/incorrect",
            params={"user_id": user_id, "limit": str(limit)},
        )
        items = data.get("items") or []
        return [IncorrectAttempt.from_payload(item) for item in items if isinstance(item, dict)]

    async def health_check(self) -> bool:
        try:
            async with self._client() as client:
                response = await client.get("/api/rag/health")
        except httpx.HTTPError as exc:
            logger.warning("memory store health check failed: %s", exc)
            return False
        return response.status_code == 200
