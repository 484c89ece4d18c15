from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Dict, List, Optional

from llm_server.core import generation
from llm_server.core.background import DetachedTaskRunner
from llm_server.core.errors import LLMError
from llm_server.core.fanout import FanOutCoordinator, Lookup
from llm_server.core.llm_client import LLMClient
from llm_server.core.memory_client import MemoryStoreClient
from llm_server.core.metrics import metrics
from llm_server.core.models import AggregatedContext, utc_now

logger = logging.getLogger(__name__)

CHAT_SEARCH_LIMIT = 5
CHAT_MISTAKES_LIMIT = 5
CHAT_SAVE_SOURCE = "llm_chat"
CHAT_SAVE_TYPE = "chat"
# share of the detached write budget the quality judge may use
QUALITY_BUDGET_SHARE = 0.6


class ChatService:
    def __init__(
        self,
        memory: MemoryStoreClient,
        llm: LLMClient,
        fanout: FanOutCoordinator,
        runner: DetachedTaskRunner,
        request_timeout_ms: Optional[int] = None,
        quality_timeout_ms: Optional[int] = None,
    ) -> None:
        self.memory = memory
        self.llm = llm
        self.fanout = fanout
        self.runner = runner
        self._timeout_sec = request_timeout_ms / 1000.0 if request_timeout_ms else None
        if not quality_timeout_ms:
            quality_timeout_ms = int(runner.default_timeout_ms * QUALITY_BUDGET_SHARE)
        self._quality_timeout_sec = max(1, quality_timeout_ms) / 1000.0

    async def gather_context(self, user_id: str, message: str) -> AggregatedContext:
        result = await self.fanout.gather(
            [
                Lookup(
                    "conversations",
                    lambda: self.memory.search_conversations(message, CHAT_SEARCH_LIMIT),
                    required=True,
                    default=[],
                ),
                Lookup("profile", lambda: self.memory.get_profile(user_id), default=[]),
                Lookup(
                    "mistakes",
                    lambda: self.memory.get_incorrect_attempts(user_id, CHAT_MISTAKES_LIMIT),
                    default=[],
                ),
            ],
            timeout=self._timeout_sec,
        )
        return AggregatedContext(
            conversation_matches=result.get("conversations") or [],
            profile_facts=result.get("profile") or [],
            prior_mistakes=result.get("mistakes") or [],
        )

    async def process_chat(self, user_id: str, message: str) -> Dict[str, Any]:
        context = await self.gather_context(user_id, message)
        logger.info(
            "chat context user=%s matches=%d facts=%d mistakes=%d top_score=%.4f",
            user_id,
            len(context.conversation_matches),
            len(context.profile_facts),
            len(context.prior_mistakes),
            context.top_score,
        )

        reply = await generation.generate_chat_reply(self.llm, message, context)
        conversation_id = str(uuid.uuid4())
        metrics.inc("chat_requests_total", {"result": "ok"})

        self.runner.spawn(
            "save_chat",
            lambda: self._save_turn(conversation_id, user_id, message, reply, context),
        )

        return {
            "conversation_id": conversation_id,
            "message": message,
            "response": reply,
            "context_used": {
                "total_conversations": len(context.conversation_matches),
                "top_score": context.top_score,
            },
            "created_at": utc_now().isoformat(),
        }

    async def _save_turn(
        self,
        conversation_id: str,
        user_id: str,
        message: str,
        reply: str,
        context: AggregatedContext,
    ) -> None:
        try:
            quality = await asyncio.wait_for(
                generation.evaluate_response_quality(
                    self.llm,
                    message,
                    context.context_messages(),
                    context.profile_facts,
                ),
                timeout=self._quality_timeout_sec,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "quality judge exceeded %.2fs, using default score", self._quality_timeout_sec
            )
            quality = generation.DEFAULT_RESPONSE_SCORE
        except LLMError as exc:
            logger.warning("quality judge unavailable, using default score: %s", exc)
            quality = generation.DEFAULT_RESPONSE_SCORE

        messages: List[Dict[str, str]] = [
            {"role": "user", "content": message},
            {"role": "assistant", "content": reply},
        ]
        record = {
            "conversation_id": conversation_id,
            "messages": messages,
            "metadata": {
                "source": CHAT_SAVE_SOURCE,
                "session_id": user_id,
                "type": CHAT_SAVE_TYPE,
                "quality_score": quality,
            },
        }
        await self.memory.save_conversation(record)
        logger.debug("saved chat turn conversation_id=%s quality=%d", conversation_id, quality)
