from __future__ import annotations

import logging
from typing import Any, List, Sequence

from llm_server.core import prompts
from llm_server.core.errors import MalformedResponseError
from llm_server.core.llm_client import LLMClient, extract_json_payload
from llm_server.core.models import (
    ANALYSIS_DOMAINS,
    QUESTION_TYPE_FILL_IN_BLANK,
    AggregatedContext,
    DomainScore,
    ProfileFact,
    QuestionContent,
    QuestionOption,
)
from llm_server.core.scoring import ScoringEngine

logger = logging.getLogger(__name__)

DEFAULT_RESPONSE_SCORE = 50
MIN_RESPONSE_SCORE = 0
MAX_RESPONSE_SCORE = 100

QUESTION_TEMPERATURE = 0.7
QUESTION_MAX_TOKENS = 300
QUALITY_MAX_TOKENS = 200


async def generate_chat_reply(llm: LLMClient, message: str, context: AggregatedContext) -> str:
    system_prompt = prompts.chat_system_prompt(context.profile_facts, context.prior_mistakes)
    messages = []
    history = prompts.recent_context_block(context.context_messages())
    if history:
        messages.append({"role": "assistant", "content": history})
    messages.append({"role": "user", "content": message})
    return await llm.complete(system_prompt, messages)


def parse_quality_score(content: str) -> int:
    """Clamp the judge's score into 0..100; malformed output yields the default."""
    payload = extract_json_payload(content)
    raw: Any = payload.get("score") if isinstance(payload, dict) else None
    if raw is None:
        logger.warning("quality judge returned no usable score, using default %d", DEFAULT_RESPONSE_SCORE)
    score = ScoringEngine.clamp_score(raw, MIN_RESPONSE_SCORE, MAX_RESPONSE_SCORE, DEFAULT_RESPONSE_SCORE)
    return int(round(score))


async def evaluate_response_quality(
    llm: LLMClient,
    user_message: str,
    context_messages: Sequence[str],
    facts: Sequence[ProfileFact],
) -> int:
    content = await llm.complete(
        prompts.QUALITY_SYSTEM_PROMPT,
        [{"role": "user", "content": prompts.quality_user_prompt(user_message, context_messages, facts)}],
        temperature=QUESTION_TEMPERATURE,
        max_tokens=QUALITY_MAX_TOKENS,
    )
    return parse_quality_score(content)


def parse_question_content(content: str) -> QuestionContent:
    payload = extract_json_payload(content)
    if not isinstance(payload, dict):
        raise MalformedResponseError("question response is not a JSON object")
    question = payload.get("question")
    if not isinstance(question, str) or not question.strip():
        raise MalformedResponseError("question response missing question field")
    raw_options = payload.get("options")
    if not isinstance(raw_options, list) or not raw_options:
        raise MalformedResponseError("question response missing options")
    options: List[QuestionOption] = []
    for item in raw_options:
        if not isinstance(item, dict) or not item.get("id") or item.get("text") is None:
            raise MalformedResponseError("question option missing id or text")
        options.append(QuestionOption(id=str(item["id"]).strip(), text=str(item["text"])))
    correct = payload.get("correct_answer")
    if not isinstance(correct, str) or not correct.strip():
        raise MalformedResponseError("question response missing correct_answer field")
    correct = correct.strip()
    if correct not in {option.id for option in options}:
        raise MalformedResponseError(f"correct_answer {correct!r} does not match any option id")
    return QuestionContent(question=question.strip(), options=options, correct_answer=correct)


async def generate_question_content(
    llm: LLMClient,
    question_type: str,
    conversation: str,
    topic: str,
) -> QuestionContent:
    if question_type == QUESTION_TYPE_FILL_IN_BLANK:
        system_prompt = prompts.FILL_IN_BLANK_SYSTEM_PROMPT
        label = "빈칸 채우기"
    else:
        system_prompt = prompts.MULTIPLE_CHOICE_SYSTEM_PROMPT
        label = "4지선다"
    content = await llm.complete(
        system_prompt,
        [{"role": "user", "content": prompts.question_user_prompt(label, conversation, topic)}],
        temperature=QUESTION_TEMPERATURE,
        max_tokens=QUESTION_MAX_TOKENS,
    )
    return parse_question_content(content)


def parse_domain_scores(content: str) -> List[DomainScore]:
    payload = extract_json_payload(content)
    if isinstance(payload, dict):
        payload = payload.get("domains")
    if not isinstance(payload, list):
        raise MalformedResponseError("domain analysis response has no domains list")
    by_domain = {}
    for item in payload:
        if not isinstance(item, dict):
            continue
        name = str(item.get("domain") or "").strip()
        if name not in ANALYSIS_DOMAINS or name in by_domain:
            continue
        score = ScoringEngine.clamp_score(item.get("score"), MIN_RESPONSE_SCORE, MAX_RESPONSE_SCORE, 0)
        insights = [str(text) for text in item.get("insights") or [] if str(text).strip()]
        by_domain[name] = DomainScore(domain=name, score=int(round(score)), insights=insights)
    missing = [name for name in ANALYSIS_DOMAINS if name not in by_domain]
    if missing:
        raise MalformedResponseError(f"domain analysis response missing domains: {', '.join(missing)}")
    return [by_domain[name] for name in ANALYSIS_DOMAINS]


async def analyze_domains(
    llm: LLMClient,
    conversations: Sequence[str],
    incorrect_quizzes: Sequence[str],
) -> List[DomainScore]:
    content = await llm.complete(
        prompts.DOMAIN_ANALYSIS_SYSTEM_PROMPT,
        [{"role": "user", "content": prompts.domain_analysis_user_prompt(conversations, incorrect_quizzes)}],
    )
    return parse_domain_scores(content)


async def generate_report(llm: LLMClient, domains: Sequence[DomainScore]) -> str:
    return await llm.complete(
        prompts.REPORT_SYSTEM_PROMPT,
        [{"role": "user", "content": prompts.report_user_prompt(domains)}],
    )
