from __future__ import annotations

from typing import Dict, List, Sequence

from llm_server.core.models import DomainScore, IncorrectAttempt, ProfileFact

PROFILE_CATEGORY_LABELS = {
    "medical": "의료 정보",
    "contact": "연락처",
    "emergency": "긴급 연락처",
    "allergy": "알레르기",
    "preference": "선호도",
    "habit": "습관",
}

DOMAIN_LABELS = {
    "family": "가족",
    "life_events": "인생 사건",
    "career": "직업",
    "hobbies": "취미",
}

CHAT_BASE_PROMPT = """당신은 치매 예방과 인지 건강을 돕는 대화형 AI입니다.
사용자는 기억력이나 인지력이 약해졌을 수 있습니다. 따뜻하고 느긋한 말투로 대화하며
두뇌 활동을 자극하고 정서적인 안정감을 주는 것이 목표입니다.

원칙:
1. 친근하고 편안한 말투를 사용하세요.
2. 이전 대화를 언급할 때는 핵심 주제나 감정만 짧게 상기시키세요.
3. 일상 회상형 질문이나 인지 자극형 질문으로 대화를 자연스럽게 이어가세요.
4. 사용자를 시험하거나 지적하지 말고, 공감과 긍정적인 반응을 함께 전하세요."""

CHAT_CLOSING = "\n\n모든 답변은 자연스러운 일상 대화처럼 하고, 지나치게 딱딱하지 않게 해주세요."

QUALITY_SYSTEM_PROMPT = """당신은 사용자의 대화 응답을 평가하는 전문가입니다.
응답이 얼마나 자연스럽고 일관되며 정확한지 0-100점으로 평가하세요.

평가 기준:
- 일관성 (30점): 프로필 정보와 과거 대화와 일치하는가?
- 자연스러움 (30점): 일상 대화체로 자연스러운가?
- 구체성 (20점): 충분히 구체적인가?
- 정확성 (20점): 사실과 맞는가?

JSON만 반환하세요: {"score": 정수, "reasoning": "평가 이유"}"""

FILL_IN_BLANK_SYSTEM_PROMPT = """과거 대화를 바탕으로 사용자의 기억력을 확인하는 빈칸 채우기 문제를 만드세요.
문제에는 ___ 로 표시한 빈칸이 1~2개 있어야 하고, 선택지는 A, B, C, D 네 개입니다.
다음 JSON만 반환하세요:
{"question": "빈칸(___)이 포함된 문제", "options": [{"id": "A", "text": "..."}, {"id": "B", "text": "..."}, {"id": "C", "text": "..."}, {"id": "D", "text": "..."}], "correct_answer": "A"}"""

MULTIPLE_CHOICE_SYSTEM_PROMPT = """과거 대화를 바탕으로 사용자의 기억력을 확인하는 4지선다 문제를 만드세요.
다음 JSON만 반환하세요:
{"question": "문제", "options": [{"id": "A", "text": "..."}, {"id": "B", "text": "..."}, {"id": "C", "text": "..."}, {"id": "D", "text": "..."}], "correct_answer": "A"}"""

DOMAIN_ANALYSIS_SYSTEM_PROMPT = """사용자의 대화 기록과 틀린 퀴즈 기록을 분석해 네 가지 영역의 기억 상태를 평가하세요.
영역: family(가족), life_events(인생 사건), career(직업), hobbies(취미)
각 영역에 0-100 사이의 점수와 짧은 인사이트 목록을 주세요. 근거가 없으면 점수를 낮게 주세요.
다음 JSON만 반환하세요:
{"domains": [{"domain": "family", "score": 0, "insights": ["..."]}, ...]}"""

REPORT_SYSTEM_PROMPT = """당신은 인지 건강 리포트를 작성하는 전문가입니다.
영역별 점수와 인사이트를 바탕으로 보호자와 사용자가 이해하기 쉬운 리포트를 한국어로 작성하세요.
강점, 주의가 필요한 영역, 일상에서 실천할 수 있는 권장 활동을 포함하세요."""


def profile_section(facts: Sequence[ProfileFact]) -> str:
    grouped: Dict[str, List[str]] = {}
    for fact in facts:
        if fact.content:
            grouped.setdefault(fact.category, []).append(fact.content)
    if not grouped:
        return ""
    lines = ["\n\n사용자 프로필 정보:"]
    for category, contents in grouped.items():
        label = PROFILE_CATEGORY_LABELS.get(category) or category
        lines.append(f"{label}: {', '.join(contents)}")
    lines.append("\n이 정보를 참고해 사용자에게 맞춤형으로 배려 있게 답하세요.")
    return "\n".join(lines)


def mistakes_section(attempts: Sequence[IncorrectAttempt], limit: int = 3) -> str:
    if not attempts:
        return ""
    lines = ["\n\n사용자가 최근 틀린 퀴즈:"]
    for attempt in list(attempts)[:limit]:
        lines.append(
            f"[{attempt.question_type}] 문제: {attempt.question}\n"
            f"  - 사용자의 답: {attempt.user_answer}\n"
            f"  - 정답: {attempt.correct_answer}\n"
            f"  - 주제: {attempt.topic}"
        )
    lines.append("\n관련된 이야기가 나오면 정확한 정보를 부드럽게 다시 알려주세요.")
    return "\n".join(lines)


def chat_system_prompt(facts: Sequence[ProfileFact], attempts: Sequence[IncorrectAttempt]) -> str:
    return CHAT_BASE_PROMPT + profile_section(facts) + mistakes_section(attempts) + CHAT_CLOSING


def recent_context_block(context_messages: Sequence[str], limit: int = 3) -> str:
    if not context_messages:
        return ""
    lines = ["최근 대화 이력:"]
    lines.extend(f"- {msg}" for msg in list(context_messages)[:limit])
    return "\n".join(lines)


def quality_user_prompt(
    user_message: str,
    context_messages: Sequence[str],
    facts: Sequence[ProfileFact],
) -> str:
    if facts:
        profile = "사용자 프로필 정보:\n" + "\n".join(f"- [{fact.category}] {fact.content}" for fact in facts)
    else:
        profile = "사용자 프로필 정보: 없음"
    if context_messages:
        history = "과거 대화 이력:\n" + "\n".join(f"- {msg}" for msg in list(context_messages)[:3])
    else:
        history = "과거 대화 이력: 없음"
    return f'{profile}\n\n{history}\n\n사용자의 현재 응답: "{user_message}"\n\n위 정보를 바탕으로 응답 품질을 평가하세요.'


def question_user_prompt(question_type_label: str, conversation: str, topic: str) -> str:
    return f"대화 내용: {conversation}\n\n주제: {topic}\n\n위 대화를 바탕으로 {question_type_label} 문제를 1개 만드세요."


def domain_analysis_user_prompt(conversations: Sequence[str], incorrect_quizzes: Sequence[str]) -> str:
    history = "\n".join(f"- {item}" for item in conversations) or "- 없음"
    quizzes = "\n".join(f"- {item}" for item in incorrect_quizzes) or "- 없음"
    return f"대화 기록:\n{history}\n\n틀린 퀴즈 기록:\n{quizzes}"


def report_user_prompt(domains: Sequence[DomainScore]) -> str:
    lines = []
    for domain in domains:
        label = DOMAIN_LABELS.get(domain.domain, domain.domain)
        insights = "; ".join(domain.insights) if domain.insights else "인사이트 없음"
        lines.append(f"- {label} ({domain.domain}): {domain.score}점 / {insights}")
    return "영역별 분석 결과:\n" + "\n".join(lines)
