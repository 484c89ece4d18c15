import logging
import uuid
from typing import Any, Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from llm_server.api.schemas import (
    AnalysisRequest,
    ChatRequest,
    GameQuestionRequest,
    GameResultRequest,
    ReportRequest,
)
from llm_server.core import state
from llm_server.core.errors import InsufficientDataError, InvalidRequestError, ServiceError
from llm_server.core.metrics import metrics
from llm_server.core.models import DomainScore, utc_now

router = APIRouter()
logger = logging.getLogger(__name__)

SERVICE_NAME = "llm-server"


@router.get("/health")
def health():
    return {"status": "ok", "service": SERVICE_NAME}


@router.get("/ready")
async def ready():
    if await state.memory_client.health_check():
        return {"status": "ready", "memory_store": True}
    return JSONResponse(status_code=503, content={"status": "degraded", "memory_store": False})


@router.get("/metrics")
def metrics_endpoint():
    metrics.set("detached_tasks_pending", value=state.task_runner.pending)
    metrics.set("question_cache_size", value=len(state.question_cache))
    return metrics.snapshot()


@router.post("/api/chat")
async def chat(request: Request):
    request_id = extract_request_id(request)
    body = await _read_json(request)
    try:
        payload = ChatRequest.model_validate(body)
    except ValidationError as exc:
        return error_response(400, "INVALID_MESSAGE", "Invalid request format", request_id, _validation_details(exc))

    try:
        data = await state.chat_service.process_chat(payload.user_id, payload.message)
    except ServiceError as exc:
        return _service_error_response(exc, "INTERNAL_ERROR", "Failed to process chat", request_id)
    return _success_response(data, request_id)


@router.post("/api/game/question")
async def game_question(request: Request):
    request_id = extract_request_id(request)
    body = await _read_json(request)
    try:
        payload = GameQuestionRequest.model_validate(body)
    except ValidationError as exc:
        return error_response(
            400, "INVALID_GAME_REQUEST", "Invalid request format", request_id, _validation_details(exc)
        )

    try:
        question = await state.game_service.generate_question(
            payload.user_id,
            payload.question_type,
            payload.difficulty_hint,
        )
    except ServiceError as exc:
        return _service_error_response(exc, "INTERNAL_ERROR", "Failed to generate question", request_id)
    return _success_response(question.to_dict(), request_id)


@router.post("/api/game/result")
async def game_result(request: Request):
    request_id = extract_request_id(request)
    body = await _read_json(request)
    try:
        payload = GameResultRequest.model_validate(body)
    except ValidationError as exc:
        return error_response(
            400, "INVALID_GAME_RESULT", "Invalid request format", request_id, _validation_details(exc)
        )

    try:
        data = await state.game_service.evaluate_result(
            payload.user_id,
            payload.question_id,
            payload.user_answer,
            payload.is_correct,
            payload.response_time_ms,
            payload.game_session_id,
        )
    except ServiceError as exc:
        return _service_error_response(exc, "INTERNAL_ERROR", "Failed to evaluate result", request_id)
    return _success_response(data, request_id)


@router.post("/api/analysis")
async def analysis(request: Request):
    request_id = extract_request_id(request)
    payload, error = await _analysis_request(request, request_id)
    if error is not None:
        return error

    try:
        data = await state.analysis_service.analyze(payload.user_id)
    except ServiceError as exc:
        return _service_error_response(exc, "ANALYSIS_FAILED", "Failed to process analysis", request_id)
    return _success_response(data, request_id)


@router.post("/api/analysis/domains")
async def analysis_domains(request: Request):
    request_id = extract_request_id(request)
    payload, error = await _analysis_request(request, request_id)
    if error is not None:
        return error

    try:
        data = await state.analysis_service.analyze_domains(payload.user_id)
    except ServiceError as exc:
        return _service_error_response(exc, "ANALYSIS_FAILED", "Failed to analyze domains", request_id)
    return _success_response(data, request_id)


@router.post("/api/analysis/report")
async def analysis_report(request: Request):
    request_id = extract_request_id(request)
    body = await _read_json(request)
    try:
        payload = ReportRequest.model_validate(body)
    except ValidationError as exc:
        return error_response(400, "INVALID_REQUEST", "Invalid request format", request_id, _validation_details(exc))

    domains = [DomainScore(domain=item.domain, score=item.score, insights=list(item.insights)) for item in payload.domains]
    try:
        data = await state.analysis_service.generate_report(domains)
    except ServiceError as exc:
        return _service_error_response(exc, "ANALYSIS_FAILED", "Failed to generate report", request_id)
    if payload.user_id:
        data = {"user_id": payload.user_id, **data}
    return _success_response(data, request_id)


async def _analysis_request(request: Request, request_id: str):
    body = await _read_json(request)
    try:
        payload = AnalysisRequest.model_validate(body)
    except ValidationError as exc:
        return None, error_response(
            400, "INVALID_REQUEST", "Invalid request format", request_id, _validation_details(exc)
        )
    if not payload.user_id.strip():
        return None, error_response(400, "INVALID_USER_ID", "User ID cannot be empty", request_id)
    return payload, None


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        return None


def extract_request_id(request: Request) -> str:
    request_id = request.headers.get("x-request-id")
    if not request_id:
        request_id = f"req_{uuid.uuid4().hex}"
    return request_id


def _metadata(request_id: str) -> dict:
    return {"timestamp": utc_now().strftime("%Y-%m-%dT%H:%M:%SZ"), "request_id": request_id}


def _response_headers(request_id: str) -> dict[str, str]:
    return {"x-request-id": request_id}


def _success_response(data: Any, request_id: str) -> JSONResponse:
    payload = {"success": True, "data": data, "metadata": _metadata(request_id)}
    return JSONResponse(content=payload, headers=_response_headers(request_id))


def error_response(
    status_code: int,
    code: str,
    message: str,
    request_id: str,
    details: Optional[Any] = None,
) -> JSONResponse:
    error = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    payload = {"success": False, "error": error, "metadata": _metadata(request_id)}
    return JSONResponse(status_code=status_code, content=payload, headers=_response_headers(request_id))


def _service_error_response(exc: ServiceError, code: str, message: str, request_id: str) -> JSONResponse:
    if isinstance(exc, InsufficientDataError):
        return error_response(422, "INSUFFICIENT_DATA", exc.message, request_id, exc.details)
    if isinstance(exc, InvalidRequestError):
        return error_response(400, exc.code.upper(), exc.message, request_id, exc.details)
    logger.error("%s request_id=%s: %s", message, request_id, exc)
    metrics.inc("api_errors_total", {"code": code, "cause": exc.code})
    return error_response(500, code, message, request_id)


def _validation_details(exc: ValidationError) -> list[dict]:
    return [
        {"loc": ".".join(str(part) for part in err.get("loc", ())), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
