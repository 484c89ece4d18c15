import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from llm_server.api.routes import error_response, extract_request_id
from llm_server.api.routes import router as api_router
from llm_server.core.settings import SETTINGS
from llm_server.core.state import memory_client, question_cache, task_runner

DEFAULT_CORS_ORIGINS = ["*"]
SHUTDOWN_DRAIN_SEC = 5.0

logging.basicConfig(level=SETTINGS.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="llm-server")
app.add_middleware(
    CORSMiddleware,
    allow_origins=SETTINGS.cors_allow_origins or DEFAULT_CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["x-request-id"],
)
app.include_router(api_router)


@app.on_event("startup")
async def startup():
    if not SETTINGS.openai_api_key:
        logger.warning("OPENAI_API_KEY is not set; completion calls will be rejected by the provider")
    if await memory_client.health_check():
        logger.info("memory store reachable at %s", SETTINGS.rag_server_url)
    else:
        logger.warning("memory store at %s is not healthy; continuing anyway", SETTINGS.rag_server_url)
    await question_cache.start()
    logger.info(
        "llm-server started env=%s port=%d model=%s cache_ttl_sec=%d",
        SETTINGS.env,
        SETTINGS.port,
        SETTINGS.openai_model,
        SETTINGS.question_cache_ttl_sec,
    )


@app.on_event("shutdown")
async def shutdown():
    await question_cache.stop()
    await task_runner.drain(timeout=SHUTDOWN_DRAIN_SEC)


@app.exception_handler(Exception)
async def handle_unhandled_exception(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error: %s", exc)
    return error_response(500, "INTERNAL_ERROR", "internal_error", extract_request_id(request))


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("llm_server.main:app", host="0.0.0.0", port=SETTINGS.port, log_level=SETTINGS.log_level.lower())
