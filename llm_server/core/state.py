from llm_server.core.analysis import AnalysisService
from llm_server.core.background import DetachedTaskRunner
from llm_server.core.chat import ChatService
from llm_server.core.fanout import FanOutCoordinator
from llm_server.core.game import GameService
from llm_server.core.llm_client import LLMClient
from llm_server.core.memory_client import MemoryStoreClient
from llm_server.core.question_cache import QuestionCache
from llm_server.core.scoring import ScoringConfig, ScoringEngine
from llm_server.core.settings import SETTINGS

memory_client = MemoryStoreClient(SETTINGS.rag_server_url, SETTINGS.rag_server_timeout_ms)
llm_client = LLMClient(
    SETTINGS.openai_base_url,
    SETTINGS.openai_api_key,
    SETTINGS.openai_model,
    temperature=SETTINGS.openai_temperature,
    max_tokens=SETTINGS.openai_max_tokens,
    timeout_ms=SETTINGS.openai_timeout_ms,
)
question_cache = QuestionCache(SETTINGS.question_cache_ttl_sec, SETTINGS.question_cache_reap_interval_sec)
task_runner = DetachedTaskRunner(SETTINGS.background_write_timeout_ms)
fanout = FanOutCoordinator()
scoring = ScoringEngine(ScoringConfig.from_settings(SETTINGS))

chat_service = ChatService(
    memory_client,
    llm_client,
    fanout,
    task_runner,
    request_timeout_ms=SETTINGS.request_timeout_ms,
)
game_service = GameService(
    memory_client,
    llm_client,
    fanout,
    question_cache,
    scoring,
    task_runner,
    min_conversations=SETTINGS.min_conversations_for_game,
    request_timeout_ms=SETTINGS.request_timeout_ms,
)
analysis_service = AnalysisService(
    memory_client,
    llm_client,
    fanout,
    request_timeout_ms=SETTINGS.request_timeout_ms,
)
