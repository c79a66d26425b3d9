from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.config import Settings, load_settings
from .core.database_pool import close_database_pool, initialize_database_pool
from .core.logging import configure_logging, get_logger, get_trace_id
from .core.middleware import TraceIDMiddleware
from .routes import chat, health, metrics
from .services.ai.agent import AgentOrchestrator
from .services.ai.content_store import ArticleStore, PostgresArticleStore
from .services.ai.llm_client import CompletionClient
from .services.ai.request_queue import RequestSerializer
from .services.ai.tools import ToolExecutor

logger = get_logger(__name__)


async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions."""
    trace_id = get_trace_id()
    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
        method=request.method,
    )
    response = JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.detail,
            "status_code": exc.status_code,
            "trace_id": trace_id,
        },
    )
    if trace_id:
        response.headers["X-Trace-ID"] = trace_id
    return response


async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    trace_id = get_trace_id()
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        exc_info=True,
    )
    response = JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "status_code": 500,
            "trace_id": trace_id,
        },
    )
    if trace_id:
        response.headers["X-Trace-ID"] = trace_id
    return response


def create_app(
    settings: Optional[Settings] = None,
    *,
    completion_client: Optional[CompletionClient] = None,
    article_store: Optional[ArticleStore] = None,
    serializer: Optional[RequestSerializer] = None,
) -> FastAPI:
    """
    Assemble the application.

    The request serializer, completion client, tool executor and
    orchestrator are built once here and kept on ``app.state``; routes
    resolve them from there. Tests pass fakes for the client or the store.
    """
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("app_startup_started", model=settings.model, configured=settings.is_configured)
        if article_store is None and settings.database_url:
            if await initialize_database_pool(settings.database_url):
                logger.info("app_startup_database_pool_ready")
            else:
                logger.warning(
                    "app_startup_database_pool_unavailable",
                    message="Article database not available. Content tools will report errors.",
                )
        if not settings.is_configured:
            logger.warning("app_startup_llm_not_configured", message="LLM_API_KEY is not set.")
        logger.info("app_startup_completed")
        try:
            yield
        finally:
            logger.info("app_shutdown_started")
            await close_database_pool()
            logger.info("app_shutdown_completed")

    app = FastAPI(
        title="Encyclopedia AI Assistant API",
        description="Research assistant for the encyclopedia: tool-using agent with streamed answers",
        version="1.0.0",
        lifespan=lifespan,
    )

    serializer = serializer or RequestSerializer(gap_seconds=settings.queue_gap_seconds)
    completion_client = completion_client or CompletionClient.from_settings(settings, serializer)
    store = article_store or PostgresArticleStore(settings.content_storage_path)

    app.state.settings = settings
    app.state.serializer = serializer
    app.state.completion_client = completion_client
    app.state.article_store = store
    app.state.tool_executor = ToolExecutor(store)
    app.state.orchestrator = AgentOrchestrator.from_settings(
        settings, completion_client, app.state.tool_executor
    )

    # CORS for local dev; restrict in production
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # Must be added after CORS
    app.add_middleware(TraceIDMiddleware)

    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(health.router, prefix="/health", tags=["Health"])
    app.include_router(chat.router, prefix="/ai", tags=["Assistant"])
    app.include_router(metrics.router, prefix="/metrics", tags=["Metrics"])
    return app


_settings = load_settings()
# JSON output in production (containerized), console output in development
configure_logging(log_level=_settings.log_level, json_output=_settings.log_json)

app = create_app(_settings)
