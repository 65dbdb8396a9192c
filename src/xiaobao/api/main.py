"""Xiaobao — FastAPI Application.

This module is the single entry point for the web service.  It defines the
application factory, all REST API routes, the exception handlers that map
domain errors to HTTP responses, and the ``main()`` CLI function that
launches the uvicorn server.

Architecture
------------
- **Configuration** comes from :data:`~xiaobao.core.config.config`
  (``XIAOBAO_*`` environment variables) unless a test passes its own
  :class:`~xiaobao.core.config.XiaobaoConfig`.
- **Task lifecycle** is owned by :class:`~xiaobao.core.engine.TaskEngine`,
  built on startup and stored on ``app.state.engine``.  Route handlers never
  touch the provider or the store directly.
- **Persistence** is a single JSON file managed by
  :class:`~xiaobao.core.task_store.JsonFileTaskStore`.
- **Errors** raised by the engine are translated by exception handlers:
  ``ValidationError`` → 400, ``NotFoundError`` → 404,
  ``ProviderNotConfiguredError`` → 503.  Generation failures never surface
  here; they are stored on the task and read back by polling.

Endpoints
---------
========  =====================================  ==============================
Method    Path                                   Purpose
========  =====================================  ==============================
GET       ``/``                                  Service index
GET       ``/health``, ``/api/v1/health``        Health, quota, active tasks
POST      ``/api/v1/newspaper/generate``         Create a generation task
GET       ``/api/v1/newspaper/task/{task_id}``   Task status and result
GET       ``/api/v1/newspaper/themes``           Supported themes
POST      ``/api/v1/newspaper/words/batch``      Extend a theme's vocabulary
GET       ``/api/v1/tasks/all``                  Admin task list
GET       ``/api/v1/stats``                      Admin statistics
========  =====================================  ==============================

Usage
-----
CLI (installed entry point)::

    xiaobao

Direct invocation::

    python -m xiaobao.api.main
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from xiaobao import __version__
from xiaobao.api.models import GenerateRequest, WordsBatchRequest
from xiaobao.api.task_views import compute_stats, summarize_tasks, task_status_payload
from xiaobao.core.config import XiaobaoConfig, config
from xiaobao.core.engine import TaskEngine
from xiaobao.core.errors import NotFoundError, ProviderNotConfiguredError, ValidationError
from xiaobao.core.models import utc_now
from xiaobao.core.notifier import CallbackNotifier
from xiaobao.core.poller import Poller
from xiaobao.core.prompt_builder import PromptBuilder
from xiaobao.core.provider import KieClient
from xiaobao.core.task_store import JsonFileTaskStore

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"

router = APIRouter()


# ---------------------------------------------------------------------------
# Engine construction and application lifecycle.
# ---------------------------------------------------------------------------


def build_engine(
    settings: XiaobaoConfig,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> TaskEngine:
    """Wire store, provider client, poller and notifier from *settings*.

    Args:
        settings: Application configuration.
        transport: Optional httpx transport shared by the provider client
            and the callback notifier (tests pass a ``MockTransport``).

    Returns:
        A ready :class:`TaskEngine`.  Background work starts only when the
        first task is created or :meth:`TaskEngine.recover_pending` runs.
    """
    store = JsonFileTaskStore(settings.task_store_path)

    client = None
    poller = None
    if settings.provider_configured:
        client = KieClient(
            settings.kie_api_key,
            base_url=settings.kie_base_url,
            model=settings.kie_model,
            timeout_seconds=settings.request_timeout_s,
            transport=transport,
        )
        poller = Poller(
            client,
            interval_s=settings.poll_interval_s,
            max_attempts=settings.poll_max_attempts,
        )
    elif settings.mock_enabled:
        logger.warning("No provider API key configured: mock image generation is enabled")
    else:
        logger.warning("No provider API key configured: generate requests will return 503")

    return TaskEngine(
        store,
        PromptBuilder(),
        client=client,
        poller=poller,
        notifier=CallbackNotifier(
            timeout_seconds=settings.callback_timeout_s,
            transport=transport,
        ),
        mock=settings.mock_enabled,
        mock_delay_s=settings.mock_delay_s,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the engine on startup and shut it down cleanly.

    On startup:
        Builds the :class:`TaskEngine` (loading persisted tasks) and resumes
        any task a previous process left unfinished.

    On shutdown:
        Cancels in-flight background runs, flushes pending store writes and
        closes HTTP clients.  Cancelled tasks keep their stored state and are
        resumed on the next start.
    """
    engine = build_engine(app.state.settings, transport=app.state.transport)
    app.state.engine = engine
    recovered = engine.recover_pending()
    if recovered:
        logger.info("Recovered %d unfinished tasks from the previous run", recovered)

    yield

    await engine.aclose()
    logger.info("Task engine shut down.")


def create_app(
    settings: XiaobaoConfig | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Application factory.

    Args:
        settings: Configuration to use; defaults to the global ``config``.
        transport: Optional httpx transport for outgoing provider and
            callback requests.

    Returns:
        A configured FastAPI application.  The engine is created by the
        lifespan handler, so requests must go through a started app
        (``with TestClient(app)`` in tests).
    """
    settings = settings or config
    app = FastAPI(
        title="Xiaobao Literacy Newspaper API",
        description="Generates children's literacy newspapers through an image generation provider.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.transport = transport

    # No configured origins means allow every origin (local development).
    # file:// pages send "Origin: null"; accept it outside production.
    origins = settings.allowed_origin_list or ["*"]
    if "*" not in origins and settings.environment != "production":
        origins.append("null")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ValidationError, _validation_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(NotFoundError, _not_found_handler)
    app.add_exception_handler(ProviderNotConfiguredError, _not_configured_handler)

    app.include_router(router)
    return app


# ---------------------------------------------------------------------------
# Exception handlers.
# ---------------------------------------------------------------------------


async def _validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


async def _request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    # Malformed bodies are client errors like missing fields: 400, not 422.
    messages = [
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"detail": "; ".join(messages)})


async def _not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


async def _not_configured_handler(
    request: Request, exc: ProviderNotConfiguredError
) -> JSONResponse:
    return JSONResponse(status_code=503, content={"detail": str(exc)})


def _engine(request: Request) -> TaskEngine:
    return request.app.state.engine


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------


@router.get("/")
async def index() -> dict:
    """Return a short description of the service and its endpoints."""
    return {
        "name": "Xiaobao Literacy Newspaper API",
        "version": __version__,
        "endpoints": {
            f"POST {API_PREFIX}/newspaper/generate": "Create a newspaper generation task",
            f"GET {API_PREFIX}/newspaper/task/{{task_id}}": "Query task status",
            f"GET {API_PREFIX}/newspaper/themes": "List supported themes",
            f"POST {API_PREFIX}/newspaper/words/batch": "Add custom words to a theme",
            f"GET {API_PREFIX}/tasks/all": "Admin task list",
            f"GET {API_PREFIX}/stats": "Admin statistics",
            "GET /health": "Health check",
        },
        "documentation": "/docs",
    }


@router.get("/health")
@router.get(f"{API_PREFIX}/health")
async def health(request: Request) -> JSONResponse:
    """Report service health, provider quota and the number of active tasks.

    ``healthy`` when tasks can be generated (provider or mock mode),
    ``degraded`` when generate requests would be refused, and
    ``unhealthy`` (HTTP 500) if the check itself fails.
    """
    engine = _engine(request)
    try:
        quota = await engine.client.check_quota() if engine.client is not None else None
        content = {
            "status": "healthy" if engine.provider_configured or engine.mock else "degraded",
            "timestamp": utc_now().isoformat(),
            "quota": quota,
            "active_tasks": engine.active_count(),
            "kie_api_configured": engine.provider_configured,
            "mock_image_generation": engine.mock,
        }
    except Exception as exc:
        logger.exception("Health check failed")
        return JSONResponse(status_code=500, content={"status": "unhealthy", "error": str(exc)})
    return JSONResponse(content=content)


@router.post(f"{API_PREFIX}/newspaper/generate")
async def generate_newspaper(req: GenerateRequest, request: Request) -> dict:
    """Create a newspaper generation task.

    The task is persisted as ``processing`` and generated in the background;
    poll ``GET /api/v1/newspaper/task/{task_id}`` for the result.

    Raises:
        ValidationError: 400 for a missing theme/title or unsupported theme.
        ProviderNotConfiguredError: 503 when no provider and no mock mode.
    """
    task = await _engine(request).create_task(
        req.theme,
        req.title,
        style=req.style,
        custom_words=req.custom_words,
        callback_url=req.callback_url,
    )
    return {
        "task_id": task.id,
        "status": task.status,
        "estimated_time": task.estimated_time,
        "message": "Task created and is being processed",
    }


@router.get(f"{API_PREFIX}/newspaper/task/{{task_id}}")
async def get_task_status(task_id: str, request: Request) -> dict:
    """Return the status of one task, with its result once completed.

    Raises:
        NotFoundError: 404 if the task id is unknown.
    """
    return task_status_payload(_engine(request).get_task(task_id))


@router.get(f"{API_PREFIX}/newspaper/themes")
async def get_themes(request: Request) -> dict:
    """List supported themes with their word counts and a few sample words."""
    builder = _engine(request).prompt_builder
    themes = []
    for name in builder.supported_themes():
        words = builder.theme_words(name)
        themes.append(
            {
                "name": name,
                "word_count": words.word_count,
                "sample_words": [*words.core[:2], *words.items[:2]],
            }
        )
    return {"themes": themes, "total": len(themes)}


@router.post(f"{API_PREFIX}/newspaper/words/batch")
async def add_words_batch(req: WordsBatchRequest, request: Request) -> dict:
    """Append custom words to a theme, creating the theme if needed.

    Raises:
        ValidationError: 400 if ``theme`` or ``words`` is missing.
    """
    theme = (req.theme or "").strip()
    if not theme or req.words is None:
        raise ValidationError("Missing required fields: theme and words are required")
    words = _engine(request).prompt_builder.add_custom_words(theme, req.words)
    return {
        "message": "Custom words added",
        "theme": theme,
        "added_words": req.words.model_dump(),
        "word_count": words.word_count,
    }


@router.get(f"{API_PREFIX}/tasks/all")
async def get_all_tasks(request: Request) -> dict:
    """Return status counts and every task, newest first."""
    return summarize_tasks(_engine(request).list_tasks())


@router.get(f"{API_PREFIX}/stats")
async def get_stats(request: Request) -> dict:
    """Return totals, mean completion time and the most requested themes."""
    return compute_stats(_engine(request).list_tasks())


# ---------------------------------------------------------------------------
# Module-level application and CLI entry point.
# ---------------------------------------------------------------------------

app = create_app()


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host, port and log level from :data:`~xiaobao.core.config.config`
    (``XIAOBAO_SERVER_HOST``, ``XIAOBAO_SERVER_PORT``, ``XIAOBAO_LOG_LEVEL``).
    Defaults to ``0.0.0.0:3000``.

    This function is registered as the ``xiaobao`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "xiaobao.api.main:app",
        host=config.server_host,
        port=config.server_port,
        log_level=config.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    main()
