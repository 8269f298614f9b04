"""CodeCollab Realtime Backend Application.

This is the main entry point for the CodeCollab realtime service: per-project
chat rooms over WebSocket, a Redis-backed message history, and an in-room AI
assistant that answers messages carrying the ``@ai`` directive.

Modules:
    - chat: Message store, room registry, relay and HTTP history routes
    - ai_provider: AI providers and the request coordinator
    - auth: Session token verification and the WebSocket handshake
    - projects: Project membership and file tree access
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

import redis.asyncio as aioredis
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from codecollab.ai_provider.base import AIProvider
from codecollab.ai_provider.coordinator import AIRequestCoordinator
from codecollab.ai_provider.resolver import build_provider
from codecollab.auth.handshake import ConnectionHandshake
from codecollab.chat.registry import RoomRegistry
from codecollab.chat.relay import MessageRelay
from codecollab.chat.router import router as chat_router
from codecollab.chat.store import MessageStore
from codecollab.config import AppSettings, get_config
from codecollab.projects import (
    HttpProjectRepository,
    InMemoryProjectRepository,
    ProjectRepository,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
# httpx/httpcore log every connection made to the project service and the
# AI APIs; none of it is useful when debugging chat behaviour.
for _noisy in (
    "httpx",
    "httpcore",
    "httpcore.http11",
    "httpcore.connection",
    "anthropic",
    "openai",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def _apply_log_level(settings: AppSettings) -> None:
    configured_level = getattr(logging, settings.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", settings.logging.level.upper())


def _build_redis(settings: AppSettings) -> aioredis.Redis:
    return aioredis.Redis.from_url(
        settings.redis.url,
        password=settings.secrets.redis.password,
        socket_timeout=settings.redis.socket_timeout_seconds,
        decode_responses=True,
    )


def _build_project_repository(settings: AppSettings) -> ProjectRepository:
    if settings.projects.backend == "http":
        logger.info(f"Project service: {settings.projects.base_url}")
        return HttpProjectRepository(
            base_url=settings.projects.base_url,
            timeout_seconds=settings.projects.timeout_seconds,
            service_token=settings.secrets.projects.service_token,
        )
    logger.info("Project service: in-memory repository")
    return InMemoryProjectRepository()


def create_app(
    settings: Optional[AppSettings] = None,
    *,
    redis_client: Optional[aioredis.Redis] = None,
    project_repository: Optional[ProjectRepository] = None,
    ai_provider: Optional[AIProvider] = None,
) -> FastAPI:
    """Build the FastAPI application.

    Collaborators that are not injected are built from settings at startup.
    Injected ones are used as-is and are not closed on shutdown.

    Args:
        settings: Application settings; defaults to get_config().
        redis_client: Async Redis client for the message store.
        project_repository: Source of project records.
        ai_provider: Provider for AI requests; built from ``ai.provider`` if None.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager for startup/shutdown events."""
        # Startup
        config = settings or get_config()
        _apply_log_level(config)

        owns_redis = redis_client is None
        redis = redis_client if redis_client is not None else _build_redis(config)
        owns_projects = project_repository is None
        projects = project_repository or _build_project_repository(config)
        provider = ai_provider if ai_provider is not None else build_provider(config)

        store = MessageStore(
            redis,
            key_prefix=config.redis.key_prefix,
            capacity=config.redis.max_messages,
        )
        if await store.ping():
            logger.info(f"Connected to Redis at {config.redis.url}")
        else:
            logger.warning(
                f"Redis at {config.redis.url} is not reachable; "
                "chat history will be unavailable until it is"
            )

        registry = RoomRegistry()
        coordinator = AIRequestCoordinator(
            store,
            registry,
            provider,
            projects,
            timeout_seconds=config.chat.ai_timeout_seconds,
        )
        if provider is None:
            logger.warning("No AI provider configured; @ai requests will get an error reply")

        app.state.settings = config
        app.state.redis = redis
        app.state.store = store
        app.state.registry = registry
        app.state.projects = projects
        app.state.coordinator = coordinator
        app.state.handshake = ConnectionHandshake(config, projects)
        app.state.relay = MessageRelay(store, registry, coordinator, config.chat)

        logger.info(
            f"Realtime service ready on http://{config.server.host}:{config.server.port}"
        )

        yield  # Application runs here

        # Shutdown
        await coordinator.shutdown()
        if owns_projects:
            await projects.aclose()
        if owns_redis:
            await redis.aclose()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="CodeCollab Realtime API",
        description="Realtime project chat with message history and an in-room AI assistant",
        version="0.1.0",
        lifespan=lifespan,
    )

    origins = (settings or get_config()).server.allowed_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(chat_router)

    @app.get("/health")
    async def health() -> dict:
        """Health check endpoint.

        Returns:
            dict: Status object indicating the server is running.
        """
        return {"status": "ok"}

    @app.get("/health/redis")
    async def health_redis() -> dict:
        """Report whether the message cache answers.

        Returns:
            dict: ``{"status": "ok" | "unavailable"}``.
        """
        reachable = await app.state.store.ping()
        return {"status": "ok" if reachable else "unavailable"}

    return app


app = create_app()
