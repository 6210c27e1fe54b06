"""
Main Application Entry Point.

This module builds the FastAPI application, configures middleware (CORS),
exception handlers and includes all API routers. It serves as the root of the
web server.

``create_app`` accepts a pre-built ``PlatformService`` and ``TokenVerifier``
so tests and embedding applications can supply their own wiring; otherwise
both are built from ``Settings`` during the lifespan startup.
"""

from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from agentrelay import __version__
from agentrelay.agent_core.llm import PydanticAIClient
from agentrelay.core.logging_config import get_logger, setup_logging
from agentrelay.core.monitoring import initialize_logfire
from agentrelay.repos.sql import build_sql_repos

from .api.v1 import agents, health, tools, webhooks, workflows
from .auth import CurrentUser, StaticTokenVerifier, TokenVerifier
from .core import constant
from .core.config import settings
from .core.database import async_session_maker, init_db
from .exception_handlers import setup_exception_handlers
from .services.platform import PlatformService

# Initialize logging
setup_logging(settings.log_level)
logger = get_logger(__name__)


def _default_verifier() -> TokenVerifier:
    return StaticTokenVerifier(
        {token: CurrentUser.model_validate(user.model_dump()) for token, user in settings.auth.tokens.items()}
    )


def create_app(
    platform: Optional[PlatformService] = None,
    verifier: Optional[TokenVerifier] = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Manage application lifespan events.

        Builds the platform wiring on startup (unless one was supplied) and
        waits for background runs and webhook deliveries on shutdown.
        """
        http_client: Optional[httpx.AsyncClient] = None
        if app.state.platform is None:
            logger.info("Starting up agentrelay server...")
            if settings.create_tables:
                try:
                    await init_db()
                    logger.info("Database tables created")
                except Exception as e:
                    logger.error(f"Database initialization failed: {e}", exc_info=True)

            http_client = httpx.AsyncClient(follow_redirects=True)
            app.state.platform = PlatformService(
                repos=build_sql_repos(session_factory=async_session_maker),
                llm=PydanticAIClient(
                    settings.llm.model,
                    temperature=settings.llm.temperature,
                    max_tokens=settings.llm.max_tokens,
                ),
                http_client=http_client,
                settings=settings,
            )

        yield

        # Shutdown
        logger.info("Shutting down agentrelay server...")
        await app.state.platform.shutdown()
        if http_client is not None:
            await http_client.aclose()

    app = FastAPI(
        title=constant.PROJECT_NAME,
        description="""
    agentrelay Server API

    This API runs LLM agents with a bounded tool-calling loop, records every execution step,
    and delivers signed webhook notifications when agent runs and workflows finish.
    """,
        version=__version__,
        openapi_url=f"{constant.API_V1_STR}/openapi.json",
        docs_url=f"{constant.API_V1_STR}/docs",
        redoc_url=f"{constant.API_V1_STR}/redoc",
        lifespan=lifespan,
    )
    app.state.platform = platform
    app.state.verifier = verifier or _default_verifier()

    # Set all CORS enabled origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    setup_exception_handlers(app)
    initialize_logfire(app)

    app.include_router(health.router, tags=["health"])
    app.include_router(agents.router, prefix=f"{constant.API_V1_STR}/agents", tags=["agents"])
    app.include_router(webhooks.router, prefix=f"{constant.API_V1_STR}/webhooks", tags=["webhooks"])
    app.include_router(workflows.router, prefix=f"{constant.API_V1_STR}/workflows", tags=["workflows"])
    app.include_router(tools.router, prefix=f"{constant.API_V1_STR}/tools", tags=["tools"])
    return app


app = create_app()
