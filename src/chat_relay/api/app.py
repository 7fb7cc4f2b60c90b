"""FastAPI application for the chat relay."""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from chat_relay import __version__
from chat_relay.api.auth_routes import router as auth_router
from chat_relay.api.chat_routes import router as chat_router
from chat_relay.config import Settings, settings
from chat_relay.db import DatabaseManager, MessageRepository, UserRepository
from chat_relay.relay import RelayOrchestrator
from chat_relay.security import AuthenticationError, AuthGate, TokenService, authentication_error_handler
from chat_relay.streaming import SessionRegistry
from chat_relay.upstream import ModelProviderClient

logger = logging.getLogger(__name__)


class TimingMiddleware:
    """
    Adds ``X-Process-Time-Ms`` to every response.

    Measured up to the response headers, so long-lived event streams are
    timed to their start rather than their end.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start_time = time.perf_counter()

        async def send_with_timing(message: Message) -> None:
            if message["type"] == "http.response.start":
                process_time = (time.perf_counter() - start_time) * 1000
                headers = list(message.get("headers", []))
                headers.append((b"x-process-time-ms", f"{process_time:.2f}".encode()))
                message = {**message, "headers": headers}
            await send(message)

        await self.app(scope, receive, send_with_timing)


def create_provider(app_settings: Settings) -> ModelProviderClient:
    """Build the model provider client from settings."""
    return ModelProviderClient(
        api_url=app_settings.llm_api_url,
        api_key=app_settings.llm_api_key,
        model=app_settings.llm_model,
        timeout=httpx.Timeout(
            connect=app_settings.llm_timeout_connect,
            read=app_settings.llm_timeout_read,
            write=10.0,
            pool=10.0,
        ),
    )


def create_app(
    app_settings: Settings | None = None,
    provider: ModelProviderClient | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        app_settings: Settings to use instead of the environment's
        provider: Model provider client to use instead of one built from
            settings
    """
    app_settings = app_settings or settings

    db_manager = DatabaseManager(database_url=app_settings.database_url)
    users = UserRepository(db_manager)
    messages = MessageRepository(db_manager)
    token_service = TokenService(
        secret_key=app_settings.jwt_secret_key,
        algorithm=app_settings.jwt_algorithm,
        expires_minutes=app_settings.token_expiration_minutes,
    )
    registry = SessionRegistry(max_sessions=app_settings.max_sessions)
    provider = provider or create_provider(app_settings)
    orchestrator = RelayOrchestrator(registry, provider, messages)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Application lifespan events."""
        # Startup
        logger.info("Starting chat relay...")
        db_manager.init_db()
        yield
        # Shutdown
        logger.info("Shutting down chat relay...")
        await orchestrator.stop()
        await registry.stop()
        await provider.close()
        db_manager.close()
        logger.info("Chat relay stopped")

    app = FastAPI(
        title="SSE Chat Relay",
        description="Relays chat messages to an LLM and streams reasoning and answers back over SSE",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = app_settings
    app.state.db_manager = db_manager
    app.state.users = users
    app.state.messages = messages
    app.state.token_service = token_service
    app.state.auth_gate = AuthGate(token_service, users)
    app.state.registry = registry
    app.state.orchestrator = orchestrator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(TimingMiddleware)

    app.add_exception_handler(AuthenticationError, authentication_error_handler)

    app.include_router(auth_router)
    app.include_router(chat_router, tags=["chat"])

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "version": __version__,
            "database": db_manager.health_check(),
        }

    @app.get("/")
    async def root():
        return {
            "message": "SSE chat relay running",
            "status": "active",
        }

    return app


# Create app instance
app = create_app()
