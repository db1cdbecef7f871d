"""
BlinkChat API Server
====================
FastAPI application with lifespan management for:
- OllamaChatClient and agent initialization
- Database connection setup
- Chat session registry
- OpenTelemetry instrumentation

Entry point:
    uvicorn api.main:app --host 0.0.0.0 --port 8000
"""

import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv

# Load .env BEFORE any MAF/OTel imports read environment variables
load_dotenv()

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from blinkchat.clients import AgentCompletionClient, AgentSummarizationClient
from blinkchat.config import get_settings
from blinkchat.gateway import SqlGateway
from blinkchat.gateway.database import close_db, get_session_factory, init_db
from blinkchat.store import ConversationStore
from blinkchat.telemetry import setup_telemetry, shutdown_telemetry
from api.routes.health import router as health_router
from api.routes.conversations import router as conversations_router
from api.routes.messages import router as messages_router
from api.services.sessions import SessionRegistry

# ──────────────────────────────────────────────────────────────
# Logging
# ──────────────────────────────────────────────────────────────

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("blinkchat.api")


# ──────────────────────────────────────────────────────────────
# Lifespan (startup + shutdown)
# ──────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle (startup and shutdown).

    Startup:
        1. Initialize telemetry
        2. Create OllamaChatClient and the responder/titler agents
        3. Initialize database tables
        4. Store shared state on app

    Shutdown:
        1. Close live chat sessions
        2. Close database connections
        3. Flush telemetry
    """
    settings = get_settings()

    # ── Startup ──────────────────────────────────────────────
    logger.info("Starting BlinkChat API...")

    # 1. Telemetry
    setup_telemetry(service_name=settings.otel_service_name)
    logger.info("Telemetry configured (OTLP → %s)", settings.otel_endpoint)

    # 2. Ollama client + agents
    from agent_framework_ollama import OllamaChatClient

    from blinkchat.agents import create_responder_agent, create_titler_agent

    client = OllamaChatClient(
        model_id=settings.ollama_model_id,
        host=settings.ollama_host,
    )
    completion = AgentCompletionClient(
        create_responder_agent(client, assistant_name=settings.assistant_name)
    )
    summarizer = AgentSummarizationClient(
        create_titler_agent(client, max_words=settings.title_max_words)
    )
    logger.info("Ollama client ready (host: %s, model: %s)",
                settings.ollama_host, settings.ollama_model_id)

    # 3. Database
    await init_db()
    logger.info("Database initialized (%s)", settings.database_host)

    # 4. Store shared state
    gateway = SqlGateway(get_session_factory())
    store = ConversationStore(
        gateway,
        summarizer,
        default_title=settings.default_conversation_title,
        title_max_words=settings.title_max_words,
    )
    app.state.settings = settings
    app.state.gateway = gateway
    app.state.store = store
    app.state.sessions = SessionRegistry(
        gateway, store, completion, max_sessions=settings.max_live_sessions
    )

    logger.info("=" * 60)
    logger.info("  BlinkChat API ready!")
    logger.info("  Ollama:  %s (%s)", settings.ollama_host, settings.ollama_model_id)
    logger.info("  DB:      %s", settings.database_host)
    logger.info("  CORS:    %s", settings.cors_origins)
    logger.info("=" * 60)

    yield  # ← App is running

    # ── Shutdown ─────────────────────────────────────────────
    logger.info("Shutting down BlinkChat API...")
    await app.state.sessions.close_all()
    await gateway.close()
    await close_db()
    shutdown_telemetry()
    logger.info("Shutdown complete")


# ──────────────────────────────────────────────────────────────
# FastAPI App
# ──────────────────────────────────────────────────────────────

def create_app(lifespan_handler=lifespan) -> FastAPI:
    """Build the FastAPI application (tests pass ``lifespan_handler=None``)."""
    settings = get_settings()
    application = FastAPI(
        title="BlinkChat API",
        description="Conversational chat with optimistic sync over a live message store",
        version="1.0.0",
        lifespan=lifespan_handler,
    )

    # ── CORS ──────────────────────────────────────────────────
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Routes ────────────────────────────────────────────────
    application.include_router(health_router, prefix="/api", tags=["health"])
    application.include_router(conversations_router, prefix="/api", tags=["conversations"])
    application.include_router(messages_router, prefix="/api", tags=["messages"])
    return application


app = create_app()
