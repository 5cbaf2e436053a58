"""
FastAPI application entrypoint.

Lifespan:
  • On startup: verify DB connectivity, build the JIRA and OpenAI clients
    once and store them on app.state.
  • On shutdown: dispose the engine cleanly.

Routers:
  • /generations — test case generation, editing, publishing
  • /health      — shallow liveness probe
"""

import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from testcase_studio.core.config import Settings, settings
from testcase_studio.core.database import engine
from testcase_studio.routers.generations import router as generations_router
from testcase_studio.services.jira_client import JiraClient
from testcase_studio.services.llm_client import OpenAIChatClient
from testcase_studio.services.retry import RetryPolicy

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


def build_collaborators(app: FastAPI, config: Settings) -> None:
    """Construct external clients from config and attach them to app.state.

    A missing credential leaves that client unset; routes that need it
    answer 503 instead of the whole app refusing to start.
    """
    app.state.retry_policy = RetryPolicy(max_attempts=config.GENERATION_MAX_ATTEMPTS)

    try:
        app.state.issue_fetcher = JiraClient(
            base_url=config.JIRA_BASE_URL,
            email=config.JIRA_EMAIL,
            api_token=config.JIRA_API_TOKEN,
            timeout=config.HTTP_TIMEOUT_SECONDS,
        )
    except ValueError as exc:
        app.state.issue_fetcher = None
        logger.warning("JIRA client not configured: %s", exc)

    try:
        app.state.content_generator = OpenAIChatClient(
            api_key=config.OPENAI_API_KEY,
            model=config.OPENAI_MODEL,
            base_url=config.OPENAI_BASE_URL,
            max_completion_tokens=config.OPENAI_MAX_COMPLETION_TOKENS,
            temperature=config.OPENAI_TEMPERATURE,
            timeout=config.HTTP_TIMEOUT_SECONDS,
        )
    except ValueError as exc:
        app.state.content_generator = None
        logger.warning("OpenAI client not configured: %s", exc)


# ── Lifespan ────────────────────────────────────────────────
async def _database_reachable() -> bool:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception:
        logger.warning(
            "Database %s unreachable on startup; generation requests will "
            "fail until it is available.",
            engine.url.render_as_string(hide_password=True),
            exc_info=settings.DEBUG,
        )
        return False
    return True


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Check the DB, build the JIRA / OpenAI clients, dispose on exit."""
    if await _database_reachable():
        logger.info("Database connection verified ✓")

    build_collaborators(app, settings)

    yield

    await engine.dispose()
    logger.info("Database engine disposed ✓")


# ── App ─────────────────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    version="0.1.0",
    description=(
        "Generate QA test cases from JIRA issues, "
        "edit them with version history, and publish them to your team."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials="*" not in settings.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(generations_router, prefix="/generations")


# ── Health check ────────────────────────────────────────────
@app.get(
    "/health",
    tags=["System"],
    summary="Liveness probe",
)
async def health_check() -> dict[str, str]:
    """Shallow health check — confirms the process is alive."""
    return {"status": "healthy"}
