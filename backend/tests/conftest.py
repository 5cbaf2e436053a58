"""
Shared fixtures: in-memory SQLite database, fake JIRA / OpenAI
collaborators, and an HTTP client wired to the FastAPI app.
"""

import os

# Settings are validated at import time; provide test values first.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-pytest-only-0123456789")

from decimal import Decimal

import httpx
import pytest
import pytest_asyncio

from testcase_studio.auth.tokens import issue_access_token
from testcase_studio.core.database import (
    build_engine,
    build_session_factory,
    create_schema,
    get_db_session,
)
from testcase_studio.models import generation as _generation_models  # noqa: F401
from testcase_studio.models import project as _project_models  # noqa: F401
from testcase_studio.models.generation import GenerationMode
from testcase_studio.services.generation_lifecycle import GenerationLifecycle
from testcase_studio.services.jira_client import (
    IssueDetails,
    IssueFetchError,
    normalize_issue_key,
)
from testcase_studio.services.llm_client import GeneratedContent, TokenUsage
from testcase_studio.services.retry import RetryPolicy

OWNER = "owner@example.com"
OTHER = "other@example.com"

DEFAULT_CONTENT = "# Test Cases for TES-1: Login page\n\n## Functional Requirements\n\n- TC-1"


# -----------------------------------------------------------------------------
# Fakes
# -----------------------------------------------------------------------------
class FakeIssueFetcher:
    """Stands in for JiraClient."""

    def __init__(self, error: IssueFetchError | None = None, title: str = "Login page"):
        self.error = error
        self.title = title
        self.calls: list[str] = []

    async def fetch_issue(self, issue_key: str) -> IssueDetails:
        self.calls.append(issue_key)
        if self.error is not None:
            raise self.error
        return IssueDetails(
            key=normalize_issue_key(issue_key),
            title=self.title,
            description="Users can log in with email and password.",
            attachment_count=2,
            image_attachment_count=1,
        )


class FakeContentGenerator:
    """Stands in for OpenAIChatClient; replays outcomes in order.

    Each outcome is either a string (returned as content) or an exception
    (raised). The last outcome repeats once the list is exhausted.
    """

    def __init__(self, *outcomes: str | Exception):
        self.outcomes = list(outcomes) or [DEFAULT_CONTENT]
        self.calls: list[tuple[str, str, GenerationMode]] = []

    async def generate(self, context: str, issue_key: str, mode: GenerationMode) -> GeneratedContent:
        self.calls.append((context, issue_key, mode))
        outcome = self.outcomes[min(len(self.calls), len(self.outcomes)) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        return GeneratedContent(
            content=outcome,
            token_usage=TokenUsage(prompt_tokens=1200, completion_tokens=800, total_tokens=2000),
            cost=Decimal("0.00066"),
        )


def auth_headers(email: str) -> dict[str, str]:
    token = issue_access_token(f"user-{email}", email, name=email.split("@")[0])
    return {"Authorization": f"Bearer {token}"}


# -----------------------------------------------------------------------------
# Database
# -----------------------------------------------------------------------------
@pytest_asyncio.fixture
async def db_engine():
    engine = build_engine("sqlite+aiosqlite://")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as db:
        yield db


# -----------------------------------------------------------------------------
# Collaborators
# -----------------------------------------------------------------------------
@pytest.fixture
def fetcher() -> FakeIssueFetcher:
    return FakeIssueFetcher()


@pytest.fixture
def generator() -> FakeContentGenerator:
    return FakeContentGenerator(DEFAULT_CONTENT)


@pytest.fixture
def lifecycle(session, fetcher, generator) -> GenerationLifecycle:
    return GenerationLifecycle(
        session=session,
        issue_fetcher=fetcher,
        content_generator=generator,
        retry_policy=RetryPolicy(max_attempts=3),
    )


@pytest_asyncio.fixture
async def completed_generation(lifecycle):
    return await lifecycle.run_generation("TES-1", OWNER)


# -----------------------------------------------------------------------------
# HTTP
# -----------------------------------------------------------------------------
@pytest_asyncio.fixture
async def client(session_factory, fetcher, generator):
    from testcase_studio.main import app

    async def _override_session():
        async with session_factory() as db:
            yield db

    app.dependency_overrides[get_db_session] = _override_session
    app.state.issue_fetcher = fetcher
    app.state.content_generator = generator
    app.state.retry_policy = RetryPolicy(max_attempts=3)

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http

    app.dependency_overrides.clear()

