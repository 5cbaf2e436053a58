"""
Request-scoped service wiring.

The JIRA and OpenAI clients are built once in the app lifespan and stored
on app.state. Each request gets a fresh GenerationLifecycle bound to its
own AsyncSession.
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from testcase_studio.core.database import get_db_session
from testcase_studio.services.generation_lifecycle import GenerationLifecycle
from testcase_studio.services.retry import RetryPolicy

DbSession = Annotated[AsyncSession, Depends(get_db_session)]

_SERVICE_UNAVAILABLE = HTTPException(
    status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
    detail="Test case generation is not configured on this server.",
)


def get_issue_fetcher(request: Request):
    fetcher = getattr(request.app.state, "issue_fetcher", None)
    if fetcher is None:
        raise _SERVICE_UNAVAILABLE
    return fetcher


def get_content_generator(request: Request):
    generator = getattr(request.app.state, "content_generator", None)
    if generator is None:
        raise _SERVICE_UNAVAILABLE
    return generator


def get_retry_policy(request: Request) -> RetryPolicy:
    return getattr(request.app.state, "retry_policy", None) or RetryPolicy()


async def get_generation_lifecycle(
    session: DbSession,
    request: Request,
) -> GenerationLifecycle:
    """Lifecycle engine bound to this request's session.

    Collaborators may be None here. Read-only routes work even when
    JIRA / OpenAI are not configured; the generating routes guard on
    get_issue_fetcher / get_content_generator first.
    """
    return GenerationLifecycle(
        session=session,
        issue_fetcher=getattr(request.app.state, "issue_fetcher", None),
        content_generator=getattr(request.app.state, "content_generator", None),
        retry_policy=get_retry_policy(request),
    )
