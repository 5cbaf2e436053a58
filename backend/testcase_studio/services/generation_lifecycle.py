"""
Generation lifecycle engine.

State machine:

    pending ──► completed   (content may then be revised and published)
       │
       └──────► failed      (terminal, never retried)

`status` changes exactly once. A completed generation keeps cycling its
content: every meaningful edit archives the current text as a version
row and bumps current_version.

The engine is request-scoped: it holds an AsyncSession plus the two
external collaborators (issue fetcher, content generator) injected at
construction, and keeps no state between requests.
"""

from __future__ import annotations

import datetime
import enum
import logging
import math
import time
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from testcase_studio.models.generation import (
    Generation,
    GenerationMode,
    GenerationStatus,
    GenerationVersion,
)
from testcase_studio.services.access_policy import Action, authorize
from testcase_studio.services.errors import (
    FetchFailureReason,
    InvalidStateError,
    NotFoundOrForbidden,
    UpstreamFailure,
    ValidationError,
)
from testcase_studio.services.jira_client import IssueDetails, IssueFetchError
from testcase_studio.services.llm_client import GeneratedContent, TokenUsage
from testcase_studio.services.project_registry import (
    extract_project_key,
    find_or_create_project,
    refresh_generation_count,
)
from testcase_studio.services.retry import RetryPolicy

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 50
DEFAULT_PAGE_SIZE = 10


# ── Collaborator contracts ──────────────────────────────────
class IssueFetcher(Protocol):
    async def fetch_issue(self, issue_key: str) -> IssueDetails: ...


class ContentGenerator(Protocol):
    async def generate(
        self, context: str, issue_key: str, mode: GenerationMode,
    ) -> GeneratedContent: ...


class GenerationFilter(str, enum.Enum):
    ALL = "all"
    MINE = "mine"
    PUBLISHED = "published"


@dataclass(frozen=True, slots=True)
class GenerationPage:
    items: list[Generation]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _ensure_pending(generation: Generation, target: GenerationStatus) -> None:
    match generation.status:
        case GenerationStatus.PENDING:
            return
        case GenerationStatus.COMPLETED | GenerationStatus.FAILED:
            raise InvalidStateError(
                f"Generation {generation.id} is already {generation.status.value}; "
                f"cannot move it to {target.value}."
            )


def _ensure_title(content: str, issue_key: str, title: str) -> str:
    """Generated markdown must open with a heading."""
    if content.lstrip().startswith("#"):
        return content
    return f"# Test Cases for {issue_key}: {title or 'Untitled'}\n\n{content}"


class GenerationLifecycle:
    """Creates, completes, fails, revises, publishes and deletes generations."""

    def __init__(
        self,
        session: AsyncSession,
        issue_fetcher: IssueFetcher,
        content_generator: ContentGenerator,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._session = session
        self._issue_fetcher = issue_fetcher
        self._content_generator = content_generator
        self._retry = retry_policy or RetryPolicy(max_attempts=3)

    # ── Loading ─────────────────────────────────────────────
    async def get(self, generation_id: uuid.UUID | str) -> Generation | None:
        if not isinstance(generation_id, uuid.UUID):
            try:
                generation_id = uuid.UUID(str(generation_id))
            except ValueError:
                return None
        return await self._session.get(Generation, generation_id)

    async def _authorized(
        self, generation_id: uuid.UUID | str, actor: str, action: Action,
    ) -> Generation:
        generation = await self.get(generation_id)
        if generation is None:
            raise NotFoundOrForbidden()
        if generation.owner_email != actor:
            logger.debug(
                "Actor %s requested %s on generation %s owned by %s",
                actor, action.value, generation.id, generation.owner_email,
            )
        return authorize(actor, generation, action)

    # ── Transitions ─────────────────────────────────────────
    async def create(
        self,
        issue_key: str,
        owner: str,
        mode: GenerationMode = GenerationMode.MANUAL,
    ) -> Generation:
        """Persist a new `pending` generation, attaching a project best-effort."""
        issue_key = (issue_key or "").strip()
        if not issue_key:
            raise ValidationError("issue_key is required.")

        project = None
        project_key = extract_project_key(issue_key)
        if project_key:
            try:
                project = await find_or_create_project(self._session, project_key, owner)
            except Exception:
                await self._session.rollback()
                logger.warning(
                    "Failed to resolve project %s for %s — continuing without it",
                    project_key, issue_key, exc_info=True,
                )
                project = None

        generation = Generation(
            issue_key=issue_key,
            owner_email=owner,
            project_id=project.id if project is not None else None,
            mode=mode,
            status=GenerationStatus.PENDING,
            started_at=_utcnow(),
            published=False,
            current_version=1,
            versions=[],
        )
        self._session.add(generation)
        await self._session.commit()

        if project is not None:
            try:
                await refresh_generation_count(self._session, project)
                logger.info("Associated generation %s with project %s", generation.id, project_key)
            except Exception:
                await self._session.rollback()
                await self._session.refresh(generation)
                logger.warning(
                    "Failed to refresh generation count for project %s",
                    project_key, exc_info=True,
                )

        return generation

    async def complete(
        self,
        generation: Generation,
        content: str,
        filename: str,
        token_usage: TokenUsage | None = None,
        cost: Decimal | None = None,
        elapsed_seconds: float | None = None,
    ) -> Generation:
        """pending → completed, with the first (current) version of the content."""
        _ensure_pending(generation, GenerationStatus.COMPLETED)

        generation.status = GenerationStatus.COMPLETED
        generation.completed_at = _utcnow()
        generation.result_content = content
        generation.result_filename = filename
        generation.current_version = 1
        generation.versions = []
        generation.cost_usd = cost
        if token_usage is not None:
            generation.prompt_tokens = token_usage.prompt_tokens
            generation.completion_tokens = token_usage.completion_tokens
            generation.total_tokens = token_usage.total_tokens
        if elapsed_seconds is not None:
            generation.generation_time_seconds = round(elapsed_seconds, 2)

        await self._session.commit()
        logger.info(
            "Generation %s for %s completed in %ss (cost $%s)",
            generation.id, generation.issue_key,
            generation.generation_time_seconds, cost,
        )
        return generation

    async def fail(self, generation: Generation, cause: str) -> Generation:
        """pending → failed, recording a human-readable cause."""
        _ensure_pending(generation, GenerationStatus.FAILED)

        generation.status = GenerationStatus.FAILED
        generation.completed_at = _utcnow()
        generation.error = cause

        await self._session.commit()
        logger.warning("Generation %s for %s failed: %s", generation.id, generation.issue_key, cause)
        return generation

    async def run_generation(
        self,
        issue_key: str,
        actor: str,
        mode: GenerationMode = GenerationMode.MANUAL,
    ) -> Generation:
        """
        Create a generation and drive it to completed or failed.

        Raises:
            ValidationError: issue_key missing.
            UpstreamFailure: JIRA fetch or content generation failed; the
                             generation has already been marked failed.
        """
        generation = await self.create(issue_key, actor, mode)
        started = time.monotonic()

        try:
            issue = await self._issue_fetcher.fetch_issue(generation.issue_key)
        except IssueFetchError as exc:
            await self.fail(generation, str(exc))
            raise UpstreamFailure(str(exc), reason=exc.reason, generation_id=generation.id) from exc
        except Exception as exc:
            cause = f"Failed to fetch JIRA issue: {exc}"
            logger.exception("Unexpected issue fetch failure for %s", generation.issue_key)
            await self.fail(generation, cause)
            raise UpstreamFailure(
                cause, reason=FetchFailureReason.OTHER, generation_id=generation.id,
            ) from exc

        generation.issue_title = issue.title
        logger.info(
            "Generating test cases for %s (mode: %s)", issue.key, mode.value,
        )

        try:
            generated = await self._retry.run(
                lambda: self._content_generator.generate(issue.as_context(), issue.key, mode),
                label=f"Test case generation for {issue.key}",
            )
        except Exception as exc:
            cause = f"Test case generation failed: {exc}"
            await self.fail(generation, cause)
            raise UpstreamFailure(cause, generation_id=generation.id) from exc

        return await self.complete(
            generation,
            content=_ensure_title(generated.content, issue.key, issue.title),
            filename=f"{issue.key}_testcases_{generation.id}.md",
            token_usage=generated.token_usage,
            cost=generated.cost,
            elapsed_seconds=time.monotonic() - started,
        )

    # ── Reads ───────────────────────────────────────────────
    async def get_view(self, generation_id: uuid.UUID | str, actor: str) -> Generation:
        return await self._authorized(generation_id, actor, Action.VIEW)

    async def get_download(self, generation_id: uuid.UUID | str, actor: str) -> Generation:
        return await self._authorized(generation_id, actor, Action.DOWNLOAD)

    async def list_generations(
        self,
        actor: str,
        filter_type: GenerationFilter = GenerationFilter.ALL,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> GenerationPage:
        """Newest-first page of generations visible under `filter_type`."""
        page = max(1, page)
        limit = min(MAX_PAGE_SIZE, max(1, limit))

        mine = Generation.owner_email == actor
        public = and_(
            Generation.published.is_(True),
            Generation.status == GenerationStatus.COMPLETED,
        )
        match filter_type:
            case GenerationFilter.MINE:
                condition = mine
            case GenerationFilter.PUBLISHED:
                condition = public
            case GenerationFilter.ALL:
                condition = or_(mine, public)

        count_stmt = select(func.count()).select_from(Generation).where(condition)
        total = int((await self._session.execute(count_stmt)).scalar_one())

        stmt = (
            select(Generation)
            .where(condition)
            .order_by(Generation.created_at.desc(), Generation.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        items = list((await self._session.execute(stmt)).scalars().all())

        return GenerationPage(items=items, page=page, limit=limit, total=total)

    # ── Edits ───────────────────────────────────────────────
    async def revise_content(
        self,
        generation_id: uuid.UUID | str,
        editor: str,
        new_content: str,
    ) -> Generation:
        """
        Replace the current content, archiving the old text as a version.

        Identical content is a no-op. The archive step is skipped if the
        current version number is already archived, so a retried edit
        never produces a duplicate version row.
        """
        generation = await self._authorized(generation_id, editor, Action.EDIT)

        if not isinstance(new_content, str) or not new_content.strip():
            raise ValidationError("Content is required.")

        current_content = generation.result_content or ""
        if new_content == current_content:
            logger.info("Generation %s content unchanged — no new version", generation.id)
            return generation

        current_number = generation.current_version or 1
        already_archived = any(
            version.version_number == current_number for version in generation.versions
        )
        if not already_archived:
            generation.versions.append(
                GenerationVersion(
                    version_number=current_number,
                    content=current_content,
                    updated_by=editor,
                    created_at=_utcnow(),
                )
            )
            logger.info("Archived version %d of generation %s", current_number, generation.id)

        generation.current_version = current_number + 1
        generation.result_content = new_content
        await self._session.commit()

        logger.info(
            "Generation %s updated to version %d by %s",
            generation.id, generation.current_version, editor,
        )
        return generation

    async def set_published(
        self,
        generation_id: uuid.UUID | str,
        actor: str,
        published: bool,
    ) -> Generation:
        """Publish (re-stamping time and publisher) or unpublish."""
        generation = await self._authorized(generation_id, actor, Action.PUBLISH)

        generation.published = published
        if published:
            generation.published_at = _utcnow()
            generation.published_by = actor
        else:
            generation.published_at = None
            generation.published_by = None
        await self._session.commit()

        logger.info(
            "Generation %s %s by %s",
            generation.id, "published" if published else "unpublished", actor,
        )
        return generation

    async def delete(self, generation_id: uuid.UUID | str, actor: str) -> None:
        """Permanently remove a generation and its versions (any status)."""
        generation = await self._authorized(generation_id, actor, Action.DELETE)

        if generation.published:
            logger.warning("User %s is deleting published generation %s", actor, generation.id)

        await self._session.delete(generation)
        await self._session.commit()
        logger.info("Generation %s deleted by %s", generation.id, actor)
