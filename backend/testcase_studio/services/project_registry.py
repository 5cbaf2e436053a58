"""
Project registry — maps an issue-key prefix to a Project row.

Projects are created on first reference. There is no locking here:
two concurrent requests for a brand-new key may both try to INSERT, and
the loser hits the unique constraint on project_key. That case is
rolled back and resolved by reading the winner's row.
"""

from __future__ import annotations

import datetime
import logging
import re

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from testcase_studio.models.generation import Generation
from testcase_studio.models.project import Project

logger = logging.getLogger(__name__)

# "TES-12" -> "TES"; first char must be a letter.
_PROJECT_KEY_RE = re.compile(r"^([A-Z][A-Z0-9]+)-", re.IGNORECASE)


def extract_project_key(issue_key: str | None) -> str | None:
    """Return the uppercase project prefix of an issue key, or None."""
    if not issue_key or not isinstance(issue_key, str):
        return None
    match = _PROJECT_KEY_RE.match(issue_key.strip())
    return match.group(1).upper() if match else None


def normalize_project_key(project_key: str) -> str:
    return project_key.strip().upper()


async def _get_by_key(session: AsyncSession, project_key: str) -> Project | None:
    stmt = select(Project).where(Project.project_key == project_key)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def find_or_create_project(
    session: AsyncSession,
    project_key: str,
    actor: str,
) -> Project:
    """
    Return the project for `project_key`, creating it if absent.

    Existing projects get `last_generated_at` bumped. The change is
    committed before returning.

    Raises:
        ValueError: If project_key is empty after normalization.
    """
    if not project_key or not project_key.strip():
        raise ValueError("Project key is required to find or create a project.")

    key = normalize_project_key(project_key)
    now = datetime.datetime.now(datetime.timezone.utc)

    project = await _get_by_key(session, key)
    if project is not None:
        project.last_generated_at = now
        await session.commit()
        return project

    project = Project(
        project_key=key,
        created_by=actor,
        first_generated_at=now,
        last_generated_at=now,
        total_generations=0,
    )
    session.add(project)
    try:
        await session.commit()
    except IntegrityError:
        # Lost the race; another request created it first.
        await session.rollback()
        logger.info("Project %s already exists, retrying lookup", key)
        project = await _get_by_key(session, key)
        if project is None:
            raise
        project.last_generated_at = now
        await session.commit()
        return project

    logger.info("Created project %s (by %s)", key, actor)
    return project


async def refresh_generation_count(
    session: AsyncSession,
    project: Project,
) -> int:
    """Recompute total_generations from an exact COUNT(*). Commits."""
    stmt = (
        select(func.count())
        .select_from(Generation)
        .where(Generation.project_id == project.id)
    )
    result = await session.execute(stmt)
    project.total_generations = int(result.scalar_one())
    await session.commit()
    return project.total_generations
