"""
Pydantic v2 schemas for the generation endpoints.

Separation:
  • *Request models — what the CLIENT sends (extra fields rejected).
  • *Out / *Response models — what the SERVER returns.

All response models use from_attributes=True so ORM rows map directly.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr

from testcase_studio.models.generation import GenerationMode, GenerationStatus


# ── Requests ────────────────────────────────────────────────
class GenerateRequest(BaseModel):
    """Payload accepted by POST /generations/testcases."""

    model_config = ConfigDict(extra="forbid")

    issue_key: str = Field(
        ...,
        max_length=64,
        examples=["TES-1"],
        description="JIRA issue key to generate test cases for.",
    )
    auto_mode: bool = Field(
        default=False,
        description="Generate automation-ready cases instead of manual ones.",
    )


class PreflightRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    issue_key: str = Field(..., max_length=64, examples=["TES-1"])


class ContentUpdateRequest(BaseModel):
    """New markdown for a completed generation."""

    model_config = ConfigDict(extra="forbid")

    content: StrictStr


class PublishRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    published: StrictBool


# ── Responses ───────────────────────────────────────────────
class PreflightResponse(BaseModel):
    issue_key: str
    title: str
    description: str
    attachments: int
    estimated_tokens: int
    estimated_cost: Decimal


class GenerationResult(BaseModel):
    """Returned once POST /generations/testcases completes."""

    generation_id: uuid.UUID
    issue_key: str
    filename: str
    content: str
    generation_time_seconds: float | None
    cost: Decimal | None


class VersionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    version_number: int
    content: str
    updated_by: str
    created_at: datetime


class GenerationView(BaseModel):
    """Full view of a completed generation, including version history."""

    id: uuid.UUID
    owner_email: str
    issue_key: str
    project_key: str | None
    content: str
    filename: str
    format: str = "markdown"
    updated_at: datetime
    published: bool
    published_at: datetime | None
    published_by: str | None
    current_version: int
    versions: list[VersionOut]
    last_updated_by: str
    last_updated_at: datetime


class ContentUpdateResponse(BaseModel):
    content: str
    current_version: int


class PublishResponse(BaseModel):
    published: bool
    published_at: datetime | None
    published_by: str | None


class GenerationSummary(BaseModel):
    """One row in the generation list (no content)."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    issue_key: str
    issue_title: str | None
    owner_email: str
    mode: GenerationMode
    status: GenerationStatus
    created_at: datetime
    completed_at: datetime | None
    generation_time_seconds: float | None
    cost_usd: Decimal | None
    error: str | None
    published: bool
    published_at: datetime | None
    published_by: str | None
    current_version: int


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class GenerationListResponse(BaseModel):
    generations: list[GenerationSummary]
    pagination: Pagination
