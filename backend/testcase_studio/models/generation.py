"""
SQLAlchemy models for the `generations` and `generation_versions` tables.

A Generation is one user request to produce QA test cases for a JIRA
issue. Its status moves exactly once, out of `pending`, into either
`completed` or `failed`. After that only the content (and its version
history) and the publication flags of a completed generation change.

Design notes:
  • status / mode are closed enums stored as short strings.
  • result_content always holds the CURRENT version. Superseded content
    lives in generation_versions, one row per archived version number.
  • UNIQUE (generation_id, version_number) makes a duplicate archive of
    the same version impossible at the store level.
  • cost_usd uses NUMERIC(12,8) — exact decimal, no float rounding.
"""

import datetime
import enum
import uuid
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import false, func

from testcase_studio.core.database import Base


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class GenerationStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class GenerationMode(str, enum.Enum):
    MANUAL = "manual"
    AUTO = "auto"


class Generation(Base):
    """One test-case generation request and its (editable) result."""

    __tablename__ = "generations"

    # ── Identity ────────────────────────────────────────────
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    issue_key: Mapped[str] = mapped_column(String(64), nullable=False)
    issue_title: Mapped[str | None] = mapped_column(Text, nullable=True)
    owner_email: Mapped[str] = mapped_column(String(255), nullable=False)
    project_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("projects.id", ondelete="SET NULL"),
        nullable=True,
    )

    mode: Mapped[GenerationMode] = mapped_column(
        Enum(
            GenerationMode,
            name="generation_mode",
            native_enum=False,
            length=16,
            values_callable=lambda members: [m.value for m in members],
        ),
        nullable=False,
        default=GenerationMode.MANUAL,
    )
    status: Mapped[GenerationStatus] = mapped_column(
        Enum(
            GenerationStatus,
            name="generation_status",
            native_enum=False,
            length=16,
            values_callable=lambda members: [m.value for m in members],
        ),
        nullable=False,
        default=GenerationStatus.PENDING,
    )

    # ── Timing ──────────────────────────────────────────────
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
        server_default=func.now(),
    )
    started_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    completed_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    generation_time_seconds: Mapped[float | None] = mapped_column(
        Float, nullable=True,
    )

    # ── Usage / cost ────────────────────────────────────────
    prompt_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    completion_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cost_usd: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 8), nullable=True,
    )

    # ── Outcome ─────────────────────────────────────────────
    result_content: Mapped[str | None] = mapped_column(Text, nullable=True)
    result_filename: Mapped[str | None] = mapped_column(String(255), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # ── Publication ─────────────────────────────────────────
    published: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )
    published_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    published_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # ── Versioning ──────────────────────────────────────────
    current_version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        server_default="1",
    )
    versions: Mapped[list["GenerationVersion"]] = relationship(
        back_populates="generation",
        order_by="GenerationVersion.version_number",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        Index("ix_generations_owner_email", "owner_email"),
        Index("ix_generations_issue_key", "issue_key"),
        Index("ix_generations_project_id", "project_id"),
        Index("ix_generations_published_status", "published", "status"),
        Index("ix_generations_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Generation id={self.id!s:.8} issue={self.issue_key} "
            f"status={self.status.value} v{self.current_version}>"
        )


class GenerationVersion(Base):
    """Immutable snapshot of content superseded by a later edit."""

    __tablename__ = "generation_versions"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    generation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("generations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    updated_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
    )

    generation: Mapped[Generation] = relationship(back_populates="versions")

    __table_args__ = (
        UniqueConstraint(
            "generation_id",
            "version_number",
            name="uq_generation_versions_generation_version",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<GenerationVersion generation={self.generation_id!s:.8} "
            f"v{self.version_number}>"
        )
