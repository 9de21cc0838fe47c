from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

import sqlalchemy as sa
from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from publisher.db.base import Base
from publisher.db.enums import ProjectStatusEnum, PublishJobStatusEnum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class Project(Base):
    """
    Owned by the surrounding application. The publish pipeline only writes the
    promotion fields (slug, URLs, status, primary_version_id) and thumbnail_url.
    """

    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[ProjectStatusEnum] = mapped_column(
        Enum(ProjectStatusEnum, name="project_status", native_enum=False, values_callable=_enum_values),
        nullable=False,
        default=ProjectStatusEnum.draft,
    )
    slug: Mapped[Optional[str]] = mapped_column(String(60), nullable=True, unique=True)
    subdomain_url: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    published_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    thumbnail_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    primary_version_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("publish_versions.id", use_alter=True, name="fk_projects_primary_version"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class PublishVersion(Base):
    __tablename__ = "publish_versions"
    __table_args__ = (
        UniqueConstraint("project_id", "version_tag", name="uq_publish_versions_project_tag"),
        sa.Index("idx_publish_versions_project", "project_id", "built_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    version_tag: Mapped[str] = mapped_column(Text, nullable=False)
    storage_prefix: Mapped[str] = mapped_column(Text, nullable=False)
    entrypoint: Mapped[str] = mapped_column(Text, nullable=False, default="index.html")
    checksum: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    size_bytes: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    build_time_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_preview: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    built_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class PublishJob(Base):
    __tablename__ = "publish_jobs"
    __table_args__ = (
        sa.Index("idx_publish_jobs_status_created", "status", "created_at"),
        sa.Index("idx_publish_jobs_project", "project_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    status: Mapped[PublishJobStatusEnum] = mapped_column(
        Enum(PublishJobStatusEnum, name="publish_job_status", native_enum=False, values_callable=_enum_values),
        nullable=False,
        default=PublishJobStatusEnum.queued,
    )
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    log_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    version_id: Mapped[Optional[str]] = mapped_column(ForeignKey("publish_versions.id"), nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
