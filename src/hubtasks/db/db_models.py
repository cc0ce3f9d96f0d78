"""SQLAlchemy ORM models."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base declarative class."""


class JobHistoryModel(Base):
    __tablename__ = "job_history"

    job_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    task_id: Mapped[str | None] = mapped_column(String(64), index=True)
    superseded_task_ids_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    workflow_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    webapp_id: Mapped[str | None] = mapped_column(String(64))
    region: Mapped[str] = mapped_column(String(32), nullable=False)
    instance_type: Mapped[str | None] = mapped_column(String(32))
    mode: Mapped[str] = mapped_column(String(16), nullable=False)  # simple|advanced|webapp
    overrides_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    failure_reason: Mapped[str | None] = mapped_column(String(64))
    error_message: Mapped[str | None] = mapped_column(Text)
    result_urls_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    archived_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
