"""SQLModel ORM tables for the sync task store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Index, Text
from sqlmodel import Field, SQLModel


class SyncTaskRow(SQLModel, table=True):
    __tablename__ = "sync_tasks"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_sync_tasks_status_created", "status", "created_at"),
        Index("idx_sync_tasks_status_updated", "status", "updated_at"),
        Index("idx_sync_tasks_type_status", "payload_type", "status"),
    )

    id: str = Field(primary_key=True)
    payload_type: str
    payload_json: str = Field(sa_column=Column(Text, nullable=False))
    status: str
    priority: int = 0
    retry_count: int = 0
    max_retries: int = 3
    failure_class: str | None = None
    error_message: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class InstallationMetadata(SQLModel, table=True):
    __tablename__ = "installation_metadata"  # type: ignore[bad-override]

    key: str = Field(primary_key=True)
    value: str
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
