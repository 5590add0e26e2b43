"""Clone relationship and sync history models."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import Boolean, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from repomirror.models.base import Base

if TYPE_CHECKING:
    from repomirror.models.user import User


class RepositoryClone(Base):
    """One-way mirror relationship between a source and a mirror repository.

    ``encrypted_credential`` holds the owner's GitHub token encrypted at rest;
    read it through ``clone_service.load_credential`` only.
    """

    __tablename__ = "repository_clones"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    source_full_name: Mapped[str] = mapped_column(String, nullable=False, index=True)
    mirror_full_name: Mapped[str] = mapped_column(String, nullable=False, index=True)
    source_url: Mapped[str] = mapped_column(Text, nullable=False)
    mirror_url: Mapped[str] = mapped_column(Text, nullable=False)
    webhook_id: Mapped[str | None] = mapped_column(String, nullable=True)
    encrypted_credential: Mapped[str | None] = mapped_column(Text, nullable=True)
    sync_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_synced_at: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False)

    user: Mapped[User | None] = relationship(back_populates="clones")
    sync_runs: Mapped[list[SyncRun]] = relationship(
        back_populates="clone", cascade="all, delete-orphan"
    )

    __table_args__ = (UniqueConstraint("source_full_name", "mirror_full_name"),)


class SyncRun(Base):
    """Outcome of one reconciliation attempt."""

    __tablename__ = "sync_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    clone_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("repository_clones.id", ondelete="CASCADE"), nullable=False
    )
    trigger: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    source_head: Mapped[str | None] = mapped_column(String, nullable=True)
    files_created: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    files_updated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    files_skipped: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    files_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[str] = mapped_column(Text, nullable=False)
    finished_at: Mapped[str] = mapped_column(Text, nullable=False)

    clone: Mapped[RepositoryClone] = relationship(back_populates="sync_runs")
