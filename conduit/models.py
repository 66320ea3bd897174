from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    event,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship, with_loader_criteria

from conduit.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Shared columns + soft delete
# ---------------------------------------------------------------------------
class TimestampedModel:
    """
    Identity, audit timestamps and the soft-delete marker shared by every
    entity table.

    Timestamps use Python-side defaults so the values are populated on the
    instance at flush time and remain readable once the session is closed.
    """

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )


@event.listens_for(Session, "do_orm_execute")
def _exclude_soft_deleted(execute_state) -> None:
    """
    Hide soft-deleted rows from every ORM read, including the secondary
    queries issued by eager loaders.

    Pass ``execution_options(include_deleted=True)`` to opt out.
    """
    if (
        execute_state.is_select
        and not execute_state.is_column_load
        and not execute_state.is_relationship_load
        and not execute_state.execution_options.get("include_deleted", False)
    ):
        execute_state.statement = execute_state.statement.options(
            with_loader_criteria(
                TimestampedModel,
                lambda cls: cls.deleted_at.is_(None),
                include_aliases=True,
            )
        )


# ---------------------------------------------------------------------------
# Association tables
# ---------------------------------------------------------------------------
article_tags = Table(
    "article_tags",
    Base.metadata,
    Column("article_id", Integer, ForeignKey("articles.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)

# One row per (article, user) favorite; articles.favorites_count mirrors the row count.
favorite_articles = Table(
    "favorite_articles",
    Base.metadata,
    Column("article_id", Integer, ForeignKey("articles.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Index("ix_favorite_articles_user_id", "user_id"),
)

follows = Table(
    "follows",
    Base.metadata,
    Column("from_user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("to_user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Index("ix_follows_to_user_id", "to_user_id"),
)


# ---------------------------------------------------------------------------
# User
# ---------------------------------------------------------------------------
class User(TimestampedModel, Base):
    __tablename__ = "users"

    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    bio: Mapped[str] = mapped_column(Text, nullable=False, default="")
    image: Mapped[str] = mapped_column(String(500), nullable=False, default="")


# ---------------------------------------------------------------------------
# Tag
# ---------------------------------------------------------------------------
class Tag(TimestampedModel, Base):
    __tablename__ = "tags"

    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)


# ---------------------------------------------------------------------------
# Article
# ---------------------------------------------------------------------------
class Article(TimestampedModel, Base):
    __tablename__ = "articles"

    __table_args__ = (
        # Author listings and the follow feed, newest first
        Index("ix_articles_user_id_created_at", "user_id", "created_at"),
    )

    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    body: Mapped[str] = mapped_column(Text, nullable=False)
    favorites_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Foreign key
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    # Relationships: all lazy="noload" to prevent N+1; use selectinload/joinedload in stores
    author: Mapped["User"] = relationship("User", lazy="noload")
    tags: Mapped[List["Tag"]] = relationship(
        "Tag", secondary=article_tags, lazy="noload", order_by="Tag.name"
    )
    comments: Mapped[List["Comment"]] = relationship("Comment", lazy="noload")
    favorited_users: Mapped[List["User"]] = relationship(
        "User", secondary=favorite_articles, lazy="noload", viewonly=True
    )

    def overwrite(self, title: str = "", description: str = "", body: str = "") -> None:
        """Replace the text fields given as non-empty strings; empty ones are kept."""
        if title:
            self.title = title
        if description:
            self.description = description
        if body:
            self.body = body


# ---------------------------------------------------------------------------
# Comment
# ---------------------------------------------------------------------------
class Comment(TimestampedModel, Base):
    __tablename__ = "comments"

    body: Mapped[str] = mapped_column(Text, nullable=False)

    # Foreign keys
    article_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("articles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    # Relationships
    author: Mapped["User"] = relationship("User", lazy="noload")
