"""
Query composition shared by the stores.

Design notes
------------
- Every multi-statement mutation runs inside ``atomic``: one session,
  one transaction, commit on success.  Any exception rolls the whole
  transaction back and propagates unchanged to the caller.
- Article listings are built in a fixed order: base ``select(Article)``
  plus an optional join, the ``WHERE`` predicate, ordering,
  ``LIMIT``/``OFFSET``, then the eager-load options.  Because the
  author is a many-to-one ``joinedload`` and tags come from a separate
  ``selectinload`` query keyed on the page's ids, the predicate and the
  pagination only ever see one row per article.
- Ordering is newest first with ``id`` as tie-break.  Pagination is
  offset based, so rows inserted between two page requests shift the
  later pages.
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import joinedload, selectinload

from conduit.middleware import record_rollback
from conduit.models import Article, Comment, Tag, User, article_tags, favorite_articles

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Transaction boundary
# ---------------------------------------------------------------------------

@asynccontextmanager
async def atomic(
    session_factory: async_sessionmaker[AsyncSession], operation: str
) -> AsyncIterator[AsyncSession]:
    """
    Yield a session whose work is committed as a single transaction.

    A rollback is logged under the *operation* label and added to the
    current request's statistics.
    """
    async with session_factory() as session:
        try:
            async with session.begin():
                yield session
        except Exception as exc:
            logger.warning("Rolled back %s: %s", operation, exc)
            record_rollback()
            raise


# ---------------------------------------------------------------------------
# Article listing filters
# ---------------------------------------------------------------------------

def tagged(stmt: Select, tag_name: str) -> Select:
    """Restrict *stmt* to articles linked to the tag called *tag_name*."""
    return (
        stmt.join(article_tags, article_tags.c.article_id == Article.id)
        .join(Tag, Tag.id == article_tags.c.tag_id)
        .where(Tag.name == tag_name)
    )


def written_by(stmt: Select, username: str) -> Select:
    """Restrict *stmt* to articles whose author has the username *username*."""
    return stmt.join(User, User.id == Article.user_id).where(User.username == username)


def with_ids(stmt: Select, article_ids: Iterable[int]) -> Select:
    return stmt.where(Article.id.in_(list(article_ids)))


def authored_by_any(stmt: Select, user_ids: Iterable[int]) -> Select:
    return stmt.where(Article.user_id.in_(list(user_ids)))


def favorited_article_ids(user_id: int) -> Select:
    """Ids of the articles favorited by *user_id*; first half of the favorited-by filter."""
    return select(favorite_articles.c.article_id).where(favorite_articles.c.user_id == user_id)


def favorite_edges_of(user_id: int, article_ids: Iterable[int]) -> Select:
    """Ids among *article_ids* favorited by *user_id*, skipping soft-deleted articles."""
    return (
        select(favorite_articles.c.article_id)
        .join(Article, Article.id == favorite_articles.c.article_id)
        .where(
            favorite_articles.c.user_id == user_id,
            favorite_articles.c.article_id.in_(list(article_ids)),
            Article.deleted_at.is_(None),
        )
    )


# ---------------------------------------------------------------------------
# Ordering, pagination, eager loading
# ---------------------------------------------------------------------------

def recent_first(stmt: Select) -> Select:
    return stmt.order_by(Article.created_at.desc(), Article.id.desc())


def paginate(stmt: Select, limit: int, offset: int) -> Select:
    return stmt.offset(offset).limit(limit)


def with_article_associations(stmt: Select) -> Select:
    return stmt.options(joinedload(Article.author), selectinload(Article.tags))


def article_page(stmt: Select, limit: int, offset: int) -> Select:
    """Finish a filtered article select: order, paginate, then eager-load."""
    return with_article_associations(paginate(recent_first(stmt), limit, offset))


def with_comment_author(stmt: Select) -> Select:
    return stmt.options(joinedload(Comment.author))
