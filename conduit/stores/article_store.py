"""
Article store: persistence for articles, comments, tags and favorites.

Design notes
------------
- Multi-statement writes go through ``atomic``; a failing statement
  rolls back everything issued in the same call and the original
  exception reaches the caller.
- ``favorites_count`` is only ever changed by a relative
  ``UPDATE ... SET favorites_count = favorites_count +/- 1`` issued in the
  same transaction as the favorite-edge insert/delete.  The row lock
  taken by that UPDATE serializes concurrent favorites of one article,
  so the counter always equals the number of edges once the
  transaction commits.  The new value is read back inside the
  transaction and copied onto the caller's instance after commit.
- Deletes are soft: ``deleted_at`` is stamped and the session-level
  read filter hides the row from every later query.
"""
import logging

from sqlalchemy import delete, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from conduit.errors import InvalidArgumentError, RecordNotFoundError
from conduit.models import Article, Comment, Tag, User, article_tags, favorite_articles, utcnow
from conduit.stores.queries import (
    article_page,
    atomic,
    authored_by_any,
    favorite_edges_of,
    favorited_article_ids,
    tagged,
    with_article_associations,
    with_comment_author,
    with_ids,
    written_by,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _tag_names(article: Article) -> list[str]:
    """Distinct tag names attached to *article*, in their original order."""
    return list(dict.fromkeys(tag.name for tag in article.tags))


async def _resolve_tags(session: AsyncSession, names: list[str]) -> list[Tag]:
    """
    Return Tag ORM instances for each name in *names*, creating any that
    do not yet exist.  All inserts are flushed within the caller's
    transaction.
    """
    if not names:
        return []
    result = await session.execute(select(Tag).where(Tag.name.in_(names)))
    existing = {tag.name: tag for tag in result.scalars().all()}
    tags: list[Tag] = []
    for name in names:
        tag = existing.get(name)
        if tag is None:
            tag = Tag(name=name)
            session.add(tag)
        tags.append(tag)
    await session.flush()
    return tags


async def _read_favorites_count(session: AsyncSession, article_id: int) -> int:
    result = await session.execute(
        select(Article.favorites_count).where(Article.id == article_id)
    )
    count = result.scalar_one_or_none()
    if count is None:
        raise RecordNotFoundError(f"article {article_id} not found")
    return count


async def _shift_favorites_count(session: AsyncSession, article_id: int, delta: int) -> int:
    """Apply *delta* to the stored counter in SQL and return the new value."""
    result = await session.execute(
        update(Article)
        .where(Article.id == article_id, Article.deleted_at.is_(None))
        .values(favorites_count=Article.favorites_count + delta)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise RecordNotFoundError(f"article {article_id} not found")
    return await _read_favorites_count(session, article_id)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class ArticleStore:
    """Article-side persistence, bound to one session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Articles
    # ------------------------------------------------------------------

    async def create(self, article: Article | None) -> Article:
        """
        Insert *article* together with its tags as one unit.

        Tags are matched by name; names without a row are inserted.  The
        instance is returned with its id, timestamps and the resolved tags
        populated.
        """
        if article is None:
            raise InvalidArgumentError("article is required")
        if article.user_id is None:
            if article.author is None or article.author.id is None:
                raise InvalidArgumentError("article has no author")
            article.user_id = article.author.id

        async with atomic(self._session_factory, "article create") as session:
            article.tags = await _resolve_tags(session, _tag_names(article))
            session.add(article)
            await session.flush()

        logger.info("Created article id=%s with %d tag(s)", article.id, len(article.tags))
        return article

    async def update(self, article: Article | None) -> Article:
        """
        Replace the stored row of *article* and its tag links.

        The counter column is left alone: it is owned by the favorite
        operations.  Raises ``RecordNotFoundError`` when no live row has
        the article's id.
        """
        if article is None:
            raise InvalidArgumentError("article is required")

        now = utcnow()
        async with atomic(self._session_factory, "article update") as session:
            result = await session.execute(
                update(Article)
                .where(Article.id == article.id, Article.deleted_at.is_(None))
                .values(
                    title=article.title,
                    description=article.description,
                    body=article.body,
                    user_id=article.user_id,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise RecordNotFoundError(f"article {article.id} not found")

            tags = await _resolve_tags(session, _tag_names(article))
            await session.execute(
                delete(article_tags).where(article_tags.c.article_id == article.id)
            )
            if tags:
                await session.execute(
                    insert(article_tags),
                    [{"article_id": article.id, "tag_id": tag.id} for tag in tags],
                )

        article.updated_at = now
        logger.info("Updated article id=%s", article.id)
        return article

    async def delete(self, article: Article | None) -> None:
        """Soft-delete *article*.  Deleting a missing article is a no-op."""
        if article is None:
            raise InvalidArgumentError("article is required")

        async with atomic(self._session_factory, "article delete") as session:
            result = await session.execute(
                update(Article)
                .where(Article.id == article.id, Article.deleted_at.is_(None))
                .values(deleted_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            deleted = result.rowcount
        logger.info("Deleted article id=%s (%d row(s))", article.id, deleted)

    async def get_by_id(self, article_id: int) -> Article:
        q = with_article_associations(select(Article).where(Article.id == article_id))
        async with self._session_factory() as session:
            result = await session.execute(q)
            article = result.unique().scalar_one_or_none()
        if article is None:
            raise RecordNotFoundError(f"article {article_id} not found")
        return article

    async def get_articles(
        self,
        tag: str | None = None,
        username: str | None = None,
        favorited_by: User | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Article]:
        """
        Return one page of articles, newest first, with author and tags loaded.

        Callers normally pass a single filter: *tag* (exact tag name),
        *username* (exact author username) or *favorited_by* (a user whose
        favorites are listed).  Filters that are given together are
        combined with AND.  Without a filter the most recent articles are
        returned.

        The favorited-by filter runs in two steps: the user's favorited
        article ids are fetched first, and when there are none no article
        query is issued at all.
        """
        stmt = select(Article)
        if tag:
            stmt = tagged(stmt, tag)
        if username:
            stmt = written_by(stmt, username)

        async with self._session_factory() as session:
            if favorited_by is not None:
                ids = (await session.execute(favorited_article_ids(favorited_by.id))).scalars().all()
                if not ids:
                    return []
                stmt = with_ids(stmt, ids)

            result = await session.execute(article_page(stmt, limit, offset))
            articles = list(result.unique().scalars().all())

        logger.debug(
            "Listed %d article(s) tag=%r username=%r favorited_by=%r limit=%d offset=%d",
            len(articles),
            tag,
            username,
            favorited_by.id if favorited_by is not None else None,
            limit,
            offset,
        )
        return articles

    async def get_feed_articles(
        self, user_ids: list[int], limit: int = 20, offset: int = 0
    ) -> list[Article]:
        """Return one page of articles written by any of *user_ids*."""
        if not user_ids:
            return []
        q = article_page(authored_by_any(select(Article), user_ids), limit, offset)
        async with self._session_factory() as session:
            result = await session.execute(q)
            return list(result.unique().scalars().all())

    # ------------------------------------------------------------------
    # Favorites
    # ------------------------------------------------------------------

    async def add_favorite(self, article: Article | None, user: User | None) -> None:
        """
        Record that *user* favorites *article* and bump the counter by one.

        Both writes commit together.  A second favorite by the same user
        fails on the edge's primary key and changes nothing.
        """
        if article is None or user is None:
            raise InvalidArgumentError("article and user are required")

        async with atomic(self._session_factory, "add favorite") as session:
            await session.execute(
                insert(favorite_articles).values(article_id=article.id, user_id=user.id)
            )
            count = await _shift_favorites_count(session, article.id, 1)

        article.favorites_count = count
        logger.info("User id=%s favorited article id=%s (count=%d)", user.id, article.id, count)

    async def delete_favorite(self, article: Article | None, user: User | None) -> None:
        """
        Remove the favorite of *user* on *article* and lower the counter by one.

        The counter only moves when an edge row was actually removed, so
        unfavoriting an article the user never favorited leaves it
        unchanged.  The caller's instance always receives the stored value.
        """
        if article is None or user is None:
            raise InvalidArgumentError("article and user are required")

        async with atomic(self._session_factory, "delete favorite") as session:
            result = await session.execute(
                delete(favorite_articles).where(
                    favorite_articles.c.article_id == article.id,
                    favorite_articles.c.user_id == user.id,
                )
            )
            if result.rowcount:
                count = await _shift_favorites_count(session, article.id, -1)
            else:
                count = await _read_favorites_count(session, article.id)

        article.favorites_count = count
        logger.info("User id=%s unfavorited article id=%s (count=%d)", user.id, article.id, count)

    async def is_favorited(self, article: Article | None, user: User | None) -> bool:
        """
        Whether *user* favorites *article*.

        A soft-deleted article counts as not favorited, even while its
        favorite edge is still stored.
        """
        if article is None or user is None:
            return False
        q = favorite_edges_of(user.id, [article.id]).limit(1)
        async with self._session_factory() as session:
            result = await session.execute(q)
            return result.scalar_one_or_none() is not None

    async def get_favorited_ids(self, user: User | None, articles: list[Article]) -> set[int]:
        """
        Ids among *articles* that *user* favorites, in one query.

        Follows the same rules as ``is_favorited``; no query is issued for
        an absent user or an empty list.
        """
        if user is None or not articles:
            return set()
        q = favorite_edges_of(user.id, [article.id for article in articles])
        async with self._session_factory() as session:
            result = await session.execute(q)
            return set(result.scalars().all())

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    async def create_comment(self, comment: Comment | None) -> Comment:
        if comment is None:
            raise InvalidArgumentError("comment is required")
        async with atomic(self._session_factory, "comment create") as session:
            session.add(comment)
            await session.flush()
        logger.info("Created comment id=%s on article id=%s", comment.id, comment.article_id)
        return comment

    async def get_comments(self, article: Article | None) -> list[Comment]:
        """Comments of *article* in creation order, each with its author loaded."""
        if article is None:
            raise InvalidArgumentError("article is required")
        q = with_comment_author(
            select(Comment)
            .where(Comment.article_id == article.id)
            .order_by(Comment.created_at, Comment.id)
        )
        async with self._session_factory() as session:
            result = await session.execute(q)
            return list(result.unique().scalars().all())

    async def get_comment_by_id(self, comment_id: int) -> Comment:
        q = with_comment_author(select(Comment).where(Comment.id == comment_id))
        async with self._session_factory() as session:
            result = await session.execute(q)
            comment = result.unique().scalar_one_or_none()
        if comment is None:
            raise RecordNotFoundError(f"comment {comment_id} not found")
        return comment

    async def delete_comment(self, comment: Comment | None) -> None:
        """Soft-delete *comment*.  Deleting a missing comment is a no-op."""
        if comment is None:
            raise InvalidArgumentError("comment is required")
        async with atomic(self._session_factory, "comment delete") as session:
            result = await session.execute(
                update(Comment)
                .where(Comment.id == comment.id, Comment.deleted_at.is_(None))
                .values(deleted_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            deleted = result.rowcount
        logger.info("Deleted comment id=%s (%d row(s))", comment.id, deleted)

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    async def get_tags(self) -> list[Tag]:
        async with self._session_factory() as session:
            result = await session.execute(select(Tag).order_by(Tag.name))
            return list(result.scalars().all())
