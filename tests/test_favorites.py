"""
Favorite tests: the counter/edge consistency contract.

The counter on ``articles.favorites_count`` must always equal the number
of ``favorite_articles`` rows for the article once a call returns,
including when a statement fails half-way through the transaction and
when many callers favorite the same article at once.
"""
import asyncio

import pytest
from sqlalchemy import event
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from conduit.errors import InvalidArgumentError, RecordNotFoundError
from conduit.middleware import begin_request_stats
from conduit.models import Article, User
from conduit.stores import ArticleStore, UserStore


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _article_by(store: ArticleStore, author: User, title: str = "Popular") -> Article:
    return await store.create(Article(title=title, body="Body", user_id=author.id))


class SimulatedDriverError(Exception):
    pass


# ---------------------------------------------------------------------------
# add_favorite / delete_favorite
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_add_favorite_increments_and_reflects_count(article_store, make_user):
    author = await make_user("author")
    fan = await make_user("fan")
    article = await _article_by(article_store, author)

    await article_store.add_favorite(article, fan)

    assert article.favorites_count == 1
    assert await article_store.is_favorited(article, fan) is True
    assert (await article_store.get_by_id(article.id)).favorites_count == 1


@pytest.mark.asyncio
async def test_delete_favorite_decrements_and_reflects_count(article_store, make_user):
    author = await make_user("author")
    fans = [await make_user(f"fan{i}") for i in range(2)]
    article = await _article_by(article_store, author)
    for fan in fans:
        await article_store.add_favorite(article, fan)
    assert article.favorites_count == 2

    await article_store.delete_favorite(article, fans[0])

    assert article.favorites_count == 1
    assert await article_store.is_favorited(article, fans[0]) is False
    assert await article_store.is_favorited(article, fans[1]) is True
    assert (await article_store.get_by_id(article.id)).favorites_count == 1


@pytest.mark.asyncio
async def test_duplicate_favorite_fails_without_touching_counter(article_store, make_user):
    author = await make_user("author")
    fan = await make_user("fan")
    article = await _article_by(article_store, author)
    await article_store.add_favorite(article, fan)

    with pytest.raises(IntegrityError):
        await article_store.add_favorite(article, fan)

    assert (await article_store.get_by_id(article.id)).favorites_count == 1


@pytest.mark.asyncio
async def test_unfavorite_without_edge_keeps_counter(article_store, make_user):
    author = await make_user("author")
    fan = await make_user("fan")
    stranger = await make_user("stranger")
    article = await _article_by(article_store, author)
    await article_store.add_favorite(article, fan)

    await article_store.delete_favorite(article, stranger)

    assert article.favorites_count == 1
    assert (await article_store.get_by_id(article.id)).favorites_count == 1


@pytest.mark.asyncio
async def test_favorite_of_missing_article_leaves_no_edge(article_store, make_user):
    fan = await make_user("fan")
    ghost = Article(id=99999)

    with pytest.raises(RecordNotFoundError):
        await article_store.add_favorite(ghost, fan)

    assert await article_store.is_favorited(ghost, fan) is False


@pytest.mark.asyncio
async def test_favorite_none_arguments_are_invalid(article_store, make_user):
    author = await make_user("author")
    article = await _article_by(article_store, author)

    stats = begin_request_stats()
    with pytest.raises(InvalidArgumentError):
        await article_store.add_favorite(None, author)
    with pytest.raises(InvalidArgumentError):
        await article_store.add_favorite(article, None)
    with pytest.raises(InvalidArgumentError):
        await article_store.delete_favorite(None, None)
    assert stats.queries == 0


# ---------------------------------------------------------------------------
# is_favorited
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_is_favorited_with_none_is_false_without_querying(article_store, make_user):
    author = await make_user("author")
    article = await _article_by(article_store, author)

    stats = begin_request_stats()
    assert await article_store.is_favorited(None, author) is False
    assert await article_store.is_favorited(article, None) is False
    assert stats.queries == 0


@pytest.mark.asyncio
async def test_is_favorited_false_without_edge(article_store, make_user):
    author = await make_user("author")
    article = await _article_by(article_store, author)
    assert await article_store.is_favorited(article, author) is False


# ---------------------------------------------------------------------------
# Atomicity
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_failed_counter_update_rolls_back_edge(article_store, make_user, memory_engine):
    """A driver failure on the counter UPDATE must undo the edge INSERT."""
    author = await make_user("author")
    fan = await make_user("fan")
    article = await _article_by(article_store, author)

    def _fail_counter_update(conn, cursor, statement, parameters, context, executemany):
        if statement.lstrip().upper().startswith("UPDATE") and "favorites_count" in statement:
            raise SimulatedDriverError("counter update failed")

    event.listen(memory_engine.sync_engine, "before_cursor_execute", _fail_counter_update)
    try:
        with pytest.raises(SimulatedDriverError):
            await article_store.add_favorite(article, fan)
    finally:
        event.remove(memory_engine.sync_engine, "before_cursor_execute", _fail_counter_update)

    assert await article_store.is_favorited(article, fan) is False
    assert article.favorites_count == 0
    assert (await article_store.get_by_id(article.id)).favorites_count == 0


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_concurrent_favorites_keep_counter_consistent(file_engine):
    """
    N concurrent favorites followed by M concurrent unfavorites leave the
    counter at N - M, equal to the number of remaining edges.
    """
    factory = async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)
    users = UserStore(factory)
    store = ArticleStore(factory)

    n_fans, n_quitters = 8, 3
    author = await users.create(User(username="author", email="author@example.com"))
    fans = [
        await users.create(User(username=f"fan{i}", email=f"fan{i}@example.com"))
        for i in range(n_fans)
    ]
    article = await _article_by(store, author)

    # One handle per caller, as separate requests would each load their own.
    await asyncio.gather(*(store.add_favorite(Article(id=article.id), fan) for fan in fans))
    assert (await store.get_by_id(article.id)).favorites_count == n_fans

    await asyncio.gather(
        *(store.delete_favorite(Article(id=article.id), fan) for fan in fans[:n_quitters])
    )

    remaining = [fan for fan in fans if await store.is_favorited(article, fan)]
    assert len(remaining) == n_fans - n_quitters
    assert remaining == fans[n_quitters:]
    assert (await store.get_by_id(article.id)).favorites_count == n_fans - n_quitters


# ---------------------------------------------------------------------------
# Soft-deleted articles
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_deleted_article_is_not_favorited(article_store, make_user):
    author = await make_user("author")
    fan = await make_user("fan")
    article = await _article_by(article_store, author)
    await article_store.add_favorite(article, fan)

    await article_store.delete(article)

    assert await article_store.is_favorited(article, fan) is False
    assert await article_store.get_favorited_ids(fan, [article]) == set()
    with pytest.raises(RecordNotFoundError):
        await article_store.add_favorite(article, author)


@pytest.mark.asyncio
async def test_get_favorited_ids_for_a_page(article_store, make_user):
    author = await make_user("author")
    fan = await make_user("fan")
    liked = await _article_by(article_store, author, "Liked")
    skipped = await _article_by(article_store, author, "Skipped")
    elsewhere = await _article_by(article_store, author, "Elsewhere")
    await article_store.add_favorite(liked, fan)
    await article_store.add_favorite(elsewhere, fan)

    assert await article_store.get_favorited_ids(fan, [liked, skipped]) == {liked.id}

    stats = begin_request_stats()
    assert await article_store.get_favorited_ids(None, [liked]) == set()
    assert await article_store.get_favorited_ids(fan, []) == set()
    assert stats.queries == 0
