from fastapi import Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from conduit.config import settings
from conduit.database import get_session_factory
from conduit.stores import ArticleStore, UserStore


class PaginationParams:
    """
    Reusable FastAPI dependency that parses and validates ``limit`` /
    ``offset`` query parameters.

    Usage in a router::

        @router.get("/articles")
        async def list_articles(pagination: PaginationParams = Depends()):
            ...

    Attributes
    ----------
    limit:
        Number of articles per page; values above ``settings.MAX_PAGE_SIZE``
        are rejected with 422.
    offset:
        Number of articles skipped before the page starts.  Pagination is
        offset based, so concurrent inserts can shift later pages.
    """

    def __init__(
        self,
        limit: int = Query(
            settings.DEFAULT_PAGE_SIZE,
            ge=1,
            le=settings.MAX_PAGE_SIZE,
            description=f"Number of items returned per page (max {settings.MAX_PAGE_SIZE}).",
        ),
        offset: int = Query(
            0,
            ge=0,
            description="Number of items to skip.",
        ),
    ) -> None:
        self.limit = limit
        self.offset = offset


def get_article_store(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> ArticleStore:
    return ArticleStore(session_factory)


def get_user_store(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> UserStore:
    return UserStore(session_factory)
