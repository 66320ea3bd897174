"""
User store: keyed CRUD for users plus the follow graph.

Follow edges live in the ``follows`` join table as
``(from_user_id, to_user_id)`` pairs.  The store accepts any pair,
including a user following themselves; the HTTP layer decides whether
that is allowed.  A repeated follow fails on the edge's primary key and
the database error is raised unchanged.
"""
import logging

from sqlalchemy import delete, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from conduit.errors import InvalidArgumentError, RecordNotFoundError
from conduit.models import User, follows, utcnow
from conduit.stores.queries import atomic

logger = logging.getLogger(__name__)


class UserStore:
    """User-side persistence, bound to one session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def create(self, user: User | None) -> User:
        """
        Insert *user* and return it with its id populated.

        Username and email uniqueness is enforced by the schema; a clash
        raises ``IntegrityError``.
        """
        if user is None:
            raise InvalidArgumentError("user is required")
        async with atomic(self._session_factory, "user create") as session:
            session.add(user)
            await session.flush()
        logger.info("Created user id=%s username=%r", user.id, user.username)
        return user

    async def update(self, user: User | None) -> User:
        """Replace the stored profile columns of *user*."""
        if user is None:
            raise InvalidArgumentError("user is required")
        now = utcnow()
        async with atomic(self._session_factory, "user update") as session:
            result = await session.execute(
                update(User)
                .where(User.id == user.id, User.deleted_at.is_(None))
                .values(
                    username=user.username,
                    email=user.email,
                    password=user.password,
                    bio=user.bio,
                    image=user.image,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise RecordNotFoundError(f"user {user.id} not found")
        user.updated_at = now
        logger.info("Updated user id=%s", user.id)
        return user

    async def _get_one(self, criterion, description: str) -> User:
        async with self._session_factory() as session:
            result = await session.execute(select(User).where(criterion))
            user = result.scalar_one_or_none()
        if user is None:
            raise RecordNotFoundError(f"user with {description} not found")
        return user

    async def get_by_id(self, user_id: int) -> User:
        return await self._get_one(User.id == user_id, f"id {user_id}")

    async def get_by_email(self, email: str) -> User:
        return await self._get_one(User.email == email, f"email {email!r}")

    async def get_by_username(self, username: str) -> User:
        return await self._get_one(User.username == username, f"username {username!r}")

    # ------------------------------------------------------------------
    # Follow graph
    # ------------------------------------------------------------------

    async def follow(self, follower: User | None, followed: User | None) -> None:
        if follower is None or followed is None:
            raise InvalidArgumentError("follower and followed users are required")
        async with atomic(self._session_factory, "follow") as session:
            await session.execute(
                insert(follows).values(from_user_id=follower.id, to_user_id=followed.id)
            )
        logger.info("User id=%s now follows user id=%s", follower.id, followed.id)

    async def unfollow(self, follower: User | None, followed: User | None) -> None:
        """Remove the follow edge; a missing edge is not an error."""
        if follower is None or followed is None:
            raise InvalidArgumentError("follower and followed users are required")
        async with atomic(self._session_factory, "unfollow") as session:
            result = await session.execute(
                delete(follows).where(
                    follows.c.from_user_id == follower.id,
                    follows.c.to_user_id == followed.id,
                )
            )
            removed = result.rowcount
        logger.info(
            "User id=%s unfollowed user id=%s (%d row(s))", follower.id, followed.id, removed
        )

    async def is_following(self, follower: User | None, followed: User | None) -> bool:
        if follower is None or followed is None:
            return False
        q = (
            select(follows.c.from_user_id)
            .where(
                follows.c.from_user_id == follower.id,
                follows.c.to_user_id == followed.id,
            )
            .limit(1)
        )
        async with self._session_factory() as session:
            result = await session.execute(q)
            return result.scalar_one_or_none() is not None

    async def get_following_user_ids(self, user: User | None) -> list[int]:
        """
        Ids of the users *user* follows.

        The order is whatever the database scan yields; callers must not
        rely on it.
        """
        if user is None:
            raise InvalidArgumentError("user is required")
        q = select(follows.c.to_user_id).where(follows.c.from_user_id == user.id)
        async with self._session_factory() as session:
            result = await session.execute(q)
            return list(result.scalars().all())
