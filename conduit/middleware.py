"""
Per-request store statistics.

A ``RequestStats`` record is bound to the current context at the start of
each HTTP request.  The engine listener installed by
``install_query_counter`` adds every SQL statement to it, and ``atomic``
adds every rolled-back store transaction.  ``RequestStatsMiddleware``
reports both on the response:

- ``X-Query-Count``: SQL statements executed, eager loads included.
- ``X-Rollback-Count``: store transactions rolled back.
- ``X-Response-Time-Ms``: wall-clock time for the request.

Outside a request nothing is recorded unless a caller binds a record with
``begin_request_stats``.
"""
import logging
import time
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import event
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger(__name__)


@dataclass
class RequestStats:
    queries: int = 0
    rollbacks: int = 0
    started: float = field(default_factory=time.perf_counter)

    def elapsed_ms(self) -> float:
        return round((time.perf_counter() - self.started) * 1000, 2)

    def as_headers(self) -> list[tuple[bytes, bytes]]:
        return [
            (b"x-query-count", str(self.queries).encode()),
            (b"x-rollback-count", str(self.rollbacks).encode()),
            (b"x-response-time-ms", str(self.elapsed_ms()).encode()),
        ]


# The record is mutated in place, so copies of the context made for
# threadpool dependencies or gathered tasks still report into it.
_stats_var: ContextVar[Optional[RequestStats]] = ContextVar("request_stats", default=None)


def begin_request_stats() -> RequestStats:
    """Bind a fresh ``RequestStats`` to the current context and return it."""
    stats = RequestStats()
    _stats_var.set(stats)
    return stats


def current_request_stats() -> Optional[RequestStats]:
    return _stats_var.get()


def record_rollback() -> None:
    stats = _stats_var.get()
    if stats is not None:
        stats.rollbacks += 1


def install_query_counter(engine) -> None:
    """Count every statement *engine* sends to the database into the bound record."""

    @event.listens_for(engine.sync_engine, "before_cursor_execute")
    def _count_statement(conn, cursor, statement, parameters, context, executemany):
        stats = _stats_var.get()
        if stats is not None:
            stats.queries += 1


class RequestStatsMiddleware:
    """Pure ASGI middleware binding a ``RequestStats`` record to each HTTP request."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        stats = begin_request_stats()
        status_code = 500

        async def send_with_stats(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
                message["headers"] = list(message.get("headers", [])) + stats.as_headers()
            await send(message)

        await self.app(scope, receive, send_with_stats)
        logger.debug(
            "%s %s -> %d in %.2f ms, %d statement(s), %d rollback(s)",
            scope["method"],
            scope["path"],
            status_code,
            stats.elapsed_ms(),
            stats.queries,
            stats.rollbacks,
        )
