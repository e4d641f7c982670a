"""
Transaction coordinator for workflow transitions.

A transition's whole write set (entity mutations, ledger credit, notification
rows) runs inside one ``transition_scope``: a fresh ``AsyncSession`` with a
single ``session.begin()`` block.  Leaving the block normally commits; any
exception rolls back every write made through ``scope.session`` and is
re-raised unchanged, so the caller sees one error and no partial effect.

Work that must not be part of the transaction (deleting blobs from the
external store) is registered with ``scope.after_commit`` and only runs once
the commit succeeded.  Those callbacks are best-effort: failures are logged
and swallowed.

Usage::

    async with transition_scope(session_factory, name="approve") as scope:
        await approve_action(scope.session, action_id=7, reviewer_id="adm")
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from complaintdesk.errors import DomainError

logger = logging.getLogger(__name__)

AfterCommitCallback = Callable[[], Awaitable[None]]


class TransitionScope:
    def __init__(self, session: AsyncSession, *, name: str) -> None:
        self.session = session
        self.name = name
        self._after_commit: list[AfterCommitCallback] = []

    def after_commit(self, callback: AfterCommitCallback) -> None:
        self._after_commit.append(callback)

    async def run_after_commit(self) -> None:
        callbacks, self._after_commit = self._after_commit, []
        for callback in callbacks:
            try:
                await callback()
            except Exception:
                logger.exception("[tx] after-commit callback failed for %s", self.name)


def _default_session_factory() -> async_sessionmaker[AsyncSession]:
    from complaintdesk.db.session import SessionFactory

    return SessionFactory


@asynccontextmanager
async def transition_scope(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    *,
    name: str = "transition",
) -> AsyncIterator[TransitionScope]:
    factory = session_factory or _default_session_factory()
    async with factory() as session:
        scope = TransitionScope(session, name=name)
        try:
            async with session.begin():
                yield scope
        except DomainError as exc:
            logger.info("[tx] %s rolled back: %s: %s", name, type(exc).__name__, exc)
            raise
        except Exception:
            logger.exception("[tx] %s rolled back after unexpected error", name)
            raise

    await scope.run_after_commit()
