"""
Best-effort side effects (emails, payroll push) decoupled from the transaction
that caused them.

Services queue work on the session with `dispatcher.defer(db, ...)`. Nothing runs
until that session commits; a rollback drops the queue. Each task runs detached,
and a failure is logged and kept in `dispatcher.failures`, never re-raised.
"""
import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from timeledger.db.base import utcnow

logger = logging.getLogger(__name__)

_PENDING_KEY = "deferred_side_effects"


@dataclass
class DispatchFailure:
    label: str
    error: str
    failed_at: datetime


class SideEffectDispatcher:
    def __init__(self, max_failures: int = 100):
        self.failures: deque[DispatchFailure] = deque(maxlen=max_failures)
        self._tasks: set[asyncio.Task] = set()

    def defer(
        self,
        db: AsyncSession,
        label: str,
        fn: Callable[..., Awaitable[Any]],
        *args: Any,
    ) -> None:
        db.info.setdefault(_PENDING_KEY, []).append((label, fn, args))

    def launch(self, pending: list[tuple[str, Callable[..., Awaitable[Any]], tuple]]) -> None:
        loop = asyncio.get_running_loop()
        for label, fn, args in pending:
            task = loop.create_task(self._run(label, fn, args))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run(self, label: str, fn: Callable[..., Awaitable[Any]], args: tuple) -> None:
        try:
            await fn(*args)
        except Exception as exc:
            logger.exception("Side effect '%s' failed", label)
            self.failures.append(DispatchFailure(label=label, error=str(exc), failed_at=utcnow()))

    async def drain(self) -> None:
        """Wait for in-flight side effects (shutdown and tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


dispatcher = SideEffectDispatcher()


@event.listens_for(Session, "after_commit")
def _launch_after_commit(session: Session) -> None:
    pending = session.info.pop(_PENDING_KEY, None)
    if pending:
        dispatcher.launch(pending)


@event.listens_for(Session, "after_rollback")
def _discard_after_rollback(session: Session) -> None:
    session.info.pop(_PENDING_KEY, None)
