from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Set

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db.models import ScheduledDeletion
from ..db.session import SessionFactory
from ..server.settings import settings
from .storage import SupabaseStorage, get_storage


logger = logging.getLogger(__name__)


class CleanupScheduler:
    """Deletes guest-owned storage objects once their grace window has passed.

    Each call to `schedule` arms a detached asyncio timer that owns the ids it
    was given. The ids are also written to `scheduled_deletions` so `restore`
    can re-arm them after a restart. Failures are logged and never reach the
    request that scheduled them.
    """

    def __init__(
        self,
        *,
        storage_factory: Callable[[], SupabaseStorage] = get_storage,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = SessionFactory,
    ) -> None:
        self._storage_factory = storage_factory
        self._session_factory = session_factory
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def schedule(self, public_ids: Iterable[str], *, delay: Optional[float] = None) -> None:
        ids = [pid for pid in dict.fromkeys(public_ids) if pid]
        if not ids:
            return
        delay = settings.GUEST_RETENTION_SECONDS if delay is None else max(0.0, float(delay))
        due = datetime.utcnow() + timedelta(seconds=delay)
        row_ids = await self._persist(ids, due)
        self._arm(ids, row_ids, delay)
        logger.info("Scheduled deletion of %d object(s) in %.0fs", len(ids), delay)

    async def restore(self) -> int:
        """Re-arm timers for deletions recorded before the last shutdown."""
        if self._session_factory is None:
            return 0
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(select(ScheduledDeletion))).scalars().all()
        except SQLAlchemyError:
            logger.warning("Could not load scheduled deletions", exc_info=True)
            return 0

        by_due: Dict[datetime, List[ScheduledDeletion]] = defaultdict(list)
        for row in rows:
            by_due[row.delete_after].append(row)
        now = datetime.utcnow()
        for due, batch in sorted(by_due.items()):
            remaining = max(0.0, (due - now).total_seconds())
            self._arm([r.public_id for r in batch], [r.id for r in batch], remaining)
        if rows:
            logger.info("Restored %d scheduled deletion(s)", len(rows))
        return len(rows)

    async def purge_due(self) -> int:
        """Delete every recorded object whose grace window has passed, without timers."""
        if self._session_factory is None:
            return 0
        async with self._session_factory() as session:
            stmt = select(ScheduledDeletion).where(ScheduledDeletion.delete_after <= datetime.utcnow())
            rows = (await session.execute(stmt)).scalars().all()
        if not rows:
            return 0
        if not await self._expire([r.public_id for r in rows], [r.id for r in rows]):
            return 0
        return len(rows)

    async def shutdown(self) -> None:
        # Only sleeping timers are cancelled; their rows stay for the next restore
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _arm(self, ids: List[str], row_ids: List[int], delay: float) -> None:
        task = asyncio.create_task(self._expire_after(ids, row_ids, delay))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _expire_after(self, ids: List[str], row_ids: List[int], delay: float) -> None:
        await asyncio.sleep(delay)
        # Once started, a deletion runs to completion even during shutdown
        await asyncio.shield(self._expire(ids, row_ids))

    async def _expire(self, ids: List[str], row_ids: List[int]) -> bool:
        try:
            if not await self._storage_factory().delete_many(ids):
                # Rows stay behind so the next restore or purge retries them
                logger.warning("Deferred cleanup of %s left for a later retry", ids)
                return False
            await self._forget(row_ids)
        except Exception:
            logger.warning("Deferred cleanup failed for %s", ids, exc_info=True)
            return False
        return True

    async def _persist(self, ids: List[str], due: datetime) -> List[int]:
        if self._session_factory is None:
            return []
        try:
            async with self._session_factory() as session:
                rows = [ScheduledDeletion(public_id=pid, delete_after=due) for pid in ids]
                session.add_all(rows)
                await session.commit()
                return [row.id for row in rows]
        except SQLAlchemyError:
            # The in-memory timer still runs; only restart durability is lost
            logger.warning("Could not record scheduled deletion of %s", ids, exc_info=True)
            return []

    async def _forget(self, row_ids: List[int]) -> None:
        if self._session_factory is None or not row_ids:
            return
        async with self._session_factory() as session:
            await session.execute(delete(ScheduledDeletion).where(ScheduledDeletion.id.in_(row_ids)))
            await session.commit()


_scheduler: Optional[CleanupScheduler] = None


def get_cleanup_scheduler() -> CleanupScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = CleanupScheduler()
    return _scheduler
