"""
Mutual exclusion for analysis runs, shared through the database.

The API process and the standalone worker both schedule the daily job, so the
lock lives in the `run_locks` table rather than in process memory. A claim is a
conditional UPDATE that only matches a free or expired lease; the holder extends
its lease while it works, so long runs keep the lock and a crashed holder frees
it once the lease runs out.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.future import select

from config import settings
from database import async_session_maker
from models.run_lock import RunLockRecord

logger = logging.getLogger(__name__)

RUN_LOCK_NAME = "daily-analysis"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RunLock:
    """Single-holder lease on a named `run_locks` row."""

    def __init__(
        self,
        session_maker: Optional[async_sessionmaker] = None,
        *,
        name: str = RUN_LOCK_NAME,
        ttl_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.session_maker = session_maker or async_session_maker
        self.name = name
        self.ttl_seconds = int(ttl_seconds or settings.RUN_LOCK_TTL_SECONDS)
        self.clock = clock
        self.token = uuid.uuid4().hex
        self.held = False

    async def _ensure_row(self, db: AsyncSession) -> None:
        existing = await db.execute(select(RunLockRecord.name).where(RunLockRecord.name == self.name))
        if existing.first() is not None:
            return
        db.add(RunLockRecord(name=self.name))
        try:
            await db.commit()
        except IntegrityError:
            # Another process created the row first
            await db.rollback()

    async def acquire(self) -> bool:
        now = self.clock()
        async with self.session_maker() as db:
            await self._ensure_row(db)
            result = await db.execute(
                update(RunLockRecord)
                .where(RunLockRecord.name == self.name)
                .where(or_(RunLockRecord.holder.is_(None), RunLockRecord.expires_at < now))
                .values(
                    holder=self.token,
                    acquired_at=now,
                    expires_at=now + timedelta(seconds=self.ttl_seconds),
                )
            )
            await db.commit()
        self.held = result.rowcount == 1
        if self.held:
            logger.info("Run lock %r acquired (lease %ss)", self.name, self.ttl_seconds)
        return self.held

    async def refresh(self) -> bool:
        """Extend the lease. False means the lease expired and someone else took it."""
        if not self.held:
            return False
        async with self.session_maker() as db:
            result = await db.execute(
                update(RunLockRecord)
                .where(RunLockRecord.name == self.name, RunLockRecord.holder == self.token)
                .values(expires_at=self.clock() + timedelta(seconds=self.ttl_seconds))
            )
            await db.commit()
        if result.rowcount != 1:
            logger.error("Run lock %r was taken over by another holder", self.name)
            self.held = False
        return self.held

    async def release(self) -> None:
        if not self.held:
            return
        self.held = False
        async with self.session_maker() as db:
            await db.execute(
                update(RunLockRecord)
                .where(RunLockRecord.name == self.name, RunLockRecord.holder == self.token)
                .values(holder=None, expires_at=None)
            )
            await db.commit()

    async def __aenter__(self) -> bool:
        return await self.acquire()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.release()
