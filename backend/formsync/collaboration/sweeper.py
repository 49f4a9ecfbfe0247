"""
Expiry sweeper: background reclamation of lapsed field locks.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from formsync.core.errors import StorageFailureError
from formsync.db.store import ReleasedLock
from formsync.models import utcnow

from .connection_manager import ConnectionManager
from .events import EventType, field_unlocked_event
from .locks import LockTable

logger = logging.getLogger(__name__)


class ExpirySweeper:
    def __init__(self, locks: LockTable, connections: ConnectionManager, interval_seconds: float = 30):
        self.locks = locks
        self.connections = connections
        self.interval_seconds = interval_seconds

        self.task: Optional[asyncio.Task] = None
        self.last_run: Optional[datetime] = None
        self.total_expired = 0
        self.failures = 0

    async def sweep_once(self) -> List[ReleasedLock]:
        """Delete expired locks and emit one field-unlocked per freed field."""
        expired = await self.locks.expire_sweep()
        self.last_run = utcnow()
        self.total_expired += len(expired)

        for lock in expired:
            await self.connections.send_to_room(
                lock.share_code, EventType.FIELD_UNLOCKED.value, field_unlocked_event(lock.field_id)
            )
            logger.info(f"Auto-unlocked expired field {lock.field_id} in {lock.share_code}")

        return expired

    async def _run(self):
        """Periodically sweep; a failed sweep is retried at the next interval."""
        while True:
            try:
                await asyncio.sleep(self.interval_seconds)
                await self.sweep_once()
            except asyncio.CancelledError:
                raise
            except StorageFailureError as e:
                self.failures += 1
                logger.error(f"Lock sweep failed: {e.message}")
            except Exception as e:
                self.failures += 1
                logger.error(f"Error in lock sweep task: {e}")

    def start(self):
        if self.task is None or self.task.done():
            self.task = asyncio.create_task(self._run())
            logger.info(f"Lock expiry sweeper started (every {self.interval_seconds}s)")

    async def stop(self):
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
            self.task = None
            logger.info("Lock expiry sweeper stopped")

    @property
    def running(self) -> bool:
        return self.task is not None and not self.task.done()

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "interval_seconds": self.interval_seconds,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "total_expired": self.total_expired,
            "failures": self.failures,
        }
