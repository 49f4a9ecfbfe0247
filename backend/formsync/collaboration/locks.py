"""
Field lock table: exclusive, auto-expiring leases per (group, field).

Mutual exclusion comes from the store's unique constraint on
(sharing_code_id, field_id); nothing here holds an in-process lock.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Iterable, List

from formsync.core.errors import LockConflictError
from formsync.db.store import CollaborationStore, GroupContext, LockRecord, ReleasedLock

logger = logging.getLogger(__name__)

UNKNOWN_HOLDER = "another user"


@dataclass(frozen=True)
class LockGrant:
    field_id: str
    user_id: str
    expires_at: datetime


class LockTable:
    def __init__(self, store: CollaborationStore, lease_seconds: int = 60):
        self.store = store
        self.lease = timedelta(seconds=lease_seconds)

    async def acquire(self, group: GroupContext, field_id: str, user_id: str) -> LockGrant:
        """
        Take the lock on a field, or extend it if the caller already holds it.

        Raises:
            LockConflictError: another user holds a live lease
        """
        granted, current = await self.store.acquire_lock(group.sharing_code_id, field_id, user_id, self.lease)
        if not granted:
            holder = current.user_email if current else UNKNOWN_HOLDER
            logger.info(f"Lock on {field_id} in {group.share_code} refused, held by {holder}")
            raise LockConflictError(field_id, holder)

        logger.info(f"Field {field_id} in {group.share_code} locked by {user_id}")
        return LockGrant(field_id=field_id, user_id=user_id, expires_at=current.expires_at)

    async def release(self, group: GroupContext, field_id: str, user_id: str) -> bool:
        """Release a lock held by `user_id`; a no-op for anyone else."""
        released = await self.store.release_lock(group.sharing_code_id, field_id, user_id)
        if released:
            logger.info(f"Field {field_id} in {group.share_code} unlocked by {user_id}")
        return released

    async def refresh(self, group: GroupContext, field_id: str, user_id: str) -> bool:
        return await self.store.refresh_lock(group.sharing_code_id, field_id, user_id, self.lease)

    async def authorize(self, group: GroupContext, field_id: str, user_id: str):
        """
        Allow an edit when the field is unlocked or locked by `user_id`.

        Raises:
            LockConflictError: a live lock belongs to someone else
        """
        current = await self.store.get_live_lock(group.sharing_code_id, field_id)
        if current is not None and current.user_id != user_id:
            raise LockConflictError(field_id, current.user_email, reason="Field is locked by another user")

    async def release_user(self, groups: Iterable[GroupContext], user_id: str) -> List[ReleasedLock]:
        """Drop every lock `user_id` holds in the given groups."""
        released: List[ReleasedLock] = []
        for group in groups:
            for field_id in await self.store.release_user_locks(group.sharing_code_id, user_id):
                released.append(ReleasedLock(share_code=group.share_code, field_id=field_id))

        if released:
            logger.info(f"Released {len(released)} lock(s) held by {user_id}")
        return released

    async def snapshot(self, group: GroupContext) -> Dict[str, str]:
        """field_id -> holder email for every live lock in the group."""
        return {lock.field_id: lock.user_email for lock in await self.store.list_live_locks(group.sharing_code_id)}

    async def live_locks(self, group: GroupContext) -> List[LockRecord]:
        return await self.store.list_live_locks(group.sharing_code_id)

    async def expire_sweep(self) -> List[ReleasedLock]:
        """Delete every lapsed lease, reporting each once."""
        expired = await self.store.delete_expired_locks()
        if expired:
            logger.info(f"Expired {len(expired)} field lock(s)")
        return expired
