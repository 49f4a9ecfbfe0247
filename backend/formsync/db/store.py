"""
Relational store for the collaboration engine.

Every method runs in its own transaction and is safe to call concurrently from
interleaved sessions. Conditional writes (lock acquisition, lazy draft creation)
are single statements keyed on unique constraints, never a read followed by a
write.
"""

import logging
import secrets
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import delete, or_, select, text, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from formsync.core.errors import InactiveError, NotFoundError, StorageFailureError
from formsync.models import (
    FieldContribution,
    FieldLock,
    FieldType,
    Form,
    FormField,
    FormResponse,
    ResponseField,
    ResponseStatus,
    SharingCode,
    User,
    UserRole,
    utcnow,
)
from formsync.models.base import generate_id
from formsync.models.response import DRAFT_ONLY

logger = logging.getLogger(__name__)

SHARE_CODE_ATTEMPTS = 5


def generate_share_code() -> str:
    """Eight uppercase hex characters."""
    return secrets.token_hex(4).upper()


@dataclass(frozen=True)
class GroupContext:
    """A resolved, active collaboration group."""
    sharing_code_id: str
    share_code: str
    group_name: str
    form_id: str
    form_title: str


@dataclass(frozen=True)
class FieldInfo:
    id: str
    label: str
    type: FieldType
    required: bool = False
    options: Tuple[str, ...] = ()


@dataclass(frozen=True)
class LockRecord:
    field_id: str
    user_id: str
    user_email: str
    expires_at: datetime


@dataclass(frozen=True)
class ReleasedLock:
    """A lock removed by expiry or cascade, addressed by the room it belongs to."""
    share_code: str
    field_id: str


class CollaborationStore:
    """Async repository over forms, groups, drafts, locks and contributions."""

    def __init__(self, session_factory: async_sessionmaker, clock: Callable[[], datetime] = utcnow):
        self.session_factory = session_factory
        self.clock = clock

    @asynccontextmanager
    async def transaction(self):
        """Session scoped to one transaction; database failures become StorageFailureError."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Store transaction failed: {e}")
                raise StorageFailureError(cause=e) from e
            except Exception:
                await session.rollback()
                raise

    @staticmethod
    def _insert(session: AsyncSession, model):
        """Dialect insert construct supporting ON CONFLICT."""
        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(model)
        if dialect == "sqlite":
            return sqlite.insert(model)
        raise StorageFailureError(f"Upserts are not supported on dialect {dialect}")

    # Identity and form definitions

    async def get_user(self, user_id: str) -> Optional[User]:
        async with self.transaction() as session:
            return await session.get(User, user_id)

    async def get_group(self, share_code: str, require_active: bool = True) -> GroupContext:
        """
        Resolve a sharing code to its group.

        Raises:
            NotFoundError: unknown share code
            InactiveError: the group or its form is deactivated (only when
                `require_active` is set)
        """
        async with self.transaction() as session:
            row = (await session.execute(
                select(SharingCode, Form)
                .join(Form, Form.id == SharingCode.form_id)
                .where(SharingCode.share_code == share_code)
            )).first()

        if row is None:
            raise NotFoundError("Share code not found")

        sharing_code, form = row
        if require_active and not sharing_code.is_active:
            raise InactiveError("Share code is inactive")
        if require_active and not form.is_active:
            raise InactiveError("Form is not active")

        return GroupContext(
            sharing_code_id=sharing_code.id,
            share_code=sharing_code.share_code,
            group_name=sharing_code.group_name,
            form_id=form.id,
            form_title=form.title,
        )

    async def get_field(self, form_id: str, field_id: str) -> FieldInfo:
        async with self.transaction() as session:
            field = (await session.execute(
                select(FormField).where(FormField.id == field_id, FormField.form_id == form_id)
            )).scalar_one_or_none()

        if field is None:
            raise NotFoundError("Field not found in this form")
        return self._field_info(field)

    async def get_fields(self, form_id: str) -> Dict[str, FieldInfo]:
        async with self.transaction() as session:
            fields = (await session.execute(
                select(FormField).where(FormField.form_id == form_id).order_by(FormField.field_order)
            )).scalars().all()
        return {field.id: self._field_info(field) for field in fields}

    @staticmethod
    def _field_info(field: FormField) -> FieldInfo:
        return FieldInfo(
            id=field.id,
            label=field.label,
            type=FieldType(field.type),
            required=bool(field.required),
            options=tuple(field.options or ()),
        )

    # Field locks

    async def acquire_lock(
        self, sharing_code_id: str, field_id: str, user_id: str, lease: timedelta
    ) -> Tuple[bool, Optional[LockRecord]]:
        """
        Take or refresh the lease on a field in one conditional upsert.

        The row is written when no lock exists, when the caller already holds
        it, or when the existing lease has lapsed. Otherwise the statement
        leaves the row alone and returns nothing.

        Returns:
            tuple: (granted, current live lock)
        """
        now = self.clock()
        async with self.transaction() as session:
            stmt = self._insert(session, FieldLock).values(
                id=generate_id(),
                sharing_code_id=sharing_code_id,
                field_id=field_id,
                user_id=user_id,
                created_at=now,
                expires_at=now + lease,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["sharing_code_id", "field_id"],
                set_={"user_id": stmt.excluded.user_id, "expires_at": stmt.excluded.expires_at},
                where=or_(FieldLock.user_id == stmt.excluded.user_id, FieldLock.expires_at <= now),
            ).returning(FieldLock.user_id)

            granted = (await session.execute(stmt)).first() is not None
            current = await self._live_lock(session, sharing_code_id, field_id, now)

        return granted, current

    async def release_lock(self, sharing_code_id: str, field_id: str, user_id: str) -> bool:
        """Delete the lock only if `user_id` holds it."""
        async with self.transaction() as session:
            result = await session.execute(
                delete(FieldLock)
                .where(
                    FieldLock.sharing_code_id == sharing_code_id,
                    FieldLock.field_id == field_id,
                    FieldLock.user_id == user_id,
                )
                .execution_options(synchronize_session=False)
            )
        return result.rowcount > 0

    async def refresh_lock(self, sharing_code_id: str, field_id: str, user_id: str, lease: timedelta) -> bool:
        """Extend the holder's lease to now + lease. No-op for anyone else."""
        async with self.transaction() as session:
            result = await session.execute(
                update(FieldLock)
                .where(
                    FieldLock.sharing_code_id == sharing_code_id,
                    FieldLock.field_id == field_id,
                    FieldLock.user_id == user_id,
                )
                .values(expires_at=self.clock() + lease)
                .execution_options(synchronize_session=False)
            )
        return result.rowcount > 0

    async def get_live_lock(self, sharing_code_id: str, field_id: str) -> Optional[LockRecord]:
        async with self.transaction() as session:
            return await self._live_lock(session, sharing_code_id, field_id, self.clock())

    async def list_live_locks(self, sharing_code_id: str) -> List[LockRecord]:
        async with self.transaction() as session:
            rows = (await session.execute(
                select(FieldLock, User.email)
                .join(User, User.id == FieldLock.user_id)
                .where(FieldLock.sharing_code_id == sharing_code_id, FieldLock.expires_at > self.clock())
            )).all()
        return [self._lock_record(lock, email) for lock, email in rows]

    async def release_user_locks(self, sharing_code_id: str, user_id: str) -> List[str]:
        """Drop every lock `user_id` holds in a group; returns the freed field ids."""
        async with self.transaction() as session:
            result = await session.execute(
                delete(FieldLock)
                .where(FieldLock.sharing_code_id == sharing_code_id, FieldLock.user_id == user_id)
                .returning(FieldLock.field_id)
                .execution_options(synchronize_session=False)
            )
            return [field_id for (field_id,) in result.all()]

    async def delete_expired_locks(self) -> List[ReleasedLock]:
        """
        Remove every lapsed lease. Selection and deletion are the same
        statement, so a lock is reported at most once.
        """
        async with self.transaction() as session:
            result = await session.execute(
                delete(FieldLock)
                .where(FieldLock.expires_at <= self.clock())
                .returning(FieldLock.sharing_code_id, FieldLock.field_id)
                .execution_options(synchronize_session=False)
            )
            expired = result.all()
            if not expired:
                return []

            code_ids = {sharing_code_id for sharing_code_id, _ in expired}
            codes = dict((await session.execute(
                select(SharingCode.id, SharingCode.share_code).where(SharingCode.id.in_(code_ids))
            )).all())

        return [
            ReleasedLock(share_code=codes[sharing_code_id], field_id=field_id)
            for sharing_code_id, field_id in expired
            if sharing_code_id in codes
        ]

    async def _live_lock(
        self, session: AsyncSession, sharing_code_id: str, field_id: str, now: datetime
    ) -> Optional[LockRecord]:
        row = (await session.execute(
            select(FieldLock, User.email)
            .join(User, User.id == FieldLock.user_id)
            .where(
                FieldLock.sharing_code_id == sharing_code_id,
                FieldLock.field_id == field_id,
                FieldLock.expires_at > now,
            )
        )).first()
        return self._lock_record(*row) if row else None

    @staticmethod
    def _lock_record(lock: FieldLock, email: str) -> LockRecord:
        return LockRecord(
            field_id=lock.field_id,
            user_id=lock.user_id,
            user_email=email,
            expires_at=lock.expires_at,
        )

    # Shared draft

    async def apply_field_update(
        self, group: GroupContext, field_id: str, user_id: str, value: str
    ) -> str:
        """
        Record a contribution (non-empty values only) and write the value into
        the group's draft, creating the draft if the group has none.

        Returns:
            The draft response id
        """
        now = self.clock()
        async with self.transaction() as session:
            if value:
                stmt = self._insert(session, FieldContribution).values(
                    id=generate_id(),
                    form_id=group.form_id,
                    sharing_code_id=group.sharing_code_id,
                    field_id=field_id,
                    user_id=user_id,
                    value=value,
                    updated_at=now,
                )
                await session.execute(stmt.on_conflict_do_update(
                    index_elements=["form_id", "sharing_code_id", "field_id", "user_id"],
                    set_={"value": stmt.excluded.value, "updated_at": stmt.excluded.updated_at},
                ))

            response_id = await self._get_or_create_draft(session, group, user_id, now)
            await self._upsert_response_fields(session, response_id, {field_id: value})
            await session.execute(
                update(FormResponse)
                .where(FormResponse.id == response_id)
                .values(updated_at=now)
                .execution_options(synchronize_session=False)
            )

        return response_id

    async def draft_values(self, sharing_code_id: str) -> Dict[str, str]:
        """Field id -> value of the group's current draft; empty if none."""
        async with self.transaction() as session:
            rows = (await session.execute(
                select(ResponseField.field_id, ResponseField.value)
                .join(FormResponse, FormResponse.id == ResponseField.response_id)
                .where(
                    FormResponse.sharing_code_id == sharing_code_id,
                    FormResponse.status == ResponseStatus.DRAFT,
                )
            )).all()
        return dict(rows)

    async def finalize_response(
        self,
        group: GroupContext,
        user_id: str,
        values: Dict[str, str],
        response_id: Optional[str] = None,
    ) -> str:
        """
        Turn a response into the group's submitted result.

        Uses `response_id` when given (it must be the group's open draft, so a
        submitted or discarded response is never rewritten), else the current
        draft, else a fresh response. Field values are replaced by the
        non-empty entries of `values`.
        """
        now = self.clock()
        async with self.transaction() as session:
            if response_id:
                response = (await session.execute(
                    select(FormResponse).where(
                        FormResponse.id == response_id,
                        FormResponse.sharing_code_id == group.sharing_code_id,
                        FormResponse.status == ResponseStatus.DRAFT,
                    )
                )).scalar_one_or_none()
                if response is None:
                    raise NotFoundError("Draft response not found in this group")
            else:
                response = await self._current_draft(session, group.sharing_code_id)
                if response is None:
                    response = FormResponse(
                        id=generate_id(),
                        form_id=group.form_id,
                        sharing_code_id=group.sharing_code_id,
                        user_id=user_id,
                        status=ResponseStatus.SUBMITTED,
                        created_at=now,
                        updated_at=now,
                    )
                    session.add(response)
                    await session.flush()

            response.status = ResponseStatus.SUBMITTED
            response.submitted_at = now
            response.updated_at = now

            await session.execute(
                delete(ResponseField)
                .where(ResponseField.response_id == response.id)
                .execution_options(synchronize_session=False)
            )
            await self._upsert_response_fields(
                session, response.id, {field_id: value for field_id, value in values.items() if value}
            )
            return response.id

    async def discard_draft(self, sharing_code_id: str) -> Optional[str]:
        """Retire the group's draft so the next edit starts a new one."""
        async with self.transaction() as session:
            result = await session.execute(
                update(FormResponse)
                .where(
                    FormResponse.sharing_code_id == sharing_code_id,
                    FormResponse.status == ResponseStatus.DRAFT,
                )
                .values(status=ResponseStatus.DISCARDED, updated_at=self.clock())
                .returning(FormResponse.id)
                .execution_options(synchronize_session=False)
            )
            row = result.first()
        return row[0] if row else None

    async def _current_draft(self, session: AsyncSession, sharing_code_id: str) -> Optional[FormResponse]:
        return (await session.execute(
            select(FormResponse).where(
                FormResponse.sharing_code_id == sharing_code_id,
                FormResponse.status == ResponseStatus.DRAFT,
            )
        )).scalar_one_or_none()

    async def _get_or_create_draft(
        self, session: AsyncSession, group: GroupContext, user_id: str, now: datetime
    ) -> str:
        draft = await self._current_draft(session, group.sharing_code_id)
        if draft is not None:
            return draft.id

        # Concurrent creators collide on the one-draft-per-group partial index
        stmt = self._insert(session, FormResponse).values(
            id=generate_id(),
            form_id=group.form_id,
            sharing_code_id=group.sharing_code_id,
            user_id=user_id,
            status=ResponseStatus.DRAFT,
            created_at=now,
            updated_at=now,
        ).on_conflict_do_nothing(index_elements=["sharing_code_id"], index_where=text(DRAFT_ONLY))
        await session.execute(stmt)

        draft = await self._current_draft(session, group.sharing_code_id)
        logger.info(f"Created collaborative draft {draft.id} for group {group.share_code}")
        return draft.id

    async def _upsert_response_fields(self, session: AsyncSession, response_id: str, values: Dict[str, str]):
        if not values:
            return
        stmt = self._insert(session, ResponseField).values([
            {"id": generate_id(), "response_id": response_id, "field_id": field_id, "value": value}
            for field_id, value in values.items()
        ])
        await session.execute(stmt.on_conflict_do_update(
            index_elements=["response_id", "field_id"],
            set_={"value": stmt.excluded.value},
        ))

    # Provisioning

    async def create_user(self, email: str, role: UserRole = UserRole.USER) -> User:
        async with self.transaction() as session:
            user = User(id=generate_id(), email=email, role=role, created_at=self.clock())
            session.add(user)
        return user

    async def create_form(
        self,
        title: str,
        fields: Iterable[Dict[str, Any]],
        created_by_id: str,
        description: Optional[str] = None,
    ) -> Form:
        """
        Create a form with its fields. Each field dict takes label, type and
        optionally id, required and options.
        """
        now = self.clock()
        async with self.transaction() as session:
            form = Form(
                id=generate_id(),
                title=title,
                description=description,
                created_by_id=created_by_id,
                created_at=now,
                updated_at=now,
            )
            session.add(form)
            for index, field in enumerate(fields):
                session.add(FormField(
                    id=field.get("id") or generate_id(),
                    form_id=form.id,
                    label=field["label"],
                    type=FieldType(field["type"]),
                    required=field.get("required", False),
                    options=list(field.get("options", [])),
                    field_order=index,
                ))
        return form

    async def create_group(
        self,
        form_id: str,
        group_name: Optional[str] = None,
        created_by_id: Optional[str] = None,
        share_code: Optional[str] = None,
    ) -> SharingCode:
        """
        Open a new collaboration group on a form under a unique share code.
        """
        now = self.clock()
        candidates = [share_code] if share_code else [generate_share_code() for _ in range(SHARE_CODE_ATTEMPTS)]

        for candidate in candidates:
            try:
                async with self.transaction() as session:
                    sharing_code = SharingCode(
                        id=generate_id(),
                        form_id=form_id,
                        share_code=candidate,
                        group_name=group_name or f"Group {candidate}",
                        created_by_id=created_by_id,
                        created_at=now,
                        updated_at=now,
                    )
                    session.add(sharing_code)
                return sharing_code
            except StorageFailureError as e:
                if not isinstance(e.cause, IntegrityError):
                    raise
                logger.warning(f"Share code {candidate} already taken")

        raise StorageFailureError("Failed to generate unique share code")

    async def set_group_active(self, share_code: str, is_active: bool) -> bool:
        async with self.transaction() as session:
            result = await session.execute(
                update(SharingCode)
                .where(SharingCode.share_code == share_code)
                .values(is_active=is_active, updated_at=self.clock())
                .execution_options(synchronize_session=False)
            )
        return result.rowcount > 0
