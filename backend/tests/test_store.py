"""
Collaboration store tests: group provisioning, lookups and the one-draft rule.
"""

import asyncio
import re

import pytest
from sqlalchemy import func, select

from formsync.core.errors import InactiveError, NotFoundError, StorageFailureError
from formsync.db.store import generate_share_code
from formsync.models import FieldType, FormResponse, ResponseStatus


class TestGroups:
    """Test suite for sharing codes."""

    def test_generated_codes_are_eight_hex_characters(self):
        codes = {generate_share_code() for _ in range(50)}

        assert all(re.fullmatch(r"[0-9A-F]{8}", code) for code in codes)
        assert len(codes) > 1

    @pytest.mark.asyncio
    async def test_create_group_generates_a_code(self, store, seeded):
        sharing_code = await store.create_group(seeded.form_id)

        assert re.fullmatch(r"[0-9A-F]{8}", sharing_code.share_code)
        assert sharing_code.group_name == f"Group {sharing_code.share_code}"

        group = await store.get_group(sharing_code.share_code)
        assert group.form_title == "Trip registration"

    @pytest.mark.asyncio
    async def test_duplicate_share_code_is_refused(self, store, seeded):
        with pytest.raises(StorageFailureError):
            await store.create_group(seeded.form_id, "Copycats", share_code="ABC123")

    @pytest.mark.asyncio
    async def test_unknown_share_code(self, store, seeded):
        with pytest.raises(NotFoundError) as exc_info:
            await store.get_group("MISSING")

        assert exc_info.value.message == "Share code not found"

    @pytest.mark.asyncio
    async def test_inactive_group_resolves_only_when_asked(self, store, seeded):
        assert await store.set_group_active("ABC123", False) is True

        with pytest.raises(InactiveError):
            await store.get_group("ABC123")

        group = await store.get_group("ABC123", require_active=False)
        assert group.group_name == "Team Alpha"


class TestFields:
    @pytest.mark.asyncio
    async def test_fields_keep_their_declared_order_and_types(self, store, seeded):
        fields = await store.get_fields(seeded.form_id)

        assert list(fields) == ["name", "email", "age", "meals"]
        assert fields["name"].required is True
        assert fields["meals"].type == FieldType.CHECKBOX
        assert fields["meals"].options == ("Breakfast", "Lunch", "Dinner")

    @pytest.mark.asyncio
    async def test_field_from_another_form_is_not_found(self, store, seeded):
        other = await store.create_form("Other", [{"label": "Colour", "type": FieldType.TEXT}], seeded.users["bob"].id)

        with pytest.raises(NotFoundError):
            await store.get_field(other.id, "name")


class TestDrafts:
    """Test suite for the shared draft."""

    @pytest.mark.asyncio
    async def test_concurrent_first_edits_share_one_draft(self, store, seeded, group):
        users = list(seeded.users.values())
        field_ids = ["name", "email", "age"]

        draft_ids = await asyncio.gather(*[
            store.apply_field_update(group, field_id, user.id, f"{field_id}-value")
            for user, field_id in zip(users, field_ids)
        ])

        assert len(set(draft_ids)) == 1
        async with store.transaction() as session:
            drafts = await session.scalar(
                select(func.count()).select_from(FormResponse).where(
                    FormResponse.sharing_code_id == group.sharing_code_id,
                    FormResponse.status == ResponseStatus.DRAFT,
                )
            )
        assert drafts == 1
        assert await store.draft_values(group.sharing_code_id) == {
            "name": "name-value",
            "email": "email-value",
            "age": "age-value",
        }

    @pytest.mark.asyncio
    async def test_discard_without_draft_is_a_noop(self, store, group):
        assert await store.discard_draft(group.sharing_code_id) is None

    @pytest.mark.asyncio
    async def test_finalize_replaces_values(self, store, seeded, group):
        alice = seeded.users["alice"]
        draft_id = await store.apply_field_update(group, "name", alice.id, "Ada")
        await store.apply_field_update(group, "age", alice.id, "36")

        response_id = await store.finalize_response(group, alice.id, {"name": "Ada Lovelace", "email": ""})

        assert response_id == draft_id
        assert await store.draft_values(group.sharing_code_id) == {}

    @pytest.mark.asyncio
    async def test_finalize_rejects_discarded_response(self, store, seeded, group):
        alice = seeded.users["alice"]
        draft_id = await store.apply_field_update(group, "name", alice.id, "Ada")
        await store.discard_draft(group.sharing_code_id)

        with pytest.raises(NotFoundError):
            await store.finalize_response(group, alice.id, {"name": "Ada"}, response_id=draft_id)

    @pytest.mark.asyncio
    async def test_finalize_rejects_submitted_response(self, store, seeded, group):
        alice = seeded.users["alice"]
        submitted_id = await store.finalize_response(group, alice.id, {"name": "Ada"})
        await store.apply_field_update(group, "name", alice.id, "Grace")

        with pytest.raises(NotFoundError):
            await store.finalize_response(group, alice.id, {"name": "Grace"}, response_id=submitted_id)

        assert await store.draft_values(group.sharing_code_id) == {"name": "Grace"}
