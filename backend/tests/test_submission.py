"""
Collaborative submit and reset tests.
"""

import pytest
from sqlalchemy import select

from formsync.models import FormResponse, ResponseField, ResponseStatus


async def load_responses(store, sharing_code_id):
    async with store.transaction() as session:
        responses = (await session.execute(
            select(FormResponse).where(FormResponse.sharing_code_id == sharing_code_id)
        )).scalars().all()
        fields = (await session.execute(select(ResponseField))).scalars().all()

    values = {}
    for field in fields:
        values.setdefault(field.response_id, {})[field.field_id] = field.value
    return responses, values


class TestFormSubmit:
    """Test suite for form-submit."""

    @pytest.mark.asyncio
    async def test_submission_reaches_every_member_identically(self, alice, bob, store, group):
        # Arrange
        await alice.join()
        await bob.join()
        await alice.emit("field-update", {"groupCode": "ABC123", "fieldId": "name", "value": "Ada"})

        # Act
        ack = await alice.emit("form-submit", {
            "groupCode": "ABC123",
            "formData": {"name": "Ada", "email": "ada@example.com", "age": ""},
        })

        # Assert
        assert ack == {"ok": True}
        [to_alice] = alice.received("form-submitted-all")
        [to_bob] = bob.received("form-submitted-all")
        assert to_alice == to_bob
        assert to_alice["submittedBy"] == "alice@example.com"
        assert to_alice["formTitle"] == "Trip registration"
        assert to_alice["groupName"] == "Team Alpha"
        assert to_alice["timestamp"].endswith("Z")

        responses, values = await load_responses(store, group.sharing_code_id)
        assert len(responses) == 1
        assert responses[0].id == to_alice["responseId"]
        assert responses[0].status == ResponseStatus.SUBMITTED
        assert responses[0].submitted_at is not None
        assert values[responses[0].id] == {"name": "Ada", "email": "ada@example.com"}

    @pytest.mark.asyncio
    async def test_submitter_identity_comes_from_the_session(self, alice, bob):
        await alice.join()
        await bob.join()

        await bob.emit("form-submit", {
            "groupCode": "ABC123",
            "submittedBy": "someone-else@example.com",
            "formData": {"name": "Ada"},
        })

        assert alice.received("form-submitted-all")[0]["submittedBy"] == "bob@example.com"

    @pytest.mark.asyncio
    async def test_submission_without_draft_creates_a_response(self, alice, store, group):
        await alice.join()

        await alice.emit("form-submit", {"groupCode": "ABC123", "formData": {"name": "Ada"}})

        responses, _ = await load_responses(store, group.sharing_code_id)
        assert [response.status for response in responses] == [ResponseStatus.SUBMITTED]

    @pytest.mark.asyncio
    async def test_next_edit_after_submission_starts_a_new_draft(self, alice, store, group):
        await alice.join()
        await alice.emit("field-update", {"groupCode": "ABC123", "fieldId": "name", "value": "Ada"})
        await alice.emit("form-submit", {"groupCode": "ABC123", "formData": {"name": "Ada"}})

        await alice.emit("field-update", {"groupCode": "ABC123", "fieldId": "name", "value": "Grace"})

        assert await store.draft_values(group.sharing_code_id) == {"name": "Grace"}

    @pytest.mark.asyncio
    async def test_invalid_value_blocks_submission(self, alice, bob, store, group):
        await alice.join()
        await bob.join()

        await alice.emit("form-submit", {"groupCode": "ABC123", "formData": {"email": "nope"}})

        assert alice.received("error")[0]["code"] == "INVALID_VALUE"
        assert bob.received("form-submitted-all") == []
        responses, _ = await load_responses(store, group.sharing_code_id)
        assert responses == []

    @pytest.mark.asyncio
    async def test_unknown_field_blocks_submission(self, alice):
        await alice.join()

        await alice.emit("form-submit", {"groupCode": "ABC123", "formData": {"shoe_size": "42"}})

        [error] = alice.received("error")
        assert error["code"] == "INVALID_VALUE"
        assert error["fieldId"] == "shoe_size"

    @pytest.mark.asyncio
    async def test_response_from_another_group_is_rejected(self, alice, store, seeded):
        other = await store.create_group(seeded.form_id, "Team Beta", share_code="XYZ789")
        other_group = await store.get_group(other.share_code)
        response_id = await store.apply_field_update(other_group, "name", seeded.users["bob"].id, "Bob")
        await alice.join()

        await alice.emit("form-submit", {"groupCode": "ABC123", "responseId": response_id, "formData": {}})

        assert alice.received("error")[0]["code"] == "NOT_FOUND"
        assert await store.draft_values(other_group.sharing_code_id) == {"name": "Bob"}

    @pytest.mark.asyncio
    async def test_submitted_response_cannot_be_submitted_again(self, alice, bob, store, group):
        # Arrange
        await alice.join()
        await bob.join()
        await alice.emit("field-update", {"groupCode": "ABC123", "fieldId": "name", "value": "Ada"})
        await alice.emit("form-submit", {"groupCode": "ABC123", "formData": {"name": "Ada"}})
        first_id = alice.received("form-submitted-all")[0]["responseId"]
        await alice.emit("field-update", {"groupCode": "ABC123", "fieldId": "name", "value": "Grace"})

        # Act
        ack = await alice.emit("form-submit", {
            "groupCode": "ABC123",
            "responseId": first_id,
            "formData": {"name": "Grace"},
        })

        # Assert
        assert ack["ok"] is False
        assert alice.received("error")[0]["code"] == "NOT_FOUND"
        assert len(bob.received("form-submitted-all")) == 1
        _, values = await load_responses(store, group.sharing_code_id)
        assert values[first_id] == {"name": "Ada"}

    @pytest.mark.asyncio
    async def test_submitting_the_open_draft_by_id_closes_it(self, alice, make_client, store, seeded, group):
        draft_id = await store.apply_field_update(group, "name", seeded.users["alice"].id, "Ada")
        await alice.join()

        ack = await alice.emit("form-submit", {
            "groupCode": "ABC123",
            "responseId": draft_id,
            "formData": {"name": "Ada"},
        })

        assert ack == {"ok": True}
        assert alice.received("form-submitted-all")[0]["responseId"] == draft_id
        assert await store.draft_values(group.sharing_code_id) == {}

        carol = make_client("carol")
        await carol.connect()
        await carol.join()
        assert carol.received("form-data-sync") == [{}]


class TestFormReset:
    """Test suite for form-reset."""

    @pytest.mark.asyncio
    async def test_reset_discards_the_draft_and_notifies_everyone(self, alice, bob, store, group):
        await alice.join()
        await bob.join()
        await alice.emit("field-update", {"groupCode": "ABC123", "fieldId": "name", "value": "Ada"})

        await bob.emit("form-reset", {"groupCode": "ABC123", "resetBy": "ignored@example.com"})

        for client in (alice, bob):
            [event] = client.received("form-reset-all")
            assert event["resetBy"] == "bob@example.com"
        assert await store.draft_values(group.sharing_code_id) == {}

        responses, _ = await load_responses(store, group.sharing_code_id)
        assert [response.status for response in responses] == [ResponseStatus.DISCARDED]

    @pytest.mark.asyncio
    async def test_reset_keeps_locks(self, alice, bob, server, group):
        await alice.join()
        await bob.join()
        await alice.emit("lock-field", {"groupCode": "ABC123", "fieldId": "name"})

        await bob.emit("form-reset", "ABC123")

        assert await server.locks.snapshot(group) == {"name": "alice@example.com"}

    @pytest.mark.asyncio
    async def test_late_joiner_after_reset_sees_empty_draft(self, alice, make_client):
        await alice.join()
        await alice.emit("field-update", {"groupCode": "ABC123", "fieldId": "name", "value": "Ada"})
        await alice.emit("form-reset", "ABC123")

        carol = make_client("carol")
        await carol.connect()
        await carol.join()

        assert carol.received("form-data-sync") == [{}]
