"""Tests for share revocation, deletion, listings and the account cascade."""
import pytest
from sqlalchemy import select

from sealshare.core.errors import Forbidden, NotFound, Revoked
from sealshare.models.share import ShareRecord, ShareStatus
from sealshare.models.user import User
from sealshare.services.shares import ShareRepository, delete_share, revoke_share
from sealshare.services.tokens import TokenValidator
from sealshare.services.users import delete_account, is_registered_user
from conftest import identity, token_from_url


class TestRevoke:

    @pytest.mark.asyncio
    async def test_revoke_is_idempotent(self, session, share_factory, alice):
        result = await share_factory()

        first = await revoke_share(session, result.share_id, identity(alice))
        second = await revoke_share(session, result.share_id, identity(alice))

        assert first.download_token is None
        assert first.token_expires_at is None
        assert second.status() is ShareStatus.REVOKED

    @pytest.mark.asyncio
    async def test_revoked_token_resolves_to_revoked(self, session, share_factory, alice, bob):
        result = await share_factory()
        await revoke_share(session, result.share_id, identity(alice))

        validator = TokenValidator()
        record = await validator.resolve(session, token_from_url(result.download_url))
        with pytest.raises(Revoked):
            validator.authorize(record, bob.email)

    @pytest.mark.asyncio
    async def test_only_uploader_may_revoke(self, session, share_factory, bob):
        result = await share_factory()
        with pytest.raises(Forbidden):
            await revoke_share(session, result.share_id, identity(bob))

    @pytest.mark.asyncio
    async def test_unknown_share(self, session, alice):
        with pytest.raises(NotFound):
            await revoke_share(session, 'no-such-share', identity(alice))


class TestDelete:

    @pytest.mark.asyncio
    async def test_delete_removes_record_and_blob(self, session, share_factory, blob_store, alice):
        result = await share_factory()
        record = await ShareRepository(session).get(result.share_id)
        location = record.blob_location

        await delete_share(session, blob_store, result.share_id, identity(alice))

        assert await ShareRepository(session).get(result.share_id) is None
        assert await blob_store.exists(location) is False

    @pytest.mark.asyncio
    async def test_recipient_cannot_delete(self, session, share_factory, blob_store, bob):
        result = await share_factory()
        with pytest.raises(Forbidden):
            await delete_share(session, blob_store, result.share_id, identity(bob))


class TestListings:

    @pytest.mark.asyncio
    async def test_sent_and_received(self, session, share_factory, alice, bob, carol):
        await share_factory(file_name='one.txt')
        await share_factory(file_name='two.txt', recipient=carol)

        repo = ShareRepository(session)
        sent = await repo.list_sent(alice.id)
        received = await repo.list_received('BOB@example.com')

        assert sorted(r.file_name for r in sent) == ['one.txt', 'two.txt']
        assert [(r.file_name, u.email) for r, u in received] == [('one.txt', alice.email)]


class TestAccountCascade:

    @pytest.mark.asyncio
    async def test_deleting_user_removes_shares_and_blobs(self, session, share_factory, blob_store, alice):
        await share_factory(data=b'one')
        await share_factory(data=b'two')
        locations = set(await ShareRepository(session).all_blob_locations())

        removed = await delete_account(session, blob_store, alice.id)

        assert removed == 2
        assert (await session.execute(select(ShareRecord))).scalars().all() == []
        assert (await session.execute(select(User).where(User.id == alice.id))).scalars().first() is None
        for location in locations:
            assert await blob_store.exists(location) is False

    @pytest.mark.asyncio
    async def test_unknown_user(self, session, blob_store):
        with pytest.raises(NotFound):
            await delete_account(session, blob_store, 'missing')

    @pytest.mark.asyncio
    async def test_registered_check_is_case_insensitive(self, session, bob):
        assert await is_registered_user(session, 'Bob@Example.com')
        assert not await is_registered_user(session, 'nobody@example.com')
