"""Tests for the upload pipeline: validation, atomicity, token retry, notify."""
from datetime import timedelta

import anyio
import pytest
from sqlalchemy import select

from sealshare.core.errors import ValidationError
from sealshare.models.share import ShareRecord
from sealshare.services import upload as upload_module
from sealshare.services.cipher import iter_bytes
from sealshare.services.tokens import IssuedToken, TokenIssuer, validate_format
from sealshare.services.upload import UploadPipeline, UploadRequest
from sealshare.utils.clock import utcnow
from conftest import RecordingNotifier, token_from_url


def make_request(sender, recipient_email, data=b'hello1234', size=None, chunks=True):
    return UploadRequest(
        chunks=iter_bytes(data) if chunks else None,
        file_name='hello.txt',
        mime_type='text/plain',
        size_bytes=len(data) if size is None else size,
        recipient_email=recipient_email,
        uploader_id=sender.id,
        uploader_email=sender.email,
    )


async def all_records(session):
    return (await session.execute(select(ShareRecord))).scalars().all()


class TestHappyPath:

    @pytest.mark.asyncio
    async def test_upload_persists_share_and_notifies(self, session, services, notifier, blob_store, alice, bob):
        result = await services.upload.run(session, make_request(alice, bob.email), 'https://share.example')

        token = token_from_url(result.download_url)
        assert result.download_url == f'https://share.example/download/{token}'
        assert validate_format(token)

        record = (await all_records(session))[0]
        assert record.id == result.share_id
        assert record.size_bytes == 9
        assert record.mime_type == 'text/plain'
        assert record.recipient_email == 'bob@example.com'
        assert len(bytes.fromhex(record.iv)) == 12
        assert await blob_store.exists(record.blob_location)

        assert notifier.sent == [{
            'recipient_email': 'bob@example.com',
            'download_url': result.download_url,
            'expiry_hours': 24,
            'sender_email': alice.email,
        }]

    @pytest.mark.asyncio
    async def test_recipient_email_is_normalized(self, session, services, alice, bob):
        await services.upload.run(session, make_request(alice, '  BOB@example.com '), 'http://test')
        assert (await all_records(session))[0].recipient_email == 'bob@example.com'

    @pytest.mark.asyncio
    async def test_stored_blob_is_not_plaintext(self, session, services, blob_root, alice, bob):
        await services.upload.run(session, make_request(alice, bob.email, data=b'top secret' * 10), 'http://test')
        (path,) = list(blob_root.iterdir())
        assert b'top secret' not in path.read_bytes()


class TestValidation:

    @pytest.mark.asyncio
    async def test_missing_file(self, session, services, alice, bob):
        with pytest.raises(ValidationError) as exc:
            await services.upload.run(session, make_request(alice, bob.email, chunks=False), 'http://test')
        assert exc.value.status_code == 400

    @pytest.mark.asyncio
    @pytest.mark.parametrize('recipient', [None, '', '   '])
    async def test_missing_recipient(self, session, services, alice, recipient):
        with pytest.raises(ValidationError) as exc:
            await services.upload.run(session, make_request(alice, recipient), 'http://test')
        assert exc.value.status_code == 400

    @pytest.mark.asyncio
    async def test_unregistered_recipient(self, session, services, blob_store, alice):
        with pytest.raises(ValidationError) as exc:
            await services.upload.run(session, make_request(alice, 'stranger@example.com'), 'http://test')

        assert exc.value.status_code == 404
        assert await blob_store.list_blobs() == []

    @pytest.mark.asyncio
    async def test_declared_size_over_limit(self, session, services, blob_store, alice, bob):
        req = make_request(alice, bob.email, size=services.upload.max_file_size + 1)
        with pytest.raises(ValidationError) as exc:
            await services.upload.run(session, req, 'http://test')

        assert exc.value.status_code == 413
        assert await blob_store.list_blobs() == []

    @pytest.mark.asyncio
    async def test_stream_over_limit_leaves_no_blob(self, session, cipher, blob_store, blob_root, notifier, alice, bob):
        pipeline = UploadPipeline(cipher, blob_store, TokenIssuer(), notifier, max_file_size=10)
        req = make_request(alice, bob.email, data=b'x' * 100)
        # size unknown up front, so the limit trips mid-stream
        req.size_bytes = None

        with pytest.raises(ValidationError) as exc:
            await pipeline.run(session, req, 'http://test')

        assert exc.value.status_code == 413
        assert list(blob_root.iterdir()) == []
        assert await all_records(session) == []


class FailingRepository:
    def __init__(self, session):
        self.session = session

    async def create(self, new, issued):
        raise RuntimeError('database is locked')


class SequenceIssuer(TokenIssuer):
    """Issues a fixed sequence of tokens."""

    def __init__(self, tokens):
        super().__init__()
        self._tokens = list(tokens)

    def issue(self):
        return IssuedToken(token=self._tokens.pop(0), expires_at=utcnow() + timedelta(hours=24))


class TestAtomicity:

    @pytest.mark.asyncio
    async def test_persist_failure_deletes_blob(self, monkeypatch, session, services, blob_root, notifier, alice, bob):
        monkeypatch.setattr(upload_module, 'ShareRepository', FailingRepository)

        with pytest.raises(RuntimeError, match='database is locked'):
            await services.upload.run(session, make_request(alice, bob.email), 'http://test')

        assert list(blob_root.iterdir()) == []
        assert await all_records(session) == []
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_token_collision_is_retried(self, session, cipher, blob_store, notifier, alice, bob):
        first, second = 'a' * 64, 'b' * 64
        pipeline = UploadPipeline(cipher, blob_store, SequenceIssuer([first, first, second]), notifier)

        one = await pipeline.run(session, make_request(alice, bob.email), 'http://test')
        two = await pipeline.run(session, make_request(alice, bob.email), 'http://test')

        assert token_from_url(one.download_url) == first
        assert token_from_url(two.download_url) == second
        assert len(await all_records(session)) == 2
        assert len(await blob_store.list_blobs()) == 2

    @pytest.mark.asyncio
    async def test_cancel_while_storing_removes_staging_file(self, session, services, notifier, blob_root,
                                                             alice, bob):
        streaming = anyio.Event()

        async def stalled_source():
            yield b'first part of a slow upload'
            streaming.set()
            await anyio.Event().wait()

        req = make_request(alice, bob.email)
        req.chunks = stalled_source()
        async with anyio.create_task_group() as tg:
            tg.start_soon(services.upload.run, session, req, 'http://test')
            await streaming.wait()
            assert [p.suffix for p in blob_root.iterdir()] == ['.part']
            tg.cancel_scope.cancel()

        assert list(blob_root.iterdir()) == []
        assert await all_records(session) == []
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_cancel_while_persisting_removes_blob(self, monkeypatch, session, services, notifier, blob_root,
                                                        alice, bob):
        stored = anyio.Event()

        async def stalled_persist(db, new):
            stored.set()
            await anyio.Event().wait()

        monkeypatch.setattr(services.upload, '_persist', stalled_persist)
        async with anyio.create_task_group() as tg:
            tg.start_soon(services.upload.run, session, make_request(alice, bob.email), 'http://test')
            await stored.wait()
            assert [p.suffix for p in blob_root.iterdir()] == ['.enc']
            tg.cancel_scope.cancel()

        assert list(blob_root.iterdir()) == []
        assert await all_records(session) == []
        assert notifier.sent == []


class TestNotification:

    @pytest.mark.asyncio
    async def test_notify_failure_keeps_share(self, session, cipher, blob_store, alice, bob):
        pipeline = UploadPipeline(cipher, blob_store, TokenIssuer(), RecordingNotifier(fail=True))

        result = await pipeline.run(session, make_request(alice, bob.email), 'http://test')

        records = await all_records(session)
        assert [r.id for r in records] == [result.share_id]
        assert await blob_store.exists(records[0].blob_location)
