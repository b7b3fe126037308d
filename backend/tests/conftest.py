"""Shared fixtures: temporary database, local blob store, fixed key, users."""
import os
from datetime import timedelta
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

import sealshare.models  # noqa: F401
from sealshare.core.config import settings
from sealshare.core.database import Base, get_db, make_engine, make_session_factory
from sealshare.core.keys import KeyProvider
from sealshare.core.security import CallerIdentity, create_access_token
from sealshare.main import create_app
from sealshare.models.user import User
from sealshare.services.blob_store import LocalBlobStore
from sealshare.services.cipher import CipherStream, iter_bytes
from sealshare.services.container import build_services
from sealshare.services.upload import UploadRequest

TEST_KEY = bytes(range(32))


class RecordingNotifier:
    """Notifier that remembers every call instead of sending email."""

    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    async def notify(self, recipient_email, download_url, expiry_hours, sender_email):
        if self.fail:
            raise ConnectionError('mail relay unreachable')
        self.sent.append({
            'recipient_email': recipient_email,
            'download_url': download_url,
            'expiry_hours': expiry_hours,
            'sender_email': sender_email,
        })
        return True


def identity(user):
    return CallerIdentity(id=user.id, email=user.email, role='admin' if user.is_admin else 'user')


def auth_headers(user):
    token = create_access_token({'sub': user.email}, expires_delta=timedelta(minutes=5))
    return {'Authorization': f'Bearer {token}'}


def token_from_url(url):
    return url.rsplit('/', 1)[-1]


def open_fds_under(root):
    """Count descriptors this process holds on files below ``root``."""
    fd_dir = Path('/proc/self/fd')
    if not fd_dir.is_dir():
        pytest.skip('no /proc descriptor table on this platform')
    prefix = str(Path(root).resolve())
    count = 0
    for entry in fd_dir.iterdir():
        try:
            target = os.readlink(entry)
        except OSError:
            continue
        if target.startswith(prefix):
            count += 1
    return count


@pytest.fixture
def keys():
    return KeyProvider(TEST_KEY)


@pytest.fixture
def cipher(keys):
    return CipherStream(keys)


@pytest.fixture
def blob_root(tmp_path):
    return tmp_path / 'blobs'


@pytest.fixture
def blob_store(blob_root):
    return LocalBlobStore(blob_root)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


async def _add_user(session_factory, email, is_admin=False):
    async with session_factory() as db:
        user = User(email=email, hashed_password='x', is_admin=is_admin)
        db.add(user)
        await db.commit()
        return user


@pytest_asyncio.fixture
async def alice(session_factory):
    return await _add_user(session_factory, 'alice@example.com')


@pytest_asyncio.fixture
async def bob(session_factory):
    return await _add_user(session_factory, 'bob@example.com')


@pytest_asyncio.fixture
async def carol(session_factory):
    return await _add_user(session_factory, 'carol@example.com')


@pytest_asyncio.fixture
async def admin(session_factory):
    return await _add_user(session_factory, 'root@example.com', is_admin=True)


@pytest.fixture
def services(keys, blob_store, notifier):
    return build_services(settings, keys=keys, blobs=blob_store, notifier=notifier)


@pytest.fixture
def share_factory(services, session_factory, alice, bob):
    """Upload ``data`` from ``sender`` to ``recipient`` through the real pipeline."""

    async def _make(data=b'hello1234', sender=None, recipient=None, file_name='hello.txt',
                    mime_type='text/plain'):
        sender = sender or alice
        recipient = recipient or bob
        req = UploadRequest(
            chunks=iter_bytes(data),
            file_name=file_name,
            mime_type=mime_type,
            size_bytes=len(data),
            recipient_email=recipient.email,
            uploader_id=sender.id,
            uploader_email=sender.email,
        )
        async with session_factory() as db:
            return await services.upload.run(db, req, 'http://test')

    return _make


@pytest.fixture
def app(services, session_factory):
    app = create_app(services, monitoring=False, session_factory=session_factory)

    async def _get_test_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_test_db
    return app


@pytest_asyncio.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url='http://test') as client:
        yield client
