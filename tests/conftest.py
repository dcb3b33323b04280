import os
import sys
import pathlib
import tempfile

import pytest
import pytest_asyncio

# Configure the app before it is imported: deterministic secret, an isolated
# SQLite file for this test session, no midnight scheduler, no real mail.
_TMP_DIR = tempfile.mkdtemp(prefix='dayplan-tests-')
os.environ.setdefault('SECRET_KEY', 'test-secret-key-for-unit-tests')
os.environ['DATABASE_URL'] = f"sqlite+aiosqlite:///{os.path.join(_TMP_DIR, 'dayplan_test.db')}"
os.environ['SCHEDULER_ENABLED'] = '0'
os.environ['MAIL_BACKEND'] = 'console'
os.environ['PLANNER_TIMEZONE'] = 'UTC'

# Reduce SQLAlchemy logger verbosity during tests
import logging as _logging
for _name in ('sqlalchemy', 'sqlalchemy.engine', 'sqlalchemy.pool', 'sqlmodel'):
    _logging.getLogger(_name).setLevel(_logging.ERROR)

# ensure project root is on PYTHONPATH for test runs
ROOT = pathlib.Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))
sys.path.insert(0, str(ROOT / 'tests'))

from httpx import AsyncClient, ASGITransport

from dayplan.main import app
from dayplan.db import init_db, async_session
from dayplan.mailer import get_mailer
from dayplan.models import User
from dayplan.auth import hash_password
from fakes import RecordingMailer, unique_email


@pytest.fixture
def email():
    return unique_email()


@pytest_asyncio.fixture
async def ensure_db():
    await init_db()


@pytest.fixture
def mailer():
    """Route the app's outgoing mail into memory for the duration of a test."""
    m = RecordingMailer()
    app.dependency_overrides[get_mailer] = lambda: m
    yield m
    app.dependency_overrides.pop(get_mailer, None)


@pytest_asyncio.fixture
async def client(ensure_db, mailer):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def create_user(email: str, password: str = 'pw', name: str = 'Test User', verified: bool = True) -> User:
    """Insert a registered user directly, bypassing the email handshake."""
    async with async_session() as sess:
        u = User(email=email, name=name, password_hash=hash_password(password), is_verified=verified)
        sess.add(u)
        await sess.commit()
        await sess.refresh(u)
        return u


@pytest.fixture
def make_user(ensure_db):
    return create_user


@pytest.fixture
def signup(client, mailer):
    """Return an async helper running the full send-code/verify/register flow.

    The helper returns (token, user_json).
    """
    async def _signup(email: str | None = None, password: str = 'secret-pass', name: str = 'Test User'):
        email = email or unique_email()
        r = await client.post('/auth/send-verification-code', json={'email': email})
        assert r.status_code == 200, r.text
        code = mailer.last_code(email)
        r = await client.post('/auth/verify-code', json={'email': email, 'code': code})
        assert r.status_code == 200, r.text
        r = await client.post('/auth/register', json={'name': name, 'email': email, 'password': password})
        assert r.status_code == 201, r.text
        body = r.json()
        return body['token'], body['user']

    return _signup


@pytest_asyncio.fixture
async def auth_client(client, signup):
    """Client authenticated as a freshly registered user (user json on .user)."""
    token, user = await signup()
    client.headers.update({'Authorization': f'Bearer {token}'})
    client.user = user
    return client
