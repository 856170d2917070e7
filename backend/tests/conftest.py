"""
Pytest fixtures for PartnerBooks backend tests.

Provides the application with a throwaway SQLite database, per-test table
cleanup, tenant fixtures (two organizations), and token helpers.
"""

import threading

import pytest

from partnerbooks import create_app
from partnerbooks.errors import LedgerError
from partnerbooks.extensions import db
from partnerbooks.services import auth_service, partner_service, session_service
from partnerbooks.services.blob_service import BlobStore, UploadResult, file_extension


PASSWORD = "Password123!"


class MemoryBlobStore(BlobStore):
    """Keeps uploads in a dict instead of on disk."""

    def __init__(self):
        self.files = {}

    def upload(self, file, *, folder="receipts"):
        public_id = f"{folder}/{len(self.files) + 1}"
        self.files[public_id] = file.read()
        ext = file_extension(file.filename)
        url = f"memory://{public_id}.{ext}"
        return UploadResult(
            url=url,
            thumbnail_url=url if ext in ("png", "jpg", "jpeg") else None,
            public_id=public_id,
            filename=file.filename,
            mime_type=file.mimetype or "application/octet-stream",
        )


@pytest.fixture(scope='session')
def blob_store():
    return MemoryBlobStore()


@pytest.fixture(scope='session')
def app(tmp_path_factory, blob_store):
    """Create application for testing."""
    db_path = tmp_path_factory.mktemp("db") / "partnerbooks-test.sqlite3"
    app = create_app(
        {
            'TESTING': True,
            'SQLALCHEMY_DATABASE_URI': f"sqlite:///{db_path}",
            'LEDGER_RETRY_ATTEMPTS': 3,
            'LEDGER_RETRY_BACKOFF': 0,
            'UPLOAD_FOLDER': str(tmp_path_factory.mktemp("uploads")),
        },
        blob_store=blob_store,
    )

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Fresh data for each test; the schema is kept."""
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.rollback()


@pytest.fixture(scope='function')
def owner_a(db_session):
    """Owner of Organization A."""
    return auth_service.register(
        name="Alice Owner",
        email="alice@acme.test",
        password=PASSWORD,
        organization_name="Org A - Acme Corp",
    )


@pytest.fixture(scope='function')
def owner_b(db_session):
    """Owner of Organization B."""
    return auth_service.register(
        name="Bob Owner",
        email="bob@beta.test",
        password=PASSWORD,
        organization_name="Org B - Beta Inc",
    )


@pytest.fixture(scope='function')
def viewer_a(db_session, owner_a):
    """Read-only user in Organization A."""
    return auth_service.create_user(
        org_id=owner_a.org_id,
        name="Vera Viewer",
        email="vera@acme.test",
        password=PASSWORD,
        role="viewer",
    )


@pytest.fixture(scope='function')
def partner_a(db_session, owner_a):
    partner, _ = partner_service.create_partner(
        org_id=owner_a.org_id,
        user_id=owner_a.id,
        payload={"name": "Rahim", "email": "rahim@acme.test"},
    )
    return partner


@pytest.fixture(scope='function')
def partner_a2(db_session, owner_a):
    partner, _ = partner_service.create_partner(
        org_id=owner_a.org_id,
        user_id=owner_a.id,
        payload={"name": "Karim"},
    )
    return partner


@pytest.fixture(scope='function')
def partner_b(db_session, owner_b):
    partner, _ = partner_service.create_partner(
        org_id=owner_b.org_id,
        user_id=owner_b.id,
        payload={"name": "Beta Partner"},
    )
    return partner


def get_auth_token(user) -> str:
    """Helper to issue a session token for a user without going through HTTP."""
    _, token = session_service.create_session(user_id=user.id)
    return token


def auth_headers(token: str, **extra) -> dict:
    """Helper to create Authorization headers."""
    headers = {'Authorization': f'Bearer {token}'}
    headers.update(extra)
    return headers


@pytest.fixture(scope='function')
def headers_a(owner_a):
    return auth_headers(get_auth_token(owner_a))


@pytest.fixture(scope='function')
def headers_b(owner_b):
    return auth_headers(get_auth_token(owner_b))


@pytest.fixture(scope='function')
def viewer_headers(viewer_a):
    return auth_headers(get_auth_token(viewer_a))


def run_in_threads(app, *calls):
    """
    Helper to run each callable in its own thread and app context.

    The threads are released together by a barrier. Returns one outcome per
    call, in call order: ("ok", value) or (error kind, message). Callables
    must return plain values, never ORM rows; each thread's session is
    removed when it finishes.
    """
    # Release the test's connection so the workers start on a clean store
    db.session.rollback()

    barrier = threading.Barrier(len(calls))
    outcomes = [None] * len(calls)
    lock = threading.Lock()

    def worker(index, call):
        with app.app_context():
            try:
                barrier.wait()
                outcome = ("ok", call())
            except LedgerError as exc:
                outcome = (exc.kind, exc.message)
            except Exception as exc:
                outcome = ("unexpected", repr(exc))
            finally:
                db.session.remove()
            with lock:
                outcomes[index] = outcome

    threads = [threading.Thread(target=worker, args=(i, call)) for i, call in enumerate(calls)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    db.session.expire_all()
    return outcomes
