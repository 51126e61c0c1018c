import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DB_LOG_SLOW_QUERIES", "false")

from datetime import datetime, timedelta  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from fieldsync import models, models_quickbooks  # noqa: E402, F401
from fieldsync.database import Base  # noqa: E402
from fieldsync.domain.integrations.quickbooks.exceptions import QuickBooksAPIError  # noqa: E402
from fieldsync.models import Customer  # noqa: E402
from fieldsync.models_quickbooks import QuickBooksConnection  # noqa: E402
from fieldsync.security_utils import encrypt_token  # noqa: E402


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = session_local()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture(autouse=True)
def reset_sync_locks():
    # asyncio locks bind to the loop that first waits on them
    from fieldsync.domain.integrations.quickbooks import service

    service._sync_locks.clear()
    yield
    service._sync_locks.clear()


@pytest.fixture
def connection(db):
    conn = QuickBooksConnection(
        company_id="9130",
        realm_id="9130",
        access_token=encrypt_token("access-1"),
        refresh_token=encrypt_token("refresh-1"),
        token_expires_at=datetime.utcnow() + timedelta(hours=1),
        base_url="https://sandbox-quickbooks.api.intuit.com",
        is_active=True,
    )
    db.add(conn)
    db.commit()
    db.refresh(conn)
    return conn


@pytest.fixture
def make_customer(db):
    def _make(**fields):
        customer = Customer(**fields)
        db.add(customer)
        db.commit()
        db.refresh(customer)
        return customer

    return _make


class FakeQuickBooksClient:
    """In-memory stand-in for QuickBooksClient"""

    def __init__(self, customers=None, items=None):
        self.remote_customers = {str(c["Id"]): dict(c) for c in customers or []}
        self.items = list(items or [])
        self.fail_names = set()
        self.fetch_error = None
        self.created_payloads = []
        self.updated_payloads = []
        self.calls = []
        self._next_id = 100

    def get_active_connection(self, db):
        return (
            db.query(QuickBooksConnection)
            .filter(QuickBooksConnection.is_active.is_(True))
            .first()
        )

    def _maybe_fail(self, payload):
        if payload.get("DisplayName") in self.fail_names:
            raise QuickBooksAPIError(400, "Duplicate Name Exists Error")

    async def create_customer(self, connection, payload):
        self.calls.append("create_customer")
        self.created_payloads.append(payload)
        self._maybe_fail(payload)
        remote_id = str(self._next_id)
        self._next_id += 1
        customer = {**payload, "Id": remote_id, "SyncToken": "0"}
        self.remote_customers[remote_id] = customer
        return {"Customer": customer}

    async def update_customer(self, connection, payload):
        self.calls.append("update_customer")
        self.updated_payloads.append(payload)
        self._maybe_fail(payload)
        existing = self.remote_customers[payload["Id"]]
        customer = {
            **existing,
            **payload,
            "SyncToken": str(int(existing["SyncToken"]) + 1),
        }
        self.remote_customers[payload["Id"]] = customer
        # Read-back through the query shape
        return {"QueryResponse": {"Customer": [customer]}}

    async def iter_customers(self, connection):
        self.calls.append("iter_customers")
        for customer in list(self.remote_customers.values()):
            yield customer
        if self.fetch_error:
            raise self.fetch_error

    async def iter_items(self, connection):
        self.calls.append("iter_items")
        for item in self.items:
            yield item


@pytest.fixture
def fake_client():
    return FakeQuickBooksClient()
