import copy
import os
from typing import Dict

import pytest
from fastapi.testclient import TestClient
from sqlmodel import SQLModel, Session, create_engine

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("CELERY_TASK_ALWAYS_EAGER", "1")
os.environ.setdefault("HTTP_RETRY_BACKOFF_SECONDS", "0")
os.environ.setdefault("SECRET_KEY", "test-secret")

from ndasign.main import app  # noqa: E402
from ndasign import db as db_module  # noqa: E402
from ndasign import email as email_module  # noqa: E402
from ndasign import tasks as tasks_module  # noqa: E402
from ndasign.backends import MockSignatureBackend  # noqa: E402
from ndasign.db import get_session  # noqa: E402
from ndasign.directory import Listing, Party, Transaction  # noqa: E402
from ndasign.errors import ExternalProviderError, NotFound, VersionConflict  # noqa: E402
from ndasign.utils import make_token  # noqa: E402


class FakeDirectory:
    """In-memory Transaction Directory with failure and conflict injection."""

    def __init__(self):
        self.transactions: Dict[str, dict] = {}
        self.listings: Dict[str, dict] = {}
        self.fail_metadata_writes = 0
        self.conflicts_before_write = 0
        self.fail_listing_updates = False
        self.metadata_writes = []

    def add_listing(self, listing_id, author_id, title="Data Analytics Project", private_data=None, public_data=None):
        self.listings[listing_id] = {
            "id": listing_id,
            "title": title,
            "authorId": author_id,
            "privateData": dict(private_data or {}),
            "publicData": dict(public_data or {}),
        }

    def add_transaction(self, transaction_id, listing_id, provider, customer, metadata=None):
        self.transactions[transaction_id] = {
            "listing_id": listing_id,
            "provider": provider,
            "customer": customer,
            "metadata": dict(metadata or {}),
            "version": 1,
        }

    def _tx(self, transaction_id):
        if transaction_id not in self.transactions:
            raise NotFound(f"/transactions/{transaction_id} not found in transaction directory.")
        return self.transactions[transaction_id]

    def get_transaction(self, transaction_id):
        tx = self._tx(transaction_id)
        listing = self.listings.get(tx["listing_id"], {})
        return Transaction(
            id=transaction_id,
            listing_id=tx["listing_id"],
            listing_title=listing.get("title"),
            provider=Party(**tx["provider"]),
            customer=Party(**tx["customer"]),
            metadata=copy.deepcopy(tx["metadata"]),
            metadata_version=tx["version"],
        )

    def read_metadata(self, transaction_id):
        tx = self._tx(transaction_id)
        return copy.deepcopy(tx["metadata"]), tx["version"]

    def write_metadata(self, transaction_id, metadata, expected_version):
        tx = self._tx(transaction_id)
        if self.fail_metadata_writes:
            self.fail_metadata_writes -= 1
            raise ExternalProviderError("Transaction directory is unavailable, please retry.")
        if self.conflicts_before_write:
            self.conflicts_before_write -= 1
            tx["version"] += 1
            tx["metadata"]["touchedElsewhere"] = True
            raise VersionConflict(transaction_id)
        if expected_version != tx["version"]:
            raise VersionConflict(transaction_id)
        tx["metadata"] = copy.deepcopy(metadata)
        tx["version"] += 1
        self.metadata_writes.append((transaction_id, copy.deepcopy(metadata)))
        return tx["version"]

    def get_listing(self, listing_id):
        if listing_id not in self.listings:
            raise NotFound(f"/listings/{listing_id} not found in transaction directory.")
        data = self.listings[listing_id]
        return Listing(
            id=listing_id,
            title=data["title"],
            author_id=data["authorId"],
            private_data=dict(data["privateData"]),
            public_data=dict(data["publicData"]),
        )

    def update_listing(self, listing_id, private_data=None, public_data=None):
        if self.fail_listing_updates:
            raise ExternalProviderError("Transaction directory is unavailable, please retry.")
        data = self.listings[listing_id]
        data["privateData"].update(private_data or {})
        data["publicData"].update(public_data or {})

    def close(self):
        pass


PROVIDER = {"id": "C1", "email": "corp@example.com", "name": "Corp Partner"}
CUSTOMER = {"id": "S1", "email": "student@example.com", "name": "Sam Student"}


def auth_headers(user_id, role="student", **extra):
    return {"X-Access-Token": make_token({"user_id": user_id, "role": role, **extra})}


PROVIDER_HEADERS = auth_headers("C1", role="corporate-partner")
CUSTOMER_HEADERS = auth_headers("S1")
OUTSIDER_HEADERS = auth_headers("U9")


@pytest.fixture(scope="session")
def test_engine(tmp_path_factory):
    db_path = tmp_path_factory.mktemp("data") / "test.db"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    return engine


@pytest.fixture
def setup_db(test_engine):
    SQLModel.metadata.drop_all(test_engine)
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture
def session(test_engine, setup_db, monkeypatch):
    monkeypatch.setattr(db_module, "engine", test_engine)
    with Session(test_engine) as s:
        yield s


@pytest.fixture
def directory(monkeypatch):
    fake = FakeDirectory()
    fake.add_listing("L1", author_id="C1")
    fake.add_transaction("T1", "L1", PROVIDER, CUSTOMER)
    monkeypatch.setattr(tasks_module, "directory", fake)
    return fake


@pytest.fixture
def mock_storage(monkeypatch) -> Dict[str, bytes]:
    store: Dict[str, bytes] = {}

    def fake_put_bytes(key: str, data: bytes, content_type: str = "application/octet-stream"):
        store[key] = bytes(data)

    monkeypatch.setattr(tasks_module, "put_bytes", fake_put_bytes)
    return store


@pytest.fixture
def sent_emails(monkeypatch):
    messages = []

    def fake_send_email(to, subject, text_body, html_body=None):
        messages.append({"to": to, "subject": subject, "text": text_body, "html": html_body})

    monkeypatch.setattr(email_module, "send_email", fake_send_email)
    return messages


@pytest.fixture
def client(test_engine, setup_db, directory, mock_storage, sent_emails):
    db_module.engine = test_engine

    def override_session():
        with Session(test_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    with TestClient(app) as test_client:
        app.state.directory = directory
        app.state.signature_backend = MockSignatureBackend()
        yield test_client
    app.dependency_overrides.clear()
