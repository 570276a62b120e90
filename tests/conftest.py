"""
Pytest configuration and shared fixtures for the reconciliation tests.

Every test gets its own SQLite file under tmp_path, so tests never touch
the contacts.db a local server may be using.
"""
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from db_models import Contact, LinkPrecedence
from db_setup import init_db, get_db_connection, ContactStore
from settings import settings


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    """Fresh contacts database, also used as the app's configured database."""
    path = str(tmp_path / "contacts.db")
    monkeypatch.setattr(settings, "db_name", path)
    init_db(path)
    return path


@pytest.fixture
def store(db_path):
    conn = get_db_connection(db_path)
    yield ContactStore(conn)
    conn.close()


@pytest.fixture
def client(db_path):
    from main import app
    with TestClient(app) as test_client:
        yield test_client


def set_created_at(store, contact_id, created_at):
    """Backdate a contact; merges pick the survivor by createdAt."""
    store.conn.execute(
        "UPDATE Contact SET createdAt = ? WHERE id = ?",
        (created_at.isoformat(), contact_id)
    )


def make_contact(id, email=None, phone=None, linked_id=None, precedence="primary"):
    """Build an in-memory Contact without touching the database."""
    now = datetime(2023, 4, 1, tzinfo=timezone.utc)
    return Contact(
        id=id,
        email=email,
        phoneNumber=phone,
        linkedId=linked_id,
        linkPrecedence=LinkPrecedence(precedence),
        createdAt=now,
        updatedAt=now,
    )
