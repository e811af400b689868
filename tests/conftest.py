"""Pytest configuration and fixtures."""

import itertools
import os
from typing import Generator

# Settings are read at import time; keep tests off the default database file.
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("DEBUG", "true")

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from receiving_sync.core.rate_limit import limiter
from receiving_sync.db.base import Base
from receiving_sync.db.session import enable_sqlite_foreign_keys, get_db
from receiving_sync.main import app
# Import all models to ensure they're registered with Base.metadata
from receiving_sync.models import *  # noqa: F401,F403
from receiving_sync.schemas.shipment import ExpectedItemIn, ShipmentIn
from receiving_sync.services.manifest_store import ManifestStore

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    # Disable rate limiting during tests to avoid flaky failures
    limiter.enabled = False
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def fake_clock(monkeypatch):
    """Deterministic, strictly increasing server clock (1s per tick)."""
    ticks = itertools.count(1_700_000_000_000, 1000)

    def now_ms() -> int:
        return next(ticks)

    monkeypatch.setattr("receiving_sync.services.reconciliation_engine.now_ms", now_ms)
    monkeypatch.setattr("receiving_sync.services.manifest_store.now_ms", now_ms)
    return now_ms


def make_shipment_in(shipment_id: str = "SHIP-1", items=None, document_ids=None) -> ShipmentIn:
    if items is None:
        items = [
            {"item_number": "1000001", "description": "Chef's Knife 8in", "upc": "123", "qty_expected": 100},
        ]
    return ShipmentIn(
        id=shipment_id,
        date="2024-05-01",
        document_ids=document_ids or [],
        expected_items=[ExpectedItemIn(**item) for item in items],
    )


@pytest.fixture
def shipment_in():
    """Factory for shipment bodies: shipment_in(id, items=None, document_ids=None)."""
    return make_shipment_in


@pytest.fixture
def shipment(db_session: Session):
    """In-progress shipment expecting 100 units of UPC 123."""
    created, _ = ManifestStore(db_session).upsert_shipment("SHIP-1", make_shipment_in("SHIP-1"))
    return created


@pytest.fixture
def multi_document_shipment(db_session: Session):
    """Same UPC on two packing lists, plus a second UPC on one of them."""
    items = [
        {"item_number": "1000001", "description": "Paring Knife", "upc": "400", "qty_expected": 10,
         "document_id": "DOC-A"},
        {"item_number": "1000001", "description": "Paring Knife", "upc": "400", "qty_expected": 5,
         "document_id": "DOC-B"},
        {"item_number": "1000002", "description": "Bread Knife", "upc": "401", "qty_expected": 4,
         "document_id": "DOC-A"},
    ]
    created, _ = ManifestStore(db_session).upsert_shipment(
        "SHIP-DOCS", make_shipment_in("SHIP-DOCS", items, ["DOC-A", "DOC-B"])
    )
    return created


# ==================== In-process server for client tests ====================


@pytest.fixture
def server_sessionmaker(tmp_path):
    """File-backed database so concurrent requests get their own connections."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'receiving.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def asgi_transport(server_sessionmaker) -> Generator[httpx.ASGITransport, None, None]:
    """Route httpx calls straight into the FastAPI app, one session per request."""
    def override_get_db():
        db = server_sessionmaker()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    limiter.enabled = False
    yield httpx.ASGITransport(app=app)
    app.dependency_overrides.clear()
