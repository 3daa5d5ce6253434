"""
Shared fixtures: an in-memory database injected through get_db,
and authenticated users.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import auth
import config
import database
import file_storage
import models
import twelvedata_provider
from database import get_db
from main import app


def _enable_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@pytest.fixture(autouse=True)
def no_integrations(monkeypatch):
    """Every integration starts unconfigured; tests opt in explicitly."""
    monkeypatch.setattr(config, "TWELVEDATA_API_KEY", "")
    monkeypatch.setattr(config, "TWELVEDATA_RATE_LIMIT", 1000)
    monkeypatch.setattr(config, "STRIPE_SECRET_KEY", "")
    monkeypatch.setattr(config, "STRIPE_WEBHOOK_SECRET", "")
    monkeypatch.setattr(config, "AWS_S3_BUCKET_NAME", "")
    monkeypatch.setattr(file_storage, "_client", None)
    twelvedata_provider.price_cache.clear()
    yield
    twelvedata_provider.price_cache.clear()


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(engine, "connect", _enable_foreign_keys)
    database.Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def client(db_engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_user(db, email, password="secret123", **kwargs):
    user = models.User(email=email, hashed_password=auth.get_password_hash(password), **kwargs)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def bearer(user):
    return {"Authorization": f"Bearer {auth.issue_token(user)['access_token']}"}


@pytest.fixture
def user(db_session):
    return make_user(db_session, "trader@example.com", first_name="Ada", last_name="Trader")


@pytest.fixture
def other_user(db_session):
    return make_user(db_session, "other@example.com")


@pytest.fixture
def auth_headers(user):
    return bearer(user)


@pytest.fixture
def other_headers(other_user):
    return bearer(other_user)


@pytest.fixture
def trading_session(client, auth_headers):
    response = client.post(
        "/api/trading-sessions",
        json={
            "name": "London open",
            "pair": "EUR/USD",
            "starting_balance": 10000,
            "start_date": "2024-01-01T00:00:00",
        },
        headers=auth_headers,
    )
    assert response.status_code == 201
    return response.json()
