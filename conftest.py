"""
Shared pytest fixtures.

Tests run against an in-memory SQLite database; the environment is set
before any vetcare module reads its settings.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["DEBUG"] = "false"

import pytest
from uuid import uuid4
from fastapi.testclient import TestClient

from vetcare.database.database import Base, SessionLocal, engine, get_db
from vetcare.common.context import ClinicContext
from vetcare.main import app


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def ctx():
    return ClinicContext(user_id=uuid4(), branch_id=uuid4())


@pytest.fixture
def clinic_headers(ctx):
    return {"X-Branch-ID": str(ctx.branch_id), "X-User-ID": str(ctx.user_id)}


@pytest.fixture
def client(db_session):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
