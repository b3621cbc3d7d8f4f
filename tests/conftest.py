from __future__ import annotations

import os
import tempfile
from typing import Generator, Any

# keep app startup from touching the developer database
os.environ.setdefault("ENVB_AUTO_CREATE_TABLES", "false")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from envelope_budget.core.database import Base, get_db
from envelope_budget.main import app
from envelope_budget import models  # noqa: F401 - register tables


USER_ID = "user-1"


@pytest.fixture(scope="session")
def test_db_url() -> Generator[str, Any, Any]:
    # temp-file SQLite so the user's database is never touched
    fd, path = tempfile.mkstemp(prefix="envb_test_", suffix=".sqlite3")
    os.close(fd)
    url = f"sqlite:///{path}"
    yield url
    try:
        os.remove(path)
    except OSError:
        pass


@pytest.fixture(scope="session")
def engine(test_db_url: str):
    eng = create_engine(test_db_url, connect_args={"check_same_thread": False})
    Base.metadata.create_all(eng)
    return eng


@pytest.fixture(scope="function")
def db_session(engine) -> Generator[Any, Any, Any]:
    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        # wipe table data between tests
        with engine.begin() as conn:
            for tbl in Base.metadata.tables.values():
                conn.execute(tbl.delete())


@pytest.fixture(autouse=True)
def override_dependency(db_session):
    # FastAPI DI override
    def _get_db_override():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = _get_db_override
    yield
    app.dependency_overrides.clear()


@pytest.fixture()
def client(db_session):
    from fastapi.testclient import TestClient
    with TestClient(app, headers={"X-User-Id": USER_ID}) as c:
        yield c
