"""
Root conftest.py for SageExcel API tests.

Every test that touches the API runs against an in-memory mongomock
database patched over ``database.db``.
"""

import io
import sys
from pathlib import Path

import mongomock
import pandas as pd
import pytest
from fastapi.testclient import TestClient

# Ensure the project root is in the path
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

import database  # noqa: E402
from main import app  # noqa: E402


# ============================================================================
# Shared Fixtures
# ============================================================================


@pytest.fixture
def mongo_db(monkeypatch):
    """Fresh in-memory database for each test."""
    db = mongomock.MongoClient()["sageexcel_test"]
    monkeypatch.setattr(database, "db", db)
    return db


@pytest.fixture
def api(mongo_db):
    """TestClient with startup hooks run (indexes created)."""
    with TestClient(app) as client:
        yield client


@pytest.fixture
def make_user(api, mongo_db):
    """Register and log in a user; returns (auth headers, login response)."""

    def _make(name="A", email="a@x.com", password="Abcdef1!", admin=False):
        resp = api.post("/api/auth/register", json={"name": name, "email": email, "password": password})
        assert resp.status_code == 201, resp.text
        if admin:
            mongo_db["user"].update_one({"email": email}, {"$set": {"isAdmin": True}})
        login = api.post("/api/auth/login", json={"email": email, "password": password})
        assert login.status_code == 200, login.text
        body = login.json()
        return {"Authorization": f"Bearer {body['token']}"}, body

    return _make


@pytest.fixture
def csv_bytes():
    return b"col1,col2\na,1\nb,2\nc,3\n"


@pytest.fixture
def xlsx_bytes():
    """2-column, 3-row workbook."""
    buf = io.BytesIO()
    pd.DataFrame({"col1": ["a", "b", "c"], "col2": [1, 2, 3]}).to_excel(buf, index=False)
    return buf.getvalue()
