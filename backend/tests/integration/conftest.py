# tests/integration/conftest.py
"""Integration test fixtures - full app over the in-memory DB"""

import pytest
from fastapi.testclient import TestClient

from app.database import get_db
from app.main import app


@pytest.fixture
def client(db_session):
    """
    TestClient bound to the test session.

    Used without the context manager so the startup hook (create_all on the
    configured database) does not run.
    """
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
