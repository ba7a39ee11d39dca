# tests/conftest.py

import pytest
from datetime import datetime

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base
from app.models import Account, Opportunity, RenewalRecord, DomainMapping


@pytest.fixture
def test_engine():
    """Fresh in-memory SQLite database per test"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db_session(test_engine):
    """Real database session"""
    SessionLocal = sessionmaker(bind=test_engine, expire_on_commit=False, autoflush=False)
    session = SessionLocal()
    yield session
    session.close()


# ============================================================================
# SAMPLE DATA
# ============================================================================

@pytest.fixture
def acme_registry(db_session):
    """
    Acme Corp: account -> OPP1 -> "2026 - REN - Acme" in the renewal feed,
    with acme.com mapped to the account.
    """
    db_session.add_all([
        Account(id="ACC1", name="Acme Corp", next_renewal_opportunity_id="OPP1", is_active=False),
        Opportunity(id="OPP1", name="2026 - REN - Acme", account_id="ACC1"),
        RenewalRecord(
            opportunity_name="2026 - REN - Acme",
            opportunity_id="OPP1",
            renewal_date=datetime(2026, 3, 1),
            stage="Negotiation",
            csm="Casey",
            ae="Alex",
        ),
        DomainMapping(account_id="ACC1", account_name="Acme Corp", domains="acme.com, acme.io"),
    ])
    db_session.commit()
    return db_session


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: unit tests")
    config.addinivalue_line("markers", "integration: integration tests")
    config.addinivalue_line("markers", "slow: slow running tests")
