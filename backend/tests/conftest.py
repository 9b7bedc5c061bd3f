"""
Pytest fixtures for the fiscal engine tests.

Provides the application on an in-memory database, a per-test table wipe,
a test client and small factories for series, registers and drafts.
"""

from datetime import date

import pytest
from faturacao import create_app
from faturacao.extensions import db
from faturacao.services import document_service, register_service, series_service


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'HASH_SECRET': 'test-hash-secret',
    'SEQUENCE_RETRY_BACKOFF': 0.01,
    'LOG_LEVEL': 'WARNING',
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    # Clear all data but keep schema
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()
    db.session.expunge_all()

    yield db.session

    db.session.rollback()


@pytest.fixture(scope='function')
def series(db_session):
    """Normal (certifying) series A for 2024."""
    return series_service.create_series(code="A", fiscal_year=2024, name="Série Geral")


@pytest.fixture(scope='function')
def manual_series(db_session):
    return series_service.create_series(code="M", fiscal_year=2024, name="Série Manual", kind="MANUAL")


@pytest.fixture(scope='function')
def register(db_session):
    return register_service.create_register(name="Caixa 1", opening_balance_cents=0)


def _line(description="Produto", quantity="1", unit_price_cents=100000, **extra):
    line = {"description": description, "quantity": quantity, "unit_price_cents": unit_price_cents}
    line.update(extra)
    return line


@pytest.fixture(scope='function')
def make_draft(db_session):
    """
    Factory for drafts. Defaults to a one-line 1000.00 Kz invoice with no
    tax, dated 2024-06-10, for client CLI-001.
    """
    def _make(series=None, document_type="FT", issue_date=date(2024, 6, 10), lines=None, **fields):
        payload = {
            "document_type": document_type,
            "issue_date": issue_date.isoformat() if isinstance(issue_date, date) else issue_date,
            "party_ref": "CLI-001",
            "party_name": "Cliente Exemplo",
            "party_tax_id": "5000000000",
            "lines": lines if lines is not None else [_line()],
        }
        if series is not None:
            payload["series_id"] = series.id
        payload.update(fields)
        return document_service.create_draft(payload)

    return _make


@pytest.fixture
def line():
    return _line
