# Overview: Concurrent certification against a shared file-backed database.

"""
Concurrency Tests

Several workers certify drafts of the same series and type at once. Every
document must end with a distinct number and the counter must equal the
number of certified documents, with no holes.
"""

import threading

import pytest

from faturacao import create_app
from faturacao.extensions import db
from faturacao.models import CashRegisterPosting, FiscalDocument, SeriesSequence
from faturacao.services import document_service, register_service, series_service
from faturacao.services.certification_service import certify, verify_hash

from conftest import TEST_CONFIG


WORKERS = 8


@pytest.fixture
def file_app(tmp_path):
    """Application on a temporary SQLite file so that threads share data."""
    config = dict(TEST_CONFIG)
    config.update({
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.sqlite3'}",
        'SQLALCHEMY_ENGINE_OPTIONS': {'connect_args': {'timeout': 30}},
        'SEQUENCE_RETRY_ATTEMPTS': 20,
    })
    app = create_app(config)

    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def _run_workers(app, target, ids):
    errors = []

    def _worker(document_id):
        with app.app_context():
            try:
                target(document_id)
            except Exception as exc:  # collected and asserted below
                errors.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=_worker, args=(doc_id,)) for doc_id in ids]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return errors


def test_parallel_certification_yields_unique_contiguous_numbers(file_app):
    with file_app.app_context():
        series = series_service.create_series(code="C", fiscal_year=2024)
        register = register_service.create_register(name="Caixa Central")
        draft_ids = [
            document_service.create_draft({
                "series_id": series.id,
                "document_type": "FR",
                "issue_date": "2024-06-10",
                "payment_method": "CASH",
                "cash_register_id": register.id,
                "lines": [{"description": "Produto", "quantity": "1", "unit_price_cents": 1000}],
            }).id
            for _ in range(WORKERS)
        ]
        series_id, register_id = series.id, register.id
        db.session.remove()

    errors = _run_workers(file_app, certify, draft_ids)
    assert errors == []

    with file_app.app_context():
        docs = db.session.query(FiscalDocument).filter_by(series_id=series_id).all()
        sequences = sorted(d.sequence for d in docs)
        assert sequences == list(range(1, WORKERS + 1))
        assert len({d.number for d in docs}) == WORKERS
        assert all(verify_hash(d) for d in docs)

        counter = db.session.query(SeriesSequence).filter_by(series_id=series_id, document_type="FR").one()
        assert counter.last_number == WORKERS

        # Each document posted its cash entry exactly once
        assert db.session.query(CashRegisterPosting).count() == WORKERS
        assert register_service.get_balance(register_id) == WORKERS * 1000

        # Hashes form one chain ordered by sequence
        by_sequence = sorted(docs, key=lambda d: d.sequence)
        for previous, current in zip(by_sequence, by_sequence[1:]):
            assert current.previous_hash == previous.hash


def test_parallel_certify_of_same_draft_certifies_once(file_app):
    with file_app.app_context():
        series = series_service.create_series(code="D", fiscal_year=2024)
        draft_id = document_service.create_draft({
            "series_id": series.id,
            "document_type": "FT",
            "issue_date": "2024-06-10",
            "lines": [{"description": "Produto", "quantity": "1", "unit_price_cents": 1000}],
        }).id
        db.session.remove()

    errors = _run_workers(file_app, certify, [draft_id] * 4)

    assert len(errors) == 3
    assert all(type(e).__name__ == "AlreadyCertified" for e in errors)
    with file_app.app_context():
        counter = db.session.query(SeriesSequence).filter_by(document_type="FT").one()
        assert counter.last_number == 1
