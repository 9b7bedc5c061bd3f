# Overview: Pytest coverage for the HTTP API through the Flask test client.

"""
API Tests

Drive the document lifecycle over HTTP: draft, certify, liquidate, cancel,
and check that engine errors surface with their HTTP status and code.
"""

import pytest


def _create_draft(client, series_id, **overrides):
    payload = {
        "document_type": "FT",
        "series_id": series_id,
        "issue_date": "2024-06-10",
        "party_ref": "CLI-001",
        "party_name": "Cliente Exemplo",
        "lines": [{"description": "Produto", "quantity": "2", "unit_price_cents": 50000, "tax_rate_bps": 1400}],
    }
    payload.update(overrides)
    response = client.post("/api/documents", json=payload)
    assert response.status_code == 201, response.get_json()
    return response.get_json()["document"]


class TestDocumentLifecycle:
    def test_create_certify_verify(self, client, db_session, series):
        draft = _create_draft(client, series.id)
        assert draft["status"] == "DRAFT"
        assert draft["total_cents"] == 114000
        assert draft["number"] is None

        response = client.post(f"/api/documents/{draft['id']}/certify", json={})
        assert response.status_code == 200
        body = response.get_json()
        assert body["document"]["number"] == "FT A 2024/1"
        assert body["document"]["status"] == "PENDING"
        assert body["warnings"] == []

        verify = client.get(f"/api/documents/{draft['id']}/verify").get_json()
        assert verify["valid"] is True
        assert verify["hash_control"] == verify["hash"][0] + verify["hash"][10] + verify["hash"][20] + verify["hash"][30]

    def test_liquidate_and_chain(self, client, db_session, series, register):
        draft = _create_draft(client, series.id)
        client.post(f"/api/documents/{draft['id']}/certify", json={})

        response = client.post(
            f"/api/documents/{draft['id']}/liquidate",
            json={"amount_cents": 14000, "method": "CASH", "register_id": register.id, "doc_date": "2024-06-12"},
        )
        assert response.status_code == 200
        body = response.get_json()
        assert body["document"]["status"] == "PARTIAL"
        assert body["related"][0]["number"] == "RC A 2024/1"

        chain = client.get(f"/api/documents/{body['related'][0]['id']}/chain").get_json()
        assert chain["root_id"] == draft["id"]
        assert [c["document_type"] for c in chain["chain"]["children"]] == ["RC"]

        reg = client.get(f"/api/registers/{register.id}").get_json()["register"]
        assert reg["balance_cents"] == 14000
        postings = client.get(f"/api/registers/{register.id}/postings").get_json()
        assert postings["count"] == 1

    def test_cancel_returns_corrective(self, client, db_session, series):
        draft = _create_draft(client, series.id)
        client.post(f"/api/documents/{draft['id']}/certify", json={})

        response = client.post(f"/api/documents/{draft['id']}/cancel", json={"reason": "erro", "issue_date": "2024-06-11"})

        assert response.status_code == 200
        body = response.get_json()
        assert body["document"]["status"] == "CANCELLED"
        assert body["related"][0]["document_type"] == "NC"
        assert body["related"][0]["source_document_id"] == draft["id"]

    def test_patch_and_delete_draft(self, client, db_session, series):
        draft = _create_draft(client, series.id)

        patched = client.patch(f"/api/documents/{draft['id']}", json={"party_name": "Novo Nome"})
        assert patched.status_code == 200
        assert patched.get_json()["document"]["party_name"] == "Novo Nome"

        deleted = client.delete(f"/api/documents/{draft['id']}")
        assert deleted.status_code == 200
        assert client.get(f"/api/documents/{draft['id']}").status_code == 404

    def test_derive(self, client, db_session, series):
        draft = _create_draft(client, series.id, document_type="PP")
        client.post(f"/api/documents/{draft['id']}/certify", json={})

        response = client.post(f"/api/documents/{draft['id']}/derive", json={"document_type": "FT"})

        assert response.status_code == 201
        derived = response.get_json()["document"]
        assert derived["source_document_id"] == draft["id"]
        assert derived["status"] == "DRAFT"

    def test_list(self, client, db_session, series):
        _create_draft(client, series.id)
        _create_draft(client, series.id, document_type="FR")

        body = client.get(f"/api/documents?series_id={series.id}&type=FR").get_json()
        assert body["count"] == 1
        assert "lines" not in body["items"][0]


class TestErrors:
    def test_unknown_document(self, client, db_session):
        response = client.get("/api/documents/does-not-exist")
        assert response.status_code == 404
        assert response.get_json()["code"] == "DOCUMENT_NOT_FOUND"

    def test_delete_certified_conflict(self, client, db_session, series):
        draft = _create_draft(client, series.id)
        client.post(f"/api/documents/{draft['id']}/certify", json={})

        response = client.delete(f"/api/documents/{draft['id']}")
        assert response.status_code == 409
        assert response.get_json()["code"] == "CERTIFIED_DELETION_FORBIDDEN"

    def test_chronology_conflict(self, client, db_session, series):
        first = _create_draft(client, series.id, issue_date="2024-06-10")
        client.post(f"/api/documents/{first['id']}/certify", json={})
        earlier = _create_draft(client, series.id, issue_date="2024-06-01")

        response = client.post(f"/api/documents/{earlier['id']}/certify", json={})

        assert response.status_code == 409
        body = response.get_json()
        assert body["code"] == "CHRONOLOGY_VIOLATION"
        assert body["details"]["latest_certified_date"] == "2024-06-10"

    def test_validation_error(self, client, db_session, series):
        response = client.post("/api/documents", json={"series_id": series.id, "document_type": "FT", "hash": "x"})
        assert response.status_code == 400
        assert response.get_json()["code"] == "VALIDATION_FAILED"

    @pytest.mark.parametrize("action,body", [
        ("liquidate", {"method": "CASH"}),
        ("cancel", {"reason": "  "}),
        ("derive", {}),
    ])
    def test_missing_required_fields(self, client, db_session, series, action, body):
        draft = _create_draft(client, series.id)
        response = client.post(f"/api/documents/{draft['id']}/{action}", json=body)
        assert response.status_code == 400

    def test_access_denied(self, client, db_session, series):
        client.post(f"/api/series/{series.id}/access", json={"user_ref": "u1"})
        draft = _create_draft(client, series.id)

        response = client.post(f"/api/documents/{draft['id']}/certify", json={"operator_ref": "u2"})
        assert response.status_code == 403


class TestSeriesApi:
    def test_create_and_get(self, client, db_session):
        response = client.post("/api/series", json={"code": "B", "fiscal_year": 2025, "name": "Loja"})
        assert response.status_code == 201
        created = response.get_json()["series"]
        assert created["kind"] == "NORMAL"

        fetched = client.get(f"/api/series/{created['id']}").get_json()["series"]
        assert fetched["code"] == "B"

    def test_create_requires_integer_year(self, client, db_session):
        assert client.post("/api/series", json={"code": "B"}).status_code == 400
        assert client.post("/api/series", json={"code": "B", "fiscal_year": "abc"}).status_code == 400

    def test_bootstrap(self, client, db_session, series):
        response = client.post(
            f"/api/series/{series.id}/bootstrap",
            json={"records": [{"document_type": "FT", "number": "FT A 2024/37"}, {"number": "FR A 2024/5"}]},
        )
        assert response.status_code == 200
        assert response.get_json()["sequences"] == {"FT/2024": 37, "FR/2024": 5}

        draft = _create_draft(client, series.id)
        certified = client.post(f"/api/documents/{draft['id']}/certify", json={}).get_json()
        assert certified["document"]["number"] == "FT A 2024/38"

    def test_unknown_series(self, client, db_session):
        response = client.get("/api/series/9999")
        assert response.status_code == 422
        assert response.get_json()["code"] == "SERIES_NOT_FOUND"


class TestHealth:
    def test_healthy(self, client, db_session):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.get_json()
        assert body["status"] == "healthy"
        assert set(body["checks"]) == {"database", "side_effects"}
