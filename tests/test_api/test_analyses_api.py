"""
Integration tests for the /analyses and /health routes.
Runs against the seeded SQLite reference store through the `client` fixture.
"""

from decimal import Decimal

import pytest


pytestmark = pytest.mark.usefixtures("db")


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] in ("ok", "degraded")
        assert body["environment"] == "test"


class TestCreateAnalysis:
    def test_priced_bill(self, client):
        resp = client.post("/analyses", json={
            "extraction": {
                "lineItems": [
                    {"cptCode": "99213", "billedAmount": "$300.00", "units": 1},
                    {"cptCode": "LEVEL 4", "billedAmount": "$95.00"},
                ],
            },
            "service_year": 2026,
            "care_setting": "facility",
        })
        assert resp.status_code == 200
        body = resp.json()

        assert body["document_type"] == "unknown"
        assert body["geography"]["confidence"] == "national_estimate"
        assert [line["outcome"] for line in body["lines"]] == ["priced", "invalid_code_format"]

        visit = body["lines"][0]
        assert visit["code"] == "99213"
        assert visit["code_system"] == "numeric"
        assert Decimal(visit["reference_fee"]) == Decimal("92.50")
        assert Decimal(visit["multiple"]) == Decimal("3.24")
        assert visit["price_tier"] == "very_high"
        assert visit["is_facility"] is True

        rejected = body["lines"][1]
        assert rejected["code"] is None
        assert rejected["reference_fee"] is None
        assert body["rejected_tokens"][0]["token"] == "LEVEL 4"

        readiness = body["readiness"]
        assert readiness["status"] == "ready"
        assert readiness["path"] == "matched_items"
        assert readiness["comparison"]["can_compute_multiple"] is True
        assert readiness["comparison"]["coverage"]["percent"] == 50

    def test_balance_only_bill(self, client):
        resp = client.post("/analyses", json={
            "extraction": {"amountDue": "450.00", "lineItems": [{"code": "99214"}]},
            "state": "ny",
        })
        assert resp.status_code == 200
        body = resp.json()
        assert body["geography"]["state"] == "NY"
        assert body["geography"]["confidence"] == "state_estimate"
        recon = body["reconciliation"]
        assert recon["totals"]["total_charges"] is None
        assert Decimal(recon["totals"]["amount_due"]["value"]) == Decimal("450.00")
        assert recon["comparison_total"]["total_type"] == "patient_balance"
        assert recon["comparison_total"]["limited_comparability"] is True
        assert body["readiness"]["status"] == "limited_data"
        assert body["readiness"]["comparison"]["multiple"] is None

    def test_missing_figures_are_null_not_zero(self, client):
        resp = client.post("/analyses", json={"extraction": {"lineItems": [{"code": "99213"}]}})
        assert resp.status_code == 200
        line = resp.json()["lines"][0]
        assert line["billed_amount"] is None
        assert line["multiple"] is None

    @pytest.mark.parametrize("payload", [
        {},
        {"extraction": "Total Charges $100"},
        {"extraction": {}, "service_year": 1800},
        {"extraction": {}, "care_setting": "ambulance"},
    ])
    def test_invalid_request(self, client, payload):
        resp = client.post("/analyses", json=payload)
        assert resp.status_code == 422
