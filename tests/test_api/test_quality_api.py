"""API integration tests for the quality endpoints."""

from __future__ import annotations

import uuid
from decimal import Decimal

HEADERS = {"X-Tenant-Id": "tenant-a"}
OTHER_HEADERS = {"X-Tenant-Id": "tenant-b"}


def _create_lot(client, factor: str = "97.75") -> tuple[str, str]:
    """Create a one-lot soybean settlement; returns (settlement_id, ctg_entry_id)."""
    response = client.post(
        "/api/v1/settlements",
        json={
            "grain_type": "SOYBEAN",
            "price_per_ton": "300000",
            "ctg_entries": [
                {"ctg_number": "CTG-1", "gross_kg": "30000", "factor": factor}
            ],
        },
        headers=HEADERS,
    )
    assert response.status_code == 201, response.text
    data = response.json()
    return data["id"], data["ctg_entries"][0]["id"]


# ── Stateless calculation ────────────────────────────────────────────


def test_calculate_soybean(client):
    """POST /api/v1/quality/calculate returns the full breakdown."""
    response = client.post(
        "/api/v1/quality/calculate",
        json={
            "grain_type": "soja",
            "analysis": {"humidity": "15.0", "foreign_matter": "4.0"},
            "quantity_kg": "30000",
            "base_price_per_ton": "300000",
        },
    )

    assert response.status_code == 200, response.text
    data = response.json()
    assert data["grain_type"] == "SOYBEAN"
    assert Decimal(data["final_factor"]) == Decimal("94.25")
    assert Decimal(data["humidity_factor_discount"]) == Decimal("2.25")
    assert Decimal(data["total_discount"]) == Decimal("3.50")
    assert data["humidity_waste"]["waste_percent"] == "2.25"
    assert data["price_adjustment"]["adjusted_price_per_ton"] == "282750.00"
    assert [s["step"] for s in data["calculation_steps"]] == list(range(1, 9))


def test_calculate_unknown_grain_warns(client):
    response = client.post(
        "/api/v1/quality/calculate",
        json={"grain_type": "cebada", "analysis": {"humidity": "14"}},
    )

    assert response.status_code == 200
    data = response.json()
    assert Decimal(data["final_factor"]) == Decimal("100")
    assert data["warnings"][0]["type"] == "unknown_grain_type"


def test_calculate_requires_analysis(client):
    response = client.post("/api/v1/quality/calculate", json={"grain_type": "SOJA"})
    assert response.status_code == 422


# ── Analyses ─────────────────────────────────────────────────────────


def test_attach_analysis(client):
    _, ctg_id = _create_lot(client)

    response = client.post(
        f"/api/v1/quality/ctg/{ctg_id}/analyses",
        json={"humidity": "15.0", "laboratory": "Lab Central"},
        headers=HEADERS,
    )

    assert response.status_code == 201, response.text
    data = response.json()
    assert data["ctg_entry_id"] == ctg_id
    assert Decimal(data["humidity"]) == Decimal("15.0")
    assert data["laboratory"] == "Lab Central"
    assert data["analysis_date"] is not None


def test_attach_analysis_other_tenant_is_404(client):
    _, ctg_id = _create_lot(client)

    response = client.post(
        f"/api/v1/quality/ctg/{ctg_id}/analyses",
        json={"humidity": "15.0"},
        headers=OTHER_HEADERS,
    )
    assert response.status_code == 404


def test_attach_analysis_unknown_entry_is_404(client):
    response = client.post(
        f"/api/v1/quality/ctg/{uuid.uuid4()}/analyses",
        json={"humidity": "15.0"},
        headers=HEADERS,
    )
    assert response.status_code == 404


# ── Lot quality ──────────────────────────────────────────────────────


def test_ctg_quality_before_and_after_recalculation(client):
    settlement_id, ctg_id = _create_lot(client, factor="100.00")
    client.post(
        f"/api/v1/quality/ctg/{ctg_id}/analyses",
        json={"humidity": "15.0"},
        headers=HEADERS,
    )

    before = client.get(f"/api/v1/quality/ctg/{ctg_id}", headers=HEADERS).json()
    assert Decimal(before["latest_analysis"]["humidity"]) == Decimal("15.0")
    assert before["latest_result"] is None
    assert before["discrepancy"] is None

    client.post(f"/api/v1/settlements/{settlement_id}/recalculate", headers=HEADERS)

    after = client.get(f"/api/v1/quality/ctg/{ctg_id}", headers=HEADERS).json()
    assert Decimal(after["latest_result"]["final_factor"]) == Decimal("97.75")
    assert after["latest_result"]["requires_drying"] is True
    assert after["discrepancy"]["status"] == "CRITICAL"
    assert Decimal(after["discrepancy"]["difference"]) == Decimal("-2.25")


def test_ctg_quality_other_tenant_is_404(client):
    _, ctg_id = _create_lot(client)
    response = client.get(f"/api/v1/quality/ctg/{ctg_id}", headers=OTHER_HEADERS)
    assert response.status_code == 404


# ── Out of standard ──────────────────────────────────────────────────


def test_out_of_standard_results(client):
    settlement_id, ctg_id = _create_lot(client)
    client.post(
        f"/api/v1/quality/ctg/{ctg_id}/analyses",
        json={"humidity": "21.0"},
        headers=HEADERS,
    )
    client.post(f"/api/v1/settlements/{settlement_id}/recalculate", headers=HEADERS)

    response = client.get("/api/v1/quality/results/out-of-standard", headers=HEADERS)
    assert response.status_code == 200
    [result] = response.json()
    assert result["ctg_entry_id"] == ctg_id
    assert result["out_of_standard"] is True

    other = client.get(
        "/api/v1/quality/results/out-of-standard", headers=OTHER_HEADERS
    )
    assert other.json() == []


def test_out_of_tolerance_only_listed_on_request(client):
    settlement_id, ctg_id = _create_lot(client)
    client.post(
        f"/api/v1/quality/ctg/{ctg_id}/analyses",
        json={"humidity": "13.0", "foreign_matter": "2.0"},
        headers=HEADERS,
    )
    client.post(f"/api/v1/settlements/{settlement_id}/recalculate", headers=HEADERS)

    url = "/api/v1/quality/results/out-of-standard"
    assert client.get(url, headers=HEADERS).json() == []
    flagged = client.get(
        url, params={"include_out_of_tolerance": True}, headers=HEADERS
    ).json()
    assert len(flagged) == 1
    assert flagged[0]["out_of_tolerance"] is True
