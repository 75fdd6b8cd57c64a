"""Integration tests for API endpoints"""

import pytest
from fastapi.testclient import TestClient


def test_health_endpoint(client: TestClient):
    """Test health check endpoint"""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_metrics_endpoint(client: TestClient):
    """Test Prometheus metrics endpoint"""
    client.get("/v1/fee-schedule/general")

    response = client.get("/metrics")
    assert response.status_code == 200
    assert "fincalc_network_online" in response.text
    assert "http_request_duration_seconds" in response.text


def test_request_id_is_echoed(client: TestClient):
    response = client.get("/health", headers={"X-Request-ID": "req-123"})

    assert response.headers["X-Request-ID"] == "req-123"
    assert client.get("/health").headers["X-Request-ID"]


def test_fee_schedule_endpoint(client: TestClient):
    """Test GET /v1/fee-schedule/{court_type}"""
    response = client.get("/v1/fee-schedule/arbitration")

    assert response.status_code == 200
    data = response.json()
    assert data["court_type"] == "arbitration"
    assert data["version"] == "2024.1.0"
    assert data["offline_mode"] is False
    assert len(data["rules"]) == 6
    assert data["rules"][0]["minimum_fee"] == 2000


def test_fee_schedule_unknown_court(client: TestClient):
    assert client.get("/v1/fee-schedule/supreme").status_code == 422


def test_fee_schedule_offline(client: TestClient, network_monitor):
    network_monitor.set_online(False)

    response = client.get("/v1/fee-schedule/general")

    assert response.status_code == 200
    assert response.json()["offline_mode"] is True
    assert response.json()["rules"][0]["max_amount"] == 20000


def test_freshness_endpoint(client: TestClient):
    response = client.get("/v1/fee-schedule/freshness")

    assert response.status_code == 200
    data = response.json()
    assert set(data) == {"is_up_to_date", "last_update_date", "days_since_update", "warning_message"}
    assert data["days_since_update"] >= 0


def test_status_endpoint(client: TestClient):
    response = client.get("/v1/fee-schedule/status")

    assert response.status_code == 200
    data = response.json()
    assert data["is_offline_ready"] is True
    assert data["schedules_count"] == 2
    assert data["exemptions_count"] == 5
    assert data["data_valid"] is True
    assert len(data["checksum"]) == 16


@pytest.mark.parametrize(
    "court_type,amount,expected",
    [("general", 5_000, 400), ("general", 50_000, 1_700), ("general", 2_000_000, 60_000), ("arbitration", 200_000, 7_000)],
)
def test_calculate_fee(client: TestClient, court_type, amount, expected):
    """Test POST /v1/fee/calculate"""
    response = client.post("/v1/fee/calculate", json={"amount": amount, "court_type": court_type})

    assert response.status_code == 200
    data = response.json()
    assert data["amount"] == expected
    assert data["applicable_article"].startswith("ст. 333.")
    assert len(data["breakdown"]) == 1


def test_calculate_fee_with_exemption(client: TestClient):
    response = client.post(
        "/v1/fee/calculate",
        json={"amount": 50_000, "court_type": "general", "exemption_id": "veterans"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["amount"] == 0
    assert data["breakdown"][-1]["amount"] == -1700
    assert data["breakdown"][-1]["legal_basis"] == "п.3 ст.333.36 НК РФ"


def test_calculate_fee_unknown_exemption(client: TestClient):
    response = client.post(
        "/v1/fee/calculate",
        json={"amount": 50_000, "court_type": "general", "exemption_id": "astronauts"},
    )

    assert response.status_code == 404


def test_calculate_fee_exemption_for_other_court(client: TestClient):
    response = client.post(
        "/v1/fee/calculate",
        json={"amount": 50_000, "court_type": "arbitration", "exemption_id": "veterans"},
    )

    assert response.status_code == 422


@pytest.mark.parametrize("amount", [0, -100])
def test_calculate_fee_rejects_non_positive_amount(client: TestClient, amount):
    response = client.post("/v1/fee/calculate", json={"amount": amount, "court_type": "general"})

    assert response.status_code == 422


def test_track_calculation_creates_profile(client: TestClient):
    """Test POST /v1/profiles/{user_id}/calculations"""
    response = client.post(
        "/v1/profiles/user_1/calculations",
        json={"calculator_type": "mortgage", "parameters": {"amount": 5_000_000, "term": 240}},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["user_id"] == "user_1"
    assert data["history_size"] == 1
    assert data["product_interests"] == ["mortgage"]
    assert data["sync_status"] == "synced"

    second = client.post("/v1/profiles/user_1/calculations", json={"calculator_type": "deposit"})
    assert second.json()["id"] == data["id"]
    assert second.json()["history_size"] == 2


def test_track_calculation_validation(client: TestClient):
    response = client.post("/v1/profiles/user_1/calculations", json={"calculator_type": ""})

    assert response.status_code == 422


def test_behavior_endpoint(client: TestClient):
    client.post(
        "/v1/profiles/user_1/calculations",
        json={"calculator_type": "credit", "parameters": {"amount": 300_000, "term": 24, "region": "Kazan"}},
    )

    response = client.get("/v1/profiles/user_1/behavior")

    assert response.status_code == 200
    data = response.json()
    assert data["primary_interests"] == ["credit"]
    assert data["preferred_regions"] == ["Kazan"]
    assert data["average_loan_amount"] == 300_000
    assert data["risk_profile"] == "high"


def test_behavior_for_unknown_user_is_neutral(client: TestClient):
    data = client.get("/v1/profiles/nobody/behavior").json()

    assert data["primary_interests"] == []
    assert data["engagement_score"] == 0
    assert data["risk_profile"] == "medium"


def test_recommendations_endpoint(client: TestClient, seeded_products):
    """Test POST /v1/recommendations for a known user"""
    client.post("/v1/profiles/user_1/calculations", json={"calculator_type": "credit", "parameters": {"amount": 500_000}})

    response = client.post(
        "/v1/recommendations",
        json={"user_id": "user_1", "calculation_type": "credit", "calculation_params": {"amount": 500_000, "term": 24}},
    )

    assert response.status_code == 200
    data = response.json()
    assert [r["product"]["id"] for r in data] == ["credit_cheap", "credit_pricey"]
    assert data[0]["score"] > data[1]["score"]
    assert data[0]["product"]["bank"]["name"] == "Alpha Bank"
    assert 0 <= data[0]["match_percentage"] <= 100


def test_recommendations_validation(client: TestClient):
    response = client.post("/v1/recommendations", json={"user_id": "user_1", "calculation_type": "crypto"})

    assert response.status_code == 422


def test_cross_recommendations_endpoint(client: TestClient, seeded_products):
    assert client.get("/v1/recommendations/cross/user_1").json() == []

    client.post("/v1/profiles/user_1/calculations", json={"calculator_type": "mortgage", "parameters": {"loan_amount": 3_000_000}})
    client.post("/v1/profiles/user_1/calculations", json={"calculator_type": "deposit", "parameters": {"amount": 500_000}})

    response = client.get("/v1/recommendations/cross/user_1", params={"limit": 5})

    assert response.status_code == 200
    data = response.json()
    assert [s["type"] for s in data] == ["alternative"]
    assert data[0]["explanation"]["financial_impact"]["risk_level"] == "low"


def test_feedback_endpoint(client: TestClient, seeded_products):
    client.post("/v1/profiles/user_1/calculations", json={"calculator_type": "credit"})
    served = client.post("/v1/recommendations", json={"user_id": "user_1", "calculation_type": "credit"}).json()

    response = client.post(
        f"/v1/recommendations/{served[0]['id']}/feedback",
        json={"user_id": "user_1", "feedback": "applied"},
    )

    assert response.status_code == 200
    assert response.json() == {"recommendation_id": served[0]["id"], "recorded": True}


def test_feedback_for_unknown_recommendation(client: TestClient):
    response = client.post(
        "/v1/recommendations/missing/feedback",
        json={"user_id": "user_1", "feedback": "clicked"},
    )

    assert response.status_code == 404
