# test_api.py
import pytest
from fastapi.testclient import TestClient

from conftest import FakeCollector, failing_collector
from threatlens.main import app
from threatlens.services.signal_collectors import AI_JUDGMENT, REPUTATION, SCAN_ENGINE
from threatlens.services.signal_orchestrator import SignalOrchestrator
from threatlens.services.threat_engine import ThreatEngine


class TestAnalyzeAPI:
    """HTTP surface over the threat engine"""

    @pytest.fixture
    def api_client(self, normalizer, matcher):
        with TestClient(app) as client:
            # Swap in scripted collectors so no request leaves the process
            orchestrator = SignalOrchestrator([
                FakeCollector(AI_JUDGMENT, "high", 0.9, reasons=("Impersonates PayPal",)),
                FakeCollector(REPUTATION, "safe", 0.8),
                failing_collector(SCAN_ENGINE),
            ], budget=1.0)
            app.state.engine = ThreatEngine(normalizer, matcher, orchestrator)
            yield client

    def test_root(self, api_client):
        response = api_client.get("/")
        assert response.status_code == 200
        assert response.json()["service"] == "ThreatLens API"

    def test_health(self, api_client):
        response = api_client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_analyze_url(self, api_client):
        response = api_client.post("/api/analyze", json={"input": "https://paypa1-secure-login.com/x"})
        assert response.status_code == 200

        data = response.json()
        assert data["domain"] == "paypa1-secure-login.com"
        assert data["level"] == "high"
        assert data["reasons"][0] == "Impersonates PayPal"
        assert len(data["signals"]) == 3
        assert data["signals"][2]["failed"] is True
        assert any(f["category"] == "character_substitution" for f in data["findings"])
        assert data["processing_time_ms"] >= 0

    def test_analyze_message(self, api_client):
        response = api_client.post("/api/analyze", json={"input": "Urgent! Verify at paypa1.com today"})
        assert response.status_code == 200
        assert response.json()["domain"] == "paypa1.com"

    @pytest.mark.parametrize("payload", [{"input": ""}, {"input": "   "}, {"input": "not_a_domain"}])
    def test_invalid_input_is_400(self, api_client, payload):
        response = api_client.post("/api/analyze", json=payload)
        assert response.status_code == 400
        assert "detail" in response.json()

    def test_link_free_message(self, api_client):
        response = api_client.post("/api/analyze", json={"input": "URGENT: reply with your password"})
        assert response.status_code == 200

        data = response.json()
        assert data["domain"] is None
        assert data["level"] == "medium"
        assert data["signals"] == []
        assert {f["category"] for f in data["findings"]} == {"urgency_language", "credential_request"}

    def test_plain_chat_message_is_unknown(self, api_client):
        response = api_client.post("/api/analyze", json={"input": "no links here at all"})
        assert response.status_code == 200
        assert response.json()["level"] == "unknown"

    def test_missing_field_is_422(self, api_client):
        response = api_client.post("/api/analyze", json={"url": "paypal.com"})
        assert response.status_code == 422

    def test_signal_status(self, api_client):
        api_client.post("/api/analyze", json={"input": "paypa1.com"})

        response = api_client.get("/api/signals/status")
        assert response.status_code == 200

        data = response.json()
        assert [c["source"] for c in data["collectors"]] == [AI_JUDGMENT, REPUTATION, SCAN_ENGINE]
        assert data["budget_seconds"] == 1.0
        # The failed scan-engine opinion is not cached
        assert data["cache"]["entries"] == 2
