"""
API tests for the FieldMapper REST API.
"""

import pytest
from fastapi.testclient import TestClient

from fieldmapper.agents.feedback_recorder import FeedbackRecorder, MemoryFeedbackStore
from fieldmapper.agents.llm_clients import MockLLMClient
from fieldmapper.agents.mapping_orchestrator import MappingOrchestrator
from fieldmapper.api.server import app, get_orchestrator
from fieldmapper.core.metrics import UNMATCHED_ROUTE, get_registry


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def orchestrator():
    """Orchestrator without AI, keeping feedback in memory."""
    return MappingOrchestrator(feedback_recorder=FeedbackRecorder(MemoryFeedbackStore()))


@pytest.fixture
def client(orchestrator):
    """Create test client."""
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def mapping_body():
    return {
        "sourceFields": [
            {"name": "sku", "type": "string", "path": "sku", "semanticTags": ["identifier"]},
            {"name": "customer_email", "type": "string"},
        ],
        "targetFields": [
            {
                "name": "sku",
                "path": "sku",
                "type": "string",
                "documentType": "product",
                "semanticTags": ["identifier"],
            },
            {"name": "email", "path": "billTo.email", "type": "string", "documentType": "order"},
        ],
    }


# =============================================================================
# Health Check Tests
# =============================================================================

class TestHealthCheck:
    """Tests for health check endpoint."""

    def test_health_check(self, client):
        """Test health check returns healthy status."""
        response = client.get("/api/v1/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == "1.0.0"
        assert "timestamp" in data

    def test_reports_configuration(self, client):
        data = client.get("/api/v1/health").json()

        assert data["aiProvider"] is None
        assert data["feedbackStore"] == "memory"


# =============================================================================
# Suggestion Endpoint Tests
# =============================================================================

class TestSuggestMappings:
    """Tests for the suggestion endpoint."""

    def test_rule_based_response(self, client, mapping_body):
        response = client.post("/api/v1/suggest-mappings", json=mapping_body)

        assert response.status_code == 200
        data = response.json()
        assert data["meta"]["strategy"] == "rule-based"
        assert data["meta"]["sourceCount"] == 2
        assert len(data["suggestions"]) == 2

        sku = data["suggestions"][0]["suggestions"][0]
        assert sku["breakdown"]["total"] == 1.0
        assert sku["status"] == "high"

    def test_legacy_path(self, client, mapping_body):
        response = client.post("/.netlify/functions/ai-suggest-mappings", json=mapping_body)
        assert response.status_code == 200
        assert response.json()["meta"]["strategy"] == "rule-based"

    def test_ai_response(self, client, orchestrator, mapping_body):
        orchestrator.llm_client = MockLLMClient()

        data = client.post("/api/v1/suggest-mappings", json=mapping_body).json()

        assert data["meta"]["strategy"] == "ai"
        assert data["suggestions"][0]["suggestions"][0]["target"]["path"] == "sku"

    def test_missing_fields(self, client):
        response = client.post("/api/v1/suggest-mappings", json={"sourceFields": []})

        assert response.status_code == 400
        assert response.json() == {
            "error": "sourceFields and targetFields are required arrays",
            "status_code": 400,
        }

    def test_invalid_json(self, client):
        response = client.post(
            "/api/v1/suggest-mappings",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert "error" in response.json()

    def test_empty_body(self, client):
        response = client.post("/api/v1/suggest-mappings")
        assert response.status_code == 400

    def test_method_not_allowed(self, client):
        response = client.get("/api/v1/suggest-mappings")

        assert response.status_code == 405
        assert response.json()["status_code"] == 405


# =============================================================================
# Feedback Tests
# =============================================================================

class TestFeedback:
    """Tests for feedback submitted through the suggestion endpoint."""

    def test_feedback_stored(self, client, orchestrator):
        response = client.post(
            "/api/v1/suggest-mappings",
            json={
                "requestId": "req-1",
                "feedback": [{"source": "sku", "target": "sku", "accepted": True}],
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["feedbackStored"] is True
        assert data["feedbackCount"] == 1
        assert orchestrator.feedback_recorder.store.records[0]["requestId"] == "req-1"

    def test_feedback_without_store(self, client, orchestrator):
        orchestrator.feedback_recorder = FeedbackRecorder()

        response = client.post(
            "/api/v1/suggest-mappings",
            json={"feedback": [{"source": "sku", "target": "sku", "accepted": False}]},
        )

        assert response.status_code == 200
        assert response.json()["feedbackStored"] is False
        assert response.json()["reason"] == "Missing SANITY config"


# =============================================================================
# Metrics Tests
# =============================================================================

class TestMetrics:
    """Tests for metrics endpoints."""

    def test_prometheus(self, client, mapping_body):
        client.post("/api/v1/suggest-mappings", json=mapping_body)

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "fieldmapper_mapping_requests_total" in response.text
        assert 'strategy="rule-based"' in response.text

    def test_json(self, client):
        response = client.get("/api/v1/metrics")

        assert response.status_code == 200
        assert response.json()["fieldmapper_http_requests_total"]["type"] == "counter"

    def test_unknown_paths_share_one_label(self, client):
        """Test arbitrary URLs collapse into a single endpoint label."""
        counter = get_registry().get("fieldmapper_http_requests_total")
        before = len(counter.values)

        for i in range(200):
            client.get(f"/random/{i}")

        assert counter.get(endpoint=UNMATCHED_ROUTE, method="GET") >= 200
        assert len(counter.values) <= before + 1

    def test_routes_labelled_by_template(self, client, mapping_body):
        counter = get_registry().get("fieldmapper_http_requests_total")
        before = counter.get(endpoint="/api/v1/suggest-mappings", method="POST")

        client.post("/api/v1/suggest-mappings", json=mapping_body)

        assert counter.get(endpoint="/api/v1/suggest-mappings", method="POST") == before + 1


# =============================================================================
# OpenAPI Tests
# =============================================================================

class TestOpenAPI:
    """Tests for the generated schema."""

    def test_openapi_available(self, client):
        response = client.get("/api/openapi.json")

        assert response.status_code == 200
        paths = response.json()["paths"]
        assert "/api/v1/suggest-mappings" in paths
        assert "/.netlify/functions/ai-suggest-mappings" not in paths
