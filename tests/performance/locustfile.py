"""
FieldMapper Performance Testing with Locust.

Load scenarios for the suggestion API.

Usage:
    # Install locust
    pip install -e ".[perf]"

    # Run with web UI
    locust -f tests/performance/locustfile.py --host http://localhost:8080
    # Then open http://localhost:8089

    # Run headless
    locust -f tests/performance/locustfile.py \
        --host http://localhost:8080 \
        --headless \
        --users 50 \
        --spawn-rate 5 \
        --run-time 60s
"""

import random
import uuid

from locust import HttpUser, between, events, task
from locust.runners import MasterRunner


# =============================================================================
# Sample Data
# =============================================================================

SOURCE_FIELDS = [
    {"name": "customer_email", "type": "string", "semanticTags": ["contact"]},
    {"name": "orderTotal", "type": "number", "semanticTags": ["monetary"]},
    {"name": "created_at", "type": "datetime", "semanticTags": ["temporal"]},
    {"name": "sku", "type": "string", "semanticTags": ["identifier"]},
    {"name": "shipping.city", "type": "string", "path": "shipping.city", "semanticTags": ["location"]},
    {"name": "is_active", "type": "boolean", "semanticTags": ["status"]},
]

TARGET_FIELDS = [
    {"name": "email", "path": "billTo.email", "type": "string", "documentType": "order", "semanticTags": ["contact"]},
    {"name": "total", "path": "totals.total", "type": "number", "documentType": "order", "semanticTags": ["monetary"]},
    {"name": "createdAt", "path": "createdAt", "type": "datetime", "documentType": "order", "semanticTags": ["temporal"]},
    {"name": "sku", "path": "sku", "type": "string", "documentType": "product", "semanticTags": ["identifier"]},
    {"name": "city", "path": "shipTo.address.city", "type": "string", "documentType": "order", "semanticTags": ["location"]},
    {"name": "status", "path": "status", "type": "string", "documentType": "order", "semanticTags": ["status"]},
]


def mapping_payload(source_count: int, target_count: int) -> dict:
    """Build a request from random field samples."""
    return {
        "requestId": str(uuid.uuid4()),
        "sourceFields": random.sample(SOURCE_FIELDS, k=source_count),
        "targetFields": random.sample(TARGET_FIELDS, k=target_count),
    }


# =============================================================================
# User Behaviors
# =============================================================================

class MappingUser(HttpUser):
    """Schema editor requesting suggestions and sending feedback."""

    wait_time = between(1, 5)

    @task(10)
    def suggest_small(self):
        """Small schema pair."""
        with self.client.post(
            "/api/v1/suggest-mappings",
            json=mapping_payload(2, 3),
            name="Suggest Mappings (small)",
            catch_response=True,
        ) as response:
            if response.status_code != 200:
                response.failure(f"Status code: {response.status_code}")
            elif "suggestions" not in response.json():
                response.failure("Missing suggestions in response")

    @task(3)
    def suggest_full(self):
        """Every source against every target."""
        with self.client.post(
            "/api/v1/suggest-mappings",
            json=mapping_payload(len(SOURCE_FIELDS), len(TARGET_FIELDS)),
            name="Suggest Mappings (full)",
            catch_response=True,
            timeout=60,
        ) as response:
            if response.status_code != 200:
                response.failure(f"Status code: {response.status_code}")

    @task(2)
    def send_feedback(self):
        """Accept or reject one suggestion."""
        source = random.choice(SOURCE_FIELDS)
        target = random.choice(TARGET_FIELDS)
        with self.client.post(
            "/api/v1/suggest-mappings",
            json={
                "feedback": [
                    {
                        "source": source["name"],
                        "target": target["path"],
                        "accepted": random.random() > 0.3,
                    }
                ]
            },
            name="Send Feedback",
            catch_response=True,
        ) as response:
            if response.status_code != 200:
                response.failure(f"Status code: {response.status_code}")

    @task(1)
    def health_check(self):
        """Health probe."""
        with self.client.get(
            "/api/v1/health",
            name="Health Check",
            catch_response=True,
        ) as response:
            if response.status_code != 200 or response.json().get("status") != "healthy":
                response.failure("Unexpected health status")


# =============================================================================
# Event Hooks
# =============================================================================

@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    """Called when load test starts."""
    if isinstance(environment.runner, MasterRunner):
        print("Running in distributed mode as master")
    print(f"Starting load test against: {environment.host}")


@events.test_stop.add_listener
def on_test_stop(environment, **kwargs):
    """Called when load test stops."""
    print("Load test completed")
