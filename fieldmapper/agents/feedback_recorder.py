"""
FieldMapper Feedback Recorder

Persists human accept/reject decisions on proposed mappings. Records are
append-only; nothing in the scoring path reads them back.

Stores:
- Sanity content lake (one transaction of ``create`` mutations over httpx)
- Redis list (RPUSH of JSON records)
- In-memory list (tests and local runs)
"""

from __future__ import annotations

import json
import os
import uuid
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

import httpx
import redis
import structlog

from fieldmapper.agents.mapping_models import FeedbackEntry, FeedbackOutcome
from fieldmapper.core.exceptions import FeedbackPersistenceError
from fieldmapper.core.metrics import track_feedback

logger = structlog.get_logger(__name__)

FEEDBACK_DOCUMENT_TYPE = "aiMappingFeedback"
MISSING_CONFIG_REASON = "Missing SANITY config"

SANITY_TOKEN_VARS = ("SANITY_AI_FEEDBACK_TOKEN", "SANITY_API_TOKEN", "SANITY_STUDIO_API_TOKEN")
SANITY_PROJECT_VARS = ("SANITY_STUDIO_PROJECT_ID", "SANITY_PROJECT_ID", "SANITY_PROJECT")
SANITY_DATASET_VARS = ("SANITY_STUDIO_DATASET", "SANITY_DATASET")


def _first_env(names: Sequence[str]) -> str | None:
    for name in names:
        if value := os.environ.get(name):
            return value
    return None


# -----------------------------------------------------------------------------
# Stores
# -----------------------------------------------------------------------------


class FeedbackStore:
    """Base class for feedback stores."""

    name: str = "base"

    def save(self, records: list[dict[str, Any]]) -> int:
        """Persist a batch atomically where the backend allows; return the stored count."""
        raise NotImplementedError


class SanityFeedbackStore(FeedbackStore):
    """Writes feedback documents through the Sanity mutate API."""

    name = "sanity"

    def __init__(
        self,
        project_id: str,
        dataset: str,
        token: str,
        api_version: str = "2024-10-01",
        client: httpx.Client | None = None,
    ):
        self.project_id = project_id
        self.dataset = dataset
        self.api_version = api_version
        self.client = client or httpx.Client(timeout=10.0)
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    @property
    def mutate_url(self) -> str:
        return (
            f"https://{self.project_id}.api.sanity.io/v{self.api_version}"
            f"/data/mutate/{self.dataset}"
        )

    def save(self, records: list[dict[str, Any]]) -> int:
        try:
            response = self.client.post(
                self.mutate_url,
                params={"visibility": "async"},
                headers=self._headers,
                json={"mutations": [{"create": record} for record in records]},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise FeedbackPersistenceError(self.name, str(e)) from e
        return len(records)


class RedisFeedbackStore(FeedbackStore):
    """Appends feedback records to a Redis list."""

    name = "redis"

    def __init__(self, client: redis.Redis, key: str = "fieldmapper:feedback"):
        self.client = client
        self.key = key

    @classmethod
    def from_url(cls, url: str, key: str = "fieldmapper:feedback") -> RedisFeedbackStore:
        return cls(redis.Redis.from_url(url, decode_responses=True), key=key)

    def save(self, records: list[dict[str, Any]]) -> int:
        try:
            self.client.rpush(self.key, *(json.dumps(record) for record in records))
        except redis.RedisError as e:
            raise FeedbackPersistenceError(self.name, str(e)) from e
        return len(records)


class MemoryFeedbackStore(FeedbackStore):
    """Keeps records in process memory."""

    name = "memory"

    def __init__(self):
        self.records: list[dict[str, Any]] = []

    def save(self, records: list[dict[str, Any]]) -> int:
        self.records.extend(records)
        return len(records)


def create_feedback_store() -> FeedbackStore | None:
    """
    Build the store configured in the environment.

    Sanity wins when token, project and dataset are all set; otherwise
    FIELDMAPPER_FEEDBACK_REDIS_URL selects Redis. Returns None when neither
    is configured.
    """
    token = _first_env(SANITY_TOKEN_VARS)
    project_id = _first_env(SANITY_PROJECT_VARS)
    dataset = _first_env(SANITY_DATASET_VARS)
    if token and project_id and dataset:
        return SanityFeedbackStore(project_id=project_id, dataset=dataset, token=token)

    redis_url = os.environ.get("FIELDMAPPER_FEEDBACK_REDIS_URL")
    if redis_url:
        return RedisFeedbackStore.from_url(redis_url)

    return None


# -----------------------------------------------------------------------------
# Recorder
# -----------------------------------------------------------------------------


class FeedbackRecorder:
    """Turns feedback entries into stored records."""

    def __init__(self, store: FeedbackStore | None = None):
        self.store = store

    def build_records(
        self,
        entries: Sequence[FeedbackEntry],
        request_id: str | None = None,
        strategy: str | None = None,
        model: str | None = None,
    ) -> list[dict[str, Any]]:
        """
        Build one stored record per entry.

        Entry-level request id, strategy and model win over the request-level
        values; gaps are filled with a fresh id, "ai" and "unknown".
        """
        created_at = datetime.now(timezone.utc).isoformat()
        records = []
        for entry in entries:
            record = {
                "_id": str(uuid.uuid4()),
                "_type": FEEDBACK_DOCUMENT_TYPE,
                "requestId": entry.request_id or request_id or str(uuid.uuid4()),
                "strategy": entry.strategy or strategy or "ai",
                "model": entry.model or model or "unknown",
                "source": entry.source,
                "target": entry.target,
                "accepted": entry.accepted,
                "confidence": entry.confidence,
                "targetDocument": entry.target_document,
                "rationale": list(entry.rationale) if entry.rationale is not None else None,
                "createdAt": created_at,
            }
            records.append({k: v for k, v in record.items() if v is not None})
        return records

    def record(
        self,
        entries: Sequence[FeedbackEntry],
        request_id: str | None = None,
        strategy: str | None = None,
        model: str | None = None,
    ) -> FeedbackOutcome:
        """
        Persist a feedback batch.

        Returns:
            FeedbackOutcome; ``stored`` is False when no store is configured

        Raises:
            FeedbackPersistenceError: the store failed
        """
        if self.store is None:
            logger.warning("feedback_store_not_configured", entry_count=len(entries))
            track_feedback(len(entries), "not_configured")
            return FeedbackOutcome(stored=False, reason=MISSING_CONFIG_REASON)

        records = self.build_records(entries, request_id=request_id, strategy=strategy, model=model)
        try:
            count = self.store.save(records)
        except FeedbackPersistenceError:
            track_feedback(len(entries), "failed")
            raise

        track_feedback(count, "stored")
        logger.info("feedback_persisted", store=self.store.name, count=count)
        return FeedbackOutcome(stored=True, count=count, store=self.store.name)
