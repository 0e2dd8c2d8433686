"""
FieldMapper data model.

Request-scoped entities exchanged between the mapping agents and the HTTP
layer. JSON payloads use camelCase keys (``semanticTags``, ``documentType``,
``requestId``); the Python attributes are snake_case. Models accept either
spelling on input and serialise by alias.

Semantic tags seen in practice: monetary, temporal, identifier, contact,
location, status, quantity, metadata, boolean, text. Any string is accepted.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialising with camelCase aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_json_dict(self) -> dict[str, Any]:
        """Dump to a JSON-compatible dict keyed by alias."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# -----------------------------------------------------------------------------
# Schema Fields
# -----------------------------------------------------------------------------


def null_as_empty(value: Any) -> Any:
    """Treat an explicit null tag list as no tags."""
    return [] if value is None else value


SemanticTags = Annotated[list[str], BeforeValidator(null_as_empty)]


class SourceField(CamelModel):
    """One field of the external/source schema."""

    name: str = Field(..., description="Field name as it appears in the source")
    type: str = Field(..., description="Declared field type")
    path: str | None = Field(default=None, description="Dotted path in the source")
    description: str | None = Field(default=None, description="Free-text description")
    semantic_tags: SemanticTags = Field(
        default_factory=list, description="Domain classification labels"
    )

    @property
    def depth(self) -> int:
        """Dot-segment count of the path, or of the name when no path is set."""
        return len((self.path or self.name).split("."))


class TargetField(CamelModel):
    """One field of the destination schema, identified by its dotted path."""

    name: str = Field(..., description="Field name")
    path: str = Field(..., description="Dotted path, authoritative for identity")
    type: str = Field(..., description="Declared field type")
    document_type: str = Field(..., description="Owning document type")
    semantic_tags: SemanticTags = Field(
        default_factory=list, description="Domain classification labels"
    )
    depth: int | float | None = Field(default=None, description="Explicit nesting depth")

    @property
    def resolved_depth(self) -> float:
        """Declared depth, or the dot-segment count of ``path``."""
        if self.depth is not None:
            return self.depth
        return len(self.path.split("."))


# -----------------------------------------------------------------------------
# Scoring Output
# -----------------------------------------------------------------------------


class ConfidenceStatus(str, Enum):
    """Discrete confidence tier derived from a breakdown total."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ConfidenceBreakdown(CamelModel):
    """Per-factor scores and their weighted total, all in [0, 1]."""

    name: float = Field(..., ge=0.0, le=1.0)
    type: float = Field(..., ge=0.0, le=1.0)
    semantic: float = Field(..., ge=0.0, le=1.0)
    structural: float = Field(..., ge=0.0, le=1.0)
    total: float = Field(..., ge=0.0, le=1.0)


class MappingCandidate(CamelModel):
    """One scored pairing between an implicit source field and a target."""

    target: TargetField
    breakdown: ConfidenceBreakdown
    status: ConfidenceStatus
    rationale: list[str] = Field(..., min_length=1)


class MappingSuggestion(CamelModel):
    """A source field and the candidates proposed for it."""

    source: SourceField
    suggestions: list[MappingCandidate] = Field(default_factory=list)


# -----------------------------------------------------------------------------
# External Inputs
# -----------------------------------------------------------------------------


class AiMapping(CamelModel):
    """Untrusted mapping proposed by a language model."""

    source: str
    target: str = Field(..., description="Free-text reference to a target field")
    confidence: float | None = Field(default=None, description="0-100 scale")
    rationale: list[str] | None = None

    @field_validator("confidence", mode="before")
    @classmethod
    def numeric_confidence(cls, value: Any) -> Any:
        """Only JSON numbers count; anything else is left unscored."""
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return value


class FeedbackEntry(CamelModel):
    """A human accept/reject decision on a proposed mapping."""

    model_config = ConfigDict(frozen=True)

    source: str
    target: str
    accepted: bool
    confidence: float | None = None
    strategy: str | None = None
    request_id: str | None = None
    model: str | None = None
    target_document: str | None = None
    rationale: list[str] | None = None


class MappingRequest(CamelModel):
    """Inbound body of the suggestion endpoint."""

    source_fields: list[SourceField] = Field(default_factory=list)
    target_fields: list[TargetField] = Field(default_factory=list)
    existing_mappings: dict[str, str] | None = None
    feedback: list[FeedbackEntry] = Field(default_factory=list)
    request_id: str | None = None
    strategy: str | None = None
    model: str | None = None


# -----------------------------------------------------------------------------
# Responses
# -----------------------------------------------------------------------------


class MappingStrategy(str, Enum):
    """Which path produced the suggestions."""

    AI = "ai"
    RULE_BASED = "rule-based"


class MappingMeta(CamelModel):
    """Diagnostic metadata attached to every scoring response."""

    source_count: int
    target_count: int
    strategy: MappingStrategy
    message: str
    model: str
    request_id: str
    prompt: str


class MappingResponse(CamelModel):
    """Scoring-path response."""

    suggestions: list[MappingSuggestion]
    meta: MappingMeta


class FeedbackOutcome(CamelModel):
    """What the feedback store reported for one batch."""

    stored: bool
    count: int | None = None
    reason: str | None = None
    store: str | None = None


class FeedbackResponse(CamelModel):
    """Feedback-path response."""

    status: str = "ok"
    feedback_stored: bool
    feedback_count: int
    reason: str | None = None
    meta: FeedbackOutcome
