"""
FieldMapper Candidate Ranker

Composes the name, type, semantic and structural scorers into one weighted
confidence per (source, target) pair, assigns a confidence tier and explains
the score with a short rationale.
"""

from __future__ import annotations

import math
from collections.abc import Sequence

import structlog
from pydantic import BaseModel, ConfigDict, Field

from fieldmapper.agents.field_scoring import (
    name_variants,
    semantic_overlap,
    similarity,
    structural_score,
    type_compatibility,
)
from fieldmapper.agents.mapping_models import (
    ConfidenceBreakdown,
    ConfidenceStatus,
    MappingCandidate,
    MappingSuggestion,
    SourceField,
    TargetField,
)

logger = structlog.get_logger(__name__)

HIGH_CONFIDENCE = 0.8
MEDIUM_CONFIDENCE = 0.5

RULE_BASED_FALLBACK = "rule-based fallback"


class ScoringWeights(BaseModel):
    """Relative weight of each scoring factor in the total."""

    model_config = ConfigDict(frozen=True)

    name: float = Field(default=0.4, ge=0.0)
    type: float = Field(default=0.3, ge=0.0)
    semantic: float = Field(default=0.2, ge=0.0)
    structural: float = Field(default=0.1, ge=0.0)


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clamp into [low, high]; NaN collapses to ``low``."""
    if math.isnan(value):
        return low
    return max(low, min(high, value))


def classify_confidence(total: float) -> ConfidenceStatus:
    """Map a total onto its tier. Lower bounds are inclusive."""
    if total >= HIGH_CONFIDENCE:
        return ConfidenceStatus.HIGH
    if total >= MEDIUM_CONFIDENCE:
        return ConfidenceStatus.MEDIUM
    return ConfidenceStatus.LOW


_RATIONALE_CHECKS: tuple[tuple[str, float, str], ...] = (
    ("name", 0.7, "strong name match"),
    ("type", 0.7, "type compatible"),
    ("semantic", 0.5, "semantic tags aligned"),
    ("structural", 0.7, "similar depth"),
)


def build_rationale(breakdown: ConfidenceBreakdown) -> tuple[str, ...]:
    """Explain a breakdown. Never empty."""
    reasons = tuple(
        reason
        for factor, threshold, reason in _RATIONALE_CHECKS
        if getattr(breakdown, factor) >= threshold
    )
    return reasons or (RULE_BASED_FALLBACK,)


def name_score(
    source_name: str,
    target_name: str,
    source_variants: frozenset[str] | None = None,
    target_variants: frozenset[str] | None = None,
) -> float:
    """
    Best similarity across all naming-convention variants of both names.

    Callers scoring many pairs pass the variants they already built.
    """
    if source_variants is None:
        source_variants = name_variants(source_name)
    if target_variants is None:
        target_variants = name_variants(target_name)

    best = similarity(source_name, target_name)
    for variant in source_variants:
        best = max(best, similarity(variant, target_name))
        for target_variant in target_variants:
            best = max(best, similarity(variant, target_variant))
    return best


class CandidateRanker:
    """
    Rule-based scorer for source/target field pairs.

    Emits one candidate per target, in the order the targets were given.
    Callers that need a ranking sort by ``breakdown.total`` themselves.
    """

    def __init__(self, weights: ScoringWeights | None = None):
        """
        Initialize the ranker.

        Args:
            weights: Factor weights (defaults 0.4 / 0.3 / 0.2 / 0.1)
        """
        self.weights = weights or ScoringWeights()

    def breakdown(
        self,
        source: SourceField,
        target: TargetField,
        source_variants: frozenset[str] | None = None,
        target_variants: frozenset[str] | None = None,
    ) -> ConfidenceBreakdown:
        """Compute the rounded per-factor scores and weighted total."""
        scores = {
            "name": name_score(source.name, target.name, source_variants, target_variants),
            "type": type_compatibility(source.type, target.type),
            "semantic": semantic_overlap(source.semantic_tags, target.semantic_tags),
            "structural": structural_score(source, target),
        }
        total = sum(getattr(self.weights, factor) * value for factor, value in scores.items())

        return ConfidenceBreakdown(
            **{factor: round(clamp(value), 3) for factor, value in scores.items()},
            total=round(clamp(total), 3),
        )

    def score(
        self,
        source: SourceField,
        target: TargetField,
        source_variants: frozenset[str] | None = None,
        target_variants: frozenset[str] | None = None,
    ) -> MappingCandidate:
        """Score a single pair."""
        breakdown = self.breakdown(source, target, source_variants, target_variants)
        return MappingCandidate(
            target=target,
            breakdown=breakdown,
            status=classify_confidence(breakdown.total),
            rationale=list(build_rationale(breakdown)),
        )

    def rank(
        self,
        source: SourceField,
        targets: Sequence[TargetField],
        target_variants: Sequence[frozenset[str]] | None = None,
    ) -> list[MappingCandidate]:
        """Score one source field against every target."""
        if target_variants is None:
            target_variants = [name_variants(target.name) for target in targets]
        source_variants = name_variants(source.name)
        return [
            self.score(source, target, source_variants, variants)
            for target, variants in zip(targets, target_variants)
        ]

    def rank_all(
        self,
        sources: Sequence[SourceField],
        targets: Sequence[TargetField],
    ) -> list[MappingSuggestion]:
        """Full cross product: one suggestion per source, one candidate per target."""
        target_variants = [name_variants(target.name) for target in targets]
        suggestions = [
            MappingSuggestion(source=source, suggestions=self.rank(source, targets, target_variants))
            for source in sources
        ]

        logger.debug(
            "rule_based_ranking_complete",
            source_count=len(sources),
            target_count=len(targets),
        )

        return suggestions
