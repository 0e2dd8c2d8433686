"""
FieldMapper AI Suggestion Merger

Reconciles approximate mappings proposed by a language model with the
authoritative target-field list:

- Resolve each free-text target reference (exact path, exact name, nearest name)
- Scale or backfill the confidence
- Accumulate candidates per source field
- Fall back to rule-based ranking for sources the model did not cover
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from typing import Literal, Union

import structlog
from pydantic import BaseModel

from fieldmapper.agents.candidate_ranker import (
    CandidateRanker,
    classify_confidence,
    clamp,
)
from fieldmapper.agents.field_scoring import similarity
from fieldmapper.agents.mapping_models import (
    AiMapping,
    ConfidenceBreakdown,
    MappingCandidate,
    MappingSuggestion,
    SourceField,
    TargetField,
)

logger = structlog.get_logger(__name__)

AI_ASSISTED = "ai-assisted"
NEUTRAL_SUB_SCORE = 0.5
DEFAULT_AI_CONFIDENCE = 0.5


# -----------------------------------------------------------------------------
# Target Resolution
# -----------------------------------------------------------------------------


class ExactMatch(BaseModel):
    """Reference equals a target's path or name."""

    kind: Literal["exact"] = "exact"
    target: TargetField
    matched_on: Literal["path", "name"]


class FuzzyMatch(BaseModel):
    """Nearest target by name similarity, however weak."""

    kind: Literal["fuzzy"] = "fuzzy"
    target: TargetField
    score: float


class Unresolved(BaseModel):
    """No target to resolve against."""

    kind: Literal["unresolved"] = "unresolved"
    reference: str


TargetResolution = Union[ExactMatch, FuzzyMatch, Unresolved]


def resolve_target(reference: str, targets: Sequence[TargetField]) -> TargetResolution:
    """
    Resolve a model-supplied target reference.

    Exact path match wins, then exact name match, then the target whose name
    is most similar to the reference. Ties keep the earliest target. Only an
    empty target list is unresolvable.
    """
    for target in targets:
        if target.path == reference:
            return ExactMatch(target=target, matched_on="path")
    for target in targets:
        if target.name == reference:
            return ExactMatch(target=target, matched_on="name")

    best: FuzzyMatch | None = None
    for target in targets:
        score = similarity(reference, target.name)
        if best is None or score > best.score:
            best = FuzzyMatch(target=target, score=score)

    return best or Unresolved(reference=reference)


# -----------------------------------------------------------------------------
# Merger
# -----------------------------------------------------------------------------


class AiSuggestionMerger:
    """Turns model output into per-source suggestions."""

    def __init__(self, ranker: CandidateRanker | None = None):
        self.ranker = ranker or CandidateRanker()

    def confidence_for(self, mapping: AiMapping, target: TargetField) -> float:
        """Model confidence scaled to [0, 1], or a rule-based stand-in."""
        if mapping.confidence is not None:
            return clamp(mapping.confidence, 0.0, 100.0) / 100.0

        stand_in = self.ranker.rank(SourceField(name=mapping.source, type="string"), [target])
        if not stand_in:
            return DEFAULT_AI_CONFIDENCE
        return stand_in[0].breakdown.total

    def to_candidate(self, mapping: AiMapping, target: TargetField) -> MappingCandidate:
        """Build a candidate with a neutral placeholder for the unexposed sub-scores."""
        total = round(clamp(self.confidence_for(mapping, target)), 3)
        return MappingCandidate(
            target=target,
            breakdown=ConfidenceBreakdown(
                name=total,
                type=NEUTRAL_SUB_SCORE,
                semantic=NEUTRAL_SUB_SCORE,
                structural=NEUTRAL_SUB_SCORE,
                total=total,
            ),
            status=classify_confidence(total),
            rationale=list(mapping.rationale) if mapping.rationale else [AI_ASSISTED],
        )

    def merge(
        self,
        ai_mappings: Sequence[AiMapping],
        sources: Sequence[SourceField],
        targets: Sequence[TargetField],
    ) -> list[MappingSuggestion]:
        """
        Merge model mappings with the request's fields.

        Args:
            ai_mappings: Mappings parsed from the model response
            sources: Source fields from the request
            targets: Target fields from the request

        Returns:
            One suggestion per source, AI candidates where the model proposed
            any and a full rule-based ranking otherwise
        """
        by_source: dict[str, list[MappingCandidate]] = defaultdict(list)
        exact = fuzzy = dropped = 0

        for mapping in ai_mappings:
            resolution = resolve_target(mapping.target, targets)
            if isinstance(resolution, Unresolved):
                dropped += 1
                logger.debug("ai_mapping_dropped", source=mapping.source, target=mapping.target)
                continue
            if isinstance(resolution, ExactMatch):
                exact += 1
            else:
                fuzzy += 1
            by_source[mapping.source].append(self.to_candidate(mapping, resolution.target))

        suggestions = []
        rule_based = 0
        for source in sources:
            candidates = by_source.get(source.name)
            if not candidates:
                rule_based += 1
                candidates = self.ranker.rank(source, targets)
            suggestions.append(MappingSuggestion(source=source, suggestions=candidates))

        logger.info(
            "ai_suggestions_merged",
            ai_mapping_count=len(ai_mappings),
            exact_matches=exact,
            fuzzy_matches=fuzzy,
            dropped=dropped,
            rule_based_sources=rule_based,
        )

        return suggestions
