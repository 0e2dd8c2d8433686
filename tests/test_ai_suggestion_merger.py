"""
Unit tests for merging model output (ai_suggestion_merger.py)
"""

import pytest
from fieldmapper.agents.ai_suggestion_merger import (
    AI_ASSISTED,
    AiSuggestionMerger,
    ExactMatch,
    FuzzyMatch,
    Unresolved,
    resolve_target,
)
from fieldmapper.agents.mapping_models import (
    AiMapping,
    ConfidenceStatus,
    SourceField,
    TargetField,
)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def targets():
    """Target fields with one name reused at two paths."""
    return [
        TargetField(name="email", path="billTo.email", type="string", document_type="order"),
        TargetField(name="email", path="shipTo.email", type="string", document_type="order"),
        TargetField(name="total", path="totals.total", type="number", document_type="order"),
    ]


@pytest.fixture
def sources():
    return [
        SourceField(name="customer_email", type="string"),
        SourceField(name="grand_total", type="number"),
    ]


@pytest.fixture
def merger():
    return AiSuggestionMerger()


# =============================================================================
# Target Resolution Tests
# =============================================================================

class TestResolveTarget:
    """Tests for target reference resolution."""

    def test_exact_path(self, targets):
        resolution = resolve_target("shipTo.email", targets)
        assert isinstance(resolution, ExactMatch)
        assert resolution.matched_on == "path"
        assert resolution.target.path == "shipTo.email"

    def test_exact_name_takes_first(self, targets):
        """Test a bare name resolves to the first target carrying it."""
        resolution = resolve_target("email", targets)
        assert isinstance(resolution, ExactMatch)
        assert resolution.matched_on == "name"
        assert resolution.target.path == "billTo.email"

    def test_fuzzy_nearest_name(self, targets):
        resolution = resolve_target("totl", targets)
        assert isinstance(resolution, FuzzyMatch)
        assert resolution.target.path == "totals.total"
        assert resolution.score == pytest.approx(0.8)

    def test_fuzzy_always_resolves(self, targets):
        """Test even an unrelated reference snaps to some target."""
        resolution = resolve_target("zzzzzzzz", targets)
        assert isinstance(resolution, FuzzyMatch)

    def test_no_targets(self):
        resolution = resolve_target("email", [])
        assert isinstance(resolution, Unresolved)
        assert resolution.reference == "email"


# =============================================================================
# Merger Tests
# =============================================================================

class TestAiSuggestionMerger:
    """Tests for AiSuggestionMerger."""

    def test_confidence_scaled(self, merger, targets):
        """Test 0-100 model confidence becomes a 0-1 total."""
        mapping = AiMapping(source="customer_email", target="billTo.email", confidence=92)

        candidate = merger.to_candidate(mapping, targets[0])

        assert candidate.breakdown.total == pytest.approx(0.92)
        assert candidate.breakdown.name == pytest.approx(0.92)
        assert candidate.breakdown.type == 0.5
        assert candidate.breakdown.semantic == 0.5
        assert candidate.breakdown.structural == 0.5
        assert candidate.status == ConfidenceStatus.HIGH

    def test_confidence_clamped(self, merger, targets):
        high = AiMapping(source="a", target="b", confidence=250)
        low = AiMapping(source="a", target="b", confidence=-10)

        assert merger.to_candidate(high, targets[0]).breakdown.total == 1.0
        assert merger.to_candidate(low, targets[0]).breakdown.total == 0.0

    def test_missing_confidence_uses_rule_based_stand_in(self, merger, targets):
        """Test a missing confidence is backfilled from a rule-based score."""
        mapping = AiMapping(source="email", target="billTo.email")

        candidate = merger.to_candidate(mapping, targets[0])

        # name 1.0, type 1.0, semantic 0, structural 0.85
        assert candidate.breakdown.total == pytest.approx(0.785)
        assert candidate.status == ConfidenceStatus.MEDIUM

    @pytest.mark.parametrize("confidence", ["7", "95", True, [90], {"value": 90}])
    def test_non_numeric_confidence_uses_stand_in(self, merger, confidence):
        """Test only JSON numbers are read as model confidence."""
        target = TargetField(name="sku", path="sku", type="string", document_type="product")
        mapping = AiMapping.model_validate({"source": "sku", "target": "sku", "confidence": confidence})

        candidate = merger.to_candidate(mapping, target)

        assert mapping.confidence is None
        # name 1.0, type 1.0, semantic 0, structural 1.0
        assert candidate.breakdown.total == pytest.approx(0.8)

    def test_rationale_default(self, merger, targets):
        mapping = AiMapping(source="a", target="b", confidence=50)
        assert merger.to_candidate(mapping, targets[0]).rationale == [AI_ASSISTED]

    def test_rationale_from_model(self, merger, targets):
        mapping = AiMapping(source="a", target="b", confidence=50, rationale=["same meaning"])
        assert merger.to_candidate(mapping, targets[0]).rationale == ["same meaning"]

    def test_merge_groups_by_source(self, merger, sources, targets):
        """Test several model mappings for one source accumulate."""
        mappings = [
            AiMapping(source="customer_email", target="billTo.email", confidence=90),
            AiMapping(source="customer_email", target="shipTo.email", confidence=60),
            AiMapping(source="grand_total", target="totals.total", confidence=85),
        ]

        suggestions = merger.merge(mappings, sources, targets)

        assert [s.source.name for s in suggestions] == ["customer_email", "grand_total"]
        assert [c.target.path for c in suggestions[0].suggestions] == [
            "billTo.email",
            "shipTo.email",
        ]
        assert [c.status for c in suggestions[0].suggestions] == [
            ConfidenceStatus.HIGH,
            ConfidenceStatus.MEDIUM,
        ]
        assert len(suggestions[1].suggestions) == 1

    def test_uncovered_source_gets_rule_based(self, merger, sources, targets):
        """Test a source the model skipped is ranked against every target."""
        mappings = [AiMapping(source="customer_email", target="billTo.email", confidence=90)]

        suggestions = merger.merge(mappings, sources, targets)

        fallback = suggestions[1]
        assert fallback.source.name == "grand_total"
        assert len(fallback.suggestions) == len(targets)
        assert AI_ASSISTED not in fallback.suggestions[0].rationale

    def test_unknown_source_ignored(self, merger, sources, targets):
        """Test mappings for a source not in the request are not emitted."""
        mappings = [AiMapping(source="phantom", target="billTo.email", confidence=99)]

        suggestions = merger.merge(mappings, sources, targets)

        assert [s.source.name for s in suggestions] == ["customer_email", "grand_total"]
        assert all(len(s.suggestions) == len(targets) for s in suggestions)

    def test_fuzzy_target_snaps_to_known_field(self, merger, sources, targets):
        """Test an approximate reference resolves to a real target."""
        mappings = [AiMapping(source="grand_total", target="order total", confidence=70)]

        suggestions = merger.merge(mappings, sources, targets)

        assert suggestions[1].suggestions[0].target.path == "totals.total"

    def test_empty_ai_output(self, merger, sources, targets):
        suggestions = merger.merge([], sources, targets)
        assert all(len(s.suggestions) == len(targets) for s in suggestions)
