"""
FieldMapper Scoring Primitives

Leaf scorers used by the candidate ranker:

- Name normalisation into comparable lexical variants
- Case-insensitive Levenshtein similarity
- Declared-type compatibility lookup
- Semantic tag overlap
- Nesting-depth (structural) distance

All functions are pure and deterministic.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from rapidfuzz.distance import Levenshtein

from fieldmapper.agents.mapping_models import SourceField, TargetField

_CAMEL_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+", re.IGNORECASE)


# -----------------------------------------------------------------------------
# Name Normalizer
# -----------------------------------------------------------------------------


def normalize_name(name: str) -> str:
    """Split camelCase and separators into lowercase space-delimited words."""
    spaced = _CAMEL_BOUNDARY.sub(r"\1 \2", name)
    return _NON_ALNUM.sub(" ", spaced).strip().lower()


def name_variants(name: str) -> frozenset[str]:
    """
    Build the comparison variants of a field name.

    Returns the lowercase original, the normalised form and its snake, kebab
    and concatenated joins. Empty variants are dropped.

    Example:
        >>> sorted(name_variants("customerEmail"))
        ['customer email', 'customer-email', 'customer_email', 'customeremail']
    """
    normalized = normalize_name(name)
    parts = normalized.split()
    variants = (
        name.lower(),
        normalized,
        "_".join(parts),
        "-".join(parts),
        "".join(parts),
    )
    return frozenset(v for v in variants if v)


# -----------------------------------------------------------------------------
# String Similarity Engine
# -----------------------------------------------------------------------------


def levenshtein_distance(a: str, b: str) -> int:
    """Case-insensitive edit distance with unit insert/delete/substitute costs."""
    return Levenshtein.distance(a.lower(), b.lower())


def similarity(a: str, b: str) -> float:
    """
    Normalised edit-distance similarity in [0, 1].

    ``1 - distance / max(len(a), len(b))``; two empty strings are identical.
    """
    a = a.lower()
    b = b.lower()
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / longest


# -----------------------------------------------------------------------------
# Type Compatibility Table
# -----------------------------------------------------------------------------

TEXTUAL_TYPES = frozenset({"text", "slug", "url"})
NUMERIC_TYPES = frozenset({"number", "integer"})
TEMPORAL_TYPES = frozenset({"datetime", "date"})

BASELINE_TYPE_SCORE = 0.25


def type_compatibility(source_type: str, target_type: str) -> float:
    """How interchangeable two declared types are. Unknown pairs stay weakly eligible."""
    if source_type == target_type:
        return 1.0
    if source_type == "string" and target_type in TEXTUAL_TYPES:
        return 0.7
    if target_type == "string" and source_type in TEXTUAL_TYPES:
        return 0.7
    if source_type in NUMERIC_TYPES and target_type in NUMERIC_TYPES:
        return 0.9
    if source_type in TEMPORAL_TYPES and target_type in TEMPORAL_TYPES:
        return 0.85
    if source_type == "array" and target_type == "array":
        return 0.8
    return BASELINE_TYPE_SCORE


# -----------------------------------------------------------------------------
# Semantic / Structural Scorers
# -----------------------------------------------------------------------------


def semantic_overlap(source_tags: Iterable[str], target_tags: Iterable[str]) -> float:
    """Shared tags over the larger tag set; 0 when both are empty."""
    source_set = set(source_tags)
    target_set = set(target_tags)
    shared = len(source_set & target_set)
    return shared / max(len(source_set), len(target_set), 1)


DEPTH_PENALTY = 0.15


def structural_score(source: SourceField, target: TargetField) -> float:
    """Penalise each level of nesting difference by ``DEPTH_PENALTY``."""
    gap = abs(source.depth - target.resolved_depth)
    return max(0.0, 1.0 - DEPTH_PENALTY * gap)
