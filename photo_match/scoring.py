"""
Weighted multi-signal similarity scoring.

Combines up to five independent sub-scores, each in [0, 1], into a single
composite score:

    embedding       cosine similarity of perceptual embeddings (clamped)
    histogram       1 - L1 / 2 between 8-bin color histograms
    aspect_ratio    1 - min(|ratio_a - ratio_b| / 2, 1)
    resolution      min(w_b / w_a, h_b / h_a), asymmetric on purpose
    color_distance  1 - min(|avg_a - avg_b| / normalizer, 1)

Weights are configuration, not constants: the same scorer serves the
"find the original of this copy" use case (DUPLICATE_WEIGHTS) and the
"find visually similar photos" use case (SIMILAR_WEIGHTS).
"""

import os
import math
import numbers
import logging
from dataclasses import dataclass, field, fields
from typing import Iterable, List, Optional, Tuple

import numpy as np

from .errors import InvalidWeights
from .features import ImageDescriptor
from .histograms import (
    COLOR_DISTANCE_NORMALIZER, histogram_similarity, color_distance_score,
)

logger = logging.getLogger(__name__)

WEIGHT_SUM_TOLERANCE = 1e-6

SUBSCORES = ("embedding", "histogram", "aspect_ratio", "resolution", "color_distance")


@dataclass(frozen=True)
class WeightConfig:
    """
    Per-sub-score weights. Must be non-negative and sum to 1.

    Raises:
        InvalidWeights: On construction with an invalid combination.
    """

    embedding: float = 0.0
    histogram: float = 0.0
    aspect_ratio: float = 0.0
    resolution: float = 0.0
    color_distance: float = 0.0
    color_distance_normalizer: float = field(default=COLOR_DISTANCE_NORMALIZER)

    def __post_init__(self):
        values = {}
        for name, value in self.as_dict().items():
            if not isinstance(value, numbers.Real) or math.isnan(value):
                raise InvalidWeights(f"Weight {name!r} is not a number: {value!r}")
            if value < 0:
                raise InvalidWeights(f"Weight {name!r} is negative: {value}")
            values[name] = float(value)
            object.__setattr__(self, name, values[name])

        total = sum(values.values())
        if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
            raise InvalidWeights(f"Weights must sum to 1.0, got {total:.6f}")

        normalizer = self.color_distance_normalizer
        if not isinstance(normalizer, numbers.Real) or not normalizer > 0:
            raise InvalidWeights("color_distance_normalizer must be positive")
        object.__setattr__(self, "color_distance_normalizer", float(normalizer))

    @classmethod
    def normalized(cls, color_distance_normalizer: float = None, **weights):
        """Build a config from arbitrary non-negative weights, scaled to sum to 1."""
        unknown = set(weights) - set(SUBSCORES)
        if unknown:
            raise InvalidWeights(f"Unknown weights: {sorted(unknown)}")
        total = sum(weights.values())
        if total <= 0:
            raise InvalidWeights("At least one weight must be positive")
        scaled = {k: v / total for k, v in weights.items()}
        if color_distance_normalizer is not None:
            scaled["color_distance_normalizer"] = color_distance_normalizer
        return cls(**scaled)

    def as_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)
                if f.name in SUBSCORES}

    @property
    def is_symmetric(self) -> bool:
        return self.resolution == 0


# "Find likely-identical or near-identical photos." Tune via environment.
DUPLICATE_WEIGHTS = WeightConfig.normalized(
    embedding=float(os.environ.get("SCORE_EMBEDDING_W", "0.4")),
    histogram=float(os.environ.get("SCORE_HISTOGRAM_W", "0.3")),
    resolution=float(os.environ.get("SCORE_RESOLUTION_W", "0.15")),
    color_distance=float(os.environ.get("SCORE_COLOR_W", "0.15")),
)

# "Find visually similar but not necessarily duplicate photos."
SIMILAR_WEIGHTS = WeightConfig(
    color_distance=0.5,
    histogram=0.3,
    aspect_ratio=0.2,
)


def cosine_similarity(vec_a: np.ndarray, vec_b: np.ndarray) -> float:
    """
    Cosine similarity clamped to [0, 1].

    Length mismatches score 0. A zero vector has no direction: two zero
    vectors (e.g. thumbnails of flat images) score 1, zero against
    non-zero scores 0.
    """
    if vec_a is None or vec_b is None or vec_a.shape != vec_b.shape:
        logger.warning("Embedding dimension mismatch, scoring 0")
        return 0.0

    a = vec_a.astype(np.float64)
    b = vec_b.astype(np.float64)
    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 1.0 if norm_a == norm_b else 0.0
    return float(min(1.0, max(0.0, np.dot(a, b) / (norm_a * norm_b))))


def aspect_ratio_similarity(ratio_a: float, ratio_b: float) -> float:
    return 1.0 - min(abs(ratio_a - ratio_b) / 2.0, 1.0)


def resolution_score(a: ImageDescriptor, b: ImageDescriptor) -> float:
    """
    How well b covers a's resolution: 1.0 when b is at least as large in
    both dimensions. `a` is the possibly-resized copy, `b` the candidate
    original.
    """
    ratio = min(b.width / a.width, b.height / a.height)
    return float(min(1.0, max(0.0, ratio)))


def compute_subscores(a: ImageDescriptor,
                      b: ImageDescriptor,
                      weights: WeightConfig) -> dict:
    """
    Compute every sub-score with a non-zero weight.

    The embedding sub-score is omitted when either descriptor has no
    embedding (degraded extraction).
    """
    scores = {}
    if weights.embedding > 0 and a.has_embedding and b.has_embedding:
        scores["embedding"] = cosine_similarity(a.embedding, b.embedding)
    if weights.histogram > 0:
        scores["histogram"] = histogram_similarity(a.histogram, b.histogram)
    if weights.aspect_ratio > 0:
        scores["aspect_ratio"] = aspect_ratio_similarity(a.aspect_ratio, b.aspect_ratio)
    if weights.resolution > 0:
        scores["resolution"] = resolution_score(a, b)
    if weights.color_distance > 0:
        scores["color_distance"] = color_distance_score(
            a.average_color, b.average_color, weights.color_distance_normalizer
        )
    return scores


def compute_similarity(a: ImageDescriptor,
                       b: ImageDescriptor,
                       weights: WeightConfig) -> float:
    """
    Weighted composite similarity in [0, 1].

    Sub-scores that could not be computed (missing embedding) get weight
    0 and the remaining weights are rescaled, so two identical images
    still score 1.0 after a degraded extraction.

    Args:
        a: Target descriptor.
        b: Candidate descriptor.
        weights: Validated WeightConfig.

    Returns:
        Composite score in [0, 1]; 0.0 if no weighted sub-score applies.
    """
    subscores = compute_subscores(a, b, weights)
    w = weights.as_dict()
    active = sum(w[name] for name in subscores)
    if active <= 0:
        return 0.0

    score = sum(w[name] * value for name, value in subscores.items()) / active
    return float(min(1.0, max(0.0, score)))


class SimilarityScorer:
    """Scores descriptor pairs under a fixed WeightConfig."""

    def __init__(self, weights: WeightConfig = DUPLICATE_WEIGHTS):
        if not isinstance(weights, WeightConfig):
            raise InvalidWeights(f"Expected WeightConfig, got {type(weights).__name__}")
        self.weights = weights

    def score(self, a: ImageDescriptor, b: ImageDescriptor) -> float:
        return compute_similarity(a, b, self.weights)


@dataclass(frozen=True)
class ReasonBands:
    """
    Score bands mapped to categorical match labels.

    bands are (min_score, label) pairs; the first band whose min_score the
    score reaches wins, so they are kept sorted from strictest down.
    """

    bands: Tuple[Tuple[float, str], ...] = (
        (0.98, "exact"),
        (0.9, "near-duplicate"),
        (0.7, "similar"),
    )
    fallback: str = "partial"

    def __post_init__(self):
        ordered = tuple(sorted(self.bands, key=lambda band: -band[0]))
        object.__setattr__(self, "bands", ordered)

    def label(self, score: float) -> str:
        for min_score, label in self.bands:
            if score >= min_score:
                return label
        return self.fallback


DEFAULT_REASON_BANDS = ReasonBands()


@dataclass(frozen=True)
class MatchCandidate:
    candidate_id: object
    score: float
    reason: str


@dataclass(frozen=True)
class MatchGroup:
    source_id: object
    matches: Tuple[MatchCandidate, ...] = ()

    @property
    def best(self) -> Optional[MatchCandidate]:
        return self.matches[0] if self.matches else None

    def __len__(self):
        return len(self.matches)


def rank_matches(entries: Iterable[Tuple[object, float, int]]) -> List[Tuple[object, float, int]]:
    """
    Sort (candidate_id, score, pool_order) entries by score descending,
    then by position in the candidate pool (stable across runs).

    Returns:
        New sorted list (highest score first).
    """
    return sorted(entries, key=lambda e: (-e[1], e[2]))
