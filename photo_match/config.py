"""
Matching configuration.

Defaults are read from the environment so deployments can tune the
engine without code changes; callers can always pass an explicit
MatchConfig instead. Historical thresholds ranged from 0.45 to 0.98
depending on how strict a match had to be, so nothing here is "the"
right value: pick the preset for your use case and adjust.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from .scoring import (
    WeightConfig, ReasonBands, DUPLICATE_WEIGHTS, SIMILAR_WEIGHTS,
    DEFAULT_REASON_BANDS,
)


def _optional_float(name: str, default: str) -> Optional[float]:
    value = os.environ.get(name, default)
    return float(value) if value not in ("", "none", "None") else None


def _optional_int(name: str, default: str) -> Optional[int]:
    value = os.environ.get(name, default)
    return int(value) if value not in ("", "none", "None") else None


DEFAULT_THRESHOLD = float(os.environ.get("MATCH_THRESHOLD", "0.85"))
DEFAULT_TOP_K = int(os.environ.get("MATCH_TOP_K", "10"))
# None = size the pool to the machine (os.cpu_count())
DEFAULT_MAX_WORKERS = _optional_int("MATCH_MAX_WORKERS", "")
# Seconds to wait on a single pixel fetch; None waits forever.
DEFAULT_FETCH_TIMEOUT = _optional_float("MATCH_FETCH_TIMEOUT", "")

DEFAULT_ASPECT_TOLERANCE = _optional_float("PREFILTER_ASPECT_TOL", "")
DEFAULT_MIN_RESOLUTION_RATIO = _optional_float("PREFILTER_MIN_RES_RATIO", "")


@dataclass(frozen=True)
class PrefilterConfig:
    """
    Cheap metadata checks applied before any pixels are fetched.

    Attributes:
        aspect_ratio_tolerance: Max |ratio_target - ratio_candidate|;
            None disables the check.
        min_resolution_ratio: Candidate width and height must each be at
            least this fraction of the target's; None disables the check.
    """

    aspect_ratio_tolerance: Optional[float] = DEFAULT_ASPECT_TOLERANCE
    min_resolution_ratio: Optional[float] = DEFAULT_MIN_RESOLUTION_RATIO

    def __post_init__(self):
        if self.aspect_ratio_tolerance is not None and self.aspect_ratio_tolerance < 0:
            raise ValueError("aspect_ratio_tolerance must be >= 0")
        if self.min_resolution_ratio is not None and self.min_resolution_ratio < 0:
            raise ValueError("min_resolution_ratio must be >= 0")

    @property
    def enabled(self) -> bool:
        return (self.aspect_ratio_tolerance is not None
                or self.min_resolution_ratio is not None)


@dataclass(frozen=True)
class MatchConfig:
    """Everything one find_matches() call needs to know."""

    threshold: float = DEFAULT_THRESHOLD
    top_k: int = DEFAULT_TOP_K
    weights: WeightConfig = DUPLICATE_WEIGHTS
    prefilter: PrefilterConfig = field(default_factory=PrefilterConfig)
    reason_bands: ReasonBands = DEFAULT_REASON_BANDS
    max_workers: Optional[int] = DEFAULT_MAX_WORKERS
    fetch_timeout: Optional[float] = DEFAULT_FETCH_TIMEOUT

    def __post_init__(self):
        if not 0.0 <= self.threshold <= 1.0:
            raise ValueError(f"threshold must be in [0, 1], got {self.threshold}")
        if self.top_k < 1:
            raise ValueError(f"top_k must be >= 1, got {self.top_k}")
        if not isinstance(self.weights, WeightConfig):
            raise ValueError("weights must be a WeightConfig")
        if self.max_workers is not None and self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")
        if self.fetch_timeout is not None and self.fetch_timeout <= 0:
            raise ValueError(f"fetch_timeout must be positive, got {self.fetch_timeout}")


# Likely-identical photos, e.g. a re-saved or lightly edited copy.
DUPLICATE = MatchConfig(
    threshold=0.9,
    top_k=DEFAULT_TOP_K,
    weights=DUPLICATE_WEIGHTS,
    prefilter=PrefilterConfig(aspect_ratio_tolerance=0.2),
)

# Visually similar photos: looser threshold, no resolution gate.
SIMILAR = MatchConfig(
    threshold=0.6,
    top_k=10,
    weights=SIMILAR_WEIGHTS,
    prefilter=PrefilterConfig(aspect_ratio_tolerance=None, min_resolution_ratio=None),
)

# Single best equal-or-higher resolution original of a (resized, watermarked) copy.
ORIGINAL_FINDER = MatchConfig(
    threshold=0.85,
    top_k=1,
    weights=DUPLICATE_WEIGHTS,
    prefilter=PrefilterConfig(aspect_ratio_tolerance=0.2, min_resolution_ratio=0.9),
)
