"""
Metadata pre-filter.

A cheap O(N) pass over candidate metadata (pixel dimensions only) that
runs before any pixels are fetched. Candidates with an incompatible
shape or too little resolution never reach the extractor or the scorer.
"""

import logging
from typing import Hashable, Iterable, List, Tuple

from .config import PrefilterConfig
from .store import AssetMetadata

logger = logging.getLogger(__name__)


def passes_prefilter(target_width: int,
                     target_height: int,
                     candidate: AssetMetadata,
                     prefilter: PrefilterConfig) -> bool:
    """
    Check one candidate against the target's dimensions.

    Args:
        target_width: Target width in pixels.
        target_height: Target height in pixels.
        candidate: Candidate metadata.
        prefilter: Tolerances; disabled checks always pass.

    Returns:
        True if the candidate is worth scoring.
    """
    if candidate.width <= 0 or candidate.height <= 0:
        return False

    if prefilter.aspect_ratio_tolerance is not None:
        target_ratio = target_width / target_height
        if abs(target_ratio - candidate.aspect_ratio) > prefilter.aspect_ratio_tolerance:
            return False

    if prefilter.min_resolution_ratio is not None:
        ratio = prefilter.min_resolution_ratio
        if (candidate.width < target_width * ratio
                or candidate.height < target_height * ratio):
            return False

    return True


def filter_candidates(target_id: Hashable,
                      target_width: int,
                      target_height: int,
                      candidates: Iterable[Tuple[int, AssetMetadata]],
                      prefilter: PrefilterConfig) -> List[Tuple[int, AssetMetadata]]:
    """
    Drop the target itself and every candidate failing passes_prefilter.

    Args:
        target_id: Id of the target (excluded from its own matches).
        target_width: Target width in pixels.
        target_height: Target height in pixels.
        candidates: (pool_order, metadata) pairs.
        prefilter: Tolerances.

    Returns:
        Surviving (pool_order, metadata) pairs, original order kept.
    """
    survivors = []
    rejected = 0

    for order, meta in candidates:
        if meta.asset_id == target_id:
            continue
        if passes_prefilter(target_width, target_height, meta, prefilter):
            survivors.append((order, meta))
        else:
            rejected += 1

    logger.debug(
        f"Pre-filter for {target_id!r}: {len(survivors)} kept, {rejected} rejected"
    )
    return survivors
