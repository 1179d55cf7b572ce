"""Tests for the metadata pre-filter and match configuration."""

import pytest

from photo_match.config import (
    MatchConfig, PrefilterConfig, DUPLICATE, SIMILAR, ORIGINAL_FINDER,
)
from photo_match.prefilter import filter_candidates, passes_prefilter
from photo_match.store import AssetMetadata


class TestPassesPrefilter:

    def test_aspect_ratio_outside_tolerance(self):
        prefilter = PrefilterConfig(aspect_ratio_tolerance=0.2, min_resolution_ratio=None)
        wide = AssetMetadata("wide", 200, 100)
        assert not passes_prefilter(100, 100, wide, prefilter)

    def test_aspect_ratio_within_tolerance(self):
        prefilter = PrefilterConfig(aspect_ratio_tolerance=0.2, min_resolution_ratio=None)
        close = AssetMetadata("close", 110, 100)
        assert passes_prefilter(100, 100, close, prefilter)

    def test_min_resolution(self):
        prefilter = PrefilterConfig(aspect_ratio_tolerance=None, min_resolution_ratio=0.9)
        assert passes_prefilter(1000, 800, AssetMetadata("ok", 900, 720), prefilter)
        assert not passes_prefilter(1000, 800, AssetMetadata("small", 899, 720), prefilter)

    def test_disabled_accepts_everything(self):
        prefilter = PrefilterConfig(aspect_ratio_tolerance=None, min_resolution_ratio=None)
        assert not prefilter.enabled
        assert passes_prefilter(100, 100, AssetMetadata("x", 10, 1000), prefilter)

    def test_zero_dimension_candidate_rejected(self):
        prefilter = PrefilterConfig(aspect_ratio_tolerance=None, min_resolution_ratio=None)
        assert not passes_prefilter(100, 100, AssetMetadata("empty", 0, 0), prefilter)


class TestFilterCandidates:

    def test_excludes_self_and_keeps_order(self):
        prefilter = PrefilterConfig(aspect_ratio_tolerance=0.2, min_resolution_ratio=None)
        candidates = [
            (0, AssetMetadata("c", 100, 100)),
            (1, AssetMetadata("target", 100, 100)),
            (2, AssetMetadata("wide", 300, 100)),
            (3, AssetMetadata("a", 105, 100)),
        ]
        kept = filter_candidates("target", 100, 100, candidates, prefilter)
        assert [meta.asset_id for _, meta in kept] == ["c", "a"]
        assert [order for order, _ in kept] == [0, 3]


class TestMatchConfig:

    def test_presets(self):
        assert ORIGINAL_FINDER.top_k == 1
        assert ORIGINAL_FINDER.prefilter.min_resolution_ratio == 0.9
        assert SIMILAR.weights.embedding == 0
        assert DUPLICATE.prefilter.aspect_ratio_tolerance == 0.2

    @pytest.mark.parametrize("kwargs", [
        {"threshold": 1.5},
        {"threshold": -0.1},
        {"top_k": 0},
        {"max_workers": 0},
        {"fetch_timeout": 0},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            MatchConfig(**kwargs)

    def test_negative_tolerance(self):
        with pytest.raises(ValueError):
            PrefilterConfig(aspect_ratio_tolerance=-1)
