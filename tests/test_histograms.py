"""Tests for binary color histograms and color sub-scores."""

import numpy as np
import pytest

from photo_match.histograms import (
    extract_color_histogram, compute_average_color, histogram_similarity,
    color_distance_score, HIST_DIM,
)


class TestExtractColorHistogram:
    """Tests for the 8-bin binary histogram."""

    def test_output_shape(self, red_square_image):
        hist = extract_color_histogram(red_square_image)
        assert hist.shape == (HIST_DIM,)

    def test_output_dtype(self, red_square_image):
        hist = extract_color_histogram(red_square_image)
        assert hist.dtype == np.float32

    def test_sums_to_one(self, noise_image):
        hist = extract_color_histogram(noise_image)
        assert hist.sum() == pytest.approx(1.0, abs=1e-6)
        assert np.all(hist >= 0)

    def test_bin_layout(self):
        # Top half pure red (bits 1,0,0 -> bin 4), bottom half white (bin 7)
        img = np.zeros((10, 10, 3), dtype=np.uint8)
        img[:5] = [255, 0, 0]
        img[5:] = [255, 255, 255]
        hist = extract_color_histogram(img)
        assert hist[4] == pytest.approx(0.5)
        assert hist[7] == pytest.approx(0.5)
        assert hist.sum() == pytest.approx(1.0)

    def test_quantization_threshold(self):
        dark = np.full((4, 4, 3), 127, dtype=np.uint8)
        bright = np.full((4, 4, 3), 128, dtype=np.uint8)
        assert extract_color_histogram(dark)[0] == pytest.approx(1.0)
        assert extract_color_histogram(bright)[7] == pytest.approx(1.0)

    def test_empty_image_all_zero(self):
        empty = np.zeros((0, 0, 3), dtype=np.uint8)
        hist = extract_color_histogram(empty)
        assert hist.shape == (HIST_DIM,)
        assert hist.sum() == 0


class TestAverageColor:

    def test_uniform_color(self):
        img = np.full((8, 8, 3), [255, 0, 51], dtype=np.uint8)
        r, g, b = compute_average_color(img)
        assert r == pytest.approx(1.0)
        assert g == pytest.approx(0.0)
        assert b == pytest.approx(0.2)

    def test_range(self, noise_image):
        for channel in compute_average_color(noise_image):
            assert 0.0 <= channel <= 1.0


class TestHistogramSimilarity:

    def test_identical_histograms(self):
        hist = np.array([0.5, 0.5, 0, 0, 0, 0, 0, 0], dtype=np.float32)
        assert histogram_similarity(hist, hist.copy()) == pytest.approx(1.0)

    def test_disjoint_histograms(self):
        a = np.array([1, 0, 0, 0, 0, 0, 0, 0], dtype=np.float32)
        b = np.array([0, 0, 0, 0, 0, 0, 0, 1], dtype=np.float32)
        assert histogram_similarity(a, b) == pytest.approx(0.0)

    def test_partial_overlap(self):
        a = np.array([0.5, 0.5, 0, 0, 0, 0, 0, 0], dtype=np.float32)
        b = np.array([0.5, 0, 0.5, 0, 0, 0, 0, 0], dtype=np.float32)
        # L1 = 1.0 -> 1 - 1/2
        assert histogram_similarity(a, b) == pytest.approx(0.5)

    def test_length_mismatch_scores_zero(self):
        a = np.ones(8, dtype=np.float32) / 8
        b = np.ones(4, dtype=np.float32) / 4
        assert histogram_similarity(a, b) == 0.0


class TestColorDistanceScore:

    def test_same_color(self):
        assert color_distance_score((0.2, 0.4, 0.6), (0.2, 0.4, 0.6)) == pytest.approx(1.0)

    def test_far_colors_bottom_out(self):
        assert color_distance_score((0, 0, 0), (1, 1, 1), normalizer=0.5) == 0.0

    def test_linear_in_distance(self):
        score = color_distance_score((0, 0, 0), (0.25, 0, 0), normalizer=0.5)
        assert score == pytest.approx(0.5)
