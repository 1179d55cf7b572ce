"""
Binary color histogram and average color extraction.

Each RGB channel is quantized to a single bit (dark/bright), giving an
8-bin color fingerprint per image. The histogram is normalized by pixel
count so it always sums to 1. It is coarse on purpose: fast to compute
on every candidate, stable under resizing and recompression, and a good
complement to the embedding, which captures content rather than color.

Also provides the color-based sub-scores used by the scorer.
"""

import os
import numpy as np
import logging

logger = logging.getLogger(__name__)

# Channel value at or above which a pixel counts as "bright" for that channel.
QUANTIZE_LEVEL = int(os.environ.get("HIST_QUANTIZE_LEVEL", "128"))

# 2 levels per channel, 3 channels
HIST_DIM = 8

# Largest possible euclidean distance between two RGB colors in [0,1]^3
# is sqrt(3); the default normalizer is stricter so that clearly different
# average colors already bottom out the score.
COLOR_DISTANCE_NORMALIZER = float(os.environ.get("COLOR_DISTANCE_NORMALIZER", "0.5"))


def extract_color_histogram(image_rgb: np.ndarray) -> np.ndarray:
    """
    Compute the normalized 8-bin binary color histogram.

    Bin index for a pixel is r_bit << 2 | g_bit << 1 | b_bit, where a bit
    is 1 when the channel value is >= QUANTIZE_LEVEL.

    Args:
        image_rgb: uint8 RGB image of shape (H, W, 3).

    Returns:
        Float32 vector of HIST_DIM entries summing to 1, or all zeros for
        an image with no pixels.
    """
    pixels = image_rgb.reshape(-1, 3)
    total = pixels.shape[0]
    if total == 0:
        return np.zeros(HIST_DIM, dtype=np.float32)

    bits = (pixels >= QUANTIZE_LEVEL).astype(np.int64)
    bins = (bits[:, 0] << 2) | (bits[:, 1] << 1) | bits[:, 2]
    counts = np.bincount(bins, minlength=HIST_DIM).astype(np.float64)

    return (counts / total).astype(np.float32)


def compute_average_color(image_rgb: np.ndarray) -> tuple:
    """
    Mean of each RGB channel, scaled to [0, 1].

    Returns:
        Tuple of (r, g, b) floats; (0.0, 0.0, 0.0) for an empty image.
    """
    pixels = image_rgb.reshape(-1, 3)
    if pixels.shape[0] == 0:
        return 0.0, 0.0, 0.0
    means = pixels.mean(axis=0, dtype=np.float64) / 255.0
    return float(means[0]), float(means[1]), float(means[2])


def histogram_similarity(hist_a: np.ndarray, hist_b: np.ndarray) -> float:
    """
    1 - L1(hist_a, hist_b) / 2.

    Two non-negative unit-sum vectors are at most 2 apart in L1, so the
    result lies in [0, 1]. Mismatched lengths score 0.
    """
    if hist_a is None or hist_b is None or len(hist_a) != len(hist_b):
        logger.warning("Histogram length mismatch, scoring 0")
        return 0.0

    l1 = float(np.abs(np.asarray(hist_a, dtype=np.float64)
                      - np.asarray(hist_b, dtype=np.float64)).sum())
    return float(min(1.0, max(0.0, 1.0 - l1 / 2.0)))


def color_distance_score(color_a: tuple,
                         color_b: tuple,
                         normalizer: float = None) -> float:
    """
    1 - min(euclidean(color_a, color_b) / normalizer, 1).

    Args:
        color_a: (r, g, b) in [0, 1].
        color_b: (r, g, b) in [0, 1].
        normalizer: Distance at which the score reaches 0. Defaults to
            COLOR_DISTANCE_NORMALIZER.
    """
    normalizer = normalizer or COLOR_DISTANCE_NORMALIZER
    distance = float(np.linalg.norm(np.subtract(color_a, color_b, dtype=np.float64)))
    return 1.0 - min(distance / normalizer, 1.0)
