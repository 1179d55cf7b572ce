"""
Pluggable embedding providers.

The perceptual model that turns pixels into a feature vector is an
external capability. The extractor only depends on the small
EmbeddingProvider protocol below; callers plug in whatever model they
have (a CNN, a platform feature-print API, ...).

Lightweight providers ship with the package so the engine is usable
without a model:
    ThumbnailEmbeddingProvider      grayscale thumbnail, mean-centered
    CompositionEmbeddingProvider    landscape / portrait / centered one-hot
    DominantColorEmbeddingProvider  most frequent coarse colors
"""

import os
import cv2
import numpy as np
import logging
from typing import Optional, Protocol, runtime_checkable

from .errors import EmbeddingFailed

logger = logging.getLogger(__name__)

THUMBNAIL_SIDE = int(os.environ.get("EMBED_THUMBNAIL_SIDE", "16"))

# Dominant colors are counted on a small thumbnail, each channel
# quantized to DOMINANT_COLOR_LEVELS steps
DOMINANT_COLOR_SIDE = int(os.environ.get("DOMINANT_COLOR_SIDE", "50"))
DOMINANT_COLOR_LEVELS = 5
DOMINANT_COLOR_COUNT = int(os.environ.get("DOMINANT_COLOR_COUNT", "3"))

# Aspect ratio cutoffs for composition classes
LANDSCAPE_RATIO = 1.3
PORTRAIT_RATIO = 0.8


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Turns an RGB image into a fixed-length float vector."""

    dimension: int

    def embed(self, image_rgb: np.ndarray) -> Optional[np.ndarray]:
        """Return a vector of length `dimension`, or None for no embedding.

        Raises:
            EmbeddingFailed: If the capability cannot produce a vector.
        """
        ...


class NullEmbeddingProvider:
    """No-op provider for deployments without an embedding model."""

    dimension = 0

    def embed(self, image_rgb: np.ndarray) -> Optional[np.ndarray]:
        return None


class ThumbnailEmbeddingProvider:
    """
    Tiny structural embedding from a downsampled grayscale thumbnail.

    The image is squashed to side x side pixels, mean-centered and
    L2-normalized, so cosine similarity reflects the spatial layout of
    light and dark regions. Not a perceptual model, but stable under
    resizing and mild recompression, which is what duplicate detection
    needs.
    """

    def __init__(self, side: int = THUMBNAIL_SIDE):
        if side <= 0:
            raise ValueError("Thumbnail side must be positive")
        self.side = side
        self.dimension = side * side

    def embed(self, image_rgb: np.ndarray) -> Optional[np.ndarray]:
        try:
            gray = cv2.cvtColor(image_rgb, cv2.COLOR_RGB2GRAY)
            thumb = cv2.resize(gray, (self.side, self.side),
                               interpolation=cv2.INTER_AREA)
        except cv2.error as e:
            raise EmbeddingFailed(None, f"thumbnail failed: {e}") from e

        vec = thumb.astype(np.float32).flatten()
        vec -= vec.mean()
        norm = np.linalg.norm(vec)
        if norm > 0:
            vec /= norm
        return vec


class CompositionEmbeddingProvider:
    """
    One-hot composition class from the image aspect ratio.

    Classes: [landscape, portrait, centered]. Wider than LANDSCAPE_RATIO is
    landscape, narrower than PORTRAIT_RATIO is portrait, anything else is
    centered. Useful as a cheap stand-in for scene classification in the
    "visually similar" use case.
    """

    dimension = 3
    labels = ("landscape", "portrait", "centered")

    @staticmethod
    def classify(width: int, height: int) -> str:
        ratio = width / height
        if ratio > LANDSCAPE_RATIO:
            return "landscape"
        if ratio < PORTRAIT_RATIO:
            return "portrait"
        return "centered"

    def embed(self, image_rgb: np.ndarray) -> Optional[np.ndarray]:
        h, w = image_rgb.shape[:2]
        if h == 0:
            raise EmbeddingFailed(None, "zero-height image")
        vec = np.zeros(self.dimension, dtype=np.float32)
        vec[self.labels.index(self.classify(w, h))] = 1.0
        return vec


class DominantColorEmbeddingProvider:
    """
    Palette embedding from the most frequent coarse colors.

    The image is shrunk to side x side, every channel is rounded to one of
    DOMINANT_COLOR_LEVELS values and the pixels are counted per color cell.
    The top_k cells keep their pixel share, every other cell is zeroed and
    the vector is L2-normalized. Two photos sharing their main colors get a
    high cosine similarity even when layout and size differ.
    """

    def __init__(self, top_k: int = DOMINANT_COLOR_COUNT,
                 side: int = DOMINANT_COLOR_SIDE):
        if top_k <= 0 or side <= 0:
            raise ValueError("top_k and side must be positive")
        self.top_k = top_k
        self.side = side
        self.dimension = DOMINANT_COLOR_LEVELS ** 3

    def palette(self, image_rgb: np.ndarray) -> np.ndarray:
        """Pixel counts per quantized color cell, shape (dimension,)."""
        try:
            thumb = cv2.resize(image_rgb, (self.side, self.side),
                               interpolation=cv2.INTER_AREA)
        except cv2.error as e:
            raise EmbeddingFailed(None, f"palette thumbnail failed: {e}") from e

        steps = DOMINANT_COLOR_LEVELS - 1
        levels = np.rint(thumb.reshape(-1, 3).astype(np.float32) / 255.0 * steps)
        levels = levels.astype(np.int64)
        cells = (levels[:, 0] * DOMINANT_COLOR_LEVELS + levels[:, 1]) \
            * DOMINANT_COLOR_LEVELS + levels[:, 2]
        return np.bincount(cells, minlength=self.dimension).astype(np.float32)

    def dominant_colors(self, image_rgb: np.ndarray) -> list:
        """Top colors as (r, g, b) tuples in [0, 1], most frequent first."""
        counts = self.palette(image_rgb)
        steps = DOMINANT_COLOR_LEVELS - 1
        colors = []
        for cell in self._top_cells(counts):
            r, rest = divmod(int(cell), DOMINANT_COLOR_LEVELS ** 2)
            g, b = divmod(rest, DOMINANT_COLOR_LEVELS)
            colors.append((r / steps, g / steps, b / steps))
        return colors

    def _top_cells(self, counts: np.ndarray) -> np.ndarray:
        # Stable sort: equal counts keep the lower cell index first
        order = np.argsort(-counts, kind="stable")[:self.top_k]
        return order[counts[order] > 0]

    def embed(self, image_rgb: np.ndarray) -> Optional[np.ndarray]:
        if image_rgb.ndim != 3 or image_rgb.shape[2] != 3 or image_rgb.size == 0:
            raise EmbeddingFailed(None, f"expected non-empty RGB image, got {image_rgb.shape}")
        counts = self.palette(image_rgb)
        vec = np.zeros(self.dimension, dtype=np.float32)
        top = self._top_cells(counts)
        vec[top] = counts[top]
        norm = np.linalg.norm(vec)
        if norm > 0:
            vec /= norm
        return vec
