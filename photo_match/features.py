"""
Image descriptors and the feature extractor.

An ImageDescriptor bundles everything the scorer compares: an optional
embedding from the pluggable provider, the 8-bin color histogram, the
average color and the original pixel dimensions. Descriptors are
immutable once built (frozen dataclass, read-only arrays), so the cache
can hand the same instance to any number of worker threads.
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .embeddings import EmbeddingProvider, NullEmbeddingProvider
from .errors import EmbeddingFailed, ExtractionFailed
from .histograms import extract_color_histogram, compute_average_color
from .preprocessing import decode_pixel_buffer, downscale_max_side

logger = logging.getLogger(__name__)

# Longest side used for color statistics; 0 keeps full resolution.
EXTRACT_MAX_SIDE = int(os.environ.get("EXTRACT_MAX_SIDE", "512"))

EMBEDDING_POLICIES = ("degrade", "skip")


def _frozen(array) -> np.ndarray:
    out = np.array(array, dtype=np.float32, copy=True)
    out.setflags(write=False)
    return out


@dataclass(frozen=True, eq=False)
class ImageDescriptor:
    """Comparable perceptual summary of one image."""

    histogram: np.ndarray
    average_color: tuple
    width: int
    height: int
    embedding: Optional[np.ndarray] = None

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Invalid dimensions {self.width}x{self.height}")
        object.__setattr__(self, "histogram", _frozen(self.histogram))
        object.__setattr__(self, "average_color",
                           tuple(float(c) for c in self.average_color))
        if self.embedding is not None:
            object.__setattr__(self, "embedding", _frozen(self.embedding))

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height

    @property
    def has_embedding(self) -> bool:
        return self.embedding is not None and self.embedding.size > 0


class FeatureExtractor:
    """
    Converts decoded pixel buffers into ImageDescriptors.

    Deterministic for identical input. The embedding is delegated to an
    EmbeddingProvider; when the provider fails, embedding_failure_policy
    decides whether the descriptor degrades to "no embedding" or the
    whole asset is skipped.
    """

    def __init__(self,
                 embedding_provider: EmbeddingProvider = None,
                 embedding_failure_policy: str = "degrade",
                 max_side: int = EXTRACT_MAX_SIDE):
        """
        Args:
            embedding_provider: Optional perceptual embedding capability.
                Defaults to NullEmbeddingProvider (no embedding).
            embedding_failure_policy: "degrade" keeps the asset without an
                embedding, "skip" fails the asset.
            max_side: Downscale limit applied before color statistics.
        """
        if embedding_failure_policy not in EMBEDDING_POLICIES:
            raise ValueError(
                f"embedding_failure_policy must be one of {EMBEDDING_POLICIES}, "
                f"got {embedding_failure_policy!r}"
            )
        self.embedding_provider = embedding_provider or NullEmbeddingProvider()
        self.embedding_failure_policy = embedding_failure_policy
        self.max_side = max_side

    def extract(self, pixel_buffer, width: int, height: int) -> ImageDescriptor:
        """
        Build a descriptor from a raw pixel buffer.

        Args:
            pixel_buffer: ndarray or raw interleaved bytes.
            width: Original image width.
            height: Original image height.

        Returns:
            ImageDescriptor with the original width/height.

        Raises:
            ExtractionFailed: Undecodable or empty buffer, or zero
                width/height.
            EmbeddingFailed: Provider failed and the policy is "skip".
        """
        image_rgb = decode_pixel_buffer(pixel_buffer, width, height)
        work = downscale_max_side(image_rgb, self.max_side)

        histogram = extract_color_histogram(work)
        average_color = compute_average_color(work)
        embedding = self._embed(work)

        return ImageDescriptor(
            histogram=histogram,
            average_color=average_color,
            width=int(width),
            height=int(height),
            embedding=embedding,
        )

    def _embed(self, image_rgb: np.ndarray) -> Optional[np.ndarray]:
        provider = self.embedding_provider
        try:
            try:
                vector = provider.embed(image_rgb)
            except EmbeddingFailed:
                raise
            except Exception as e:
                logger.error(f"Embedding provider error: {e}")
                raise EmbeddingFailed(None, f"provider error: {e}") from e

            if vector is None:
                return None
            vector = np.asarray(vector, dtype=np.float32).ravel()
            if provider.dimension and vector.size != provider.dimension:
                raise EmbeddingFailed(
                    None,
                    f"expected {provider.dimension} dims, got {vector.size}",
                )
            if not np.all(np.isfinite(vector)):
                raise EmbeddingFailed(None, "non-finite embedding values")
            return vector

        except EmbeddingFailed as e:
            if self.embedding_failure_policy == "skip":
                raise
            logger.warning(f"Embedding failed, continuing without it: {e.reason}")
            return None
