"""Shared test fixtures for photo matching tests."""

import numpy as np
import cv2
import pytest

from photo_match.cache import FeatureCache
from photo_match.features import FeatureExtractor, ImageDescriptor
from photo_match.store import InMemoryAssetStore


@pytest.fixture
def red_square_image():
    """Generate a 200x200 red square on white background."""
    img = np.ones((200, 200, 3), dtype=np.uint8) * 255
    img[40:160, 40:160] = [200, 30, 30]  # Red square
    return img


@pytest.fixture
def blue_circle_image():
    """Generate a 200x200 blue circle on white background."""
    img = np.ones((200, 200, 3), dtype=np.uint8) * 255
    cv2.circle(img, (100, 100), 60, (30, 30, 200), -1)
    return img


@pytest.fixture
def landscape_image():
    """Generate a 300x150 (2:1) green-to-dark gradient."""
    img = np.zeros((150, 300, 3), dtype=np.uint8)
    img[:, :, 1] = np.linspace(0, 255, 300, dtype=np.uint8)[None, :]
    return img


@pytest.fixture
def noise_image():
    """Generate a 200x200 random noise image."""
    rng = np.random.RandomState(42)
    return rng.randint(0, 255, (200, 200, 3), dtype=np.uint8)


@pytest.fixture
def extractor():
    return FeatureExtractor()


@pytest.fixture
def cache():
    return FeatureCache()


@pytest.fixture
def store():
    return InMemoryAssetStore()


def make_descriptor(histogram=None, average_color=(0.5, 0.5, 0.5),
                    width=100, height=100, embedding=None):
    """Build a descriptor directly, bypassing pixel extraction."""
    if histogram is None:
        histogram = [1.0, 0, 0, 0, 0, 0, 0, 0]
    return ImageDescriptor(
        histogram=np.asarray(histogram, dtype=np.float32),
        average_color=average_color,
        width=width,
        height=height,
        embedding=None if embedding is None else np.asarray(embedding, dtype=np.float32),
    )
