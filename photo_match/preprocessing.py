"""
Pixel buffer preprocessing for descriptor extraction.

Turns whatever the asset store hands back (numpy arrays of various
shapes and dtypes, or raw interleaved bytes) into a uint8 RGB array,
and optionally shrinks it so color statistics stay cheap on large
originals.
"""

import cv2
import numpy as np
import logging

from .errors import ExtractionFailed

logger = logging.getLogger(__name__)

_SUPPORTED_CHANNELS = (1, 3, 4)


def normalize_image(image_np: np.ndarray) -> np.ndarray:
    """Ensure image is uint8."""
    if image_np.dtype != np.uint8:
        if image_np.size and image_np.max() <= 1.0:
            image_np = (image_np * 255).round().astype(np.uint8)
        else:
            image_np = np.clip(image_np, 0, 255).astype(np.uint8)
    return image_np


def to_rgb(image_np: np.ndarray) -> np.ndarray:
    """
    Convert grayscale or RGBA input to 3-channel RGB.

    Args:
        image_np: uint8 image of shape (H, W), (H, W, 1), (H, W, 3)
                  or (H, W, 4).

    Returns:
        uint8 array of shape (H, W, 3).

    Raises:
        ValueError: If the channel layout is not supported.
    """
    if image_np.ndim == 2:
        return cv2.cvtColor(image_np, cv2.COLOR_GRAY2RGB)
    if image_np.ndim != 3:
        raise ValueError(f"Unsupported image rank: {image_np.ndim}")

    channels = image_np.shape[2]
    if channels == 1:
        return cv2.cvtColor(image_np[:, :, 0], cv2.COLOR_GRAY2RGB)
    if channels == 3:
        return image_np
    if channels == 4:
        return cv2.cvtColor(image_np, cv2.COLOR_RGBA2RGB)
    raise ValueError(f"Unsupported channel count: {channels}")


def decode_pixel_buffer(pixel_buffer, width: int, height: int) -> np.ndarray:
    """
    Decode a pixel buffer into a uint8 RGB image.

    Accepts a numpy array (any of the layouts handled by to_rgb) or raw
    interleaved bytes whose length is width * height * channels with
    1, 3 or 4 channels.

    Args:
        pixel_buffer: ndarray, bytes, bytearray or memoryview.
        width: Image width in pixels.
        height: Image height in pixels.

    Returns:
        uint8 RGB array of shape (height, width, 3).

    Raises:
        ExtractionFailed: If the buffer is empty, has the wrong size or an
            unsupported layout, or if width/height are not positive.
    """
    if width is None or height is None or width <= 0 or height <= 0:
        raise ExtractionFailed(None, f"invalid dimensions {width}x{height}")

    if pixel_buffer is None:
        raise ExtractionFailed(None, "empty pixel buffer")

    if isinstance(pixel_buffer, (bytes, bytearray, memoryview)):
        raw = np.frombuffer(pixel_buffer, dtype=np.uint8)
        pixels = width * height
        if raw.size == 0:
            raise ExtractionFailed(None, "empty pixel buffer")
        channels, remainder = divmod(raw.size, pixels)
        if remainder or channels not in _SUPPORTED_CHANNELS:
            raise ExtractionFailed(
                None, f"buffer of {raw.size} bytes does not fit {width}x{height}"
            )
        image_np = raw.reshape(height, width, channels)
    else:
        image_np = np.asarray(pixel_buffer)
        if image_np.size == 0:
            raise ExtractionFailed(None, "empty pixel buffer")
        if image_np.shape[:2] != (height, width):
            raise ExtractionFailed(
                None,
                f"buffer shape {image_np.shape[:2]} does not match "
                f"{height}x{width}",
            )

    try:
        return to_rgb(normalize_image(image_np))
    except (ValueError, cv2.error) as e:
        raise ExtractionFailed(None, str(e)) from e


def downscale_max_side(image_np: np.ndarray, max_side: int) -> np.ndarray:
    """
    Shrink an image so its longest side is at most max_side.

    Images already within bounds (or max_side <= 0) are returned as-is.
    Uses area interpolation, which averages source pixels and keeps
    color statistics close to the original.
    """
    if max_side <= 0:
        return image_np

    h, w = image_np.shape[:2]
    scale = max_side / max(h, w)
    if scale >= 1.0:
        return image_np

    new_w = max(1, int(round(w * scale)))
    new_h = max(1, int(round(h * scale)))
    logger.debug(f"Downscaling {w}x{h} -> {new_w}x{new_h}")
    return cv2.resize(image_np, (new_w, new_h), interpolation=cv2.INTER_AREA)
