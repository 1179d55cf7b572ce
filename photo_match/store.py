"""
Asset store and persistence sink contracts, with bundled implementations.

The engine never talks to a photo library directly. It needs three things
from a store: a list of candidate ids, cheap metadata (pixel dimensions)
for the pre-filter, and the decoded pixels for descriptor extraction.

Implementations:
    InMemoryAssetStore   numpy images held in a dict (tests, embedding apps)
    DirectoryAssetStore  image files under a directory, decoded with OpenCV
    DirectoryExportSink  writes a chosen asset's pixels to an output folder
"""

import os
import threading
import itertools
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, List, Optional, Protocol, runtime_checkable

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

from .errors import ExtractionFailed, NotFound
from .preprocessing import decode_pixel_buffer

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.bmp', '.webp', '.tif', '.tiff'}

# EXIF orientations that rotate the image by 90 degrees
_EXIF_ORIENTATION_TAG = 0x0112
_TRANSPOSED_ORIENTATIONS = {5, 6, 7, 8}


@dataclass(frozen=True)
class AssetMetadata:
    asset_id: Hashable
    width: int
    height: int
    created_at: float = 0.0

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height if self.height else 0.0


@dataclass(frozen=True)
class PixelBuffer:
    data: Any
    width: int
    height: int


@runtime_checkable
class AssetStore(Protocol):
    """Source of candidate ids, cheap metadata and decoded pixels."""

    def fetch_pixel_buffer(self, asset_id: Hashable) -> PixelBuffer:
        """Raises NotFound for unknown ids."""
        ...

    def asset_metadata(self, asset_id: Hashable) -> AssetMetadata:
        """Raises NotFound for unknown ids."""
        ...

    def list_candidates(self,
                        predicate: Optional[Callable[[AssetMetadata], bool]] = None
                        ) -> List[Hashable]:
        """Ids ordered newest first, optionally filtered on metadata."""
        ...


@runtime_checkable
class PersistenceSink(Protocol):
    """Receives the asset a user picked (e.g. "save the original")."""

    def persist(self, asset_id: Hashable) -> Any:
        ...


def _newest_first(metadata: List[AssetMetadata],
                  predicate: Optional[Callable[[AssetMetadata], bool]]) -> List[Hashable]:
    if predicate is not None:
        metadata = [m for m in metadata if predicate(m)]
    # sorted() is stable, so equal timestamps keep registration order
    return [m.asset_id for m in sorted(metadata, key=lambda m: -m.created_at)]


class InMemoryAssetStore:
    """Asset store backed by numpy images kept in memory."""

    def __init__(self):
        self._images: Dict[Hashable, np.ndarray] = {}
        self._metadata: Dict[Hashable, AssetMetadata] = {}
        self._clock = itertools.count()
        self._lock = threading.Lock()

    def add(self, asset_id: Hashable, image: np.ndarray,
            created_at: Optional[float] = None) -> AssetMetadata:
        """
        Register an image. created_at defaults to a counter, so later
        additions count as newer.
        """
        image = np.asarray(image)
        height, width = image.shape[:2] if image.ndim >= 2 else (0, 0)
        with self._lock:
            if created_at is None:
                created_at = float(next(self._clock))
            meta = AssetMetadata(asset_id, int(width), int(height), created_at)
            self._images[asset_id] = image
            self._metadata[asset_id] = meta
        return meta

    def remove(self, asset_id: Hashable) -> None:
        with self._lock:
            self._images.pop(asset_id, None)
            self._metadata.pop(asset_id, None)

    def fetch_pixel_buffer(self, asset_id: Hashable) -> PixelBuffer:
        with self._lock:
            image = self._images.get(asset_id)
            meta = self._metadata.get(asset_id)
        if image is None:
            raise NotFound(asset_id, "not in store")
        return PixelBuffer(image, meta.width, meta.height)

    def asset_metadata(self, asset_id: Hashable) -> AssetMetadata:
        with self._lock:
            meta = self._metadata.get(asset_id)
        if meta is None:
            raise NotFound(asset_id, "not in store")
        return meta

    def list_candidates(self, predicate=None) -> List[Hashable]:
        with self._lock:
            metadata = list(self._metadata.values())
        return _newest_first(metadata, predicate)

    def __len__(self):
        return len(self._images)


class DirectoryAssetStore:
    """
    Asset store over the image files in a directory tree.

    Asset ids are POSIX-style paths relative to the root. Dimensions come
    from the file header (Pillow reads it lazily without decoding pixels);
    pixels are decoded with OpenCV and converted to RGB.
    """

    def __init__(self, root: str, recursive: bool = True):
        self.root = os.path.abspath(root)
        self.recursive = recursive
        self._metadata: Dict[Hashable, AssetMetadata] = {}
        self._lock = threading.Lock()

        if not os.path.isdir(self.root):
            raise NotADirectoryError(self.root)

    def _scan(self) -> List[str]:
        if self.recursive:
            found = []
            for dirpath, _, files in os.walk(self.root):
                for f in files:
                    if os.path.splitext(f)[1].lower() in IMAGE_EXTENSIONS:
                        rel = os.path.relpath(os.path.join(dirpath, f), self.root)
                        found.append(rel.replace(os.sep, "/"))
            return sorted(found)

        return sorted(
            f for f in os.listdir(self.root)
            if os.path.splitext(f)[1].lower() in IMAGE_EXTENSIONS
            and os.path.isfile(os.path.join(self.root, f))
        )

    def path_for(self, asset_id: Hashable) -> str:
        path = os.path.abspath(os.path.join(self.root, str(asset_id)))
        if os.path.commonpath([path, self.root]) != self.root or not os.path.isfile(path):
            raise NotFound(asset_id, "no such file")
        return path

    def asset_metadata(self, asset_id: Hashable) -> AssetMetadata:
        with self._lock:
            cached = self._metadata.get(asset_id)
        if cached is not None:
            return cached

        path = self.path_for(asset_id)
        try:
            with Image.open(path) as img:
                width, height = img.size
                orientation = img.getexif().get(_EXIF_ORIENTATION_TAG)
            created_at = os.path.getmtime(path)
        except (UnidentifiedImageError, OSError) as e:
            raise ExtractionFailed(asset_id, f"unreadable header: {e}") from e

        # OpenCV applies EXIF rotation on decode, so report the rotated size
        if orientation in _TRANSPOSED_ORIENTATIONS:
            width, height = height, width

        meta = AssetMetadata(asset_id, width, height, created_at)
        with self._lock:
            self._metadata[asset_id] = meta
        return meta

    def fetch_pixel_buffer(self, asset_id: Hashable) -> PixelBuffer:
        path = self.path_for(asset_id)
        image = cv2.imread(path, cv2.IMREAD_COLOR)
        if image is None:
            raise ExtractionFailed(asset_id, "could not decode image")
        image_rgb = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
        h, w = image_rgb.shape[:2]
        return PixelBuffer(image_rgb, w, h)

    def list_candidates(self, predicate=None) -> List[Hashable]:
        metadata = []
        for asset_id in self._scan():
            try:
                metadata.append(self.asset_metadata(asset_id))
            except (NotFound, ExtractionFailed) as e:
                logger.warning(f"Skipping unreadable file {asset_id}: {e.reason}")
        return _newest_first(metadata, predicate)


class DirectoryExportSink:
    """Writes the pixels of a chosen asset into output_dir."""

    def __init__(self, store: AssetStore, output_dir: str):
        self.store = store
        self.output_dir = output_dir
        os.makedirs(output_dir, exist_ok=True)

    def persist(self, asset_id: Hashable) -> str:
        """
        Export one asset as an image file.

        Returns:
            Path of the written file.

        Raises:
            NotFound: Unknown asset.
            ExtractionFailed: Pixels could not be decoded or written.
        """
        buffer = self.store.fetch_pixel_buffer(asset_id)
        try:
            image_rgb = decode_pixel_buffer(buffer.data, buffer.width, buffer.height)
        except ExtractionFailed as e:
            raise ExtractionFailed(asset_id, e.reason) from e

        name = os.path.basename(str(asset_id)) or "asset"
        stem, ext = os.path.splitext(name)
        if ext.lower() not in IMAGE_EXTENSIONS:
            stem, ext = name, ".png"
        path = os.path.join(self.output_dir, stem + ext)

        if not cv2.imwrite(path, cv2.cvtColor(image_rgb, cv2.COLOR_RGB2BGR)):
            raise ExtractionFailed(asset_id, f"could not write {path}")

        logger.info(f"Exported {asset_id!r} to {path}")
        return path
