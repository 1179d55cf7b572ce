"""
Session-scoped descriptor cache.

Guarantees that the fetch-and-extract pipeline runs at most once per
asset id for the lifetime of the cache, no matter how many worker
threads ask for it at the same time. Each key gets its own slot: the
first caller computes, everyone else waits on the slot's event. The
global lock is only held for slot lookup, so unrelated keys never wait
on each other.

Failures are cached as well. An asset that cannot be decoded stays
failed for the session unless recheck() is called explicitly.
"""

import threading
import logging
from typing import Callable, Dict, Hashable, Optional

from .errors import AssetError, ExtractionFailed
from .features import ImageDescriptor

logger = logging.getLogger(__name__)


class _Slot:
    __slots__ = ("ready", "descriptor", "error")

    def __init__(self):
        self.ready = threading.Event()
        self.descriptor: Optional[ImageDescriptor] = None
        self.error: Optional[AssetError] = None

    def result(self) -> ImageDescriptor:
        if self.error is not None:
            raise self.error
        return self.descriptor


class FeatureCache:
    """Write-once-per-key descriptor store shared by matching workers."""

    def __init__(self):
        self._slots: Dict[Hashable, _Slot] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._computations = 0
        self._failures = 0

    def get_or_compute(self,
                       asset_id: Hashable,
                       fetcher: Callable[[], ImageDescriptor]) -> ImageDescriptor:
        """
        Return the descriptor for asset_id, computing it at most once.

        Args:
            asset_id: Cache key.
            fetcher: Zero-argument callable that fetches pixels and
                extracts a descriptor. Only called by the first requester.

        Returns:
            The cached ImageDescriptor (same instance for every caller).

        Raises:
            AssetError: The cached failure for this asset.
        """
        with self._lock:
            slot = self._slots.get(asset_id)
            owner = slot is None
            if owner:
                slot = _Slot()
                self._slots[asset_id] = slot
                self._misses += 1
            else:
                self._hits += 1

        if not owner:
            slot.ready.wait()
            return slot.result()

        self._compute(asset_id, slot, fetcher)
        return slot.result()

    def _compute(self, asset_id, slot: _Slot, fetcher) -> None:
        try:
            descriptor = fetcher()
            if not isinstance(descriptor, ImageDescriptor):
                raise ExtractionFailed(asset_id, "fetcher returned no descriptor")
            slot.descriptor = descriptor
        except AssetError as e:
            slot.error = e
        except Exception as e:
            logger.error(f"Unexpected extraction error for {asset_id!r}: {e}")
            slot.error = ExtractionFailed(asset_id, f"unexpected error: {e}")
        finally:
            if slot.descriptor is None and slot.error is None:
                slot.error = ExtractionFailed(asset_id, "extraction interrupted")
            with self._lock:
                self._computations += 1
                if slot.error is not None:
                    self._failures += 1
            slot.ready.set()

        if slot.error is not None:
            logger.debug(f"Cached failure for {asset_id!r}: {slot.error}")

    def peek(self, asset_id: Hashable) -> Optional[ImageDescriptor]:
        """Completed descriptor for asset_id, or None. Never blocks."""
        with self._lock:
            slot = self._slots.get(asset_id)
        if slot is None or not slot.ready.is_set():
            return None
        return slot.descriptor

    def invalidate(self, asset_id: Hashable) -> bool:
        """
        Drop a completed entry so the next request recomputes it.

        In-flight entries are left alone so no key is ever half-written.

        Returns:
            True if an entry was removed.
        """
        with self._lock:
            slot = self._slots.get(asset_id)
            if slot is None or not slot.ready.is_set():
                return False
            del self._slots[asset_id]
            return True

    def recheck(self,
                asset_id: Hashable,
                fetcher: Callable[[], ImageDescriptor]) -> ImageDescriptor:
        """Force recomputation of a completed entry (e.g. the source changed)."""
        self.invalidate(asset_id)
        return self.get_or_compute(asset_id, fetcher)

    def clear(self) -> None:
        """Drop every completed entry."""
        with self._lock:
            for key in [k for k, s in self._slots.items() if s.ready.is_set()]:
                del self._slots[key]

    def stats(self) -> dict:
        with self._lock:
            return {
                "entries": len(self._slots),
                "hits": self._hits,
                "misses": self._misses,
                "computations": self._computations,
                "failures": self._failures,
            }

    def __contains__(self, asset_id) -> bool:
        with self._lock:
            return asset_id in self._slots

    def __len__(self) -> int:
        with self._lock:
            return len(self._slots)
