"""Caches for 2D slice interpolation.

This module provides the caches used by the 2D interpolation controller so
that repeated queries (slice navigation, batch apply) do not rescan the label
volume or recompute interpolations that are still valid.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

import numpy as np

logger = logging.getLogger(__name__)

SliceKey = tuple[int, int, int]  # (slice_dimension, slice_index, time_step)


class SliceImageCache:
    """Cache for populated-slice statistics, results and extracted slices.

    Every entry is stamped with the volume modification counter and the
    active label it was computed for; a lookup with a different stamp is a
    miss and replaces the entry.

    Caching tiers:
    - Tier 1 (Populated counts): per (slice_dimension, time_step), long-lived
    - Tier 2 (Results): interpolated slices per (dimension, index, time step)
    - Tier 3 (Slice images): extracted label masks, only while enabled
      (batch apply), cleared when disabled
    """

    def __init__(self, results_enabled: bool = True):
        """Initialize the cache.

        Args:
            results_enabled: Whether interpolation results are memoised.
        """
        self.results_enabled = results_enabled
        self._lock = threading.RLock()

        # Tier 1
        self._populated: dict[tuple[int, int], tuple[int, int, np.ndarray]] = {}
        # Tier 2
        self._results: dict[SliceKey, tuple[int, int, object]] = {}
        # Tier 3
        self._slice_images: dict[SliceKey, tuple[int, int, np.ndarray]] = {}
        self._slice_images_enabled = False

        self.stats = CacheStats()

    @property
    def slice_images_enabled(self) -> bool:
        return self._slice_images_enabled

    def get_or_compute_populated_counts(
        self,
        slice_dimension: int,
        time_step: int,
        stamp: tuple[int, int],
        compute_func: Callable[[], np.ndarray],
    ) -> np.ndarray:
        """Get cached per-slice label counts or compute them.

        Args:
            slice_dimension: Axis the slices are perpendicular to.
            time_step: Time step of the volume.
            stamp: (volume mtime, active label).
            compute_func: Returns the count of active-label voxels per slice.

        Returns:
            1D array with one count per slice index.
        """
        key = (slice_dimension, time_step)
        with self._lock:
            entry = self._populated.get(key)
            if entry is not None and entry[:2] == stamp:
                self.stats.populated_hits += 1
                return entry[2]
            self.stats.populated_misses += 1

        start_time = time.perf_counter()
        counts = compute_func()
        elapsed = (time.perf_counter() - start_time) * 1000
        logger.debug(
            f"Populated slice scan along dimension {slice_dimension} "
            f"(t={time_step}): {elapsed:.1f}ms"
        )

        with self._lock:
            self._populated[key] = (stamp[0], stamp[1], counts)
        return counts

    def get_result(self, key: SliceKey, stamp: tuple[int, int]) -> tuple[bool, object]:
        """Look up a memoised interpolation result.

        Returns:
            (found, result). A cached ``None`` (slice not interpolable) is a
            valid hit.
        """
        if not self.results_enabled:
            return False, None
        with self._lock:
            entry = self._results.get(key)
            if entry is not None and entry[:2] == stamp:
                self.stats.result_hits += 1
                return True, entry[2]
            self.stats.result_misses += 1
        return False, None

    def store_result(self, key: SliceKey, stamp: tuple[int, int], result: object) -> None:
        if not self.results_enabled:
            return
        with self._lock:
            self._results[key] = (stamp[0], stamp[1], result)

    def enable_slice_images(self) -> None:
        with self._lock:
            self._slice_images_enabled = True

    def disable_slice_images(self) -> None:
        """Disable and clear the slice image tier."""
        with self._lock:
            self._slice_images_enabled = False
            self._slice_images.clear()
        self.stats.log_summary()

    def get_or_extract_slice_image(
        self,
        key: SliceKey,
        stamp: tuple[int, int],
        extract_func: Callable[[], np.ndarray],
    ) -> np.ndarray:
        """Get a cached slice mask or extract it.

        Extraction always happens when the tier is disabled; the result is
        then not stored.
        """
        with self._lock:
            if self._slice_images_enabled:
                entry = self._slice_images.get(key)
                if entry is not None and entry[:2] == stamp:
                    self.stats.slice_image_hits += 1
                    return entry[2]
            self.stats.slice_image_misses += 1

        image = extract_func()

        with self._lock:
            if self._slice_images_enabled:
                self._slice_images[key] = (stamp[0], stamp[1], image)
        return image

    def invalidate(self):
        """Invalidate all caches (e.g., when the volume or label changes)."""
        with self._lock:
            self._populated.clear()
            self._results.clear()
            self._slice_images.clear()

    def clear(self):
        """Clear all caches completely."""
        self.invalidate()
        self.stats.reset()


class CacheStats:
    """Statistics for cache performance monitoring."""

    def __init__(self):
        self.reset()

    def reset(self):
        """Reset all statistics."""
        self.populated_hits = 0
        self.populated_misses = 0
        self.result_hits = 0
        self.result_misses = 0
        self.slice_image_hits = 0
        self.slice_image_misses = 0

    def log_summary(self):
        """Log cache statistics summary."""
        for name, hits, misses in (
            ("Populated slice", self.populated_hits, self.populated_misses),
            ("Result", self.result_hits, self.result_misses),
            ("Slice image", self.slice_image_hits, self.slice_image_misses),
        ):
            total = hits + misses
            if total > 0:
                logger.debug(f"{name} cache hit rate: {hits / total:.1%} ({hits}/{total})")
