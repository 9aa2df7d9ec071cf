"""Shape-based interpolation between two binary slices.

Each bounding slice mask is turned into a signed distance map (inside
negative) with SimpleITK's Maurer distance transform. The two maps are
blended linearly by the relative position of the target slice and the zero
level set of the blend is the interpolated shape.
"""

from __future__ import annotations

import logging
import threading

import numpy as np
import SimpleITK as sitk

logger = logging.getLogger(__name__)


class ShapeBasedInterpolationAlgorithm:
    """Signed-distance blending of two bounding slices.

    One instance may be shared by several worker threads: distance maps are
    cached by ``(slice_dimension, slice_index, time_step)`` and cache access is
    lock protected. The cache is only valid for one volume state, so callers
    create a fresh instance (or call ``clear_cache``) per batch.
    """

    def __init__(self):
        self._distance_maps: dict[tuple[int, int, int], np.ndarray] = {}
        self._lock = threading.Lock()
        self.cache_hits = 0
        self.cache_misses = 0

    def interpolate(
        self,
        lower_mask: np.ndarray,
        lower_index: int,
        upper_mask: np.ndarray,
        upper_index: int,
        requested_index: int,
        slice_dimension: int,
        time_step: int = 0,
        spacing: tuple[float, float] = (1.0, 1.0),
    ) -> np.ndarray:
        """Interpolate the mask of a slice between two bounding slices.

        Args:
            lower_mask: Boolean mask of the bounding slice below.
            lower_index: Slice index of lower_mask.
            upper_mask: Boolean mask of the bounding slice above.
            upper_index: Slice index of upper_mask.
            requested_index: Slice to interpolate, strictly between the two.
            slice_dimension: Axis the slices are perpendicular to (cache key).
            time_step: Time step of the slices (cache key).
            spacing: (row, col) pixel spacing in mm.

        Returns:
            Boolean mask of the interpolated slice.

        Raises:
            ValueError: If requested_index is not strictly between the bounds
                or the masks differ in shape.
        """
        if not lower_index < requested_index < upper_index:
            raise ValueError(
                f"Requested slice {requested_index} not between {lower_index} and {upper_index}"
            )
        if lower_mask.shape != upper_mask.shape:
            raise ValueError(
                f"Bounding slices differ in shape: {lower_mask.shape} vs {upper_mask.shape}"
            )

        lower_distance = self._get_distance_map(
            lower_mask, (slice_dimension, lower_index, time_step), spacing
        )
        upper_distance = self._get_distance_map(
            upper_mask, (slice_dimension, upper_index, time_step), spacing
        )

        lower_weight = (upper_index - requested_index) / (upper_index - lower_index)
        blended = lower_weight * lower_distance + (1.0 - lower_weight) * upper_distance
        return blended <= 0

    def clear_cache(self) -> None:
        with self._lock:
            self._distance_maps.clear()
            self.cache_hits = 0
            self.cache_misses = 0

    def _get_distance_map(
        self, mask: np.ndarray, key: tuple[int, int, int], spacing: tuple[float, float]
    ) -> np.ndarray:
        with self._lock:
            cached = self._distance_maps.get(key)
            if cached is not None:
                self.cache_hits += 1
                return cached
            self.cache_misses += 1

        # Computed outside the lock; a concurrent duplicate computation is
        # identical and the second insert is a no-op
        distance = compute_signed_distance_map(mask, spacing)
        with self._lock:
            return self._distance_maps.setdefault(key, distance)


def compute_signed_distance_map(
    mask: np.ndarray, spacing: tuple[float, float] = (1.0, 1.0)
) -> np.ndarray:
    """Signed Euclidean distance to the mask border, negative inside.

    Args:
        mask: 2D boolean mask (rows, cols).
        spacing: (row, col) pixel spacing in mm.

    Returns:
        Float array of the same shape, distances in mm.
    """
    image = sitk.GetImageFromArray(np.asarray(mask, dtype=np.uint8))
    # SimpleITK spacing is (x, y) = (col, row)
    image.SetSpacing((float(spacing[1]), float(spacing[0])))
    distance = sitk.SignedMaurerDistanceMap(
        image,
        insideIsPositive=False,
        squaredDistance=False,
        useImageSpacing=True,
    )
    return sitk.GetArrayFromImage(distance).astype(np.float64)
