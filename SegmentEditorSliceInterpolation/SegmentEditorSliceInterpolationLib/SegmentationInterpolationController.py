"""2D slice interpolation controller.

Answers "what should slice k look like?" for the active label of a working
label volume by shape-based interpolation between the nearest populated
slices below and above. The controller only reads the volume; committing
results is left to the batch applier or the session facade.
"""

from __future__ import annotations

import logging
import threading

import numpy as np

from .InterpolationConfig import InterpolationConfig
from .LabelVolume import LabelVolume
from .PlaneGeometry import LabelSlice, PlaneGeometry, extract_slice, slice_spacing
from .ShapeBasedInterpolationAlgorithm import ShapeBasedInterpolationAlgorithm
from .SliceImageCache import SliceImageCache

logger = logging.getLogger(__name__)


class SegmentationInterpolationController:
    """Shape-based 2D interpolation for one label volume.

    Results are memoised per (slice dimension, slice index, time step) and
    invalidated whenever the volume's modification counter or the active
    label changes. Returned LabelSlice objects may be shared with the cache
    and must not be modified by callers.

    Example:
        controller = SegmentationInterpolationController()
        controller.set_segmentation_volume(volume)
        controller.active_label = 1
        result = controller.interpolate(2, 5)
    """

    def __init__(self, config: InterpolationConfig | None = None):
        self.config = config or InterpolationConfig()
        self._volume: LabelVolume | None = None
        self._active_label = 1
        self._cache = SliceImageCache(results_enabled=self.config.enable_result_cache)

        # Distance maps of the default algorithm are only valid for one stamp
        self._default_algorithm = ShapeBasedInterpolationAlgorithm()
        self._default_algorithm_stamp: tuple[int, int] | None = None
        self._algorithm_lock = threading.Lock()

    @property
    def volume(self) -> LabelVolume | None:
        return self._volume

    @property
    def active_label(self) -> int:
        return self._active_label

    @active_label.setter
    def active_label(self, label: int) -> None:
        if label != self._active_label:
            logger.debug(f"Active label changed from {self._active_label} to {label}")
            self._active_label = label
            self._cache.invalidate()

    @property
    def cache(self) -> SliceImageCache:
        return self._cache

    def set_segmentation_volume(self, volume: LabelVolume | None) -> None:
        """Set (or clear) the working label volume."""
        if volume is self._volume:
            return
        self._volume = volume
        self._cache.invalidate()
        with self._algorithm_lock:
            self._default_algorithm.clear_cache()
            self._default_algorithm_stamp = None
        if volume is not None:
            logger.debug(f"Interpolating label volume {volume.name or volume.uid}")

    def enable_slice_image_cache(self) -> None:
        """Keep extracted slice images between calls (batch apply)."""
        self._cache.enable_slice_images()

    def disable_slice_image_cache(self) -> None:
        """Stop caching slice images and release them."""
        self._cache.disable_slice_images()

    def _stamp(self) -> tuple[int, int]:
        return self._volume.mtime, self._active_label

    def get_populated_slice_counts(self, slice_dimension: int, time_step: int = 0) -> np.ndarray:
        """Number of active-label voxels in each slice along a dimension.

        Raises:
            RuntimeError: If no volume is set.
        """
        if self._volume is None:
            raise RuntimeError("No segmentation volume set")

        volume = self._volume
        label = self._active_label

        def compute() -> np.ndarray:
            mask = volume.get_volume_data(time_step) == label
            array_axis = 2 - slice_dimension
            other_axes = tuple(axis for axis in range(3) if axis != array_axis)
            return np.count_nonzero(mask, axis=other_axes)

        return self._cache.get_or_compute_populated_counts(
            slice_dimension, time_step, self._stamp(), compute
        )

    def get_populated_slice_indices(self, slice_dimension: int, time_step: int = 0) -> np.ndarray:
        """Indices of slices containing the active label."""
        return np.flatnonzero(self.get_populated_slice_counts(slice_dimension, time_step))

    def interpolate(
        self,
        slice_dimension: int,
        slice_index: int,
        plane: PlaneGeometry | None = None,
        time_step: int = 0,
        algorithm: ShapeBasedInterpolationAlgorithm | None = None,
    ) -> LabelSlice | None:
        """Interpolate one slice of the active label.

        Args:
            slice_dimension: Index axis the slice is perpendicular to (0-2).
            slice_index: Slice position along that axis.
            plane: Plane of the slice; derived from the volume if omitted.
            time_step: Time step of the volume.
            algorithm: Shared algorithm instance (batch apply). Its distance
                map cache must belong to the current volume state.

        Returns:
            LabelSlice with the active label inside the interpolated shape and
            the exterior label elsewhere, or None if the slice is already
            populated, invalid, or lacks a populated neighbour on either side.
        """
        volume = self._volume
        if volume is None:
            logger.warning("Cannot interpolate: no segmentation volume set")
            return None
        if not volume.time_geometry.is_valid_time_step(time_step):
            logger.warning(f"Cannot interpolate: invalid time step {time_step}")
            return None
        if slice_dimension not in (0, 1, 2):
            logger.warning(f"Cannot interpolate: invalid slice dimension {slice_dimension}")
            return None
        num_slices = volume.get_dimension(slice_dimension)
        if not 0 <= slice_index < num_slices:
            logger.warning(
                f"Cannot interpolate: slice {slice_index} outside [0, {num_slices}) "
                f"along dimension {slice_dimension}"
            )
            return None

        stamp = self._stamp()
        key = (slice_dimension, slice_index, time_step)
        found, result = self._cache.get_result(key, stamp)
        if found:
            return result

        result = self._interpolate_uncached(
            volume, slice_dimension, slice_index, plane, time_step, algorithm, stamp
        )
        self._cache.store_result(key, stamp, result)
        return result

    def _interpolate_uncached(
        self,
        volume: LabelVolume,
        slice_dimension: int,
        slice_index: int,
        plane: PlaneGeometry | None,
        time_step: int,
        algorithm: ShapeBasedInterpolationAlgorithm | None,
        stamp: tuple[int, int],
    ) -> LabelSlice | None:
        counts = self.get_populated_slice_counts(slice_dimension, time_step)
        if counts[slice_index] > 0:
            logger.debug(f"Slice {slice_index} (dim {slice_dimension}) is already populated")
            return None

        populated = np.flatnonzero(counts)
        if len(populated) < 2:
            logger.debug(f"Fewer than two populated slices along dimension {slice_dimension}")
            return None

        below = populated[populated < slice_index]
        above = populated[populated > slice_index]
        if len(below) == 0 or len(above) == 0:
            logger.debug(
                f"Slice {slice_index} (dim {slice_dimension}) has no populated neighbour "
                f"on {'either' if len(below) == len(above) else 'one'} side"
            )
            return None
        lower_index = int(below[-1])
        upper_index = int(above[0])

        lower_mask = self._get_slice_mask(volume, slice_dimension, lower_index, time_step, stamp)
        upper_mask = self._get_slice_mask(volume, slice_dimension, upper_index, time_step, stamp)

        if algorithm is None:
            algorithm = self._get_default_algorithm(stamp)

        mask = algorithm.interpolate(
            lower_mask,
            lower_index,
            upper_mask,
            upper_index,
            slice_index,
            slice_dimension,
            time_step,
            spacing=slice_spacing(volume, slice_dimension),
        )

        data = np.full(mask.shape, volume.exterior_label, dtype=volume.dtype)
        data[mask] = self._active_label
        if plane is None:
            plane = PlaneGeometry.for_volume_slice(volume, slice_dimension, slice_index)
        return LabelSlice(data, slice_dimension, slice_index, time_step, plane)

    def _get_slice_mask(
        self,
        volume: LabelVolume,
        slice_dimension: int,
        slice_index: int,
        time_step: int,
        stamp: tuple[int, int],
    ) -> np.ndarray:
        label = stamp[1]

        def extract() -> np.ndarray:
            data = volume.get_volume_data(time_step)
            return extract_slice(data, slice_dimension, slice_index) == label

        return self._cache.get_or_extract_slice_image(
            (slice_dimension, slice_index, time_step), stamp, extract
        )

    def _get_default_algorithm(self, stamp: tuple[int, int]) -> ShapeBasedInterpolationAlgorithm:
        with self._algorithm_lock:
            if self._default_algorithm_stamp != stamp:
                self._default_algorithm.clear_cache()
                self._default_algorithm_stamp = stamp
            return self._default_algorithm
