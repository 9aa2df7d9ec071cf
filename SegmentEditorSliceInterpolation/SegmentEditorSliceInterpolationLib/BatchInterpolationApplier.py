"""Accept all 2D interpolations along a slice direction in one undoable step.

The slices along the plane's slice dimension are partitioned round-robin
over worker threads. Every worker interpolates its slices with a shared
algorithm instance and writes non-empty results into one DiffImage, which is
then merged into the label volume as a single undo step.
"""

from __future__ import annotations

import logging
import os
import threading

from .DiffImage import ApplyDiffImageOperation, DiffImage, DiffImageApplier
from .InterpolationConfig import InterpolationConfig
from .PlaneGeometry import PlaneGeometry, determine_affected_image_slice
from .ProgressReporter import ProgressReporter
from .SegmentationInterpolationController import SegmentationInterpolationController
from .ShapeBasedInterpolationAlgorithm import ShapeBasedInterpolationAlgorithm
from .UndoModel import OperationEvent, UndoStack

logger = logging.getLogger(__name__)


class BatchInterpolationApplier:
    """Multi-threaded accept-all for the 2D interpolation controller.

    Example:
        applier = BatchInterpolationApplier(controller, undo_stack)
        diff = applier.accept_all(PlaneGeometry.for_volume_slice(volume, 2, 0), time_point=0.0)
    """

    def __init__(
        self,
        controller: SegmentationInterpolationController,
        undo_stack: UndoStack,
        config: InterpolationConfig | None = None,
        progress: ProgressReporter | None = None,
        applier: DiffImageApplier | None = None,
    ):
        self.controller = controller
        self.undo_stack = undo_stack
        self.config = config or controller.config
        self.progress = progress or ProgressReporter()
        self.applier = applier or DiffImageApplier()

        # Bookkeeping of the most recent accept_all call
        self.last_worker_count = 0
        self.last_changed_slices: list[int] = []

    @staticmethod
    def partition_slice_indices(num_slices: int, num_threads: int) -> list[list[int]]:
        """Distribute slice indices round-robin: slice s goes to worker s % n.

        Raises:
            ValueError: If num_threads is not positive.
        """
        if num_threads <= 0:
            raise ValueError(f"num_threads must be positive, got {num_threads}")
        partitions: list[list[int]] = [[] for _ in range(num_threads)]
        for slice_index in range(num_slices):
            partitions[slice_index % num_threads].append(slice_index)
        return partitions

    def accept_all(self, plane: PlaneGeometry, time_point: float = 0.0) -> DiffImage | None:
        """Write every available interpolation along the plane's direction.

        Args:
            plane: Plane of the current view; only its orientation is used.
            time_point: Selected time point (4D volumes only).

        Returns:
            The committed DiffImage, or None when nothing was committed.

        Raises:
            Exception: The first worker error, when the worker failure policy
                is "abort". Nothing is committed in that case.
        """
        self.last_worker_count = 0
        self.last_changed_slices = []

        volume = self.controller.volume
        if volume is None:
            logger.warning("Cannot accept all interpolations: no segmentation volume set")
            return None

        time_step = 0
        if volume.dimension == 4:
            if not volume.time_geometry.is_valid_time_point(time_point):
                logger.warning(
                    "Cannot accept all interpolations. Time point is not within the "
                    f"time bounds of the segmentation. Time point: {time_point}"
                )
                return None
            time_step = volume.time_geometry.time_point_to_time_step(time_point)

        affected = determine_affected_image_slice(volume, plane)
        if affected is None:
            logger.warning("Cannot accept all interpolations on an oblique plane")
            return None
        slice_dimension = affected[0]

        num_slices = volume.get_dimension(slice_dimension)
        num_threads = min(self.config.num_threads or os.cpu_count() or 1, num_slices)
        partitions = self.partition_slice_indices(num_slices, num_threads)
        self.progress.add_steps_to_do(num_slices)

        diff = DiffImage.for_volume(volume)
        algorithm = ShapeBasedInterpolationAlgorithm()
        abort_on_error = self.config.worker_failure_policy == "abort"

        changed_slices: list[int] = []
        errors: list[BaseException] = []
        state_lock = threading.Lock()

        def interpolate_slices(thread_index: int) -> None:
            worker_plane = plane.clone()
            for slice_index in partitions[thread_index]:
                try:
                    origin = volume.world_to_index(worker_plane.origin)
                    origin[slice_dimension] = slice_index
                    worker_plane.set_origin(volume.index_to_world(origin))

                    result = self.controller.interpolate(
                        slice_dimension, slice_index, worker_plane.clone(), time_step, algorithm
                    )
                    if result is not None:
                        diff.write_slice(result)
                        with state_lock:
                            changed_slices.append(slice_index)
                except Exception as e:
                    if abort_on_error:
                        with state_lock:
                            errors.append(e)
                        return
                    logger.exception(
                        f"Interpolation of slice {slice_index} (dim {slice_dimension}) failed, skipping"
                    )
                self.progress.progress()

        threads = [
            threading.Thread(
                target=interpolate_slices,
                args=(thread_index,),
                name=f"SliceInterpolation-{thread_index}",
            )
            for thread_index in range(num_threads)
        ]
        self.last_worker_count = len(threads)

        self.controller.enable_slice_image_cache()
        try:
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()
        finally:
            self.controller.disable_slice_image_cache()

        if errors:
            logger.error(
                f"Accept all interpolations aborted after {len(errors)} worker error(s); "
                "nothing was committed"
            )
            raise errors[0]

        self.last_changed_slices = sorted(changed_slices)
        if not changed_slices:
            logger.info("No interpolations to accept")
            return None

        do_operation = ApplyDiffImageOperation(volume, diff, time_step, factor=1)
        event = OperationEvent(
            do_operation,
            do_operation.inverse(),
            f"Confirm all interpolations ({len(changed_slices)})",
        )
        self.undo_stack.push(event)
        self.applier.execute_operation(do_operation)

        logger.info(
            f"Accepted {len(changed_slices)} interpolated slices along dimension "
            f"{slice_dimension} using {num_threads} threads"
        )
        return diff
