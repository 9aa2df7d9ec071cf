"""Interpolation session facade.

Ties the 2D controller, the 3D controller, the batch applier and the undo
stack to one working label volume and reacts to navigation events from any
number of views (slice navigation controllers). This is the non-visual part
of an interpolation panel: a UI only has to forward events and button
presses.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future
from enum import Enum
from typing import Callable

from .BatchInterpolationApplier import BatchInterpolationApplier
from .Contour import contours_from_mask
from .DiffImage import ApplyDiffImageOperation, DiffImage, DiffImageApplier
from .InterpolatedSurface import ContourSurface
from .InterpolationConfig import InterpolationConfig
from .InterpolationEvents import EventKind, SliceNavigationEvent
from .LabelVolume import LabelVolume
from .PlaneGeometry import (
    LabelSlice,
    PlaneGeometry,
    determine_affected_image_slice,
    extract_slice,
)
from .ProgressReporter import ProgressReporter
from .SegmentationInterpolationController import SegmentationInterpolationController
from .SurfaceInterpolationController import SurfaceInterpolationController
from .UndoModel import OperationEvent, UndoStack

logger = logging.getLogger(__name__)


class InterpolationMode(Enum):
    """Active interpolation method."""

    DISABLED = "disabled"
    SLICE_2D = "2d"
    SURFACE_3D = "3d"


class SlicesInterpolator:
    """Interpolation session for one working label volume.

    Example:
        interpolator = SlicesInterpolator()
        interpolator.set_working_volume(volume)
        interpolator.set_mode(InterpolationMode.SLICE_2D)
        interpolator.handle_event(
            SliceNavigationEvent(EventKind.SLICE_CHANGED, "axial", 0.0, plane)
        )
        interpolator.accept_interpolation()
    """

    def __init__(
        self,
        config: InterpolationConfig | None = None,
        undo_stack: UndoStack | None = None,
        progress: ProgressReporter | None = None,
    ):
        self.config = config or InterpolationConfig()
        self.undo_stack = undo_stack or UndoStack(max_size=self.config.max_undo_steps)
        self.applier = DiffImageApplier()

        self.slice_interpolator = SegmentationInterpolationController(self.config)
        self.surface_interpolator = SurfaceInterpolationController(
            self.config, auto_interpolate=False
        )
        self.batch_applier = BatchInterpolationApplier(
            self.slice_interpolator,
            self.undo_stack,
            self.config,
            progress=progress,
            applier=self.applier,
        )

        self._mode = InterpolationMode.DISABLED
        self._volume: LabelVolume | None = None
        self._time_points: dict[str, float] = {}
        self._planes: dict[str, PlaneGeometry] = {}
        self._last_controller: str | None = None

        self.feedback: LabelSlice | None = None

    @property
    def mode(self) -> InterpolationMode:
        return self._mode

    @property
    def volume(self) -> LabelVolume | None:
        return self._volume

    @property
    def active_label(self) -> int:
        return self.slice_interpolator.active_label

    @active_label.setter
    def active_label(self, label: int) -> None:
        self.slice_interpolator.active_label = label
        self.feedback = None

    @property
    def surface_future(self) -> Future | None:
        """Handle of the most recent 3D interpolation request."""
        return self.surface_interpolator.last_future

    def set_working_volume(self, volume: LabelVolume | None) -> None:
        """Switch the working label volume; None removes all feedback."""
        if volume is self._volume:
            return
        self._volume = volume
        self.feedback = None
        self.slice_interpolator.set_segmentation_volume(volume)
        self.surface_interpolator.set_current_interpolation_session(volume)

        if volume is not None:
            if self._last_controller is not None:
                self.surface_interpolator.set_current_time_point(
                    self._time_points.get(self._last_controller, 0.0)
                )
            logger.info(f"Working volume set to {volume.name or volume.uid}")
            if self._mode is InterpolationMode.SURFACE_3D:
                self._request_surface_interpolation()

    def set_mode(
        self,
        mode: InterpolationMode,
        confirm: Callable[[float], bool] | None = None,
    ) -> InterpolationMode:
        """Select the interpolation method.

        Args:
            mode: Requested mode.
            confirm: Asked with the estimated memory portion when enabling 3D
                interpolation would use more than the warning threshold.
                Declining falls back to DISABLED. Without a callback the
                warning is only logged.

        Returns:
            The mode actually in effect.
        """
        if mode is InterpolationMode.SURFACE_3D:
            portion = self.surface_interpolator.estimate_portion_of_needed_memory()
            if portion > self.config.memory_warning_threshold:
                logger.warning(
                    f"3D interpolation needs an estimated {portion:.0%} of system memory "
                    "and may be very slow"
                )
                if confirm is not None and not confirm(portion):
                    mode = InterpolationMode.DISABLED

        if mode is not InterpolationMode.SLICE_2D:
            self.feedback = None
        self._mode = mode
        self.surface_interpolator.auto_interpolate = mode is InterpolationMode.SURFACE_3D
        logger.info(f"Interpolation mode: {mode.value}")

        if mode is InterpolationMode.SURFACE_3D and self._volume is not None:
            self.surface_interpolator.wait_for_pending_interpolation()
            self._request_surface_interpolation()
        return mode

    def _request_surface_interpolation(self) -> Future:
        return self.surface_interpolator.request_interpolation()

    # Navigation events

    def handle_event(self, event: SliceNavigationEvent) -> bool:
        """Dispatch a navigation event.

        Returns:
            True if the 2D feedback was recomputed.
        """
        if event.kind is EventKind.TIME_CHANGED:
            return self._on_time_changed(event)
        if event.kind is EventKind.SLICE_CHANGED:
            return self._on_slice_changed(event)
        if event.kind is EventKind.DELETED:
            self._on_controller_deleted(event.controller_id)
            return False
        raise ValueError(f"Unknown event kind: {event.kind}")

    def _on_time_changed(self, event: SliceNavigationEvent) -> bool:
        self._time_points[event.controller_id] = event.time_point
        self.surface_interpolator.set_current_time_point(event.time_point)

        plane = self._planes.get(event.controller_id)
        if self._last_controller == event.controller_id and plane is not None:
            return self._on_slice_changed(
                SliceNavigationEvent(
                    EventKind.SLICE_CHANGED, event.controller_id, event.time_point, plane
                )
            )
        return False

    def _on_slice_changed(self, event: SliceNavigationEvent) -> bool:
        if event.plane is not None:
            self._planes[event.controller_id] = event.plane
        self._time_points.setdefault(event.controller_id, event.time_point)

        if self._mode is not InterpolationMode.SLICE_2D or event.plane is None:
            return False
        self.interpolate(event.plane, self._time_points[event.controller_id], event.controller_id)
        return True

    def _on_controller_deleted(self, controller_id: str) -> None:
        self._time_points.pop(controller_id, None)
        self._planes.pop(controller_id, None)
        if self._last_controller == controller_id:
            self._last_controller = None

    # 2D

    def interpolate(
        self, plane: PlaneGeometry, time_point: float, controller_id: str | None = None
    ) -> LabelSlice | None:
        """Compute the feedback slice for a plane."""
        volume = self._volume
        self.feedback = None
        if volume is None:
            return None
        if not volume.time_geometry.is_valid_time_point(time_point):
            logger.warning(
                "Cannot interpolate segmentation. Passed time point is not within the "
                f"time bounds of the working volume. Time point: {time_point}"
            )
            return None
        time_step = volume.time_geometry.time_point_to_time_step(time_point)

        affected = determine_affected_image_slice(volume, plane)
        if affected is None:
            logger.warning("Cannot interpolate on a plane oblique to the working volume")
            return None

        slice_dimension, slice_index = affected
        self.feedback = self.slice_interpolator.interpolate(
            slice_dimension, slice_index, plane, time_step
        )
        if controller_id is not None:
            self._last_controller = controller_id
        return self.feedback

    def accept_interpolation(self) -> bool:
        """Write the current feedback slice into the volume as one undo step."""
        if self._volume is None or self.feedback is None:
            return False

        volume = self._volume
        feedback = self.feedback
        diff = DiffImage.for_volume(volume)
        diff.write_slice(feedback)

        do_operation = ApplyDiffImageOperation(volume, diff, feedback.time_step)
        self.undo_stack.push(
            OperationEvent(do_operation, do_operation.inverse(), "Confirm interpolation")
        )
        self.applier.execute_operation(do_operation)

        self.feedback = None
        logger.info(
            f"Accepted interpolation of slice {feedback.slice_index} (dim {feedback.slice_dimension})"
        )
        return True

    def accept_all_interpolations(self, controller_id: str) -> DiffImage | None:
        """Accept every interpolation along the direction of a view.

        Raises:
            KeyError: If the view has not reported a plane yet.
        """
        plane = self._planes[controller_id]
        time_point = self._time_points.get(controller_id, 0.0)
        diff = self.batch_applier.accept_all(plane, time_point)
        self.feedback = None
        return diff

    def finish_interpolation(self, controller_id: str | None = None) -> DiffImage | None:
        """Accept all interpolations, along the last active view by default."""
        controller_id = controller_id or self._last_controller
        if controller_id is None or controller_id not in self._planes:
            logger.warning("Cannot finish interpolation: no slice navigation controller known")
            return None
        return self.accept_all_interpolations(controller_id)

    # 3D

    def add_contours_from_slice(self, plane: PlaneGeometry, time_point: float) -> int:
        """Trace the active label on a drawn slice and hand the contours to 3D.

        Returns:
            Number of contours added.
        """
        volume = self._volume
        if volume is None or not volume.time_geometry.is_valid_time_point(time_point):
            return 0
        affected = determine_affected_image_slice(volume, plane)
        if affected is None:
            return 0
        slice_dimension, slice_index = affected
        if not 0 <= slice_index < volume.get_dimension(slice_dimension):
            return 0

        time_step = volume.time_geometry.time_point_to_time_step(time_point)
        mask = extract_slice(volume.get_volume_data(time_step), slice_dimension, slice_index)
        slice_plane = PlaneGeometry.for_volume_slice(volume, slice_dimension, slice_index)
        contours = contours_from_mask(mask == self.active_label, slice_plane, time_step)
        if contours:
            self.surface_interpolator.add_new_contours(contours)
        else:
            self.surface_interpolator.remove_contours_on_plane(slice_plane, time_step)
        return len(contours)

    def accept_3d_interpolation(self, time_point: float | None = None) -> bool:
        """Rasterise the interpolated surface into the volume as one undo step.

        The surface is written into the time step its contours were drawn
        at. A ``time_point`` that maps to another time step is rejected.
        """
        volume = self._volume
        if volume is None:
            return False
        if time_point is not None and not volume.time_geometry.is_valid_time_point(time_point):
            logger.warning(
                "Cannot accept interpolation. Current time point is not within the "
                "time bounds of the segmentation."
            )
            return False

        self.surface_interpolator.wait_for_pending_interpolation()
        surface = self.surface_interpolator.get_interpolation_result()
        if surface is None:
            return False
        time_step = surface.time_step
        if (
            time_point is not None
            and volume.time_geometry.time_point_to_time_step(time_point) != time_step
        ):
            logger.warning(
                f"Cannot accept interpolation. The surface belongs to time step {time_step}, "
                f"not to time point {time_point}"
            )
            return False

        mask = self.surface_interpolator.rasterize_interpolation_result(volume)
        if mask is None:
            return False

        diff = DiffImage.for_volume(volume)
        diff.data[mask] = self.active_label

        do_operation = ApplyDiffImageOperation(volume, diff, time_step)
        self.undo_stack.push(
            OperationEvent(do_operation, do_operation.inverse(), "Confirm 3D interpolation")
        )
        self.applier.execute_operation(do_operation)

        self.set_mode(InterpolationMode.DISABLED)
        logger.info(f"Accepted 3D interpolation ({diff.changed_voxel_count()} voxels)")
        return True

    def reinit_3d_interpolation(self, contour_surface: ContourSurface | None) -> bool:
        """Restore persisted contours into the current 3D session."""
        if contour_surface is None or contour_surface.is_empty():
            logger.warning("No contours available for the selected segmentation")
            return False
        self.surface_interpolator.reinitialize_interpolation(contour_surface)
        if self._mode is InterpolationMode.SURFACE_3D:
            self._request_surface_interpolation()
        return True

    def node_removed(self, volume: LabelVolume) -> None:
        """Release a volume once background work on it has finished."""
        self.surface_interpolator.wait_for_pending_interpolation()
        if volume is self._volume:
            self.surface_interpolator.remove_interpolation_session(volume)
            self.set_working_volume(None)
