"""Tests for the interpolation session facade."""

import numpy as np
import pytest

from SegmentEditorSliceInterpolationLib import (
    ContourSurface,
    EventKind,
    InterpolationConfig,
    InterpolationMode,
    LabelVolume,
    PlaneGeometry,
    SliceNavigationEvent,
    SlicesInterpolator,
    TimeGeometry,
)
from test_fixtures.synthetic_labels import create_disk_stack


def _interpolator(volume, mode=InterpolationMode.SLICE_2D, **config):
    interpolator = SlicesInterpolator(InterpolationConfig(**config))
    interpolator.set_working_volume(volume)
    interpolator.active_label = 1
    interpolator.set_mode(mode)
    return interpolator


def _slice_event(volume, slice_index, controller_id="axial", time_point=0.0):
    plane = PlaneGeometry.for_volume_slice(volume, 2, slice_index)
    return SliceNavigationEvent(EventKind.SLICE_CHANGED, controller_id, time_point, plane)


class TestSliceFeedback:
    """Tests for 2D feedback driven by navigation events."""

    def test_slice_event_computes_feedback(self, disk_volume):
        interpolator = _interpolator(disk_volume)

        assert interpolator.handle_event(_slice_event(disk_volume, 4))

        assert interpolator.feedback is not None
        assert interpolator.feedback.slice_index == 4
        assert interpolator.feedback.count(1) > 0

    def test_populated_slice_has_no_feedback(self, disk_volume):
        interpolator = _interpolator(disk_volume)

        interpolator.handle_event(_slice_event(disk_volume, 2))

        assert interpolator.feedback is None

    def test_disabled_mode_ignores_events(self, disk_volume):
        interpolator = _interpolator(disk_volume, mode=InterpolationMode.DISABLED)

        assert not interpolator.handle_event(_slice_event(disk_volume, 4))
        assert interpolator.feedback is None

    def test_oblique_plane(self, disk_volume):
        interpolator = _interpolator(disk_volume)
        plane = PlaneGeometry.from_normal([16, 16, 4], [1, 0, 1])

        assert interpolator.interpolate(plane, 0.0) is None

    def test_invalid_time_point(self, disk_volume):
        interpolator = _interpolator(disk_volume)

        interpolator.handle_event(_slice_event(disk_volume, 4, time_point=3.0))

        assert interpolator.feedback is None

    def test_label_change_clears_feedback(self, disk_volume):
        interpolator = _interpolator(disk_volume)
        interpolator.handle_event(_slice_event(disk_volume, 4))

        interpolator.active_label = 2

        assert interpolator.feedback is None

    def test_leaving_2d_mode_clears_feedback(self, disk_volume):
        interpolator = _interpolator(disk_volume)
        interpolator.handle_event(_slice_event(disk_volume, 4))

        interpolator.set_mode(InterpolationMode.DISABLED)

        assert interpolator.feedback is None

    def test_unknown_event_kind(self, disk_volume):
        interpolator = _interpolator(disk_volume)

        with pytest.raises(ValueError):
            interpolator.handle_event(SliceNavigationEvent("bogus", "axial"))

    def test_time_change_recomputes_feedback(self):
        data = np.zeros((2, 10, 32, 32), dtype=np.uint16)
        data[1] = create_disk_stack((10, 32, 32), {2: 6.0, 7: 6.0})
        volume = LabelVolume(data, time_geometry=TimeGeometry(0.0, 1.0, 2))
        interpolator = _interpolator(volume)

        interpolator.handle_event(_slice_event(volume, 4))
        assert interpolator.feedback is None

        recomputed = interpolator.handle_event(
            SliceNavigationEvent(EventKind.TIME_CHANGED, "axial", 1.5)
        )

        assert recomputed
        assert interpolator.feedback.time_step == 1
        assert interpolator.feedback.count(1) > 0

    def test_time_change_of_other_view_is_ignored(self, disk_volume):
        interpolator = _interpolator(disk_volume)
        interpolator.handle_event(_slice_event(disk_volume, 4, controller_id="axial"))

        assert not interpolator.handle_event(
            SliceNavigationEvent(EventKind.TIME_CHANGED, "coronal", 0.0)
        )


class TestAccept:
    """Tests for committing 2D interpolations."""

    def test_accept_interpolation_is_undoable(self, disk_volume):
        before = disk_volume.get_volume_data(0).copy()
        interpolator = _interpolator(disk_volume)
        interpolator.handle_event(_slice_event(disk_volume, 4))

        assert interpolator.accept_interpolation()

        assert np.count_nonzero(disk_volume.get_volume_data(0)[4]) > 0
        assert interpolator.feedback is None
        assert interpolator.undo_stack.descriptions() == ["Confirm interpolation"]

        interpolator.undo_stack.undo()
        np.testing.assert_array_equal(disk_volume.get_volume_data(0), before)

    def test_accept_without_feedback(self, disk_volume):
        interpolator = _interpolator(disk_volume)

        assert not interpolator.accept_interpolation()

    def test_finish_interpolation_uses_last_view(self, disk_volume):
        interpolator = _interpolator(disk_volume, num_threads=2)
        interpolator.handle_event(_slice_event(disk_volume, 0, controller_id="axial"))

        diff = interpolator.finish_interpolation()

        assert diff is not None
        assert interpolator.batch_applier.last_changed_slices == [3, 4, 5, 6]
        assert interpolator.undo_stack.descriptions() == ["Confirm all interpolations (4)"]

    def test_finish_without_view(self, disk_volume):
        interpolator = _interpolator(disk_volume)

        assert interpolator.finish_interpolation() is None

    def test_deleted_view_is_forgotten(self, disk_volume):
        interpolator = _interpolator(disk_volume)
        interpolator.handle_event(_slice_event(disk_volume, 4, controller_id="axial"))

        interpolator.handle_event(SliceNavigationEvent(EventKind.DELETED, "axial"))

        assert interpolator.finish_interpolation() is None
        with pytest.raises(KeyError):
            interpolator.accept_all_interpolations("axial")


class TestSurfaceMode:
    """Tests for 3D interpolation through the facade."""

    def _add_disk_contours(self, interpolator, volume):
        for slice_index in (2, 7):
            plane = PlaneGeometry.for_volume_slice(volume, 2, slice_index)
            assert interpolator.add_contours_from_slice(plane, 0.0) == 1

    def test_declined_memory_warning_disables(self, disk_volume):
        interpolator = _interpolator(
            disk_volume, mode=InterpolationMode.DISABLED, memory_warning_threshold=1e-12
        )
        self._add_disk_contours(interpolator, disk_volume)
        asked = []

        mode = interpolator.set_mode(
            InterpolationMode.SURFACE_3D, confirm=lambda portion: asked.append(portion) or False
        )

        assert mode is InterpolationMode.DISABLED
        assert interpolator.mode is InterpolationMode.DISABLED
        assert len(asked) == 1 and asked[0] > 0

    def test_accepted_memory_warning_enables(self, disk_volume):
        interpolator = _interpolator(
            disk_volume, mode=InterpolationMode.DISABLED, memory_warning_threshold=1e-12
        )
        self._add_disk_contours(interpolator, disk_volume)

        mode = interpolator.set_mode(InterpolationMode.SURFACE_3D, confirm=lambda portion: True)

        assert mode is InterpolationMode.SURFACE_3D
        assert interpolator.surface_future.result(timeout=60) is not None

    def test_accept_3d_interpolation(self, disk_volume):
        before = disk_volume.get_volume_data(0).copy()
        interpolator = _interpolator(disk_volume, mode=InterpolationMode.SURFACE_3D)
        self._add_disk_contours(interpolator, disk_volume)

        assert interpolator.accept_3d_interpolation(0.0)

        data = disk_volume.get_volume_data(0)
        assert data[4, 15, 15] == 1
        assert not data[0].any()
        assert interpolator.mode is InterpolationMode.DISABLED
        assert interpolator.undo_stack.descriptions() == ["Confirm 3D interpolation"]

        interpolator.undo_stack.undo()
        np.testing.assert_array_equal(disk_volume.get_volume_data(0), before)

    def _time_series_volume(self):
        data = np.zeros((2, 10, 32, 32), dtype=np.uint16)
        data[0, 4] = 2
        data[1] = create_disk_stack((10, 32, 32), {2: 6.0, 7: 6.0})
        return LabelVolume(data, time_geometry=TimeGeometry(0.0, 1.0, 2))

    def test_accept_3d_writes_into_surface_time_step(self):
        volume = self._time_series_volume()
        first_step = volume.get_volume_data(0).copy()
        interpolator = _interpolator(volume, mode=InterpolationMode.SURFACE_3D)
        interpolator.handle_event(SliceNavigationEvent(EventKind.TIME_CHANGED, "axial", 1.5))
        for slice_index in (2, 7):
            plane = PlaneGeometry.for_volume_slice(volume, 2, slice_index)
            assert interpolator.add_contours_from_slice(plane, 1.5) == 1

        assert interpolator.accept_3d_interpolation()

        np.testing.assert_array_equal(volume.get_volume_data(0), first_step)
        assert volume.get_volume_data(1)[4, 15, 15] == 1

    def test_accept_3d_rejects_other_time_step(self):
        data = np.zeros((2, 10, 32, 32), dtype=np.uint16)
        data[0] = create_disk_stack((10, 32, 32), {2: 6.0, 7: 6.0})
        volume = LabelVolume(data, time_geometry=TimeGeometry(0.0, 1.0, 2))
        before = volume.get_volume_data(1).copy()
        interpolator = _interpolator(volume, mode=InterpolationMode.SURFACE_3D)
        for slice_index in (2, 7):
            plane = PlaneGeometry.for_volume_slice(volume, 2, slice_index)
            assert interpolator.add_contours_from_slice(plane, 0.5) == 1

        assert not interpolator.accept_3d_interpolation(1.5)
        assert interpolator.surface_interpolator.current_time_step == 0

        assert len(interpolator.undo_stack) == 0
        np.testing.assert_array_equal(volume.get_volume_data(1), before)

    def test_accept_3d_without_surface(self, disk_volume):
        interpolator = _interpolator(disk_volume, mode=InterpolationMode.SURFACE_3D)

        assert not interpolator.accept_3d_interpolation(0.0)
        assert len(interpolator.undo_stack) == 0

    def test_empty_slice_removes_contours(self, disk_volume):
        interpolator = _interpolator(disk_volume, mode=InterpolationMode.DISABLED)
        self._add_disk_contours(interpolator, disk_volume)

        disk_volume.get_volume_data(0)[7] = 0
        disk_volume.modified()
        plane = PlaneGeometry.for_volume_slice(disk_volume, 2, 7)

        assert interpolator.add_contours_from_slice(plane, 0.0) == 0
        assert interpolator.surface_interpolator.get_number_of_contours() == 1

    def test_reinit_without_contours(self, disk_volume):
        interpolator = _interpolator(disk_volume)

        assert not interpolator.reinit_3d_interpolation(None)
        assert not interpolator.reinit_3d_interpolation(ContourSurface())

    def test_reinit_restores_contours(self, disk_volume):
        interpolator = _interpolator(disk_volume, mode=InterpolationMode.DISABLED)
        self._add_disk_contours(interpolator, disk_volume)
        contour_surface = interpolator.surface_interpolator.get_contours_as_surface()

        other = _interpolator(
            LabelVolume(disk_volume.get_volume_data(0).copy()), mode=InterpolationMode.DISABLED
        )

        assert other.reinit_3d_interpolation(contour_surface)
        assert other.surface_interpolator.get_number_of_contours() == 2

    def test_node_removed(self, disk_volume):
        interpolator = _interpolator(disk_volume, mode=InterpolationMode.SURFACE_3D)
        self._add_disk_contours(interpolator, disk_volume)

        interpolator.node_removed(disk_volume)

        assert interpolator.volume is None
        assert interpolator.surface_interpolator.current_volume is None
        assert interpolator.feedback is None
