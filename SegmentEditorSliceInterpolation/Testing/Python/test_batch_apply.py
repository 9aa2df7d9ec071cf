"""Tests for multi-threaded accept-all of 2D interpolations."""

import numpy as np
import pytest

from SegmentEditorSliceInterpolationLib import (
    BatchInterpolationApplier,
    InterpolationConfig,
    LabelVolume,
    PlaneGeometry,
    ProgressReporter,
    SegmentationInterpolationController,
    TimeGeometry,
    UndoStack,
)
from test_fixtures.synthetic_labels import create_disk_stack


def _applier(volume, label=1, **config):
    controller = SegmentationInterpolationController(InterpolationConfig(**config))
    controller.set_segmentation_volume(volume)
    controller.active_label = label
    return BatchInterpolationApplier(controller, UndoStack())


class TestPartition:
    """Tests for round-robin slice partitioning."""

    @pytest.mark.parametrize("num_slices, num_threads", [(10, 3), (7, 7), (100, 8), (5, 1)])
    def test_partition_is_disjoint_and_complete(self, num_slices, num_threads):
        partitions = BatchInterpolationApplier.partition_slice_indices(num_slices, num_threads)

        assert len(partitions) == num_threads
        flattened = sorted(index for part in partitions for index in part)
        assert flattened == list(range(num_slices))

    def test_round_robin(self):
        partitions = BatchInterpolationApplier.partition_slice_indices(7, 3)

        assert partitions == [[0, 3, 6], [1, 4], [2, 5]]

    def test_invalid_thread_count(self):
        with pytest.raises(ValueError):
            BatchInterpolationApplier.partition_slice_indices(10, 0)


class TestAcceptAll:
    """Tests for BatchInterpolationApplier.accept_all."""

    def test_disks_fill_gap_slices(self, disk_volume):
        applier = _applier(disk_volume, num_threads=2)
        plane = PlaneGeometry.for_volume_slice(disk_volume, 2, 0)

        diff = applier.accept_all(plane)

        assert diff is not None
        assert applier.last_changed_slices == [3, 4, 5, 6]
        assert applier.undo_stack.descriptions() == ["Confirm all interpolations (4)"]
        data = disk_volume.get_volume_data(0)
        for slice_index in range(2, 8):
            assert np.count_nonzero(data[slice_index]) > 0
        assert np.count_nonzero(data[0]) == 0
        assert np.count_nonzero(data[9]) == 0

    def test_undo_restores_volume(self, disk_volume):
        before = disk_volume.get_volume_data(0).copy()
        applier = _applier(disk_volume)

        applier.accept_all(PlaneGeometry.for_volume_slice(disk_volume, 2, 5))
        applier.undo_stack.undo()

        np.testing.assert_array_equal(disk_volume.get_volume_data(0), before)

    def test_many_slices_many_threads(self):
        data = create_disk_stack((100, 16, 16), {10: 4.0, 50: 4.0, 90: 4.0})
        volume = LabelVolume(data)
        original = data.copy()
        progress = ProgressReporter()
        applier = _applier(volume, num_threads=8)
        applier.progress = progress

        applier.accept_all(PlaneGeometry.for_volume_slice(volume, 2, 0))

        assert applier.last_worker_count == 8
        assert progress.steps_total == 100
        assert progress.steps_done == 100
        assert applier.last_changed_slices == list(range(11, 50)) + list(range(51, 90))

        changed = np.flatnonzero(
            np.any(volume.get_volume_data(0) != original, axis=(1, 2))
        )
        assert list(changed) == applier.last_changed_slices

    def test_thread_count_capped_by_slice_count(self, disk_volume):
        applier = _applier(disk_volume, num_threads=64)

        applier.accept_all(PlaneGeometry.for_volume_slice(disk_volume, 2, 0))

        assert applier.last_worker_count == 10

    def test_progress_callback(self, disk_volume):
        calls = []
        applier = _applier(disk_volume, num_threads=1)
        applier.progress = ProgressReporter(lambda done, total: calls.append((done, total)))

        applier.accept_all(PlaneGeometry.for_volume_slice(disk_volume, 2, 0))

        assert calls[-1] == (10, 10)
        assert len(calls) == 10

    def test_nothing_to_accept(self, empty_volume):
        applier = _applier(empty_volume)

        assert applier.accept_all(PlaneGeometry.for_volume_slice(empty_volume, 2, 0)) is None
        assert len(applier.undo_stack) == 0

    def test_oblique_plane(self, disk_volume):
        applier = _applier(disk_volume)
        plane = PlaneGeometry.from_normal([16, 16, 5], [1, 1, 0])

        assert applier.accept_all(plane) is None
        assert len(applier.undo_stack) == 0

    def test_invalid_time_point_on_4d_volume(self):
        data = np.zeros((2, 10, 16, 16), dtype=np.uint16)
        data[1] = create_disk_stack((10, 16, 16), {2: 4.0, 7: 4.0})
        volume = LabelVolume(data, time_geometry=TimeGeometry(0.0, 1.0, 2))
        applier = _applier(volume)
        plane = PlaneGeometry.for_volume_slice(volume, 2, 0)

        assert applier.accept_all(plane, time_point=5.0) is None

        assert applier.accept_all(plane, time_point=1.5) is not None
        assert np.count_nonzero(volume.get_volume_data(0)) == 0
        assert np.count_nonzero(volume.get_volume_data(1)[4]) > 0

    def test_worker_error_aborts_without_commit(self, disk_volume, monkeypatch):
        before = disk_volume.get_volume_data(0).copy()
        applier = _applier(disk_volume, num_threads=2, worker_failure_policy="abort")
        original = applier.controller.interpolate

        def failing(slice_dimension, slice_index, *args, **kwargs):
            if slice_index == 4:
                raise RuntimeError("boom")
            return original(slice_dimension, slice_index, *args, **kwargs)

        monkeypatch.setattr(applier.controller, "interpolate", failing)

        with pytest.raises(RuntimeError, match="boom"):
            applier.accept_all(PlaneGeometry.for_volume_slice(disk_volume, 2, 0))

        assert len(applier.undo_stack) == 0
        np.testing.assert_array_equal(disk_volume.get_volume_data(0), before)
        assert not applier.controller.cache.slice_images_enabled

    def test_worker_error_skipped(self, disk_volume, monkeypatch):
        applier = _applier(disk_volume, num_threads=2, worker_failure_policy="skip")
        original = applier.controller.interpolate

        def failing(slice_dimension, slice_index, *args, **kwargs):
            if slice_index == 4:
                raise RuntimeError("boom")
            return original(slice_dimension, slice_index, *args, **kwargs)

        monkeypatch.setattr(applier.controller, "interpolate", failing)

        applier.accept_all(PlaneGeometry.for_volume_slice(disk_volume, 2, 0))

        assert applier.last_changed_slices == [3, 5, 6]
        assert np.count_nonzero(disk_volume.get_volume_data(0)[4]) == 0


class TestProgressReporter:
    """Tests for ProgressReporter."""

    def test_counts_and_reset(self):
        calls = []
        progress = ProgressReporter(lambda done, total: calls.append((done, total)))

        progress.add_steps_to_do(3)
        progress.progress()
        progress.progress(2)

        assert calls == [(1, 3), (3, 3)]

        progress.reset()
        assert (progress.steps_done, progress.steps_total) == (0, 0)
