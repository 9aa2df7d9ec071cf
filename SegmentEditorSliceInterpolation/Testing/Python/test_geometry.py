"""Tests for label volume, time geometry and plane geometry primitives."""

import numpy as np
import pytest
import SimpleITK as sitk

from SegmentEditorSliceInterpolationLib import (
    LabelVolume,
    PlaneGeometry,
    TimeGeometry,
    determine_affected_image_slice,
    extract_slice,
    write_slice,
)
from SegmentEditorSliceInterpolationLib.PlaneGeometry import slice_spacing


class TestTimeGeometry:
    """Tests for proportional time geometry."""

    def test_time_point_to_time_step(self):
        geometry = TimeGeometry(first_time_point=10.0, step_duration=5.0, num_steps=3)

        assert geometry.time_point_to_time_step(10.0) == 0
        assert geometry.time_point_to_time_step(14.9) == 0
        assert geometry.time_point_to_time_step(15.0) == 1
        assert geometry.time_point_to_time_step(24.9) == 2

    def test_time_bounds_are_half_open(self):
        geometry = TimeGeometry(first_time_point=0.0, step_duration=2.0, num_steps=2)

        assert geometry.is_valid_time_point(0.0)
        assert geometry.is_valid_time_point(3.9)
        assert not geometry.is_valid_time_point(4.0)
        assert not geometry.is_valid_time_point(-0.1)
        assert geometry.get_time_bounds(1) == (2.0, 4.0)

    def test_invalid_time_point_raises(self):
        with pytest.raises(ValueError):
            TimeGeometry(num_steps=1).time_point_to_time_step(5.0)


class TestLabelVolume:
    """Tests for LabelVolume."""

    def test_3d_volume(self):
        volume = LabelVolume(np.zeros((4, 5, 6), dtype=np.uint16))

        assert volume.dimension == 3
        assert volume.time_steps == 1
        assert volume.shape == (4, 5, 6)
        assert volume.get_dimension(0) == 6
        assert volume.get_dimension(1) == 5
        assert volume.get_dimension(2) == 4

    def test_4d_volume(self):
        volume = LabelVolume(np.zeros((3, 4, 5, 6), dtype=np.uint8))

        assert volume.dimension == 4
        assert volume.time_steps == 3
        assert volume.time_geometry.num_steps == 3
        assert volume.get_volume_data(2).shape == (4, 5, 6)

    def test_rejects_2d_array(self):
        with pytest.raises(ValueError):
            LabelVolume(np.zeros((5, 5)))

    def test_rejects_mismatched_time_geometry(self):
        with pytest.raises(ValueError):
            LabelVolume(np.zeros((2, 4, 4, 4)), time_geometry=TimeGeometry(num_steps=3))

    def test_invalid_time_step_raises(self):
        volume = LabelVolume(np.zeros((4, 4, 4)))
        with pytest.raises(IndexError):
            volume.get_volume_data(1)

    def test_index_world_transform(self):
        volume = LabelVolume(
            np.zeros((4, 5, 6)), spacing=(0.5, 1.0, 2.0), origin=(10.0, 20.0, 30.0)
        )

        world = volume.index_to_world([2, 3, 1])
        np.testing.assert_allclose(world, [11.0, 23.0, 32.0])
        np.testing.assert_allclose(volume.world_to_index(world), [2, 3, 1])

    def test_modified_bumps_mtime(self):
        volume = LabelVolume(np.zeros((4, 4, 4)))
        before = volume.mtime
        volume.set_volume_data(np.ones((4, 4, 4)))

        assert volume.mtime == before + 1
        assert volume.get_volume_data(0).sum() == 64

    def test_sitk_conversion_keeps_geometry(self):
        image = sitk.Image(6, 5, 4, sitk.sitkUInt16)
        image.SetSpacing((0.5, 1.0, 2.0))
        image.SetOrigin((1.0, 2.0, 3.0))
        image[2, 3, 1] = 7

        volume = LabelVolume.from_sitk_image(image)

        assert volume.shape == (4, 5, 6)
        assert volume.get_volume_data(0)[1, 3, 2] == 7
        np.testing.assert_allclose(volume.spacing, [0.5, 1.0, 2.0])

        exported = volume.to_sitk_image()
        assert exported.GetSize() == (6, 5, 4)
        assert exported[2, 3, 1] == 7
        np.testing.assert_allclose(exported.GetOrigin(), [1.0, 2.0, 3.0])


class TestPlaneGeometry:
    """Tests for planes and axis-aligned slices."""

    def test_volume_slice_plane_maps_to_slice_pixels(self):
        volume = LabelVolume(np.zeros((4, 5, 6)), spacing=(0.5, 1.0, 2.0))
        plane = PlaneGeometry.for_volume_slice(volume, 2, 3)

        # Plane index (u, v) = (column, row) = (x, y) for axial slices
        world = volume.index_to_world([4, 2, 3])
        np.testing.assert_allclose(plane.world_to_index(world), [4, 2, 0], atol=1e-9)
        np.testing.assert_allclose(plane.normal, [0, 0, 1])

    def test_signed_distance_and_projection(self):
        plane = PlaneGeometry.from_normal([0, 0, 5], [0, 0, 2])
        points = np.array([[1.0, 2.0, 8.0], [0.0, 0.0, 1.0]])

        np.testing.assert_allclose(plane.signed_distance(points), [3.0, -4.0])
        np.testing.assert_allclose(plane.project(points)[:, 2], [5.0, 5.0])

    def test_clone_is_independent(self):
        plane = PlaneGeometry.from_normal([0, 0, 0], [1, 0, 0])
        clone = plane.clone()
        clone.set_origin([5, 0, 0])

        np.testing.assert_allclose(plane.origin, [0, 0, 0])
        assert plane.is_parallel(clone)
        assert not plane.is_same_plane(clone)

    def test_zero_normal_raises(self):
        with pytest.raises(ValueError):
            PlaneGeometry.from_normal([0, 0, 0], [0, 0, 0])

    @pytest.mark.parametrize("slice_dimension", [0, 1, 2])
    def test_determine_affected_image_slice(self, slice_dimension):
        volume = LabelVolume(np.zeros((8, 9, 10)), spacing=(0.7, 1.1, 2.5), origin=(3, -2, 1))
        plane = PlaneGeometry.for_volume_slice(volume, slice_dimension, 4)

        assert determine_affected_image_slice(volume, plane) == (slice_dimension, 4)

    def test_oblique_plane_has_no_affected_slice(self):
        volume = LabelVolume(np.zeros((8, 8, 8)))
        plane = PlaneGeometry.from_normal([4, 4, 4], [1, 1, 0])

        assert determine_affected_image_slice(volume, plane) is None

    def test_slice_orientation(self):
        array = np.arange(4 * 5 * 6).reshape(4, 5, 6)

        assert extract_slice(array, 2, 1).shape == (5, 6)  # rows y, cols x
        assert extract_slice(array, 1, 1).shape == (4, 6)  # rows z, cols x
        assert extract_slice(array, 0, 1).shape == (4, 5)  # rows z, cols y
        with pytest.raises(ValueError):
            extract_slice(array, 3, 0)

    def test_write_slice(self):
        array = np.zeros((4, 5, 6), dtype=np.uint8)
        write_slice(array, 0, 2, np.full((4, 5), 3))

        assert np.all(array[:, :, 2] == 3)
        assert array.sum() == 3 * 20

    def test_slice_spacing(self):
        volume = LabelVolume(np.zeros((4, 5, 6)), spacing=(0.5, 1.0, 2.0))

        assert slice_spacing(volume, 2) == (1.0, 0.5)
        assert slice_spacing(volume, 1) == (2.0, 0.5)
        assert slice_spacing(volume, 0) == (2.0, 1.0)
