"""Plane geometry and axis-aligned slice access.

A PlaneGeometry is an origin plus a 3x3 matrix whose columns are the in-plane
``u`` axis, the in-plane ``v`` axis and the normal, each scaled by the voxel
spacing along that axis. For a plane built from a volume slice, plane index
coordinates ``(u, v)`` are therefore the column and row of the extracted 2D
slice array.

Slice orientation (array stored ``(z, y, x)``):

    slice dimension 2: rows = y, cols = x
    slice dimension 1: rows = z, cols = x
    slice dimension 0: rows = z, cols = y
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from .LabelVolume import LabelVolume

logger = logging.getLogger(__name__)

# Index axes spanning the slice for each slice dimension: (column axis, row axis)
SLICE_AXES = {
    0: (1, 2),
    1: (0, 2),
    2: (0, 1),
}

# Tolerance for deciding that a plane normal is aligned with an index axis
ALIGNMENT_TOLERANCE = 1e-3


class PlaneGeometry:
    """Oriented plane in world space with its own index coordinates."""

    def __init__(self, origin: np.ndarray, index_to_world: np.ndarray):
        """Initialize the plane.

        Args:
            origin: World position of plane index (0, 0, 0).
            index_to_world: 3x3 matrix, columns u, v, normal.

        Raises:
            ValueError: If the matrix is singular.
        """
        self.origin = np.asarray(origin, dtype=np.float64).copy()
        self.index_to_world_matrix = np.asarray(index_to_world, dtype=np.float64).copy()
        if abs(np.linalg.det(self.index_to_world_matrix)) < 1e-12:
            raise ValueError("Plane index-to-world matrix is singular")

    def __repr__(self) -> str:
        return f"PlaneGeometry(origin={self.origin.tolist()}, normal={self.normal.tolist()})"

    @classmethod
    def for_volume_slice(cls, volume: LabelVolume, slice_dimension: int, slice_index: int) -> PlaneGeometry:
        """Create the plane of an axis-aligned slice of a volume.

        Raises:
            ValueError: If slice_dimension is not 0, 1 or 2.
        """
        if slice_dimension not in SLICE_AXES:
            raise ValueError(f"Invalid slice dimension: {slice_dimension}")

        col_axis, row_axis = SLICE_AXES[slice_dimension]
        index = np.zeros(3)
        index[slice_dimension] = slice_index
        matrix = volume.index_to_world_matrix
        columns = np.column_stack(
            [matrix[:, col_axis], matrix[:, row_axis], matrix[:, slice_dimension]]
        )
        return cls(volume.index_to_world(index), columns)

    @classmethod
    def from_normal(
        cls, origin: np.ndarray, normal: np.ndarray, spacing: float = 1.0
    ) -> PlaneGeometry:
        """Create a plane from an origin and a normal with isotropic spacing.

        Raises:
            ValueError: If the normal has zero length.
        """
        normal = np.asarray(normal, dtype=np.float64)
        length = np.linalg.norm(normal)
        if length == 0:
            raise ValueError("Plane normal must not be zero")
        normal = normal / length

        helper = np.array([1.0, 0.0, 0.0])
        if abs(normal @ helper) > 0.9:
            helper = np.array([0.0, 1.0, 0.0])
        u = np.cross(helper, normal)
        u /= np.linalg.norm(u)
        v = np.cross(normal, u)
        return cls(origin, np.column_stack([u, v, normal]) * spacing)

    def clone(self) -> PlaneGeometry:
        return copy.deepcopy(self)

    def set_origin(self, origin: np.ndarray) -> None:
        self.origin = np.asarray(origin, dtype=np.float64).copy()

    @property
    def normal(self) -> np.ndarray:
        """Unit normal in world space."""
        normal = self.index_to_world_matrix[:, 2]
        return normal / np.linalg.norm(normal)

    @property
    def in_plane_axes(self) -> tuple[np.ndarray, np.ndarray]:
        """Unit u and v axes in world space."""
        u = self.index_to_world_matrix[:, 0]
        v = self.index_to_world_matrix[:, 1]
        return u / np.linalg.norm(u), v / np.linalg.norm(v)

    def world_to_index(self, points: np.ndarray) -> np.ndarray:
        """Map world points (..., 3) to plane index coordinates (..., 3)."""
        points = np.asarray(points, dtype=np.float64)
        inverse = np.linalg.inv(self.index_to_world_matrix)
        return (points - self.origin) @ inverse.T

    def index_to_world(self, index: np.ndarray) -> np.ndarray:
        """Map plane index coordinates (..., 3) to world points (..., 3)."""
        index = np.asarray(index, dtype=np.float64)
        return index @ self.index_to_world_matrix.T + self.origin

    def signed_distance(self, points: np.ndarray) -> np.ndarray:
        """Signed distance (mm) of world points from the plane along the normal."""
        points = np.asarray(points, dtype=np.float64)
        return (points - self.origin) @ self.normal

    def project(self, points: np.ndarray) -> np.ndarray:
        """Project world points onto the plane, returning world points."""
        points = np.asarray(points, dtype=np.float64)
        distance = self.signed_distance(points)
        return points - np.multiply.outer(distance, self.normal)

    def to_plane_coordinates(self, points: np.ndarray) -> np.ndarray:
        """Express world points as (..., 2) in-plane coordinates in mm."""
        points = np.asarray(points, dtype=np.float64)
        u, v = self.in_plane_axes
        offset = points - self.origin
        return np.stack([offset @ u, offset @ v], axis=-1)

    def is_parallel(self, other: PlaneGeometry, tolerance: float = ALIGNMENT_TOLERANCE) -> bool:
        return abs(abs(self.normal @ other.normal) - 1.0) < tolerance

    def is_same_plane(self, other: PlaneGeometry, tolerance: float = 1e-3) -> bool:
        """Check whether two planes coincide (ignoring in-plane parametrisation)."""
        return self.is_parallel(other) and abs(self.signed_distance(other.origin)) < tolerance


@dataclass
class LabelSlice:
    """A 2D label image extracted from, or destined for, a volume slice.

    Attributes:
        data: 2D label array (rows, cols), see module docstring for orientation.
        slice_dimension: Index axis the slice is perpendicular to.
        slice_index: Position of the slice along that axis.
        time_step: Time step of the source volume.
        plane: Plane of the slice, if known.
    """

    data: np.ndarray
    slice_dimension: int
    slice_index: int
    time_step: int = 0
    plane: PlaneGeometry | None = field(default=None, repr=False)

    def count(self, label: int) -> int:
        """Number of pixels holding a label."""
        return int(np.count_nonzero(self.data == label))


def determine_affected_image_slice(
    volume: LabelVolume, plane: PlaneGeometry
) -> tuple[int, int] | None:
    """Find the axis-aligned volume slice a plane cuts through.

    Args:
        volume: Volume providing the index-to-world transform.
        plane: Plane to test.

    Returns:
        (slice_dimension, slice_index), or None when the plane is oblique to
        the volume's index axes. The index is not range-checked.
    """
    # A plane perpendicular to index axis k has its world normal along M^-T e_k
    index_normal = volume.index_to_world_matrix.T @ plane.normal
    index_normal = np.abs(index_normal) / np.linalg.norm(index_normal)
    slice_dimension = int(np.argmax(index_normal))
    if index_normal[slice_dimension] < 1.0 - ALIGNMENT_TOLERANCE:
        logger.debug(f"Plane {plane} is oblique to the volume axes")
        return None

    slice_index = int(np.round(volume.world_to_index(plane.origin)[slice_dimension]))
    return slice_dimension, slice_index


def extract_slice(array: np.ndarray, slice_dimension: int, slice_index: int) -> np.ndarray:
    """Return a view of one slice of a 3D ``(z, y, x)`` array.

    Raises:
        ValueError: If slice_dimension is not 0, 1 or 2.
    """
    if slice_dimension == 2:
        return array[slice_index, :, :]
    if slice_dimension == 1:
        return array[:, slice_index, :]
    if slice_dimension == 0:
        return array[:, :, slice_index]
    raise ValueError(f"Invalid slice dimension: {slice_dimension}")


def write_slice(
    array: np.ndarray, slice_dimension: int, slice_index: int, data: np.ndarray
) -> None:
    """Overwrite one slice of a 3D ``(z, y, x)`` array."""
    extract_slice(array, slice_dimension, slice_index)[...] = data


def slice_spacing(volume: LabelVolume, slice_dimension: int) -> tuple[float, float]:
    """Return (row spacing, column spacing) in mm of a slice."""
    col_axis, row_axis = SLICE_AXES[slice_dimension]
    return float(volume.spacing[row_axis]), float(volume.spacing[col_axis])
