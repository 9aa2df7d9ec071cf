"""Surfaces produced by, and contour sets fed into, 3D interpolation.

The mesh is kept together with the implicit field it was extracted from, so
the surface can be rasterised back into a label volume without a mesh
voxeliser.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np

logger = logging.getLogger(__name__)

# Field value assumed outside the reconstruction grid (always "outside")
OUTSIDE_FIELD_VALUE = 1e6


@dataclass
class ReconstructionGrid:
    """Regular, world-axis-aligned grid with isotropic spacing.

    Attributes:
        origin: World position of node (0, 0, 0).
        spacing: Node distance in mm along every axis.
        shape: Number of nodes along (x, y, z).
    """

    origin: np.ndarray
    spacing: float
    shape: tuple[int, int, int]

    @property
    def num_nodes(self) -> int:
        return int(np.prod(self.shape))

    def node_positions(self) -> np.ndarray:
        """World positions of all nodes, shape (*shape, 3)."""
        axes = [self.origin[axis] + self.spacing * np.arange(self.shape[axis]) for axis in range(3)]
        grid = np.meshgrid(*axes, indexing="ij")
        return np.stack(grid, axis=-1)

    def world_to_grid(self, points: np.ndarray) -> np.ndarray:
        """Continuous grid coordinates of world points (..., 3)."""
        return (np.asarray(points, dtype=np.float64) - self.origin) / self.spacing


@dataclass
class InterpolatedSurface:
    """Triangle mesh reconstructed from contours.

    Attributes:
        vertices: World coordinates, shape (N, 3).
        faces: Vertex indices of triangles, shape (M, 3).
        normals: Vertex normals, shape (N, 3).
        time_step: Time step of the session the surface belongs to.
        implicit_field: Field on grid nodes (negative inside).
        grid: Grid the field is sampled on.
    """

    vertices: np.ndarray
    faces: np.ndarray
    normals: np.ndarray
    time_step: int = 0
    implicit_field: np.ndarray | None = field(default=None, repr=False)
    grid: ReconstructionGrid | None = field(default=None, repr=False)

    @property
    def num_vertices(self) -> int:
        return len(self.vertices)

    @property
    def num_faces(self) -> int:
        return len(self.faces)

    def bounds(self) -> tuple[np.ndarray, np.ndarray]:
        return self.vertices.min(axis=0), self.vertices.max(axis=0)

    def sample_field(self, points: np.ndarray) -> np.ndarray:
        """Trilinearly sample the implicit field at world points.

        Points outside the grid are reported as outside.

        Raises:
            RuntimeError: If the surface carries no field.
        """
        from scipy.ndimage import map_coordinates

        if self.implicit_field is None or self.grid is None:
            raise RuntimeError("Surface has no implicit field")

        points = np.asarray(points, dtype=np.float64)
        coords = self.grid.world_to_grid(points.reshape(-1, 3)).T
        values = map_coordinates(
            self.implicit_field, coords, order=1, mode="constant", cval=OUTSIDE_FIELD_VALUE
        )
        return values.reshape(points.shape[:-1])

    def contains(self, points: np.ndarray) -> np.ndarray:
        """Boolean inside test for world points (..., 3)."""
        return self.sample_field(points) <= 0

    def to_polydata(self):
        """Convert to vtkPolyData (requires vtk).

        Returns:
            vtkPolyData with triangle cells and point normals.
        """
        import vtk

        points = vtk.vtkPoints()
        for vertex in self.vertices:
            points.InsertNextPoint(float(vertex[0]), float(vertex[1]), float(vertex[2]))

        triangles = vtk.vtkCellArray()
        for face in self.faces:
            triangles.InsertNextCell(3)
            for point_id in face:
                triangles.InsertCellPoint(int(point_id))

        normals = vtk.vtkFloatArray()
        normals.SetNumberOfComponents(3)
        normals.SetName("Normals")
        for normal in self.normals:
            normals.InsertNextTuple3(float(normal[0]), float(normal[1]), float(normal[2]))

        polydata = vtk.vtkPolyData()
        polydata.SetPoints(points)
        polydata.SetPolys(triangles)
        polydata.GetPointData().SetNormals(normals)

        logger.debug(
            f"Converted surface to polydata: {self.num_vertices} points, {self.num_faces} triangles"
        )
        return polydata


@dataclass
class ContourSurface:
    """Persisted contour set of an interpolation session.

    Attributes:
        polylines: World coordinates of each contour, shape (N_i, 3).
        closed: Closed flag per contour.
        time_step: Time step the contours were drawn at.
    """

    polylines: list[np.ndarray] = field(default_factory=list)
    closed: list[bool] = field(default_factory=list)
    time_step: int = 0

    def __len__(self) -> int:
        return len(self.polylines)

    def is_empty(self) -> bool:
        return not self.polylines
