"""Surface reconstruction from sparse planar contours.

The contours are grouped by the plane they lie on. For every node of a
regular grid around the contours, each plane group contributes two signed
distances: the distance of the node's projection to the group's polygons
within the plane (negative inside), and the distance of the node to the
plane itself. The implicit field blends the in-plane distances of the
nearest plane on either side of the node, weighted by inverse plane
distance, and the surface is its zero level set.

Between two parallel contour planes this is shape-based interpolation in 3D;
beyond the outermost planes the field is capped by the plane distance, which
closes the surface on the outermost contours.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

import numpy as np

from .Contour import Contour
from .InterpolatedSurface import InterpolatedSurface, ReconstructionGrid
from .PlaneGeometry import PlaneGeometry

logger = logging.getLogger(__name__)

# Upper bound of node-segment pairs evaluated at once
DISTANCE_CHUNK_PAIRS = 1_000_000

# Number of field-sized float64 arrays per plane group plus fixed temporaries
ARRAYS_PER_GROUP = 2
FIXED_ARRAYS = 4


@dataclass
class PlaneGroup:
    """Contours sharing one plane.

    Attributes:
        plane: Common plane (normal oriented consistently across groups).
        contours: Contours on the plane.
        polygons: In-plane coordinates (mm) of each contour, shape (N_i, 2).
    """

    plane: PlaneGeometry
    contours: list[Contour] = field(default_factory=list)
    polygons: list[np.ndarray] = field(default_factory=list)


class SurfaceReconstructor:
    """Reconstruct an InterpolatedSurface from contours.

    Example:
        reconstructor = SurfaceReconstructor(min_spacing=0.5, max_spacing=2.0)
        surface = reconstructor.reconstruct(contours, time_step=0)
    """

    def __init__(
        self,
        min_spacing: float = 1.0,
        max_spacing: float = 1.0,
        distance_image_volume: int = 50000,
        plane_tolerance: float = 1e-3,
    ):
        """Initialize the reconstructor.

        Args:
            min_spacing: Smallest voxel spacing of the segmentation (mm).
            max_spacing: Largest voxel spacing of the segmentation (mm).
            distance_image_volume: Node budget of the reconstruction grid.
            plane_tolerance: Distance (mm) below which contour planes coincide.
        """
        self.min_spacing = min_spacing
        self.max_spacing = max_spacing
        self.distance_image_volume = distance_image_volume
        self.plane_tolerance = plane_tolerance

    def group_contours(self, contours: list[Contour]) -> list[PlaneGroup]:
        """Group contours by plane and orient the plane normals consistently."""
        groups: list[PlaneGroup] = []
        for contour in contours:
            if len(contour) < 3:
                logger.debug(f"Ignoring contour with {len(contour)} points")
                continue
            for group in groups:
                if group.plane.is_same_plane(contour.plane, self.plane_tolerance):
                    group.contours.append(contour)
                    break
            else:
                groups.append(PlaneGroup(contour.plane.clone(), [contour]))

        if groups:
            reference = groups[0].plane.normal
            for group in groups:
                normal = group.plane.normal
                alignment = normal @ reference
                if abs(alignment) > 1e-6:
                    flip = alignment < 0
                else:
                    # Perpendicular to the reference: dominant component positive
                    flip = normal[np.argmax(np.abs(normal))] < 0
                if flip:
                    group.plane = PlaneGeometry.from_normal(group.plane.origin, -normal)

        for group in groups:
            group.polygons = [group.plane.to_plane_coordinates(c.points) for c in group.contours]
        return groups

    def compute_grid(self, contours: list[Contour]) -> ReconstructionGrid | None:
        """Grid around the contours' bounding box within the node budget."""
        points = [c.points for c in contours if len(c) > 0]
        if not points:
            return None
        points = np.concatenate(points)
        lower = points.min(axis=0)
        upper = points.max(axis=0)

        extent = np.maximum(upper - lower, self.min_spacing)
        bounding_volume = float(np.prod(extent))
        spacing = max(self.min_spacing, np.cbrt(bounding_volume / self.distance_image_volume))
        padding = max(2.0 * spacing, self.max_spacing)

        origin = lower - padding
        shape = tuple(
            int(np.ceil((upper[axis] - lower[axis] + 2.0 * padding) / spacing)) + 1
            for axis in range(3)
        )
        return ReconstructionGrid(origin=origin, spacing=float(spacing), shape=shape)

    def estimate_required_bytes(self, contours: list[Contour]) -> int:
        """Estimated peak memory (bytes) of reconstructing these contours."""
        grid = self.compute_grid(contours)
        if grid is None:
            return 0
        num_groups = len(self.group_contours(contours))
        itemsize = np.dtype(np.float64).itemsize
        return grid.num_nodes * itemsize * (ARRAYS_PER_GROUP * num_groups + FIXED_ARRAYS)

    def reconstruct(self, contours: list[Contour], time_step: int = 0) -> InterpolatedSurface | None:
        """Reconstruct the surface through the contours.

        Args:
            contours: Contours of the session.
            time_step: Time step stored on the surface.

        Returns:
            InterpolatedSurface, or None if the contours span fewer than two
            planes or the implicit field has no zero crossing.
        """
        from skimage import measure

        groups = self.group_contours(contours)
        if len(groups) < 2:
            logger.debug(f"Surface reconstruction needs two contour planes, got {len(groups)}")
            return None

        start_time = time.perf_counter()
        grid = self.compute_grid([c for g in groups for c in g.contours])
        nodes = grid.node_positions().reshape(-1, 3)

        implicit_field = self.compute_field(groups, nodes).reshape(grid.shape)
        if not (implicit_field.min() < 0 < implicit_field.max()):
            logger.debug("Implicit field has no zero crossing, no surface")
            return None

        vertices, faces, normals, _ = measure.marching_cubes(
            implicit_field,
            level=0.0,
            spacing=(grid.spacing,) * 3,
            allow_degenerate=False,
        )
        vertices = vertices + grid.origin

        elapsed = (time.perf_counter() - start_time) * 1000
        logger.debug(
            f"Reconstructed surface from {len(groups)} planes on grid {grid.shape} "
            f"(spacing {grid.spacing:.2f}mm): {len(vertices)} vertices in {elapsed:.1f}ms"
        )
        return InterpolatedSurface(
            vertices=vertices,
            faces=faces,
            normals=normals,
            time_step=time_step,
            implicit_field=implicit_field,
            grid=grid,
        )

    def compute_field(self, groups: list[PlaneGroup], nodes: np.ndarray) -> np.ndarray:
        """Blend per-plane distances into the implicit field at nodes (N, 3)."""
        plane_distance = np.empty((len(groups), len(nodes)))
        in_plane = np.empty((len(groups), len(nodes)))
        for index, group in enumerate(groups):
            plane_distance[index] = group.plane.signed_distance(nodes)
            node_coords = group.plane.to_plane_coordinates(nodes)
            in_plane[index] = signed_polygon_distance(node_coords, group.polygons)

        # Nearest plane on the non-negative side (below) and negative side (above)
        below_distance = np.where(plane_distance >= 0, plane_distance, np.inf)
        above_distance = np.where(plane_distance < 0, -plane_distance, np.inf)
        below_index = np.argmin(below_distance, axis=0)
        above_index = np.argmin(above_distance, axis=0)
        columns = np.arange(len(nodes))
        da = below_distance[below_index, columns]
        db = above_distance[above_index, columns]
        sa = in_plane[below_index, columns]
        sb = in_plane[above_index, columns]

        has_below = np.isfinite(da)
        has_above = np.isfinite(db)
        both = has_below & has_above

        result = np.empty(len(nodes))
        with np.errstate(invalid="ignore", divide="ignore"):
            result[both] = (db[both] * sa[both] + da[both] * sb[both]) / (da[both] + db[both])
        only_below = has_below & ~has_above
        result[only_below] = np.maximum(sa[only_below], da[only_below])
        only_above = has_above & ~has_below
        result[only_above] = np.maximum(sb[only_above], db[only_above])
        return result


def signed_polygon_distance(points: np.ndarray, polygons: list[np.ndarray]) -> np.ndarray:
    """Signed distance of 2D points to the union of closed polygons.

    Args:
        points: Query points, shape (N, 2).
        polygons: Closed polygons, each shape (M_i, 2).

    Returns:
        Distance to the nearest polygon edge, negative inside any polygon.
    """
    from skimage.measure import points_in_poly

    starts = np.concatenate(polygons)
    ends = np.concatenate([np.roll(polygon, -1, axis=0) for polygon in polygons])
    edges = ends - starts
    edge_lengths = np.einsum("ij,ij->i", edges, edges)
    edge_lengths[edge_lengths == 0] = 1.0

    distance = np.empty(len(points))
    chunk = max(1, DISTANCE_CHUNK_PAIRS // len(starts))
    for begin in range(0, len(points), chunk):
        block = points[begin : begin + chunk]
        offset = block[:, np.newaxis, :] - starts[np.newaxis, :, :]
        t = np.clip(np.einsum("nsk,sk->ns", offset, edges) / edge_lengths, 0.0, 1.0)
        nearest = offset - t[..., np.newaxis] * edges[np.newaxis, :, :]
        distance[begin : begin + chunk] = np.sqrt(
            np.einsum("nsk,nsk->ns", nearest, nearest).min(axis=1)
        )

    inside = np.zeros(len(points), dtype=bool)
    for polygon in polygons:
        inside |= points_in_poly(points, polygon)
    distance[inside] *= -1.0
    return distance
