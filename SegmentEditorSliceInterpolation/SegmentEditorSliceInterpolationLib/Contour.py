"""Planar contours and their conversion to and from slice masks.

Contours are ordered world-space polylines lying on a PlaneGeometry. They are
produced either from drawn slice masks (marching squares via scikit-image)
or from the brush stamp, and are rasterised back with skimage.draw.polygon.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np

from .PlaneGeometry import PlaneGeometry

logger = logging.getLogger(__name__)


@dataclass
class Contour:
    """Ordered polyline on a plane.

    Attributes:
        points: World coordinates, shape (N, 3).
        plane: Plane the contour was drawn on.
        time_step: Time step of the session the contour belongs to.
        closed: Whether the last point connects back to the first.
    """

    points: np.ndarray
    plane: PlaneGeometry = field(repr=False)
    time_step: int = 0
    closed: bool = True

    def __post_init__(self):
        self.points = np.asarray(self.points, dtype=np.float64).reshape(-1, 3)

    def __len__(self) -> int:
        return len(self.points)

    def points_2d(self) -> np.ndarray:
        """Points in plane index coordinates (u, v), shape (N, 2)."""
        return self.plane.world_to_index(self.points)[:, :2]

    def area(self) -> float:
        """Enclosed area in mm^2 (shoelace formula on in-plane coordinates)."""
        if len(self.points) < 3:
            return 0.0
        xy = self.plane.to_plane_coordinates(self.points)
        x, y = xy[:, 0], xy[:, 1]
        return 0.5 * abs(float(np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1))))


def contours_from_mask(
    mask: np.ndarray,
    plane: PlaneGeometry,
    time_step: int = 0,
    min_points: int = 3,
) -> list[Contour]:
    """Trace the outlines of a binary slice mask.

    The mask is padded so that regions touching the slice border still yield
    closed contours.

    Args:
        mask: 2D boolean array (rows, cols) of a slice.
        plane: Plane of the slice; plane index (u, v) = (col, row).
        time_step: Time step stored on the contours.
        min_points: Contours with fewer points are dropped.

    Returns:
        List of closed contours in world coordinates.
    """
    from skimage import measure

    if not np.any(mask):
        return []

    padded = np.pad(np.asarray(mask, dtype=np.float64), 1, mode="constant")
    contours = []
    for traced in measure.find_contours(padded, level=0.5):
        traced = traced - 1.0
        if np.allclose(traced[0], traced[-1]):
            traced = traced[:-1]
        if len(traced) < min_points:
            continue

        index = np.column_stack([traced[:, 1], traced[:, 0], np.zeros(len(traced))])
        contours.append(Contour(plane.index_to_world(index), plane, time_step, closed=True))

    logger.debug(f"Traced {len(contours)} contours from slice mask")
    return contours


def fill_contour_in_slice(contour: Contour, shape: tuple[int, int]) -> np.ndarray:
    """Rasterise a closed contour into a boolean slice mask.

    Args:
        contour: Contour lying on the slice plane.
        shape: (rows, cols) of the slice.

    Returns:
        Boolean mask of pixels whose centres are inside the contour.
    """
    from skimage.draw import polygon

    mask = np.zeros(shape, dtype=bool)
    if len(contour) < 3:
        return mask
    uv = contour.points_2d()
    rr, cc = polygon(uv[:, 1], uv[:, 0], shape=shape)
    mask[rr, cc] = True
    return mask


def fit_plane(points: np.ndarray) -> PlaneGeometry:
    """Fit a plane through points by SVD of the centred coordinates.

    Raises:
        ValueError: If fewer than three points are given.
    """
    points = np.asarray(points, dtype=np.float64)
    if len(points) < 3:
        raise ValueError("At least three points are needed to fit a plane")
    centroid = points.mean(axis=0)
    _, _, vh = np.linalg.svd(points - centroid)
    return PlaneGeometry.from_normal(centroid, vh[2])


# Brush stamp


def _upper_left(point: tuple[float, float]) -> tuple[float, float]:
    return point[0] - 0.5, point[1] + 0.5


def create_brush_contour(size: int) -> np.ndarray:
    """Outline of a pixelated circular brush in slice index coordinates.

    The outline follows pixel borders so that filling it reproduces exactly
    the pixels covered by the brush. It is centred on pixel (0, 0) for odd
    sizes and on the lower right corner of that pixel for even sizes.

    Args:
        size: Brush diameter in pixels.

    Returns:
        Closed outline, shape (N, 2), columns (u, v).

    Raises:
        ValueError: If size is not positive.
    """
    if size <= 0:
        raise ValueError(f"Brush size must be positive, got {size}")

    radius = size // 2
    fradius = size / 2.0
    even_size = size % 2 == 0
    correction = 0.5 if even_size else 0.0

    # Upper right quarter, walking right along a row until outside the circle
    # and then down until inside again
    upper_right = [_upper_left((0.0, float(radius)))]
    x, y = 0.0, float(radius)
    inside = True
    while y > 0:
        x_squared = 0.0
        y_squared = (y - correction) ** 2
        while inside:
            x += 1
            x_squared = (x - correction) ** 2
            if np.sqrt(x_squared + y_squared) > fradius:
                inside = False
        upper_right.append(_upper_left((x, y)))

        while not inside:
            y -= 1
            y_squared = (y - correction) ** 2
            if np.sqrt(x_squared + y_squared) <= fradius:
                inside = True
                upper_right.append(_upper_left((x, y)))
            if y <= 0:
                break

    if even_size:
        lower_right = [(u, -v + 1) for u, v in upper_right]
        lower_left = [(-u + 1, -v + 1) for u, v in upper_right]
        upper_left = [(-u + 1, v) for u, v in upper_right]
    else:
        lower_right = [(u, -v) for u, v in upper_right]
        lower_left = [(-u, -v) for u, v in upper_right]
        upper_left = [(-u, v) for u, v in upper_right]

    outline = upper_right + lower_right[::-1] + lower_left + upper_left[::-1]
    return np.asarray(outline, dtype=np.float64)


def snap_to_voxel_center(index: np.ndarray, size: int) -> np.ndarray:
    """Round the in-plane part of a slice index position for brush placement.

    Args:
        index: Slice index coordinates (u, v[, w]).
        size: Brush size; selects the rounding rule.

    Returns:
        Copy of index with u and v rounded.
    """
    snapped = np.asarray(index, dtype=np.float64).copy()
    # TODO: even sizes centre the stamp on a pixel corner and probably need
    # floor instead of round; both branches currently round identically.
    if size % 2 == 0:
        snapped[:2] = np.round(snapped[:2])
    else:
        snapped[:2] = np.round(snapped[:2])
    return snapped


def place_brush_contour(
    outline: np.ndarray, center: np.ndarray, plane: PlaneGeometry, time_step: int = 0
) -> Contour:
    """Move a brush outline to a snapped slice position and lift it to world."""
    center = np.asarray(center, dtype=np.float64)
    index = np.column_stack(
        [outline[:, 0] + center[0], outline[:, 1] + center[1], np.zeros(len(outline))]
    )
    return Contour(plane.index_to_world(index), plane, time_step, closed=True)


def create_gap_contour(
    last_position: np.ndarray, current_position: np.ndarray, size: int
) -> np.ndarray | None:
    """Rectangle bridging two brush positions that are more than a radius apart.

    Returns:
        Closed outline, shape (4, 2), or None if the positions are close enough
        that consecutive stamps overlap.
    """
    last = np.asarray(last_position, dtype=np.float64)[:2]
    current = np.asarray(current_position, dtype=np.float64)[:2]
    radius = size / 2.0
    distance = np.linalg.norm(current - last)
    if distance <= radius:
        return None

    direction = (current - last) / distance
    normal = np.array([-direction[1], direction[0]]) * radius
    return np.array([last + normal, current + normal, current - normal, last - normal])
