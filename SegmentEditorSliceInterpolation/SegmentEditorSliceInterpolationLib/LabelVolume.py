"""Label volume and time geometry.

A LabelVolume wraps a 3D ``(z, y, x)`` or 4D ``(t, z, y, x)`` numpy array of
discrete label identifiers together with the index-to-world transform and the
time geometry needed by the interpolation controllers.

Index coordinates follow the ``(i, j, k) = (x, y, z)`` convention while the
array is stored ``(z, y, x)``, matching SimpleITK's GetArrayFromImage.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass

import numpy as np
import SimpleITK as sitk

logger = logging.getLogger(__name__)


@dataclass
class TimeGeometry:
    """Proportional time geometry: equally long, contiguous time steps.

    Attributes:
        first_time_point: Start of the first time step (ms).
        step_duration: Duration of every time step (ms).
        num_steps: Number of time steps.
    """

    first_time_point: float = 0.0
    step_duration: float = 1.0
    num_steps: int = 1

    def is_valid_time_point(self, time_point: float) -> bool:
        """Check whether a time point lies within the time bounds."""
        end = self.first_time_point + self.step_duration * self.num_steps
        return self.first_time_point <= time_point < end

    def is_valid_time_step(self, time_step: int) -> bool:
        """Check whether a time step index exists."""
        return 0 <= time_step < self.num_steps

    def time_point_to_time_step(self, time_point: float) -> int:
        """Map a time point to its time step.

        Raises:
            ValueError: If the time point is outside the time bounds.
        """
        if not self.is_valid_time_point(time_point):
            raise ValueError(f"Time point {time_point} outside of time bounds")
        return int((time_point - self.first_time_point) // self.step_duration)

    def get_time_bounds(self, time_step: int) -> tuple[float, float]:
        """Return (start, end) of a time step."""
        start = self.first_time_point + time_step * self.step_duration
        return start, start + self.step_duration


class LabelVolume:
    """A 3D or 4D grid of discrete labels.

    The engine only keeps a non-owning reference to a LabelVolume during an
    interpolation session. All writes must go through ``lock`` and be followed
    by ``modified()`` so cached interpolation results are invalidated.

    Example:
        volume = LabelVolume(np.zeros((10, 64, 64), dtype=np.uint16), spacing=(0.5, 0.5, 2.0))
        volume.get_volume_data(0)[2] = 1
        volume.modified()
    """

    def __init__(
        self,
        data: np.ndarray,
        spacing: tuple[float, float, float] = (1.0, 1.0, 1.0),
        origin: tuple[float, float, float] = (0.0, 0.0, 0.0),
        direction: np.ndarray | None = None,
        time_geometry: TimeGeometry | None = None,
        exterior_label: int = 0,
        name: str = "",
    ):
        """Initialize the label volume.

        Args:
            data: Label array, ``(z, y, x)`` or ``(t, z, y, x)``.
            spacing: Voxel spacing along (x, y, z) in mm.
            origin: World position of voxel (0, 0, 0).
            direction: 3x3 direction cosine matrix (columns = index axes).
            time_geometry: Time geometry; defaults to one step per 3D volume.
            exterior_label: Reserved background label.
            name: Human readable name used in log messages.

        Raises:
            ValueError: If the array is not 3D or 4D, or the time geometry
                does not match the number of volumes.
        """
        data = np.asarray(data)
        if data.ndim == 3:
            self._dimension = 3
            data = data[np.newaxis, ...]
        elif data.ndim == 4:
            self._dimension = 4
        else:
            raise ValueError(f"Label volume must be 3D or 4D, got {data.ndim}D")

        self._data = data
        self.spacing = np.asarray(spacing, dtype=np.float64)
        self.origin = np.asarray(origin, dtype=np.float64)
        self.direction = (
            np.eye(3) if direction is None else np.asarray(direction, dtype=np.float64)
        )
        self.time_geometry = time_geometry or TimeGeometry(num_steps=data.shape[0])
        if self.time_geometry.num_steps != data.shape[0]:
            raise ValueError(
                f"Time geometry has {self.time_geometry.num_steps} steps "
                f"but volume has {data.shape[0]}"
            )
        self.exterior_label = exterior_label
        self.name = name

        self.uid = uuid.uuid4().hex
        self.lock = threading.RLock()
        self._mtime = 0

    @property
    def dimension(self) -> int:
        """Return 3 for a single volume, 4 for a time series."""
        return self._dimension

    @property
    def dtype(self) -> np.dtype:
        return self._data.dtype

    @property
    def time_steps(self) -> int:
        return self._data.shape[0]

    @property
    def shape(self) -> tuple[int, int, int]:
        """Shape of one 3D volume as stored, (z, y, x)."""
        return tuple(self._data.shape[1:])

    @property
    def mtime(self) -> int:
        """Modification counter, incremented by ``modified()``."""
        return self._mtime

    def modified(self) -> None:
        """Mark the label content as changed."""
        self._mtime += 1

    def get_dimension(self, index_axis: int) -> int:
        """Number of voxels along an index axis (0=i/x, 1=j/y, 2=k/z)."""
        return self._data.shape[3 - index_axis]

    def get_volume_data(self, time_step: int = 0) -> np.ndarray:
        """Return the writable 3D ``(z, y, x)`` view of one time step.

        Raises:
            IndexError: If the time step does not exist.
        """
        if not 0 <= time_step < self.time_steps:
            raise IndexError(f"Time step {time_step} out of range [0, {self.time_steps})")
        return self._data[time_step]

    def set_volume_data(self, array: np.ndarray, time_step: int = 0) -> None:
        """Overwrite one time step and mark the volume modified."""
        with self.lock:
            self.get_volume_data(time_step)[...] = array
            self.modified()

    # Geometry

    @property
    def index_to_world_matrix(self) -> np.ndarray:
        """3x3 matrix mapping (i, j, k) offsets to world offsets."""
        return self.direction @ np.diag(self.spacing)

    def index_to_world(self, index: np.ndarray) -> np.ndarray:
        """Map continuous index coordinates (..., 3) to world (..., 3)."""
        index = np.asarray(index, dtype=np.float64)
        return index @ self.index_to_world_matrix.T + self.origin

    def world_to_index(self, point: np.ndarray) -> np.ndarray:
        """Map world coordinates (..., 3) to continuous index (..., 3)."""
        point = np.asarray(point, dtype=np.float64)
        inverse = np.linalg.inv(self.index_to_world_matrix)
        return (point - self.origin) @ inverse.T

    # SimpleITK conversion

    @classmethod
    def from_sitk_image(cls, image: sitk.Image, exterior_label: int = 0, name: str = "") -> LabelVolume:
        """Create a label volume from a 3D or 4D SimpleITK image."""
        array = sitk.GetArrayFromImage(image)
        dim = image.GetDimension()
        spacing = image.GetSpacing()[:3]
        origin = image.GetOrigin()[:3]
        direction = np.asarray(image.GetDirection(), dtype=np.float64).reshape(dim, dim)[:3, :3]

        time_geometry = None
        if dim == 4:
            time_geometry = TimeGeometry(
                first_time_point=image.GetOrigin()[3],
                step_duration=image.GetSpacing()[3],
                num_steps=array.shape[0],
            )

        logger.debug(f"Loaded label volume {name or '<unnamed>'} with shape {array.shape}")
        return cls(
            array,
            spacing=spacing,
            origin=origin,
            direction=direction,
            time_geometry=time_geometry,
            exterior_label=exterior_label,
            name=name,
        )

    def to_sitk_image(self, time_step: int = 0) -> sitk.Image:
        """Export one time step as a 3D SimpleITK image."""
        image = sitk.GetImageFromArray(self.get_volume_data(time_step))
        image.SetSpacing([float(s) for s in self.spacing])
        image.SetOrigin([float(o) for o in self.origin])
        image.SetDirection([float(d) for d in self.direction.flatten()])
        return image
