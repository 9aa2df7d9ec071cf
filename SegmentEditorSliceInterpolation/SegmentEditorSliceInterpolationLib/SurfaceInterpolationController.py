"""3D surface interpolation controller.

Keeps the contours drawn on a label volume per time step, reconstructs a
surface through them on a single background thread and hands out
``concurrent.futures.Future`` handles for the result.

Requests arriving while a reconstruction runs are deferred. When the running
reconstruction finishes, its result is discarded if requests are waiting, and
exactly one new reconstruction runs for all of them.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field

import numpy as np
import psutil

from .Contour import Contour, fill_contour_in_slice, fit_plane
from .InterpolatedSurface import ContourSurface, InterpolatedSurface
from .InterpolationConfig import InterpolationConfig
from .LabelVolume import LabelVolume
from .PlaneGeometry import PlaneGeometry, determine_affected_image_slice, extract_slice
from .SurfaceReconstruction import SurfaceReconstructor

logger = logging.getLogger(__name__)


@dataclass
class InterpolationSession:
    """Contours and result of one label volume at one time step.

    Attributes:
        volume: Label volume the contours were drawn on (not owned).
        time_step: Time step of the contours.
        min_spacing: Smallest voxel spacing of the volume.
        max_spacing: Largest voxel spacing of the volume.
        distance_image_volume: Node budget of the reconstruction grid.
        contours: Contours in drawing order.
        surface: Last reconstructed surface.
    """

    volume: LabelVolume
    time_step: int
    min_spacing: float
    max_spacing: float
    distance_image_volume: int
    contours: list[Contour] = field(default_factory=list)
    surface: InterpolatedSurface | None = None

    def create_reconstructor(self) -> SurfaceReconstructor:
        return SurfaceReconstructor(
            min_spacing=self.min_spacing,
            max_spacing=self.max_spacing,
            distance_image_volume=self.distance_image_volume,
        )


class SurfaceInterpolationController:
    """Contour bookkeeping and background surface reconstruction.

    Example:
        controller = SurfaceInterpolationController()
        controller.set_current_interpolation_session(volume)
        controller.add_new_contours(contours)
        surface = controller.request_interpolation().result()
    """

    def __init__(self, config: InterpolationConfig | None = None, auto_interpolate: bool = True):
        """Initialize the controller.

        Args:
            config: Interpolation settings.
            auto_interpolate: Request a reconstruction whenever the contours
                or the current time step change.
        """
        self.config = config or InterpolationConfig()
        self.auto_interpolate = auto_interpolate

        self._sessions: dict[tuple[str, int], InterpolationSession] = {}
        self._current_volume: LabelVolume | None = None
        self._current_time_step = 0
        self._session_lock = threading.RLock()

        # Background slot state, guarded by _run_lock
        self._run_lock = threading.Lock()
        self._running = False
        self._thread: threading.Thread | None = None
        self._inflight: list[Future] = []
        self._pending: list[Future] = []
        self._last_future: Future | None = None

    # Sessions

    @property
    def current_volume(self) -> LabelVolume | None:
        return self._current_volume

    @property
    def current_time_step(self) -> int:
        return self._current_time_step

    @property
    def current_session(self) -> InterpolationSession | None:
        if self._current_volume is None:
            return None
        return self._get_or_create_session(self._current_volume, self._current_time_step)

    def _get_or_create_session(self, volume: LabelVolume, time_step: int) -> InterpolationSession:
        key = (volume.uid, time_step)
        with self._session_lock:
            session = self._sessions.get(key)
            if session is None:
                session = InterpolationSession(
                    volume=volume,
                    time_step=time_step,
                    min_spacing=float(volume.spacing.min()),
                    max_spacing=float(volume.spacing.max()),
                    distance_image_volume=self.config.distance_image_volume,
                )
                self._sessions[key] = session
                logger.debug(f"Created interpolation session for {volume.name or volume.uid} (t={time_step})")
            return session

    def set_current_interpolation_session(self, volume: LabelVolume | None) -> bool:
        """Make a volume the current interpolation target.

        Returns:
            True if the current volume changed.
        """
        if volume is self._current_volume:
            return False
        self._current_volume = volume
        if volume is not None:
            if not volume.time_geometry.is_valid_time_step(self._current_time_step):
                self._current_time_step = 0
            self._get_or_create_session(volume, self._current_time_step)
        return True

    def set_current_time_point(self, time_point: float) -> None:
        """Switch to the time step containing a time point."""
        volume = self._current_volume
        if volume is None:
            return
        if not volume.time_geometry.is_valid_time_point(time_point):
            logger.warning(
                f"Time point {time_point} is not within the time bounds of {volume.name or volume.uid}"
            )
            return
        time_step = volume.time_geometry.time_point_to_time_step(time_point)
        if time_step == self._current_time_step:
            return
        self._current_time_step = time_step
        self._get_or_create_session(volume, time_step)
        if self.auto_interpolate:
            self.request_interpolation()

    def remove_interpolation_session(self, volume: LabelVolume) -> None:
        """Drop all sessions of a volume once background work has finished."""
        self.wait_for_pending_interpolation()
        with self._session_lock:
            for key in [key for key in self._sessions if key[0] == volume.uid]:
                del self._sessions[key]
        if volume is self._current_volume:
            self._current_volume = None
        logger.debug(f"Removed interpolation sessions of {volume.name or volume.uid}")

    # Contours

    def add_new_contour(self, contour: Contour) -> None:
        self.add_new_contours([contour])

    def add_new_contours(self, contours: list[Contour]) -> None:
        """Add contours; contours on an already used plane replace that plane's contours.

        Raises:
            RuntimeError: If no interpolation session is set.
        """
        if self._current_volume is None:
            raise RuntimeError("No interpolation session set")
        if not contours:
            return

        with self._session_lock:
            for time_step in {c.time_step for c in contours}:
                session = self._get_or_create_session(self._current_volume, time_step)
                new_contours = [c for c in contours if c.time_step == time_step]
                session.contours = [
                    existing
                    for existing in session.contours
                    if not any(existing.plane.is_same_plane(c.plane) for c in new_contours)
                ]
                session.contours.extend(new_contours)

        logger.debug(f"Added {len(contours)} contours")
        if self.auto_interpolate:
            self.request_interpolation()

    def remove_contours_on_plane(self, plane: PlaneGeometry, time_step: int | None = None) -> int:
        """Remove the contours drawn on a plane.

        Returns:
            Number of removed contours.
        """
        if self._current_volume is None:
            return 0
        time_step = self._current_time_step if time_step is None else time_step
        with self._session_lock:
            session = self._get_or_create_session(self._current_volume, time_step)
            kept = [c for c in session.contours if not c.plane.is_same_plane(plane)]
            removed = len(session.contours) - len(kept)
            session.contours = kept

        if removed and self.auto_interpolate:
            self.request_interpolation()
        return removed

    def get_contours(self, time_step: int | None = None) -> list[Contour]:
        if self._current_volume is None:
            return []
        time_step = self._current_time_step if time_step is None else time_step
        with self._session_lock:
            return list(self._get_or_create_session(self._current_volume, time_step).contours)

    def get_number_of_contours(self) -> int:
        return len(self.get_contours())

    def get_contours_as_surface(self) -> ContourSurface:
        """Export the current contours for persistence."""
        contours = self.get_contours()
        return ContourSurface(
            polylines=[c.points.copy() for c in contours],
            closed=[c.closed for c in contours],
            time_step=self._current_time_step,
        )

    def reinitialize_interpolation(self, contour_surface: ContourSurface) -> None:
        """Replace the current contours with persisted ones.

        Contour planes are re-fitted from the points. Polylines with fewer
        than three points are ignored.
        """
        session = self.current_session
        if session is None:
            logger.warning("Cannot reinitialize interpolation: no interpolation session set")
            return

        contours = []
        for points, closed in zip(contour_surface.polylines, contour_surface.closed):
            points = np.asarray(points, dtype=np.float64)
            if len(points) < 3:
                continue
            contours.append(Contour(points, fit_plane(points), session.time_step, closed))

        with self._session_lock:
            session.contours = contours
            session.surface = None
        logger.info(f"Reinitialized interpolation with {len(contours)} contours")

        if self.auto_interpolate:
            self.request_interpolation()

    def invalidate_inconsistent_contours(self, label: int) -> int:
        """Drop axis-aligned contours that no longer match the label volume.

        A plane's contours are dropped when its slice no longer contains the
        label, or when the overlap (IoU) of the filled contours with the
        label mask falls below the consistency threshold.

        Returns:
            Number of removed contours.
        """
        session = self.current_session
        if session is None:
            return 0
        volume = session.volume
        data = volume.get_volume_data(session.time_step)

        with self._session_lock:
            contours = list(session.contours)

        removed: set[int] = set()
        for index, contour in enumerate(contours):
            if index in removed:
                continue
            affected = determine_affected_image_slice(volume, contour.plane)
            if affected is None:
                continue
            slice_dimension, slice_index = affected
            same_plane = [
                i for i, other in enumerate(contours) if other.plane.is_same_plane(contour.plane)
            ]

            if not 0 <= slice_index < volume.get_dimension(slice_dimension):
                removed.update(same_plane)
                continue

            mask = extract_slice(data, slice_dimension, slice_index) == label
            if not mask.any():
                removed.update(same_plane)
                continue

            slice_plane = PlaneGeometry.for_volume_slice(volume, slice_dimension, slice_index)
            filled = np.zeros(mask.shape, dtype=bool)
            for i in same_plane:
                projected = Contour(contours[i].points, slice_plane, contours[i].time_step)
                filled |= fill_contour_in_slice(projected, mask.shape)
            union = np.count_nonzero(filled | mask)
            iou = np.count_nonzero(filled & mask) / union if union else 0.0
            if iou < self.config.contour_consistency_threshold:
                logger.debug(
                    f"Contours on slice {slice_index} (dim {slice_dimension}) inconsistent, IoU={iou:.2f}"
                )
                removed.update(same_plane)

        if not removed:
            return 0

        with self._session_lock:
            session.contours = [c for i, c in enumerate(contours) if i not in removed]
        logger.info(f"Removed {len(removed)} inconsistent contours")

        if self.auto_interpolate:
            self.request_interpolation()
        return len(removed)

    # Interpolation

    def estimate_portion_of_needed_memory(self) -> float:
        """Estimated reconstruction memory as a fraction of physical memory."""
        session = self.current_session
        if session is None:
            return 0.0
        with self._session_lock:
            contours = list(session.contours)
        required = session.create_reconstructor().estimate_required_bytes(contours)
        return required / psutil.virtual_memory().total

    def interpolate(self) -> InterpolatedSurface | None:
        """Reconstruct the surface of the current session synchronously."""
        session = self.current_session
        if session is None:
            return None
        surface = self._reconstruct(session)
        session.surface = surface
        return surface

    def _reconstruct(self, session: InterpolationSession) -> InterpolatedSurface | None:
        with self._session_lock:
            contours = list(session.contours)
        if not contours:
            logger.debug("No contours to interpolate")
            return None
        return session.create_reconstructor().reconstruct(contours, session.time_step)

    @property
    def last_future(self) -> Future | None:
        """Handle returned by the most recent request_interpolation call."""
        return self._last_future

    def get_interpolation_result(self) -> InterpolatedSurface | None:
        session = self.current_session
        return session.surface if session is not None else None

    def request_interpolation(self) -> Future:
        """Start (or join) a background reconstruction.

        Returns:
            Future resolving to the InterpolatedSurface or None. A failed
            reconstruction sets its exception on the future.
        """
        future: Future = Future()
        with self._run_lock:
            self._last_future = future
            if self._running:
                self._pending.append(future)
                return future
            self._running = True
            self._inflight = [future]
            self._thread = threading.Thread(
                target=self._run_interpolation, name="SurfaceInterpolation", daemon=True
            )
            self._thread.start()
        return future

    def _run_interpolation(self) -> None:
        while True:
            session = self.current_session
            result = None
            error = None
            try:
                if session is not None:
                    result = self._reconstruct(session)
            except Exception as e:
                logger.exception("Surface interpolation failed")
                error = e

            with self._run_lock:
                if self._pending:
                    logger.debug(
                        f"Discarding stale surface, re-running for {len(self._pending)} deferred requests"
                    )
                    self._inflight.extend(self._pending)
                    self._pending = []
                    continue
                waiters = self._inflight
                self._inflight = []
                self._running = False
                if error is None and session is not None:
                    session.surface = result
            break

        for future in waiters:
            if not future.set_running_or_notify_cancel():
                continue
            if error is not None:
                future.set_exception(error)
            else:
                future.set_result(result)

    def wait_for_pending_interpolation(self, timeout: float | None = None) -> None:
        """Block until the background reconstruction (and its re-runs) finished."""
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def rasterize_interpolation_result(self, volume: LabelVolume | None = None) -> np.ndarray | None:
        """Sample the current surface's implicit field at voxel centres.

        Args:
            volume: Target geometry; defaults to the current volume.

        Returns:
            Boolean ``(z, y, x)`` mask, or None if there is no surface.
        """
        surface = self.get_interpolation_result()
        volume = volume or self._current_volume
        if surface is None or volume is None:
            return None

        grid = surface.grid
        corners = np.array(
            [
                grid.origin + grid.spacing * (np.array(grid.shape) - 1) * np.array(c)
                for c in np.ndindex(2, 2, 2)
            ]
        )
        corner_index = volume.world_to_index(corners)
        dims = np.array([volume.get_dimension(axis) for axis in range(3)])
        lower = np.clip(np.floor(corner_index.min(axis=0)).astype(int), 0, dims)
        upper = np.clip(np.ceil(corner_index.max(axis=0)).astype(int) + 1, 0, dims)

        mask = np.zeros(volume.shape, dtype=bool)
        if np.any(upper <= lower):
            return mask

        k, j, i = np.meshgrid(
            np.arange(lower[2], upper[2]),
            np.arange(lower[1], upper[1]),
            np.arange(lower[0], upper[0]),
            indexing="ij",
        )
        index = np.stack([i, j, k], axis=-1).astype(np.float64)
        inside = surface.contains(volume.index_to_world(index))
        mask[lower[2] : upper[2], lower[1] : upper[1], lower[0] : upper[0]] = inside
        logger.debug(f"Rasterized surface into {np.count_nonzero(mask)} voxels")
        return mask
