"""Navigation events delivered to the interpolation session."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .PlaneGeometry import PlaneGeometry


class EventKind(Enum):
    """Kinds of slice navigation events."""

    TIME_CHANGED = "time_changed"
    SLICE_CHANGED = "slice_changed"
    DELETED = "deleted"


@dataclass(frozen=True)
class SliceNavigationEvent:
    """Event emitted by a slice navigation controller (one per view).

    Attributes:
        kind: What changed.
        controller_id: Identifier of the emitting navigation controller.
        time_point: Selected time point of the controller.
        plane: Current plane of the controller (slice events).
    """

    kind: EventKind
    controller_id: str
    time_point: float = 0.0
    plane: PlaneGeometry | None = None
