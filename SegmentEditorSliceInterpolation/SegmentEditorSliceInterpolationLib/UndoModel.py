"""Undo/redo history of paired operations."""

from __future__ import annotations

import itertools
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Callable

from .DiffImage import ApplyDiffImageOperation, DiffImageApplier

logger = logging.getLogger(__name__)

_group_ids = itertools.count(1)


@dataclass
class OperationEvent:
    """A forward operation with its inverse, recorded as one undo step."""

    do_operation: ApplyDiffImageOperation
    undo_operation: ApplyDiffImageOperation
    description: str
    group_id: int = field(default_factory=lambda: next(_group_ids))


class UndoStack:
    """Bounded undo/redo history.

    ``push`` only records an event; the caller executes the forward
    operation itself. ``undo``/``redo`` execute the stored operations.
    """

    def __init__(
        self,
        max_size: int = 50,
        executor: Callable[[ApplyDiffImageOperation], None] | None = None,
    ):
        self.max_size = max_size
        self._executor = executor or DiffImageApplier().execute_operation
        self._undo: deque[OperationEvent] = deque(maxlen=max_size)
        self._redo: list[OperationEvent] = []

    def __len__(self) -> int:
        return len(self._undo)

    def push(self, event: OperationEvent) -> None:
        """Record an event and drop the redo history."""
        self._undo.append(event)
        self._redo.clear()
        logger.info(f"Recorded undo step: {event.description}")

    def can_undo(self) -> bool:
        return bool(self._undo)

    def can_redo(self) -> bool:
        return bool(self._redo)

    def undo(self) -> OperationEvent | None:
        """Revert the most recent event, or return None if there is none."""
        if not self._undo:
            return None
        event = self._undo.pop()
        self._executor(event.undo_operation)
        self._redo.append(event)
        logger.info(f"Undo: {event.description}")
        return event

    def redo(self) -> OperationEvent | None:
        """Re-apply the most recently undone event."""
        if not self._redo:
            return None
        event = self._redo.pop()
        self._executor(event.do_operation)
        self._undo.append(event)
        logger.info(f"Redo: {event.description}")
        return event

    def descriptions(self) -> list[str]:
        """Descriptions of the undoable events, oldest first."""
        return [event.description for event in self._undo]

    def clear(self) -> None:
        self._undo.clear()
        self._redo.clear()
