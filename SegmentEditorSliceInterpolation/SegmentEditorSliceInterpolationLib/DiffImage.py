"""Diff images and their reversible application to label volumes.

A DiffImage holds only the voxels an edit changes, every other voxel keeps
the exterior label. Applying it with factor +1 merges it into the volume and
records what it overwrote; applying it with factor -1 restores exactly the
recorded values.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from .LabelVolume import LabelVolume
from .PlaneGeometry import LabelSlice, write_slice

logger = logging.getLogger(__name__)


class MergeStyle(Enum):
    """How diff voxels are merged into the destination.

    MERGE: only non-exterior diff voxels are written.
    REPLACE: every voxel of the diff is written.
    """

    MERGE = "merge"
    REPLACE = "replace"


class DiffImage:
    """Same-shaped buffer of changed voxels for one time step.

    Workers may write disjoint slices concurrently.
    """

    def __init__(self, shape: tuple[int, int, int], dtype=np.uint16, exterior_label: int = 0):
        self.data = np.full(shape, exterior_label, dtype=dtype)
        self.exterior_label = exterior_label
        # (changed mask, previous values), set while the diff is applied
        self._applied_record: tuple[np.ndarray, np.ndarray] | None = None

    @classmethod
    def for_volume(cls, volume: LabelVolume) -> DiffImage:
        return cls(volume.shape, dtype=volume.dtype, exterior_label=volume.exterior_label)

    @property
    def shape(self) -> tuple[int, int, int]:
        return self.data.shape

    @property
    def is_applied(self) -> bool:
        return self._applied_record is not None

    def write_slice(self, label_slice: LabelSlice) -> None:
        """Copy an interpolated slice into the diff."""
        write_slice(self.data, label_slice.slice_dimension, label_slice.slice_index, label_slice.data)

    def changed_voxel_count(self) -> int:
        return int(np.count_nonzero(self.data != self.exterior_label))

    def is_empty(self) -> bool:
        return not np.any(self.data != self.exterior_label)


@dataclass
class ApplyDiffImageOperation:
    """One direction of a reversible diff merge.

    Attributes:
        volume: Destination label volume.
        diff: Diff to merge or revert.
        time_step: Destination time step.
        factor: +1 to apply, -1 to revert.
        remap: Diff value to destination label; unlisted values pass through.
        merge_style: Merge or replace.
        locked_labels: Destination labels that are never overwritten.
    """

    volume: LabelVolume
    diff: DiffImage
    time_step: int = 0
    factor: int = 1
    remap: dict[int, int] | None = None
    merge_style: MergeStyle = MergeStyle.MERGE
    locked_labels: frozenset[int] = field(default_factory=frozenset)

    def inverse(self) -> ApplyDiffImageOperation:
        """Operation reverting this one."""
        return ApplyDiffImageOperation(
            self.volume,
            self.diff,
            self.time_step,
            -self.factor,
            self.remap,
            self.merge_style,
            self.locked_labels,
        )


class DiffImageApplier:
    """Executes ApplyDiffImageOperations under the destination volume lock."""

    def execute_operation(self, operation: ApplyDiffImageOperation) -> None:
        """Merge (factor +1) or revert (factor -1) a diff.

        Raises:
            ValueError: If the factor is not +1 or -1, or the diff does not
                match the destination shape.
            RuntimeError: If reverting a diff that is not applied.
        """
        if operation.factor not in (1, -1):
            raise ValueError(f"Diff factor must be +1 or -1, got {operation.factor}")

        volume = operation.volume
        diff = operation.diff
        with volume.lock:
            target = volume.get_volume_data(operation.time_step)
            if target.shape != diff.shape:
                raise ValueError(
                    f"Diff shape {diff.shape} does not match volume shape {target.shape}"
                )

            if operation.factor == 1:
                changed = self._apply(operation, target)
            else:
                changed = self._revert(diff, target)
            volume.modified()

        logger.debug(
            f"{'Applied' if operation.factor == 1 else 'Reverted'} diff on "
            f"{volume.name or volume.uid} (t={operation.time_step}): {changed} voxels"
        )

    def _apply(self, operation: ApplyDiffImageOperation, target: np.ndarray) -> int:
        diff = operation.diff
        values = remap_labels(diff.data, operation.remap)

        if operation.merge_style is MergeStyle.MERGE:
            mask = diff.data != diff.exterior_label
        else:
            mask = np.ones(diff.shape, dtype=bool)
        if operation.locked_labels:
            mask &= ~np.isin(target, list(operation.locked_labels))

        diff._applied_record = (mask, target[mask].copy())
        target[mask] = values[mask]
        return int(np.count_nonzero(mask))

    def _revert(self, diff: DiffImage, target: np.ndarray) -> int:
        if diff._applied_record is None:
            raise RuntimeError("Cannot revert a diff that has not been applied")
        mask, previous = diff._applied_record
        target[mask] = previous
        diff._applied_record = None
        return int(np.count_nonzero(mask))


def remap_labels(data: np.ndarray, remap: dict[int, int] | None) -> np.ndarray:
    """Translate label values through a remap table.

    Values without an entry are passed through unchanged. All lookups use
    the source values, so chained entries (1 -> 2, 2 -> 3) do not cascade.
    """
    if not remap:
        return data
    result = data.copy()
    for source, destination in remap.items():
        result[data == source] = destination
    return result
