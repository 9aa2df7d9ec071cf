"""Pytest configuration and fixtures for slice interpolation tests."""

import os
import sys

import numpy as np
import pytest

# Add module directory so SegmentEditorSliceInterpolationLib is importable
_THIS_DIR = os.path.dirname(os.path.abspath(__file__))
_MODULE_DIR = os.path.dirname(os.path.dirname(_THIS_DIR))
if _MODULE_DIR not in sys.path:
    sys.path.insert(0, _MODULE_DIR)

from test_fixtures.synthetic_labels import create_disk_stack  # noqa: E402


@pytest.fixture
def disk_volume():
    """10 axial slices of 32x32, disks of radius 6 on slices 2 and 7."""
    from SegmentEditorSliceInterpolationLib import LabelVolume

    data = create_disk_stack(shape=(10, 32, 32), disks={2: 6.0, 7: 6.0})
    return LabelVolume(data, name="disks")


@pytest.fixture
def growing_disk_volume():
    """10 axial slices of 32x32, radius 3 on slice 2 and radius 8 on slice 7."""
    from SegmentEditorSliceInterpolationLib import LabelVolume

    data = create_disk_stack(shape=(10, 32, 32), disks={2: 3.0, 7: 8.0})
    return LabelVolume(data, name="growing disks")


@pytest.fixture
def empty_volume():
    """Empty 10x32x32 label volume."""
    from SegmentEditorSliceInterpolationLib import LabelVolume

    return LabelVolume(np.zeros((10, 32, 32), dtype=np.uint16), name="empty")
