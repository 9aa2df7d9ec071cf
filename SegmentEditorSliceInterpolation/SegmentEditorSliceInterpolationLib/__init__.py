"""SegmentEditorSliceInterpolation library.

Reconstructs missing slices of a label volume and continuous surfaces from
sparse contours, and commits the results as undoable edits.

Core Classes:
    LabelVolume: 3D/4D label array with geometry and time geometry
    PlaneGeometry: Oriented plane with slice index coordinates
    Contour: Planar world-space polyline
    SegmentationInterpolationController: 2D shape-based slice interpolation
    SurfaceInterpolationController: 3D surface interpolation from contours
    BatchInterpolationApplier: Multi-threaded accept-all of 2D interpolations
    SlicesInterpolator: Interpolation session facade driven by navigation events

Undo Classes:
    DiffImage: Changed voxels of an edit
    DiffImageApplier: Reversible merge of diff images
    UndoStack: Bounded undo/redo history
"""

from .BatchInterpolationApplier import BatchInterpolationApplier
from .Contour import (
    Contour,
    contours_from_mask,
    create_brush_contour,
    create_gap_contour,
    fill_contour_in_slice,
    fit_plane,
    place_brush_contour,
    snap_to_voxel_center,
)
from .DiffImage import ApplyDiffImageOperation, DiffImage, DiffImageApplier, MergeStyle
from .InterpolatedSurface import ContourSurface, InterpolatedSurface, ReconstructionGrid
from .InterpolationConfig import InterpolationConfig
from .InterpolationEvents import EventKind, SliceNavigationEvent
from .LabelVolume import LabelVolume, TimeGeometry
from .PlaneGeometry import (
    LabelSlice,
    PlaneGeometry,
    determine_affected_image_slice,
    extract_slice,
    write_slice,
)
from .ProgressReporter import ProgressReporter
from .SegmentationInterpolationController import SegmentationInterpolationController
from .ShapeBasedInterpolationAlgorithm import ShapeBasedInterpolationAlgorithm
from .SliceImageCache import CacheStats, SliceImageCache
from .SlicesInterpolator import InterpolationMode, SlicesInterpolator
from .SurfaceInterpolationController import InterpolationSession, SurfaceInterpolationController
from .SurfaceReconstruction import SurfaceReconstructor
from .UndoModel import OperationEvent, UndoStack

__all__ = [
    # Geometry
    "LabelVolume",
    "TimeGeometry",
    "PlaneGeometry",
    "LabelSlice",
    "determine_affected_image_slice",
    "extract_slice",
    "write_slice",
    # Contours
    "Contour",
    "contours_from_mask",
    "fill_contour_in_slice",
    "fit_plane",
    "create_brush_contour",
    "create_gap_contour",
    "place_brush_contour",
    "snap_to_voxel_center",
    # 2D interpolation
    "SegmentationInterpolationController",
    "ShapeBasedInterpolationAlgorithm",
    "SliceImageCache",
    "CacheStats",
    # 3D interpolation
    "SurfaceInterpolationController",
    "InterpolationSession",
    "SurfaceReconstructor",
    "InterpolatedSurface",
    "ContourSurface",
    "ReconstructionGrid",
    # Batch apply
    "BatchInterpolationApplier",
    "ProgressReporter",
    # Undo
    "DiffImage",
    "DiffImageApplier",
    "ApplyDiffImageOperation",
    "MergeStyle",
    "OperationEvent",
    "UndoStack",
    # Session
    "SlicesInterpolator",
    "InterpolationMode",
    "EventKind",
    "SliceNavigationEvent",
    # Configuration
    "InterpolationConfig",
]
