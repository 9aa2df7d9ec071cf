#!/usr/bin/env python
"""Fill the gaps between sparsely drawn slices of a label map.

Reads a label map (any format SimpleITK can read), interpolates one label
between its drawn slices, and writes the result.

Usage:
    python scripts/interpolate_labelmap.py INPUT OUTPUT [--label N] [--axis 0|1|2]
        [--mode 2d|3d] [--threads N] [--config FILE]

Example:
    # Shape-based interpolation of label 1 between axial slices
    python scripts/interpolate_labelmap.py sparse.nrrd filled.nrrd --label 1

    # Surface interpolation through the contours of the drawn slices
    python scripts/interpolate_labelmap.py sparse.nrrd filled.nrrd --mode 3d
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

import SimpleITK as sitk

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("interpolate_labelmap")


def get_project_root() -> Path:
    """Get the project root directory."""
    script_path = Path(__file__).resolve()
    return script_path.parent.parent


PROJECT_ROOT = get_project_root()
sys.path.insert(0, str(PROJECT_ROOT / "SegmentEditorSliceInterpolation"))

from SegmentEditorSliceInterpolationLib import (  # noqa: E402
    InterpolationConfig,
    InterpolationMode,
    LabelVolume,
    PlaneGeometry,
    SlicesInterpolator,
)


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Interpolate a label between drawn slices")
    parser.add_argument("input", type=Path, help="Sparse label map")
    parser.add_argument("output", type=Path, help="Output label map")
    parser.add_argument("--label", type=int, default=1, help="Label value to interpolate")
    parser.add_argument(
        "--axis",
        type=int,
        choices=(0, 1, 2),
        default=2,
        help="Index axis the drawn slices are perpendicular to (2 = axial)",
    )
    parser.add_argument("--mode", choices=("2d", "3d"), default="2d", help="Interpolation method")
    parser.add_argument("--threads", type=int, default=None, help="Worker threads (2d)")
    parser.add_argument("--config", type=Path, default=None, help="YAML interpolation config")
    return parser.parse_args()


def interpolate_2d(interpolator: SlicesInterpolator, volume: LabelVolume, axis: int) -> int:
    """Accept every shape-based interpolation along an axis."""
    interpolator.set_mode(InterpolationMode.SLICE_2D)
    plane = PlaneGeometry.for_volume_slice(volume, axis, 0)
    interpolator.batch_applier.accept_all(plane, volume.time_geometry.first_time_point)
    return len(interpolator.batch_applier.last_changed_slices)


def interpolate_3d(interpolator: SlicesInterpolator, volume: LabelVolume, axis: int) -> int:
    """Reconstruct a surface through the drawn slices and rasterise it."""
    time_point = volume.time_geometry.first_time_point
    populated = interpolator.slice_interpolator.get_populated_slice_indices(axis)
    for slice_index in populated:
        plane = PlaneGeometry.for_volume_slice(volume, axis, int(slice_index))
        interpolator.add_contours_from_slice(plane, time_point)
    logger.info(
        f"Collected {interpolator.surface_interpolator.get_number_of_contours()} contours "
        f"from {len(populated)} slices"
    )

    mode = interpolator.set_mode(
        InterpolationMode.SURFACE_3D,
        confirm=lambda portion: logger.warning(f"Continuing with {portion:.0%} of memory") or True,
    )
    if mode is not InterpolationMode.SURFACE_3D:
        return 0
    if not interpolator.accept_3d_interpolation(time_point):
        logger.warning("No surface could be reconstructed")
        return 0
    return 1


def main():
    """Main entry point."""
    args = parse_args()

    if not args.input.exists():
        logger.error(f"Input not found: {args.input}")
        sys.exit(1)

    config = InterpolationConfig.load(args.config) if args.config else InterpolationConfig()
    if args.threads is not None:
        config.num_threads = args.threads
    errors = config.validate()
    if errors:
        for error in errors:
            logger.error(error)
        sys.exit(1)

    image = sitk.ReadImage(str(args.input))
    volume = LabelVolume.from_sitk_image(image, name=args.input.name)
    logger.info(f"Loaded {args.input} with shape {volume.shape} and spacing {volume.spacing}")

    interpolator = SlicesInterpolator(config)
    interpolator.set_working_volume(volume)
    interpolator.active_label = args.label

    start_time = time.perf_counter()
    if args.mode == "2d":
        changed = interpolate_2d(interpolator, volume, args.axis)
        logger.info(f"Filled {changed} slices")
    else:
        changed = interpolate_3d(interpolator, volume, args.axis)
    elapsed = time.perf_counter() - start_time
    logger.info(f"Interpolation finished in {elapsed:.2f}s")

    output = volume.to_sitk_image()
    sitk.WriteImage(output, str(args.output), useCompression=True)
    logger.info(f"Wrote {args.output}")

    if not changed:
        sys.exit(2)


if __name__ == "__main__":
    main()
