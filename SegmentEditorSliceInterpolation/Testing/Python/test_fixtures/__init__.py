"""Synthetic label volume generators for slice interpolation tests."""

from .synthetic_labels import (
    create_disk_mask,
    create_disk_stack,
    create_sparse_sphere,
)

__all__ = [
    "create_disk_mask",
    "create_disk_stack",
    "create_sparse_sphere",
]
