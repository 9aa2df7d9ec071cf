"""YAML configuration loader for slice and surface interpolation.

Loads and validates the tunable settings of the interpolation engine:
the 3D reconstruction budget, the memory warning threshold, the batch
worker count and the policy applied when a batch worker fails.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

WORKER_FAILURE_POLICIES = ("abort", "skip")


@dataclass
class InterpolationConfig:
    """Complete interpolation configuration.

    Example YAML:
        surface:
          distance_image_volume: 50000
          memory_warning_threshold: 0.5
          contour_consistency_threshold: 0.5
        batch:
          num_threads: 8
          worker_failure_policy: abort
        cache:
          enable_result_cache: true
        undo:
          max_undo_steps: 50
    """

    # Surface (3D) interpolation
    distance_image_volume: int = 50000
    memory_warning_threshold: float = 0.5
    contour_consistency_threshold: float = 0.5

    # Batch apply
    num_threads: int | None = None  # None = os.cpu_count()
    worker_failure_policy: str = "abort"  # abort, skip

    # Caching
    enable_result_cache: bool = True

    # Undo
    max_undo_steps: int = 50

    # Source path (set when loading)
    source_path: Path | None = None

    @classmethod
    def load(cls, config_path: Path | str) -> InterpolationConfig:
        """Load configuration from YAML file.

        Args:
            config_path: Path to YAML config file.

        Returns:
            Loaded InterpolationConfig.

        Raises:
            FileNotFoundError: If config file doesn't exist.
            ValueError: If config is invalid.
        """
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        config = cls.from_dict(data)
        config.source_path = config_path

        logger.info(f"Loaded interpolation config from {config_path}")
        return config

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InterpolationConfig:
        """Parse a configuration dictionary (nested YAML layout).

        Args:
            data: Parsed YAML dictionary.

        Returns:
            InterpolationConfig instance.

        Raises:
            ValueError: If the resulting configuration is invalid.
        """
        config = cls()

        surface = data.get("surface") or {}
        config.distance_image_volume = int(
            surface.get("distance_image_volume", config.distance_image_volume)
        )
        config.memory_warning_threshold = float(
            surface.get("memory_warning_threshold", config.memory_warning_threshold)
        )
        config.contour_consistency_threshold = float(
            surface.get("contour_consistency_threshold", config.contour_consistency_threshold)
        )

        batch = data.get("batch") or {}
        num_threads = batch.get("num_threads")
        config.num_threads = int(num_threads) if num_threads is not None else None
        config.worker_failure_policy = str(
            batch.get("worker_failure_policy", config.worker_failure_policy)
        )

        cache = data.get("cache") or {}
        config.enable_result_cache = bool(
            cache.get("enable_result_cache", config.enable_result_cache)
        )

        undo = data.get("undo") or {}
        config.max_undo_steps = int(undo.get("max_undo_steps", config.max_undo_steps))

        errors = config.validate()
        if errors:
            raise ValueError("Invalid interpolation config: " + "; ".join(errors))

        return config

    def validate(self) -> list[str]:
        """Validate configuration.

        Returns:
            List of validation error messages (empty if valid).
        """
        errors = []

        if self.distance_image_volume <= 0:
            errors.append("distance_image_volume must be positive")

        if not 0.0 < self.memory_warning_threshold <= 1.0:
            errors.append("memory_warning_threshold must be in (0, 1]")

        if not 0.0 <= self.contour_consistency_threshold <= 1.0:
            errors.append("contour_consistency_threshold must be in [0, 1]")

        if self.num_threads is not None and self.num_threads <= 0:
            errors.append("num_threads must be positive")

        if self.worker_failure_policy not in WORKER_FAILURE_POLICIES:
            errors.append(f"Unknown worker_failure_policy: {self.worker_failure_policy}")

        if self.max_undo_steps <= 0:
            errors.append("max_undo_steps must be positive")

        return errors

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization.

        Returns:
            Configuration as dictionary (same layout as the YAML file).
        """
        return {
            "surface": {
                "distance_image_volume": self.distance_image_volume,
                "memory_warning_threshold": self.memory_warning_threshold,
                "contour_consistency_threshold": self.contour_consistency_threshold,
            },
            "batch": {
                "num_threads": self.num_threads,
                "worker_failure_policy": self.worker_failure_policy,
            },
            "cache": {
                "enable_result_cache": self.enable_result_cache,
            },
            "undo": {
                "max_undo_steps": self.max_undo_steps,
            },
        }

    def save(self, output_path: Path | str) -> None:
        """Save configuration to YAML file.

        Args:
            output_path: Path where to save config.
        """
        output_path = Path(output_path)
        with open(output_path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)
        logger.info(f"Saved interpolation config to {output_path}")
