"""Tests for the YAML interpolation configuration."""

import pytest
import yaml

from SegmentEditorSliceInterpolationLib import InterpolationConfig


class TestInterpolationConfig:
    """Tests for InterpolationConfig."""

    def test_defaults_are_valid(self):
        config = InterpolationConfig()

        assert config.validate() == []
        assert config.distance_image_volume == 50000
        assert config.memory_warning_threshold == 0.5
        assert config.worker_failure_policy == "abort"
        assert config.num_threads is None

    def test_load_nested_yaml(self, tmp_path):
        path = tmp_path / "interpolation.yaml"
        path.write_text(
            "surface:\n"
            "  distance_image_volume: 20000\n"
            "  memory_warning_threshold: 0.25\n"
            "batch:\n"
            "  num_threads: 4\n"
            "  worker_failure_policy: skip\n"
            "undo:\n"
            "  max_undo_steps: 10\n"
        )

        config = InterpolationConfig.load(path)

        assert config.distance_image_volume == 20000
        assert config.memory_warning_threshold == 0.25
        assert config.num_threads == 4
        assert config.worker_failure_policy == "skip"
        assert config.max_undo_steps == 10
        assert config.enable_result_cache is True
        assert config.source_path == path

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")

        assert InterpolationConfig.load(path).to_dict() == InterpolationConfig().to_dict()

    def test_empty_sections_give_defaults(self, tmp_path):
        path = tmp_path / "sections.yaml"
        path.write_text("surface:\nbatch:\ncache:\nundo:\n")

        assert InterpolationConfig.load(path).to_dict() == InterpolationConfig().to_dict()

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            InterpolationConfig.load(tmp_path / "missing.yaml")

    @pytest.mark.parametrize(
        "data",
        [
            {"surface": {"distance_image_volume": 0}},
            {"surface": {"memory_warning_threshold": 1.5}},
            {"surface": {"contour_consistency_threshold": -0.1}},
            {"batch": {"num_threads": 0}},
            {"batch": {"worker_failure_policy": "retry"}},
            {"undo": {"max_undo_steps": 0}},
        ],
    )
    def test_invalid_values(self, data):
        with pytest.raises(ValueError):
            InterpolationConfig.from_dict(data)

    def test_save_and_reload(self, tmp_path):
        config = InterpolationConfig(num_threads=2, worker_failure_policy="skip")
        path = tmp_path / "saved.yaml"

        config.save(path)

        assert yaml.safe_load(path.read_text())["batch"]["num_threads"] == 2
        assert InterpolationConfig.load(path).to_dict() == config.to_dict()
