#!/usr/bin/env python3
"""Tests for post-processing options and label files.

All tests are offline and use temporary files.
"""

import json

import pytest

from libreimx500.config import STAGE_NAME, PostProcessConfig, load_config, load_labels


def _write(path, obj):
    path.write_text(json.dumps(obj))
    return str(path)


class TestPostProcessConfig:

    def test_defaults(self):
        cfg = PostProcessConfig(max_detections=3)
        assert cfg.threshold == pytest.approx(0.3)
        assert cfg.labels == ()

    @pytest.mark.parametrize("kwargs", [
        {"max_detections": -1},
        {"max_detections": 1, "threshold": -0.1},
        {"max_detections": 1, "threshold": 1.5},
    ])
    def test_out_of_range(self, kwargs):
        with pytest.raises(ValueError):
            PostProcessConfig(**kwargs)

    def test_frozen(self):
        cfg = PostProcessConfig(max_detections=3)
        with pytest.raises(AttributeError):
            cfg.threshold = 0.9


class TestLabels:

    def test_one_per_line(self, tmp_path):
        path = tmp_path / "labels.txt"
        path.write_text("person\r\nbicycle\n\ncar\n")
        assert load_labels(str(path)) == ("person", "bicycle", "", "car")

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_labels(str(tmp_path / "nope.txt"))


class TestLoadConfig:

    def test_stage_section(self, tmp_path):
        (tmp_path / "coco.txt").write_text("person\ncar\n")
        path = _write(tmp_path / "pp.json", {
            "rpicam_app": {"foo": 1},
            STAGE_NAME: {"max_detections": 5, "threshold": 0.6, "class_file": "coco.txt"},
        })
        cfg = load_config(path)
        assert cfg.max_detections == 5
        assert cfg.threshold == pytest.approx(0.6)
        assert cfg.labels == ("person", "car")

    def test_absolute_class_file(self, tmp_path):
        labels = tmp_path / "labels" / "names.txt"
        labels.parent.mkdir()
        labels.write_text("a\nb\n")
        cfg_dir = tmp_path / "cfg"
        cfg_dir.mkdir()
        path = _write(cfg_dir / "pp.json", {
            STAGE_NAME: {"max_detections": 2, "class_file": str(labels)},
        })
        assert load_config(path).labels == ("a", "b")

    def test_mapping_source(self):
        cfg = load_config({"max_detections": 4})
        assert cfg.max_detections == 4
        assert cfg.threshold == pytest.approx(0.3)
        assert cfg.labels == ()

    def test_explicit_labels_override_class_file(self, tmp_path):
        path = _write(tmp_path / "pp.json", {
            STAGE_NAME: {"max_detections": 1, "class_file": "missing.txt"},
        })
        assert load_config(path, labels=["x", "y"]).labels == ("x", "y")

    def test_other_stage_name(self):
        cfg = load_config({"my_stage": {"max_detections": 7}}, stage="my_stage")
        assert cfg.max_detections == 7

    def test_missing_max_detections(self):
        with pytest.raises(ValueError, match="max_detections"):
            load_config({STAGE_NAME: {"threshold": 0.5}})

    def test_missing_class_file(self, tmp_path):
        path = _write(tmp_path / "pp.json", {
            STAGE_NAME: {"max_detections": 1, "class_file": "missing.txt"},
        })
        with pytest.raises(FileNotFoundError):
            load_config(path)

    def test_invalid_threshold(self):
        with pytest.raises(ValueError, match="threshold"):
            load_config({"max_detections": 1, "threshold": 2})


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
