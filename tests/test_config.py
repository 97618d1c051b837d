"""
Tests for settings validation and environment overrides.
"""

import pytest
from pydantic import ValidationError

from visionworker.config import COCO_CLASSES, InferenceConfig


class TestInferenceConfig:
    def test_defaults(self):
        config = InferenceConfig()
        assert config.input_size == 640
        assert config.confidence_threshold == 0.5
        assert config.iou_threshold == 0.45
        assert config.class_aware_nms is False
        assert config.layout == "fixed_class_id"
        assert len(config.class_names) == len(COCO_CLASSES) == 80
        assert config.class_names[0] == "person"

    @pytest.mark.parametrize("size", [16, 8192])
    def test_input_size_bounds(self, size):
        with pytest.raises(ValidationError):
            InferenceConfig(input_size=size)

    @pytest.mark.parametrize("field", ["confidence_threshold", "iou_threshold"])
    def test_threshold_bounds(self, field):
        with pytest.raises(ValidationError):
            InferenceConfig(**{field: 1.5})

    def test_layout_normalized(self):
        assert InferenceConfig(layout="CLASS_PROBABILITIES").layout == "class_probabilities"

    def test_unknown_layout(self):
        with pytest.raises(ValidationError):
            InferenceConfig(layout="anchors")

    def test_row_stride_minimum(self):
        with pytest.raises(ValidationError):
            InferenceConfig(row_stride=4)

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("VISIONWORKER_INFERENCE_INPUT_SIZE", "320")
        monkeypatch.setenv("VISIONWORKER_INFERENCE_CLASS_AWARE_NMS", "true")
        config = InferenceConfig()
        assert config.input_size == 320
        assert config.class_aware_nms is True
