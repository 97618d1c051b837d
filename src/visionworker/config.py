"""
Configuration management for VisionWorker using Pydantic settings.

Loads configuration from:
1. .env file (if present)
2. config/config.json (defaults)
3. Environment variables (override with VISIONWORKER_ prefix)
"""

import json
import logging
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

# Project paths
PROJECT_ROOT = Path(__file__).parent.parent.parent
CONFIG_DIR = PROJECT_ROOT / "config"
RUNTIME_DIR = PROJECT_ROOT / "runtime"

# Load .env file from project root (if exists)
_env_file = PROJECT_ROOT / ".env"
if _env_file.exists():
    load_dotenv(_env_file)
    logger.debug(f"Loaded environment from {_env_file}")


def load_json_config() -> dict[str, Any]:
    """Load configuration from config.json file."""
    config_file = CONFIG_DIR / "config.json"
    if config_file.exists():
        with open(config_file) as f:
            return json.load(f)
    return {}


_json_config = load_json_config()
_inference_json = _json_config.get("inference", {})

# COCO class table in index order (default for YOLO exports)
COCO_CLASSES: tuple[str, ...] = (
    "person", "bicycle", "car", "motorcycle", "airplane", "bus", "train",
    "truck", "boat", "traffic light", "fire hydrant", "stop sign",
    "parking meter", "bench", "bird", "cat", "dog", "horse", "sheep", "cow",
    "elephant", "bear", "zebra", "giraffe", "backpack", "umbrella", "handbag",
    "tie", "suitcase", "frisbee", "skis", "snowboard", "sports ball", "kite",
    "baseball bat", "baseball glove", "skateboard", "surfboard",
    "tennis racket", "bottle", "wine glass", "cup", "fork", "knife", "spoon",
    "bowl", "banana", "apple", "sandwich", "orange", "broccoli", "carrot",
    "hot dog", "pizza", "donut", "cake", "chair", "couch", "potted plant",
    "bed", "dining table", "toilet", "tv", "laptop", "mouse", "remote",
    "keyboard", "cell phone", "microwave", "oven", "toaster", "sink",
    "refrigerator", "book", "clock", "vase", "scissors", "teddy bear",
    "hair drier", "toothbrush",
)


class InferenceConfig(BaseSettings):
    """Inference session, codec and NMS configuration."""

    model_config = {"env_prefix": "VISIONWORKER_INFERENCE_"}

    model_path: str = Field(
        default=_inference_json.get("model_path", str(PROJECT_ROOT / "models" / "yolo11n.onnx")),
        description="Path or http(s) URL of the ONNX model",
    )
    input_size: int = Field(
        default=_inference_json.get("input_size", 640),
        description="Square model input side in pixels",
    )
    emit_labels: bool = Field(
        default=_inference_json.get("emit_labels", True),
        description="Attach class names to detections (class_<id> otherwise)",
    )
    confidence_threshold: float = Field(
        default=_inference_json.get("confidence_threshold", 0.5),
        description="Minimum confidence for a decoded row (inclusive)",
    )
    iou_threshold: float = Field(
        default=_inference_json.get("iou_threshold", 0.45),
        description="IoU above which NMS suppresses the lower-scored box",
    )
    class_aware_nms: bool = Field(
        default=_inference_json.get("class_aware_nms", False),
        description="Only suppress overlapping boxes of the same class",
    )
    class_names: list[str] = Field(
        default=list(_inference_json.get("class_names", COCO_CLASSES)),
        description="Class table, index = class id",
    )
    layout: str = Field(
        default=_inference_json.get("layout", "fixed_class_id"),
        description="Output layout: fixed_class_id ([1,N,6]) or class_probabilities ([1,N,5+K])",
    )
    row_stride: int | None = Field(
        default=_inference_json.get("row_stride"),
        description="Values per output row (derived from layout when unset)",
    )
    accelerated_providers: list[str] = Field(
        default=_inference_json.get(
            "accelerated_providers", ["CUDAExecutionProvider", "CPUExecutionProvider"]
        ),
        description="ONNX Runtime providers for the accelerated backend",
    )
    fallback_providers: list[str] = Field(
        default=_inference_json.get("fallback_providers", ["CPUExecutionProvider"]),
        description="ONNX Runtime providers for the fallback backend",
    )
    fetch_timeout_seconds: float = Field(
        default=_inference_json.get("fetch_timeout_seconds", 30.0),
        description="Timeout for downloading a model given by URL",
    )

    @field_validator("input_size")
    @classmethod
    def validate_input_size(cls, v):
        if v < 32 or v > 4096:
            raise ValueError(f"input_size must be between 32 and 4096, got {v}")
        return v

    @field_validator("confidence_threshold", "iou_threshold")
    @classmethod
    def validate_unit_interval(cls, v):
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"threshold must be 0.0-1.0, got {v}")
        return v

    @field_validator("layout")
    @classmethod
    def validate_layout(cls, v):
        v = v.lower()
        if v not in ("fixed_class_id", "class_probabilities"):
            raise ValueError(f"layout must be fixed_class_id or class_probabilities, got {v}")
        return v

    @field_validator("row_stride")
    @classmethod
    def validate_row_stride(cls, v):
        if v is not None and v < 6:
            raise ValueError(f"row_stride must be >= 6, got {v}")
        return v


class APIConfig(BaseSettings):
    """Diagnostics API server configuration."""

    model_config = {"env_prefix": "VISIONWORKER_API_"}

    enabled: bool = Field(
        default=_json_config.get("api", {}).get("enabled", True),
        description="Enable diagnostics API server",
    )
    host: str = Field(
        default=_json_config.get("api", {}).get("host", "127.0.0.1"),
        description="API server bind host",
    )
    port: int = Field(
        default=_json_config.get("api", {}).get("port", 8080),
        description="API server port",
    )


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    model_config = {"env_prefix": "VISIONWORKER_LOGGING_"}

    level: str = Field(
        default=_json_config.get("logging", {}).get("level", "INFO"),
        description="Log level",
    )
    file: str = Field(
        default=_json_config.get("logging", {}).get(
            "file", str(RUNTIME_DIR / "logs" / "visionworker.log")
        ),
        description="Log file path",
    )


# Global configuration instances
inference_config = InferenceConfig()
api_config = APIConfig()
logging_config = LoggingConfig()


def setup_logging() -> None:
    """Configure logging for the application with log rotation."""
    from logging.handlers import RotatingFileHandler

    log_dir = Path(logging_config.file).parent
    log_dir.mkdir(parents=True, exist_ok=True)

    # Use RotatingFileHandler to prevent disk fill (10MB max, keep 5 backups)
    file_handler = RotatingFileHandler(
        logging_config.file,
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, logging_config.level.upper()))
    root_logger.addHandler(file_handler)
    root_logger.addHandler(logging.StreamHandler())

    logger.info(
        f"Logging configured: level={logging_config.level}, "
        f"file={logging_config.file} (rotating, 10MB max, 5 backups)"
    )
