"""Configuration loading for fisheye calibration."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from calib.config import CalibrationConfig
from configs.validator import validate_config
from contracts import UndistortConfig
from detect.config import CheckerboardDetectorConfig
from exceptions import ConfigError, InvalidConfigError
from log_config.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).with_name("default.yaml")


@dataclass(frozen=True)
class RuntimeConfig:
    workers: int = 1
    log_level: str = "INFO"
    image_extensions: Tuple[str, ...] = (".jpg", ".jpeg", ".png", ".webp")


@dataclass(frozen=True)
class AppConfig:
    detector: CheckerboardDetectorConfig = field(default_factory=CheckerboardDetectorConfig)
    calibration: CalibrationConfig = field(default_factory=CalibrationConfig)
    undistort: UndistortConfig = field(default_factory=UndistortConfig)
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)


def default_config() -> AppConfig:
    """Built-in defaults, without reading any file."""
    return AppConfig()


def load_config(path: Optional[Path] = None) -> AppConfig:
    """Load and validate configuration from YAML file.

    Args:
        path: Path to configuration file (defaults to the bundled default.yaml)

    Returns:
        Validated AppConfig instance

    Raises:
        ConfigError: If configuration is invalid or cannot be loaded
    """
    path = path or DEFAULT_CONFIG_PATH
    try:
        logger.info(f"Loading configuration from {path}")
        if not path.exists():
            raise InvalidConfigError(f"Configuration file not found: {path}")

        data = yaml.safe_load(path.read_text())
        if data is None:
            data = {}

    except yaml.YAMLError as e:
        logger.error(f"Failed to parse YAML configuration: {e}")
        raise InvalidConfigError(f"Failed to parse configuration file: {e}")
    except OSError as e:
        logger.error(f"Failed to read configuration: {e}")
        raise InvalidConfigError(f"Failed to read configuration file: {e}")

    return config_from_dict(data)


def config_from_dict(data: Dict[str, Any]) -> AppConfig:
    """Validate a configuration mapping and build the frozen config objects."""
    data = copy.deepcopy(data)
    # Validate against JSON Schema (fills missing sections)
    validate_config(data)

    try:
        detector_data = dict(data["detector"])
        if "smoothing_sigmas" in detector_data:
            detector_data["smoothing_sigmas"] = tuple(detector_data["smoothing_sigmas"])
        detector = CheckerboardDetectorConfig(**detector_data)
        calibration = CalibrationConfig(**data["calibration"])
        undistort_data = dict(data["undistort"])
        if undistort_data.get("output_size") is not None:
            undistort_data["output_size"] = tuple(undistort_data["output_size"])
        undistort = UndistortConfig(**undistort_data)
        runtime_data = dict(data["runtime"])
        if "image_extensions" in runtime_data:
            runtime_data["image_extensions"] = tuple(
                ext.lower() for ext in runtime_data["image_extensions"]
            )
        runtime = RuntimeConfig(**runtime_data)
    except (TypeError, ValueError) as e:
        logger.error(f"Failed to construct configuration objects: {e}")
        raise InvalidConfigError(f"Failed to construct configuration: {e}")

    config = AppConfig(
        detector=detector,
        calibration=calibration,
        undistort=undistort,
        runtime=runtime,
    )
    logger.debug(
        f"Configuration loaded: {config.calibration.max_iterations} max iterations, "
        f"{config.runtime.workers} detection worker(s)"
    )
    return config


__all__ = [
    "AppConfig",
    "ConfigError",
    "RuntimeConfig",
    "config_from_dict",
    "default_config",
    "load_config",
]
