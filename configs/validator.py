"""Configuration validation using JSON Schema."""

from __future__ import annotations

from typing import Any, Dict

import jsonschema
from jsonschema import Draft7Validator, validators

from exceptions import ConfigValidationError
from log_config.logger import get_logger

logger = get_logger(__name__)

# JSON Schema for default.yaml configuration
CONFIG_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "properties": {
        "detector": {
            "type": "object",
            "default": {},
            "additionalProperties": False,
            "properties": {
                "smoothing_sigmas": {
                    "type": "array",
                    "items": {"type": "number", "exclusiveMinimum": 0, "maximum": 20},
                    "minItems": 1,
                },
                "response_threshold": {"type": "number", "exclusiveMinimum": 0, "maximum": 1},
                "max_candidates": {"type": "integer", "minimum": 4, "maximum": 20000},
                "ring_samples": {"type": "integer", "minimum": 8, "maximum": 256},
                "min_ring_contrast": {"type": "number", "minimum": 0, "maximum": 1},
                "grid_tolerance": {"type": "number", "exclusiveMinimum": 0, "maximum": 1},
                "max_seeds": {"type": "integer", "minimum": 1},
                "subpix_half_window": {"type": "integer", "minimum": 1, "maximum": 50},
                "subpix_max_iterations": {"type": "integer", "minimum": 1, "maximum": 1000},
                "subpix_epsilon": {"type": "number", "exclusiveMinimum": 0},
            },
        },
        "calibration": {
            "type": "object",
            "default": {},
            "additionalProperties": False,
            "properties": {
                "min_views": {"type": "integer", "minimum": 3},
                "max_iterations": {"type": "integer", "minimum": 1, "maximum": 10000},
                "tolerance": {"type": "number", "exclusiveMinimum": 0},
                "step_tolerance": {"type": "number", "exclusiveMinimum": 0},
                "max_stalled_iterations": {"type": "integer", "minimum": 1},
                "initial_damping": {"type": "number", "exclusiveMinimum": 0},
                "rank_tolerance": {"type": "number", "exclusiveMinimum": 0, "maximum": 1},
                "pose_refine_iterations": {"type": "integer", "minimum": 0},
                "assumed_fov_deg": {"type": "number", "exclusiveMinimum": 0, "maximum": 360},
            },
        },
        "undistort": {
            "type": "object",
            "default": {},
            "additionalProperties": False,
            "properties": {
                "scale": {"type": "number", "exclusiveMinimum": 0},
                "balance": {"type": ["number", "null"], "minimum": 0, "maximum": 1},
                "fov_scale": {"type": "number", "exclusiveMinimum": 0},
                "output_size": {
                    "type": ["array", "null"],
                    "items": {"type": "integer", "minimum": 1},
                    "minItems": 2,
                    "maxItems": 2,
                },
                "border_value": {"type": "number", "minimum": 0},
                "interpolation": {"type": "string", "enum": ["linear", "nearest"]},
            },
        },
        "runtime": {
            "type": "object",
            "default": {},
            "additionalProperties": False,
            "properties": {
                "workers": {"type": "integer", "minimum": 1, "maximum": 64},
                "log_level": {
                    "type": "string",
                    "enum": ["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"],
                },
                "image_extensions": {
                    "type": "array",
                    "items": {"type": "string", "pattern": "^\\.[A-Za-z0-9]+$"},
                    "minItems": 1,
                },
            },
        },
    },
}


def extend_with_default(validator_class):
    """Extend JSON Schema validator to set default values."""
    validate_properties = validator_class.VALIDATORS["properties"]

    def set_defaults(validator, properties, instance, schema):
        for prop, subschema in properties.items():
            if "default" in subschema and isinstance(instance, dict):
                instance.setdefault(prop, subschema["default"])

        for error in validate_properties(validator, properties, instance, schema):
            yield error

    return validators.extend(validator_class, {"properties": set_defaults})


DefaultValidatingValidator = extend_with_default(Draft7Validator)


def validate_config(config: Dict[str, Any]) -> None:
    """Validate configuration against JSON Schema, filling section defaults.

    Args:
        config: Configuration dictionary

    Raises:
        ConfigValidationError: If configuration is invalid
    """
    try:
        validator = DefaultValidatingValidator(CONFIG_SCHEMA)
        errors = list(validator.iter_errors(config))

        if errors:
            error_messages = []
            for error in errors:
                path = " -> ".join(str(p) for p in error.path) if error.path else "root"
                error_messages.append(f"{path}: {error.message}")

            logger.error(f"Configuration validation failed with {len(errors)} errors")
            for msg in error_messages:
                logger.error(f"  - {msg}")

            raise ConfigValidationError(
                f"Configuration validation failed with {len(errors)} error(s). See logs for details.",
                validation_errors=error_messages,
            )

        logger.debug("Configuration validation passed")

    except jsonschema.exceptions.SchemaError as e:
        logger.error(f"Invalid schema: {e}")
        raise ConfigValidationError(f"Invalid schema definition: {e}")


__all__ = ["validate_config", "CONFIG_SCHEMA"]
