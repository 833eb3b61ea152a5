"""Schema and application version metadata for serialized calibrations."""

from __future__ import annotations

from typing import Any, Dict

SCHEMA_VERSION = "1.0.0"
APP_VERSION = "0.3.0"


def make_envelope(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Wrap a payload with schema/app versions for serialization."""
    return {
        "schema_version": SCHEMA_VERSION,
        "app_version": APP_VERSION,
        "payload": payload,
    }


def open_envelope(data: Dict[str, Any]) -> Dict[str, Any]:
    """Return the payload of an envelope, checking the schema major version."""
    version = str(data.get("schema_version", ""))
    if version.split(".")[0] != SCHEMA_VERSION.split(".")[0]:
        raise ValueError(
            f"Unsupported schema version {version or '<missing>'} (expected {SCHEMA_VERSION})"
        )
    payload = data.get("payload")
    if not isinstance(payload, dict):
        raise ValueError("Envelope has no payload object")
    return payload
