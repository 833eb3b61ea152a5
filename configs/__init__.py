"""Configuration loading and validation."""

from .settings import AppConfig, RuntimeConfig, config_from_dict, default_config, load_config

__all__ = ["AppConfig", "RuntimeConfig", "config_from_dict", "default_config", "load_config"]
