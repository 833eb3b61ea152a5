"""Tests for YAML configuration loading and schema validation."""

import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

import pytest

from configs import AppConfig, config_from_dict, default_config, load_config
from configs.settings import DEFAULT_CONFIG_PATH
from configs.validator import validate_config
from exceptions import ConfigError, ConfigValidationError, InvalidConfigError


def test_bundled_defaults_match_builtin_defaults() -> None:
    assert DEFAULT_CONFIG_PATH.exists()
    assert load_config() == default_config()


def test_load_config_without_path_uses_bundled_file() -> None:
    config = load_config(None)
    assert isinstance(config, AppConfig)
    assert config.calibration.min_views == 3
    assert config.detector.smoothing_sigmas == (1.0, 2.0, 3.5)
    assert config.runtime.image_extensions == (".jpg", ".jpeg", ".png", ".webp")


def test_missing_sections_are_filled_with_defaults() -> None:
    config = config_from_dict({"calibration": {"max_iterations": 7}})
    assert config.calibration.max_iterations == 7
    assert config.calibration.tolerance == default_config().calibration.tolerance
    assert config.undistort == default_config().undistort


def test_lists_become_tuples() -> None:
    config = config_from_dict(
        {
            "detector": {"smoothing_sigmas": [1.5]},
            "undistort": {"output_size": [800, 600]},
            "runtime": {"image_extensions": [".JPG", ".png"]},
        }
    )
    assert config.detector.smoothing_sigmas == (1.5,)
    assert config.undistort.output_size == (800, 600)
    assert config.runtime.image_extensions == (".jpg", ".png")


def test_input_mapping_is_not_mutated() -> None:
    data = {"runtime": {"workers": 2}}
    config_from_dict(data)
    assert data == {"runtime": {"workers": 2}}


class TestConfigValidation(unittest.TestCase):
    """Schema violations surface as ConfigValidationError."""

    def test_unknown_key_is_rejected(self):
        with self.assertRaises(ConfigValidationError) as ctx:
            config_from_dict({"calibration": {"max_iters": 5}})
        self.assertTrue(any("max_iters" in e for e in ctx.exception.validation_errors))

    def test_out_of_range_values_are_rejected(self):
        with self.assertRaises(ConfigValidationError):
            config_from_dict({"runtime": {"workers": 0}})
        with self.assertRaises(ConfigValidationError):
            config_from_dict({"calibration": {"min_views": 2}})
        with self.assertRaises(ConfigValidationError):
            config_from_dict({"undistort": {"balance": 2.0}})

    def test_wrong_types_are_rejected(self):
        with self.assertRaises(ConfigValidationError):
            config_from_dict({"detector": {"smoothing_sigmas": "fast"}})
        with self.assertRaises(ConfigValidationError):
            config_from_dict({"undistort": {"interpolation": "cubic"}})

    def test_error_paths_name_the_field(self):
        with self.assertRaises(ConfigValidationError) as ctx:
            validate_config({"undistort": {"scale": -1}})
        self.assertIn("undistort -> scale", ctx.exception.validation_errors[0])

    def test_validation_errors_are_config_errors(self):
        self.assertTrue(issubclass(ConfigValidationError, ConfigError))


class TestConfigFiles(unittest.TestCase):
    def setUp(self):
        self._tmp = TemporaryDirectory()
        self.dir = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def test_missing_file(self):
        with self.assertRaises(InvalidConfigError):
            load_config(self.dir / "nope.yaml")

    def test_empty_file_gives_defaults(self):
        path = self.dir / "empty.yaml"
        path.write_text("")
        self.assertEqual(load_config(path), default_config())

    def test_malformed_yaml(self):
        path = self.dir / "bad.yaml"
        path.write_text("calibration: [unclosed\n")
        with self.assertRaises(InvalidConfigError):
            load_config(path)

    def test_partial_file(self):
        path = self.dir / "partial.yaml"
        path.write_text("undistort:\n  scale: 0.5\nruntime:\n  workers: 4\n")
        config = load_config(path)
        self.assertEqual(config.undistort.scale, 0.5)
        self.assertEqual(config.runtime.workers, 4)
        self.assertEqual(config.detector, default_config().detector)


@pytest.mark.parametrize("value", [[1, 2, 3], "12"])
def test_top_level_must_be_a_mapping(value) -> None:
    with pytest.raises(ConfigValidationError):
        config_from_dict(value)


def test_subpixel_defaults() -> None:
    detector = default_config().detector
    assert detector.subpix_half_window == 5
    assert detector.subpix_max_iterations == 30
    assert detector.subpix_epsilon == 0.01
    assert load_config().detector == detector


def test_rank_tolerance_default() -> None:
    assert default_config().calibration.rank_tolerance == 1e-6
    assert load_config().calibration.rank_tolerance == 1e-6
