"""End-to-end tests for the fisheye command line."""

from __future__ import annotations

import json

import pytest

from app.cli import list_sample_images, main, parse_args


@pytest.fixture
def samples_dir(tmp_path, encoded_samples):
    directory = tmp_path / "samples"
    directory.mkdir()
    for index, data in enumerate(encoded_samples):
        suffix = ".PNG" if index == 0 else ".png"
        (directory / f"view{index}{suffix}").write_bytes(data)
    (directory / "notes.txt").write_text("not an image")
    return directory


def test_parse_args_positionals():
    args = parse_args(["in.jpg", "out.jpg", "samples", "9", "6", "--scale", "0.5"])
    assert args.checkerboard_width == 9
    assert args.checkerboard_height == 6
    assert args.scale == 0.5
    assert args.verbose is False


def test_missing_arguments_exit_with_status_one(capsys):
    with pytest.raises(SystemExit) as excinfo:
        parse_args(["only-one"])
    assert excinfo.value.code == 1
    assert "Error:" in capsys.readouterr().err


def test_sample_listing_is_sorted_and_case_insensitive(samples_dir):
    files = list_sample_images(samples_dir, (".png", ".jpg"))
    assert [f.name for f in files] == [f"view{i}{'.PNG' if i == 0 else '.png'}" for i in range(5)]


def test_calibrate_and_undistort(tmp_path, samples_dir, encoded_samples, capsys):
    src = tmp_path / "distorted.png"
    src.write_bytes(encoded_samples[0])
    dest = tmp_path / "corrected.jpg"
    saved = tmp_path / "calibration.json"

    code = main(
        [str(src), str(dest), str(samples_dir), "9", "6", "--scale", "0.8", "--workers", "2",
         "--save-calibration", str(saved)]
    )

    out = capsys.readouterr().out
    assert code == 0
    assert "Loading 5 samples from" in out
    assert "Calibration done. Reprojection error:" in out
    assert f"Saved to {dest}" in out
    assert dest.read_bytes()[:2] == b"\xff\xd8"
    payload = json.loads(saved.read_text())["payload"]
    assert len(payload["K"]) == 3
    assert len(payload["D"]) == 4


def test_empty_samples_dir_fails(tmp_path, capsys):
    empty = tmp_path / "empty"
    empty.mkdir()
    code = main([str(tmp_path / "a.png"), str(tmp_path / "b.png"), str(empty), "9", "6"])
    assert code == 1
    assert "Error: No images found" in capsys.readouterr().err


def test_missing_samples_dir_fails(tmp_path, capsys):
    code = main([str(tmp_path / "a.png"), str(tmp_path / "b.png"), str(tmp_path / "nope"), "9", "6"])
    assert code == 1
    assert "Samples directory not found" in capsys.readouterr().err


def test_wrong_board_size_fails(tmp_path, samples_dir, encoded_samples, capsys):
    src = tmp_path / "distorted.png"
    src.write_bytes(encoded_samples[0])
    code = main([str(src), str(tmp_path / "out.png"), str(samples_dir), "5", "4"])
    assert code == 1
    assert "Could not detect any checkerboards with size 5x4" in capsys.readouterr().err
    assert not (tmp_path / "out.png").exists()


def test_invalid_config_fails(tmp_path, samples_dir, capsys):
    config = tmp_path / "bad.yaml"
    config.write_text("runtime:\n  workers: 0\n")
    code = main(
        [str(tmp_path / "a.png"), str(tmp_path / "b.png"), str(samples_dir), "9", "6",
         "--config", str(config)]
    )
    assert code == 1
    assert "Error: Configuration validation failed" in capsys.readouterr().err


def test_interactive_mode_prompts_for_inputs(tmp_path, samples_dir, encoded_samples, monkeypatch, capsys):
    src = tmp_path / "distorted.png"
    src.write_bytes(encoded_samples[0])
    dest = tmp_path / "corrected.png"
    answers = iter([str(src), str(dest), str(samples_dir), "9", "6"])
    prompts = []

    def fake_input(message):
        prompts.append(message)
        return next(answers)

    monkeypatch.setattr("builtins.input", fake_input)
    code = main(["-i"])

    assert code == 0
    assert prompts == [
        "Enter source image path: ",
        "Enter destination image path: ",
        "Enter samples directory path: ",
        "Enter checkerboard width: ",
        "Enter checkerboard height: ",
    ]
    assert "Entering interactive mode" in capsys.readouterr().out
    assert dest.read_bytes()[:8] == b"\x89PNG\r\n\x1a\n"


def test_interactive_mode_rejects_non_numeric_width(tmp_path, monkeypatch, capsys):
    answers = iter(["a.png", "b.png", str(tmp_path), "nine", "6"])
    monkeypatch.setattr("builtins.input", lambda message: next(answers))
    code = main(["--interactive"])
    assert code == 1
    assert "Expected a whole number, got 'nine'" in capsys.readouterr().err


def test_interactive_mode_fails_on_closed_input(monkeypatch, capsys):
    def closed(message):
        raise EOFError

    monkeypatch.setattr("builtins.input", closed)
    assert main(["-i"]) == 1
    assert "Input ended" in capsys.readouterr().err


def test_saved_calibration_is_reused(tmp_path, samples_dir, encoded_samples, capsys):
    src = tmp_path / "distorted.png"
    src.write_bytes(encoded_samples[0])
    saved = tmp_path / "calibration.json"
    first = tmp_path / "first.png"
    assert main([str(src), str(first), str(samples_dir), "9", "6", "--save-calibration", str(saved)]) == 0
    capsys.readouterr()

    second = tmp_path / "second.png"
    code = main([str(src), str(second), "--load-calibration", str(saved)])

    out = capsys.readouterr().out
    assert code == 0
    assert "Calibrating..." not in out
    assert f"Loaded calibration from {saved}" in out
    assert second.read_bytes() == first.read_bytes()


def test_load_and_save_calibration_are_exclusive(tmp_path, capsys):
    with pytest.raises(SystemExit) as excinfo:
        parse_args(["a.png", "b.png", "--load-calibration", "x.json", "--save-calibration", "y.json"])
    assert excinfo.value.code == 1
    assert "cannot be combined" in capsys.readouterr().err


def test_loading_a_broken_calibration_fails(tmp_path, capsys):
    broken = tmp_path / "broken.json"
    broken.write_text("{}")
    code = main([str(tmp_path / "a.png"), str(tmp_path / "b.png"), "--load-calibration", str(broken)])
    assert code == 1
    assert "Cannot load calibration" in capsys.readouterr().err
