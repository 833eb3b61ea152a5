"""Calibrate a fisheye lens from checkerboard samples and undistort one image."""

from __future__ import annotations

import argparse
import sys
from dataclasses import replace
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from app.fisheye_service import calibrate_detailed, undistort
from calib.calibration_io import load_intrinsics, save_calibration
from configs.settings import AppConfig, default_config, load_config
from exceptions import FisheyeError, InsufficientSamplesError
from log_config.logger import configure_file_logging, get_logger, set_console_level

logger = get_logger(__name__)

USAGE = (
    "fisheye <src_image> <dest_image> <samples_dir> <checkerboard_width> <checkerboard_height>\n"
    "       fisheye -i (interactive mode)"
)

_SAMPLE_ARGS = ("samples_dir", "checkerboard_width", "checkerboard_height")


class _Parser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        self.print_usage(sys.stderr)
        self.exit(1, f"Error: {message}\n")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = _Parser(
        prog="fisheye",
        usage=USAGE,
        description="Calibrate a fisheye lens from checkerboard photos and undistort an image.",
    )
    parser.add_argument("src", type=Path, nargs="?", help="Distorted source image.")
    parser.add_argument("dest", type=Path, nargs="?", help="Where to write the undistorted image.")
    parser.add_argument("samples_dir", type=Path, nargs="?", help="Directory of checkerboard sample images.")
    parser.add_argument("checkerboard_width", type=int, nargs="?", help="Interior corners per row.")
    parser.add_argument("checkerboard_height", type=int, nargs="?", help="Interior corners per column.")
    parser.add_argument("-i", "--interactive", action="store_true", help="Prompt for the inputs.")
    parser.add_argument("--config", type=Path, default=None, help="YAML configuration file.")
    parser.add_argument("--scale", type=float, default=None, help="Focal length multiplier of the output.")
    parser.add_argument("--balance", type=float, default=None, help="0 = crop to valid pixels, 1 = keep all.")
    parser.add_argument("--workers", type=int, default=None, help="Parallel detection workers.")
    parser.add_argument("--save-calibration", type=Path, default=None, help="Write K and D as JSON.")
    parser.add_argument(
        "--load-calibration",
        type=Path,
        default=None,
        help="Reuse K and D from a saved calibration instead of calibrating.",
    )
    parser.add_argument("--log-dir", type=Path, default=None, help="Also write log files here.")
    parser.add_argument("--verbose", action="store_true", help="Debug-level console logging.")
    args = parser.parse_args(argv)

    if args.load_calibration and args.save_calibration:
        parser.error("--load-calibration and --save-calibration cannot be combined")
    if not args.interactive:
        required = ["src", "dest"]
        if args.load_calibration is None:
            required.extend(_SAMPLE_ARGS)
        missing = [name for name in required if getattr(args, name) is None]
        if missing:
            parser.error(f"the following arguments are required: {', '.join(missing)}")
    return args


def _prompt_int(prompt: Callable[[str], str], message: str) -> int:
    text = prompt(message).strip()
    try:
        return int(text)
    except ValueError:
        raise ValueError(f"Expected a whole number, got {text!r}")


def prompt_for_inputs(
    args: argparse.Namespace, prompt: Callable[[str], str] = input
) -> argparse.Namespace:
    """Ask for every input not given on the command line."""
    print("Entering interactive mode. Please provide the following inputs:")
    try:
        if args.src is None:
            args.src = Path(prompt("Enter source image path: ").strip())
        if args.dest is None:
            args.dest = Path(prompt("Enter destination image path: ").strip())
        if args.load_calibration is not None:
            return args
        if args.samples_dir is None:
            args.samples_dir = Path(prompt("Enter samples directory path: ").strip())
        if args.checkerboard_width is None:
            args.checkerboard_width = _prompt_int(prompt, "Enter checkerboard width: ")
        if args.checkerboard_height is None:
            args.checkerboard_height = _prompt_int(prompt, "Enter checkerboard height: ")
    except EOFError:
        raise ValueError("Input ended before all values were given")
    return args


def list_sample_images(samples_dir: Path, extensions: Sequence[str]) -> List[Path]:
    """Sample images in a directory, matched case-insensitively by extension."""
    if not samples_dir.is_dir():
        raise NotADirectoryError(f"Samples directory not found: {samples_dir}")
    allowed = {ext.lower() for ext in extensions}
    return sorted(
        path for path in samples_dir.iterdir() if path.is_file() and path.suffix.lower() in allowed
    )


def _calibrate_from_samples(args: argparse.Namespace, config: AppConfig):
    files = list_sample_images(args.samples_dir, config.runtime.image_extensions)
    if not files:
        raise InsufficientSamplesError(
            f"No images found in {args.samples_dir}",
            valid_views=0,
            required_views=config.calibration.min_views,
        )

    print(f"Loading {len(files)} samples from {args.samples_dir}...")
    images = [path.read_bytes() for path in files]

    print("Calibrating...")
    result = calibrate_detailed(
        images,
        args.checkerboard_width,
        args.checkerboard_height,
        config=config,
        sources=[path.name for path in files],
    )
    print(f"Calibration done. Reprojection error: {result.rms_error_px:.6f}")
    if args.save_calibration:
        save_calibration(args.save_calibration, result)
        logger.info(f"Calibration written to {args.save_calibration}")
    return result.camera_matrix, result.distortion


def run(args: argparse.Namespace) -> None:
    config = load_config(args.config) if args.config else default_config()
    if not args.verbose:
        set_console_level(config.runtime.log_level)
    if args.workers is not None:
        config = replace(config, runtime=replace(config.runtime, workers=max(1, args.workers)))

    if args.load_calibration is not None:
        intrinsics = load_intrinsics(args.load_calibration)
        print(f"Loaded calibration from {args.load_calibration}")
        K, D = intrinsics.camera_matrix, intrinsics.distortion
    else:
        K, D = _calibrate_from_samples(args, config)

    print(f"Undistorting {args.src}...")
    options = {
        "extname": args.dest.suffix or args.src.suffix,
        "scale": args.scale,
        "source": str(args.src),
    }
    if args.balance is not None:
        options["balance"] = args.balance
    corrected = undistort(args.src.read_bytes(), K, D, options, config=config)
    args.dest.write_bytes(corrected)
    print(f"Saved to {args.dest}")


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    set_console_level("DEBUG" if args.verbose else "INFO")
    if args.log_dir:
        configure_file_logging(args.log_dir)
    try:
        if args.interactive:
            prompt_for_inputs(args)
        run(args)
    except (FisheyeError, OSError, ValueError) as e:
        logger.debug(f"{type(e).__name__}: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
