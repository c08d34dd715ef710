from __future__ import annotations

import argparse
import logging
from collections.abc import Sequence
from pathlib import Path

from face_cropper.config import CropConfig, load_config
from face_cropper.detectors.cascade import ModelUnpackError, load_model_bytes
from face_cropper.paths import expand_inputs
from face_cropper.pipeline import run_batch

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="face-cropper",
        description="Detect faces in images and save a square crop per face.",
    )
    parser.add_argument("inputs", nargs="+", type=Path, help="Image files or directories.")
    parser.add_argument("--config", type=Path, help="Optional TOML file with a [crop] table.")
    parser.add_argument("--out", help="Output directory (default: faces).")
    parser.add_argument("--size", type=int, help="Minimum size of each output image (default: 256).")
    parser.add_argument(
        "--face",
        type=float,
        help="Face factor between 0 and 1: how much space the face occupies in the output (default: 0.5).",
    )
    parser.add_argument("--shift", type=float, help="Shift factor (default: 0.1).")
    parser.add_argument("--scale", type=float, help="Scale factor (default: 1.1).")
    parser.add_argument(
        "--angle",
        type=float,
        help="Cascade rotation angle; 0.0 is 0 radians and 1.0 is 2*pi radians (default: 0).",
    )
    parser.add_argument("--iou", type=float, help="Intersection over union threshold (default: 0.2).")
    parser.add_argument("--score", type=float, help="Minimum score (default: 0.5).")
    parser.add_argument("--ext", help="Output image extension (default: png).")
    parser.add_argument("--cascade", type=Path, help="OpenCV cascade XML (default: bundled frontal face).")
    parser.add_argument("--image-workers", type=int, help="Images processed in parallel.")
    parser.add_argument("--save-workers", type=int, help="Crops saved in parallel.")
    parser.add_argument(
        "--recursive",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Descend into subdirectories of directory inputs.",
    )
    parser.add_argument(
        "--progress",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Show a progress bar.",
    )
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Only log warnings and errors.")
    return parser


def resolve_config(args: argparse.Namespace) -> CropConfig:
    base = load_config(args.config.expanduser().resolve()) if args.config else CropConfig()
    return base.replace(
        out_dir=args.out,
        size=args.size,
        face=args.face,
        shift=args.shift,
        scale=args.scale,
        angle=args.angle,
        iou=args.iou,
        score=args.score,
        ext=args.ext,
        image_workers=args.image_workers,
        save_workers=args.save_workers,
        recursive=args.recursive,
        progress=args.progress,
    )


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING if args.quiet else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = resolve_config(args)
    except (FileNotFoundError, TypeError, ValueError) as e:
        parser.error(str(e))

    images = expand_inputs(args.inputs, recursive=config.recursive, extensions=config.extensions)
    if not images:
        LOGGER.warning("No images found in %s", ", ".join(str(p) for p in args.inputs))

    try:
        run_batch(images, config=config, model_bytes=load_model_bytes(args.cascade))
    except ModelUnpackError as e:
        LOGGER.error("failed to unpack face finder: %s", e)
        return 1

    return 0
