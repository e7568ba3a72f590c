#!/usr/bin/env python3
"""Run a codec quality sweep on a single image.

Encodes the image at each quality level, decodes it back, measures PSNR
against the original and writes ``quality,psnr,size_bytes`` rows to a CSV
report.

Usage:
    python3 scripts/run_sweep.py photo.png
    python3 scripts/run_sweep.py photo.png --codec heic --quality 10 50 90 -o heic.csv
    python3 scripts/run_sweep.py --config sweeps/photo-jpeg.json --workers 4
"""

import argparse
import logging
import sys
from pathlib import Path

# Add project root to path for local imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from codec_sweep.analysis import format_psnr  # noqa: E402
from codec_sweep.codec import get_codec_version  # noqa: E402
from codec_sweep.sweep import SweepConfig, run_sweep  # noqa: E402

CODECS = ["jpeg", "heic"]


def build_config(args: argparse.Namespace) -> SweepConfig:
    """Combine an optional config file with command-line overrides.

    Raises:
        FileNotFoundError: If the config file does not exist
        ValueError: If neither an image nor a config file is given
    """
    if args.config is not None:
        config = SweepConfig.from_file(args.config)
    elif args.image is not None:
        config = SweepConfig(image_path=args.image)
    else:
        msg = "Either an image or --config is required"
        raise ValueError(msg)

    if args.image is not None:
        config.image_path = args.image
    if args.codec is not None:
        config.codec = args.codec
    if args.output is not None:
        config.report_path = args.output
    if args.quality is not None:
        config.qualities = args.quality
    if args.keep_artifacts:
        config.keep_artifacts = True
    if args.workers is not None:
        config.workers = args.workers
    if args.timeout is not None:
        config.timeout = args.timeout
    return config


def main() -> int:
    """Main entry point for the sweep script.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    parser = argparse.ArgumentParser(
        description="Measure PSNR and encoded size of an image across codec quality levels.",
    )
    parser.add_argument("image", nargs="?", type=Path, help="Reference image")
    parser.add_argument("--codec", choices=CODECS, help="Codec to benchmark (default: jpeg)")
    parser.add_argument(
        "-o",
        "--output",
        type=Path,
        help="Report CSV path (default: <image dir>/<stem>_<codec>_psnr.csv)",
    )
    parser.add_argument(
        "-q",
        "--quality",
        type=int,
        nargs="+",
        help="Quality levels to test, in report order (default: 0 5 10 20 ... 100)",
    )
    parser.add_argument("--config", type=Path, help="Sweep configuration JSON file")
    parser.add_argument(
        "--keep-artifacts",
        action="store_true",
        help="Keep encoded files beside the source image",
    )
    parser.add_argument("--workers", type=int, help="Number of parallel trials (default: 1)")
    parser.add_argument("--timeout", type=float, help="Seconds allowed per external codec call")
    parser.add_argument(
        "--list-codecs",
        action="store_true",
        help="Show available codecs and their versions",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More logging")

    args = parser.parse_args()

    log_level = logging.WARNING
    if args.verbose >= 2:
        log_level = logging.DEBUG
    elif args.verbose == 1:
        log_level = logging.INFO
    logging.basicConfig(level=log_level, format="%(levelname)s %(name)s: %(message)s")

    if args.list_codecs:
        for name in CODECS:
            print(f"  {name}: {get_codec_version(name) or 'not available'}")
        return 0

    try:
        config = build_config(args)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}")
        return 1

    result = run_sweep(config)
    if not result.success:
        print(f"Error: {result.error_message}")
        return 1

    print(f"Report written: {result.report_path}")
    print(f"  Rows: {result.row_count} of {len(config.qualities)} qualities")
    for row in result.rows:
        print(f"  q{row.quality:>3}: {format_psnr(row.psnr):>10}  {row.size_bytes:>10} bytes")
    if result.skipped:
        print("  Skipped:")
        for failure in result.skipped:
            print(f"    q{failure.quality}: {failure.stage} failed ({failure.message})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
