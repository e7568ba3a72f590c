#!/usr/bin/env python3
"""Plot a sweep report as a rate-distortion curve and print its summary."""

import argparse
import sys
from pathlib import Path

# Add project root to path for local imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from codec_sweep.analysis import plot_rate_distortion, summarize_report  # noqa: E402
from codec_sweep.report import load_report  # noqa: E402


def main() -> int:
    """Main entry point for report plotting."""
    parser = argparse.ArgumentParser(
        description="Plot PSNR against encoded size for a sweep report",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Write photo_jpeg_psnr.svg next to the report
  python scripts/plot_sweep.py photos/photo_jpeg_psnr.csv

  # Custom output path and title
  python scripts/plot_sweep.py report.csv -o plots/rd.svg --title "JPEG 4:4:4"
        """,
    )
    parser.add_argument("report", type=Path, help="Sweep report CSV")
    parser.add_argument(
        "-o",
        "--output",
        type=Path,
        help="Output SVG path (default: report path with .svg extension)",
    )
    parser.add_argument("--title", help="Plot title")

    args = parser.parse_args()

    try:
        df = load_report(args.report)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}")
        return 1

    output = args.output or args.report.with_suffix(".svg")
    plot_rate_distortion(df, output, title=args.title)

    summary = summarize_report(df)
    print(f"Plot written: {output}")
    print(f"  Rows: {summary['rows']}")
    if summary["rows"]:
        print(f"  Quality: {summary['quality_min']}-{summary['quality_max']}")
        print(f"  Size: {summary['size_min']}-{summary['size_max']} bytes")
    if summary["psnr_min"] is not None:
        print(f"  PSNR: {summary['psnr_min']:.2f}-{summary['psnr_max']:.2f} dB")
    if summary["lossless_rows"]:
        print(f"  Lossless rows: {summary['lossless_rows']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
