"""Command-line entry point for the ``iinfo`` metadata reporter.

Usage::

    iinfo [-v] [-s] [--csv PATH] FILE...

Per-file failures are reported on stderr and skipped; the exit status is 0
unless the arguments cannot be parsed.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from lazyview.config import ReportConfig
from lazyview.logger import set_level
from lazyview.reporter import report_files


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="iinfo",
        description="Print header information about image files.",
    )
    parser.add_argument("filenames", nargs="*", metavar="FILE", help="Image files to inspect")
    parser.add_argument("-v", dest="verbose", action="store_true", help="Verbose output")
    parser.add_argument("-s", dest="sum", action="store_true", help="Sum the image sizes")
    parser.add_argument(
        "--csv", dest="csv_path", metavar="PATH", help="Also write a CSV table of the results"
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Run the reporter; returns the process exit status."""
    args = build_parser().parse_args(argv)
    set_level(logging.ERROR)
    config = ReportConfig(verbose=args.verbose, sum=args.sum, csv_path=args.csv_path)
    report_files(args.filenames, config, out=sys.stdout, err=sys.stderr)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
