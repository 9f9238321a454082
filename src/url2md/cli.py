"""Command-line interface for url2md."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from .version import __version__


def _get_usage() -> str:
    return (
        f"url2md {__version__}\n"
        "Usage:\n"
        "  url2md [--help] [--version|--ver]\n"
        "  url2md --input URLS_FILE [options]\n\n"
        "Options:\n"
        "  --input PATH                 Text file with one URL per line\n"
        "  --out-dir DIR                Output directory (default: current directory)\n"
        "  --host-root URL              Host prefixed to rewritten image links\n"
        "  --workers N                  Parallel conversions, 1-5 (default: 5)\n"
        "  --timeout SEC                Network timeout in seconds, 0 disables (default: 30)\n"
        "  --per-task-image-names       Resolve image name collisions per page only\n"
        "  --verbose                    Verbose progress logs\n"
        "  --debug                      Debug logs"
    )


def _build_parser() -> argparse.ArgumentParser:
    from .core import CONCURRENCY_CAP, DEFAULT_HOST_ROOT, DEFAULT_TIMEOUT

    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("--help", action="store_true")
    parser.add_argument("--version", action="store_true")
    parser.add_argument("--ver", action="store_true")
    parser.add_argument("--input", help="Text file containing one URL per line")
    parser.add_argument("--out-dir", help="Directory receiving the .md files and images/")
    parser.add_argument("--host-root", default=DEFAULT_HOST_ROOT, help="Canonical host for image links")
    parser.add_argument("--workers", type=int, default=CONCURRENCY_CAP, help="Parallel conversions (max 5)")
    parser.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT, help="Network timeout in seconds")
    parser.add_argument(
        "--per-task-image-names",
        action="store_true",
        help="Track image name collisions per page instead of across the whole batch",
    )
    parser.add_argument("--verbose", action="store_true", help="Verbose progress logs")
    parser.add_argument("--debug", action="store_true", help="Debug logs")
    return parser


def _validate_numeric_args(args: argparse.Namespace) -> str | None:
    from .core import CONCURRENCY_CAP

    if args.workers is None or not 1 <= args.workers <= CONCURRENCY_CAP:
        return f"Invalid value for --workers: must be between 1 and {CONCURRENCY_CAP}"
    if args.timeout is None or args.timeout < 0:
        return "Invalid value for --timeout: must be >= 0"
    return None


def read_url_lines(path: Path) -> list[str]:
    return path.read_text(encoding="utf-8").splitlines()


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    parser = _build_parser()
    args, unknown = parser.parse_known_args(argv)
    if unknown:
        print(_get_usage())
        return 2

    if not argv or args.help:
        print(_get_usage())
        return 0

    if args.version or args.ver:
        print(__version__)
        return 0

    from url2md import core

    numeric_error = _validate_numeric_args(args)
    if numeric_error:
        print(numeric_error, file=sys.stderr)
        return core.EXIT_INVALID_ARGS

    if not args.input:
        print(_get_usage())
        print("Option --input is required", file=sys.stderr)
        return core.EXIT_INVALID_ARGS

    input_path = Path(args.input).expanduser().resolve()
    if not input_path.exists() or not input_path.is_file():
        print(f"Input file not found: {input_path}", file=sys.stderr)
        return core.EXIT_INVALID_ARGS

    out_dir = Path(args.out_dir).expanduser().resolve() if args.out_dir else Path.cwd()
    if out_dir.exists() and not out_dir.is_dir():
        print(f"Output path is not a directory: {out_dir}", file=sys.stderr)
        return core.EXIT_OUTPUT_DIR

    core.setup_logging(args.verbose, args.debug)

    try:
        urls = read_url_lines(input_path)
    except (OSError, UnicodeDecodeError) as exc:
        print(f"Unable to read input file {input_path}: {exc}", file=sys.stderr)
        return core.EXIT_INVALID_ARGS

    if not urls:
        print("File is empty. Exiting...")
        return 0

    config = core.ConversionConfig(
        output_dir=out_dir,
        host_root=str(args.host_root),
        max_workers=int(args.workers),
        timeout=float(args.timeout) or None,
        shared_image_names=not args.per_task_image_names,
    )

    from url2md.pool import console_notifier, run_batch

    run_batch(urls, config, notify=console_notifier)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
