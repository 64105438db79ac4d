"""Command-line interface for SampleSort.

Subcommands:

``organize SAMPLES DEST``
    Sort a samples folder (archives included) into the destination tree,
    optionally followed by the tempo/key pass over the files just placed.
``tempo-key ROOT``
    Run only the tempo/key pass over an already organized tree.
``init-config``
    Write the default ``config.json`` to the resolved config directory.

Every command prints its JSON report. ``Ctrl+C`` cancels the current run
cooperatively; the partial report is still printed.
Run ``python -m samplesort --help`` for usage.
"""

from __future__ import annotations

import argparse
import json
import signal
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config_service import ConfigService, default_config
from .engine import SampleSortEngine, write_report
from .run_log import CancelToken


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="samplesort",
        description="SampleSort – organise audio sample libraries by keyword, tempo and key",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common(subparser: argparse.ArgumentParser) -> None:
        subparser.add_argument("--config", help="Path to a config.json to use instead of the resolved one")
        subparser.add_argument(
            "--portable",
            "-p",
            action="store_true",
            help="Force portable mode (ignored if portable.flag is present)",
        )
        subparser.add_argument("--dry-run", action="store_true", help="Log planned actions without touching files")
        subparser.add_argument("--report", help="Also write the JSON report to this path")
        subparser.add_argument("--quiet", "-q", action="store_true", help="Do not print log lines")

    sp = subparsers.add_parser("organize", help="Sort a samples folder into the destination tree")
    sp.add_argument("samples", help="Path to the samples folder")
    sp.add_argument("dest", help="Path to the destination folder")
    sp.add_argument("--copy", action="store_true", help="Copy files instead of moving them")
    sp.add_argument(
        "--tempo-key",
        action="store_true",
        help="Run the tempo/key pass over the placed files afterwards",
    )
    add_common(sp)

    sp = subparsers.add_parser("tempo-key", help="Place files of an organized tree into tempo/key folders")
    sp.add_argument("root", help="Folder to scan")
    sp.add_argument("--bpm", dest="sort_by_bpm", action="store_true", default=None, help="Force tempo sorting on")
    sp.add_argument("--key", dest="sort_by_key", action="store_true", default=None, help="Force key sorting on")
    add_common(sp)

    sp = subparsers.add_parser("init-config", help="Write the default config.json")
    sp.add_argument("--config", help="Write to this path instead of the resolved config directory")
    sp.add_argument(
        "--portable", "-p", action="store_true", help="Force portable mode (ignored if portable.flag is present)"
    )
    sp.add_argument("--force", action="store_true", help="Overwrite an existing file")
    return parser


def _load_config(config_service: ConfigService, args: argparse.Namespace) -> Dict[str, Any]:
    portable = bool(getattr(args, "portable", False))
    config_service.apply_tuning(cli_portable=portable)
    path = Path(args.config).expanduser() if getattr(args, "config", None) else None
    return config_service.load_config(cli_portable=portable, path=path)


def _install_sigint(token: CancelToken):
    """Route Ctrl+C to ``token``; a second Ctrl+C interrupts as usual."""

    def _handler(signum, frame):  # noqa: ARG001
        if token.cancelled:
            raise KeyboardInterrupt
        print("Cancelling… (press Ctrl+C again to abort immediately)", file=sys.stderr)
        token.cancel()

    try:
        return signal.signal(signal.SIGINT, _handler)
    except ValueError:
        # Not on the main thread (embedded use); leave the handler alone.
        return None


def _emit(report: Dict[str, Any], args: argparse.Namespace) -> None:
    print(json.dumps(report, indent=2, default=str))
    if getattr(args, "report", None):
        write_report(report, Path(args.report).expanduser())


def _init_config(config_service: ConfigService, args: argparse.Namespace) -> int:
    target = (
        Path(args.config).expanduser()
        if args.config
        else config_service.get_config_path(cli_portable=bool(args.portable))
    )
    if target.exists() and not args.force:
        print(f"Error: {target} already exists (use --force to overwrite)")
        return 1
    written = config_service.save_config(default_config(), path=target)
    print(json.dumps({"config_path": str(written)}, indent=2))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    config_service = ConfigService(app_dir=Path.cwd())

    if args.command == "init-config":
        return _init_config(config_service, args)

    config = _load_config(config_service, args)
    if args.dry_run:
        config["dry_run"] = True

    if args.command == "organize":
        config["samples_dir"] = str(Path(args.samples).expanduser())
        config["dest_dir"] = str(Path(args.dest).expanduser())
        if args.copy:
            config["move_files"] = False
        if args.tempo_key and not (config.get("sort_by_bpm") or config.get("sort_by_key")):
            config["sort_by_bpm"] = True
    elif args.command == "tempo-key":
        if args.sort_by_bpm:
            config["sort_by_bpm"] = True
        if args.sort_by_key:
            config["sort_by_key"] = True
        if not (config.get("sort_by_bpm") or config.get("sort_by_key")):
            config["sort_by_bpm"] = True
        config["dest_dir"] = str(Path(args.root).expanduser())
    else:  # pragma: no cover - argparse rejects unknown commands
        print(f"Error: unrecognized command {args.command}")
        return 1

    engine = SampleSortEngine(config=config, log_to_console=not args.quiet)
    token = CancelToken()
    previous = _install_sigint(token)
    try:
        if args.command == "organize":
            if args.tempo_key:
                report = engine.run_all(token=token)
            else:
                report = engine.run(token=token)
        else:
            report = engine.run_tempo_key(root=Path(args.root).expanduser(), token=token)
    finally:
        if previous is not None:
            signal.signal(signal.SIGINT, previous)

    _emit(report, args)
    if report.get("error"):
        return 1
    return 130 if report.get("cancelled") else 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
