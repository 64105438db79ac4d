"""Core engine for SampleSort.

The :class:`SampleSortEngine` walks a samples directory (expanding
``.zip``/``.rar`` archives inline), deduplicates by content hash,
classifies each file by keyword into the destination tree and records
every file it relocated. The moved-file ledger is the hand-off to the
optional tempo/key pass (:meth:`SampleSortEngine.run_tempo_key`).

Hard rules (tests):
- dry-run: MUST NOT create, move, copy or delete anything (no
  destination folder, no scratch folders, no quarantine, no run log).
- never overwrite: collisions are disambiguated with ``name (N).ext``.
- a single file failing (hash, stat, move) never aborts the run; only
  configuration errors do, and they are detected before any work.
- cancellation is checked at the top of every file and at yield points;
  partial results are reported normally.

This engine is UI-agnostic; hosts pass callbacks for log lines,
progress and completion, and a :class:`CancelToken` to stop a run.
"""

from __future__ import annotations

import datetime
import json
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from . import audio, tuning
from .archives import ArchiveExtractionError, expand, is_archive, scratch_dir_for
from .category_rules import CompiledRules, compile_rules
from .classifier import DurationFn, MovedRecord, classify, place
from .dedupe import Deduplicator
from .path_policy import file_extension, is_hidden_name, remove_tree, walk_files
from .run_log import CancelToken, LogCallback, ProgressCallback, RunLog, YieldPoint
from .settings import ConfigurationError, OrganizerSettings
from .tempo_key import PassInput, TempoKeyPass

DoneCallback = Callable[[Dict[str, Any]], None]


@dataclass
class SampleSortEngine:
    """SampleSort engine responsible for classification and placement."""

    config: Dict[str, Any]
    duration_fn: DurationFn = audio.get_duration
    tempo_fn: Callable[[Path], Optional[float]] = audio.detect_tempo
    log_callback: Optional[LogCallback] = None
    log_to_console: bool = True
    progress_callback: Optional[ProgressCallback] = None
    on_done: Optional[DoneCallback] = None
    run_log_dir: Optional[Path] = None

    settings: OrganizerSettings = field(init=False)
    moved_files: List[MovedRecord] = field(init=False, default_factory=list)
    # destinations chosen this run, planned or real
    reserved: Set[Path] = field(init=False, default_factory=set)

    def __post_init__(self) -> None:
        self.settings = OrganizerSettings.from_config(self.config if isinstance(self.config, dict) else {})

    # ------------------------------------------------------------------
    def _new_log(self, run_id: str) -> RunLog:
        log_path = None
        if self.run_log_dir is not None and not self.settings.dry_run:
            log_path = Path(self.run_log_dir) / run_id / "run_log.txt"
        return RunLog(
            callback=self.log_callback,
            to_console=self.log_to_console,
            dry_run=self.settings.dry_run,
            log_path=log_path,
        )

    def _new_report(self, run_id: str) -> Dict[str, Any]:
        return {
            "run_id": run_id,
            "mode": "dry-run" if self.settings.dry_run else ("move" if self.settings.move_files else "copy"),
            "timestamp": datetime.datetime.now().isoformat(),
            "samples_dir": self.settings.samples_dir,
            "destination_root": self.settings.dest_dir,
            "dry_run": self.settings.dry_run,
            "files_found": 0,
            "files_processed": 0,
            "files_moved": 0,
            "files_copied": 0,
            "skipped": 0,
            "failed": 0,
            "duplicates": 0,
            "quarantined": 0,
            "archives_extracted": 0,
            "archives_failed": 0,
            "seeded": 0,
            "cancelled": False,
            "error": None,
            "moved_files": [],
        }

    def _ensure_destination(self, log: RunLog) -> None:
        dest = self.settings.dest_root
        if dest.exists() or self.settings.dry_run:
            return
        try:
            dest.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigurationError(f"Could not create destination folder {dest}: {e}")
        log.info(f"Created destination folder {dest}.")

    # ------------------------------------------------------------------
    def _process_file(
        self,
        file_path: Path,
        rules: CompiledRules,
        dedupe: Optional[Deduplicator],
        log: RunLog,
        report: Dict[str, Any],
    ) -> None:
        """Dedupe, classify and place one file; failures stay local to the file."""
        if is_hidden_name(file_path.name):
            return
        if not self.settings.accepts(file_path):
            log.info(f"Skipped {file_path.name} (unaccepted extension: .{file_extension(file_path)})")
            report["skipped"] += 1
            return

        if dedupe is not None:
            result = dedupe.check(file_path)
            if result.is_duplicate:
                report["duplicates"] += 1
                if result.action == "quarantined":
                    report["quarantined"] += 1
                elif result.action == "failed":
                    report["failed"] += 1
                return

        pending = classify(file_path, self.settings, rules, log, duration_fn=self.duration_fn)
        if pending is None:
            report["skipped"] += 1
            return

        record = place(pending, self.settings, log, reserved=self.reserved)
        report["files_processed"] += 1
        if record is None:
            report["failed"] += 1
            return
        self.moved_files.append(record)
        if not self.settings.dry_run:
            report["files_moved" if self.settings.move_files else "files_copied"] += 1

    def _process_archive(
        self,
        archive_path: Path,
        rules: CompiledRules,
        dedupe: Optional[Deduplicator],
        log: RunLog,
        report: Dict[str, Any],
        token: CancelToken,
    ) -> None:
        name = archive_path.name
        if self.settings.dry_run:
            log.warning(f"[DRY RUN] Would extract {name} ({file_extension(archive_path).upper()})")
            return

        scratch = scratch_dir_for(archive_path, self.settings.dest_root)
        try:
            try:
                extracted = expand(
                    archive_path,
                    scratch,
                    keep_archive=self.settings.keep_archives,
                    on_rejected=lambda entry: log.warning(f"Blocked unsafe archive entry in {name}: {entry}"),
                )
            except (ArchiveExtractionError, OSError) as e:
                log.error(f"Error extracting {name}: {e}")
                report["archives_failed"] += 1
                return

            report["archives_extracted"] += 1
            log.warning(f"Extracted {name} → {len(extracted)} files")
            yielder = YieldPoint(every=tuning.YIELD_EVERY, token=token, progress=None, total=len(extracted))
            for extracted_path in extracted:
                if token.cancelled:
                    break
                self._process_file(extracted_path, rules, dedupe, log, report)
                yielder.tick()
        finally:
            remove_tree(scratch)

    def _seed_index(self, dedupe: Deduplicator, log: RunLog, token: CancelToken) -> bool:
        """Index destination content; False means the run was cancelled."""
        log.info("Indexing destination files for duplicate detection.")
        dest = self.settings.dest_root
        files: Iterable[Path] = (
            p
            for p in walk_files(dest)
            if self.settings.accepts(p) and not p.parent.name.startswith(tuning.SCRATCH_PREFIX)
        ) if dest.is_dir() else ()
        yielder = YieldPoint(every=tuning.YIELD_EVERY, token=token, progress=self.progress_callback)
        seeded = dedupe.seed_from(files, yielder)
        if token.cancelled:
            log.warning("Cancelled during duplicate indexing.")
            return False
        log.warning(f"Indexed {seeded} destination files for duplicate detection.")
        return True

    # ------------------------------------------------------------------
    def run(self, token: Optional[CancelToken] = None) -> Dict[str, Any]:
        """Execute one organize run and return its report."""
        token = token or CancelToken()
        self.moved_files = []
        self.reserved = set()
        run_id = datetime.datetime.now().strftime("%Y%m%d_%H%M%S_") + uuid.uuid4().hex[:8]
        report = self._new_report(run_id)
        log = self._new_log(run_id)

        try:
            self.settings.validate()
        except ConfigurationError as e:
            log.error(f"Error: {e}")
            report["error"] = str(e)
            return report

        with log:
            try:
                self._ensure_destination(log)
            except ConfigurationError as e:
                log.error(f"Error: {e}")
                report["error"] = str(e)
                return report

            rules = compile_rules(self.settings.raw)
            dedupe: Optional[Deduplicator] = None
            if self.settings.dedupe_enabled:
                dedupe = Deduplicator(
                    dest_root=self.settings.dest_root,
                    log=log,
                    algorithm=self.settings.dedupe_algo,
                    mode=self.settings.dedupe_mode,
                    move_files=self.settings.move_files,
                    dry_run=self.settings.dry_run,
                    reserved=self.reserved,
                )
                if self.settings.dedupe_prefer_dest:
                    if not self._seed_index(dedupe, log, token):
                        report["cancelled"] = True
                        log.warning("Organizing cancelled.")
                        return self._finish(report, log)
                    report["seeded"] = len(dedupe.index)

            log.warning("Starting file processing...")
            files = list(walk_files(self.settings.samples_root))
            report["files_found"] = len(files)
            log.info(f"Found {len(files)} files to process.")
            if not files:
                log.warning(f"No files found in {self.settings.samples_dir} to organize.")
                return self._finish(report, log)

            yielder = YieldPoint(
                every=tuning.YIELD_EVERY,
                token=token,
                progress=self.progress_callback,
                total=len(files),
            )
            for file_path in files:
                if token.cancelled:
                    break
                if is_archive(file_path):
                    self._process_archive(file_path, rules, dedupe, log, report, token)
                else:
                    self._process_file(file_path, rules, dedupe, log, report)
                yielder.tick()

            if token.cancelled:
                report["cancelled"] = True
                log.warning(f"Organizing cancelled. {len(self.moved_files)} file(s) placed before cancelling.")

            log.info(
                f"Done. processed={report['files_processed']} moved={report['files_moved']} "
                f"copied={report['files_copied']} duplicates={report['duplicates']} "
                f"failed={report['failed']} skipped={report['skipped']}"
            )
            return self._finish(report, log)

    def _finish(self, report: Dict[str, Any], log: RunLog) -> Dict[str, Any]:
        report["moved_files"] = [r.to_dict() for r in self.moved_files]
        report["log_counts"] = dict(log.counts)
        if self.on_done is not None:
            payload = {
                "destination_root": self.settings.dest_dir,
                "dry_run": self.settings.dry_run,
                "moved_files": list(report["moved_files"]),
            }
            try:
                self.on_done(payload)
            except Exception:
                pass
        return report

    # ------------------------------------------------------------------
    def ledger_inputs(self) -> List[PassInput]:
        """Moved-file ledger as tempo/key pass input."""
        if self.settings.dry_run:
            return [(r.dest, r.src) for r in self.moved_files]
        return [r.dest for r in self.moved_files]

    def run_tempo_key(
        self,
        root: Optional[Path] = None,
        limit_to: Optional[Iterable[PassInput]] = None,
        token: Optional[CancelToken] = None,
    ) -> Dict[str, Any]:
        """Run the tempo/key pass over ``limit_to`` or the whole of ``root``."""
        token = token or CancelToken()
        log = RunLog(callback=self.log_callback, to_console=self.log_to_console, dry_run=self.settings.dry_run)
        scan_root = Path(root) if root is not None else self.settings.dest_root
        if limit_to is None and not scan_root.is_dir():
            log.error(f"Root directory not found: {scan_root}")
            return {"error": f"Root directory not found: {scan_root}"}
        tk_pass = TempoKeyPass(
            settings=self.settings,
            log=log,
            duration_fn=self.duration_fn,
            tempo_fn=self.tempo_fn,
            token=token,
        )
        result = tk_pass.run(root=scan_root, limit_to=limit_to).to_dict()
        result["dry_run"] = self.settings.dry_run
        return result

    def run_all(self, token: Optional[CancelToken] = None) -> Dict[str, Any]:
        """Organize, then run the tempo/key pass over this run's ledger."""
        token = token or CancelToken()
        report = self.run(token=token)
        if report.get("error") or report.get("cancelled"):
            return report
        if self.settings.sort_by_bpm or self.settings.sort_by_key:
            report["tempo_key"] = self.run_tempo_key(limit_to=self.ledger_inputs(), token=token)
        return report


def write_report(report: Dict[str, Any], path: Path) -> None:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(json.dumps(report, indent=2, default=str), encoding="utf-8")
