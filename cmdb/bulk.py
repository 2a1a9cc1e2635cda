"""
cmdb/bulk.py -- Bulk Scan Orchestrator.

Runs the full discovery pipeline (scan -> compare -> plan("all") -> add or
update) for every target in a list, with a bounded worker pool.

Isolation: each target runs in its own worker call with its own store
transaction. A failure is recorded in that target's TargetResult and the
run carries on. Nothing is retried automatically; instead, when any target
fails, a failure report is written that can be passed straight back in as
the next run's target list.

Shared state: the only state workers share is the BulkScanResult being
built, and every mutation of it happens under one lock.

Hosts that already match their record are Skipped; their last_discovered
is stamped with a DISCOVER audit row so the run still shows they were seen.

Cancellation: setting the Event passed to run() stops that run; cancel()
stops every run in progress. Targets not yet started are recorded as
Skipped, and the event is handed to every in-flight Collector call so
running queries stop too.

Usage:
    orchestrator = BulkScanOrchestrator(engine, store, max_workers=4)
    result = orchestrator.run("targets.txt", actor="alice", reason="Quarterly audit")
    print(result.summary)
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from cmdb.engine import DiscoveryEngine
from cmdb.ingest import TargetSource, load_targets
from cmdb.models import ComparisonResult, ScanOutcome
from cmdb.planner import APPLY_ALL
from cmdb.store import DeviceStore
from core.config import now_iso
from core.errors import ChangeReasonRequiredError, CollectionCancelledError, DiscoveryError

logger = logging.getLogger("devdisco.bulk")

BULK_DEVICE_TYPE = "PC"
BULK_DISCOVERY_METHOD = "Bulk Scan"
CANCELLED = "Cancelled"


@dataclass
class TargetResult:
    target: str
    outcome: str  # ScanOutcome value
    hostname: str = ""
    device_id: Optional[int] = None
    error: str = ""
    duration_seconds: float = 0.0


@dataclass
class BulkScanResult:
    """Aggregate of one orchestrator run.

    results holds one entry per input target. With more than one worker the
    order follows completion, not the input list.
    """

    session_id: str
    source: str
    started_at: str
    total: int = 0
    added: int = 0
    updated: int = 0
    failed: int = 0
    skipped: int = 0
    results: list[TargetResult] = field(default_factory=list)
    finished_at: str = ""
    duration_seconds: float = 0.0
    failure_report_path: Optional[str] = None

    @property
    def succeeded(self) -> int:
        return self.added + self.updated

    @property
    def summary(self) -> str:
        return (
            f"Processed {self.total} devices: {self.added} added, {self.updated} updated, "
            f"{self.failed} failed, {self.skipped} skipped"
        )

    def record(self, result: TargetResult) -> None:
        self.results.append(result)
        if result.outcome == ScanOutcome.ADDED.value:
            self.added += 1
        elif result.outcome == ScanOutcome.UPDATED.value:
            self.updated += 1
        elif result.outcome == ScanOutcome.FAILED.value:
            self.failed += 1
        else:
            self.skipped += 1


# ---------------------------------------------------------------------------
# Failure report
# ---------------------------------------------------------------------------


def _flatten(message: str) -> str:
    return " ".join((message or "unknown error").split())


def write_failure_report(result: BulkScanResult, directory: Path, stem: str = "bulk_scan") -> Path:
    """Write the failed targets of a run as a resubmittable target list.

    Header lines start with "#" and every failure line is
    "<target>    # Error: <message>", so the file parses back to exactly the
    failed targets.
    """
    failures = [r for r in result.results if r.outcome == ScanOutcome.FAILED.value]
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{stem}_FAILED_{stamp}.txt"

    lines = [
        "# Bulk scan failure report",
        f"# Generated: {now_iso()}",
        f"# Session: {result.session_id}",
        f"# Source: {result.source}",
        f"# Failed targets: {len(failures)}",
        "#",
        "# To retry, resubmit this file unchanged:",
        f'#   python main.py bulk --file "{path}" --reason "<reason>"',
        "#",
    ]
    lines += [f"{r.target}    # Error: {_flatten(r.error)}" for r in failures]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class BulkScanOrchestrator:
    def __init__(
        self,
        engine: DiscoveryEngine,
        store: DeviceStore,
        max_workers: int = 4,
        report_dir: Optional[str] = None,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.engine = engine
        self.store = store
        self.max_workers = max_workers
        self.report_dir = report_dir or None
        # Cancel events of the runs in progress
        self._active_runs: set[threading.Event] = set()
        self._runs_lock = threading.Lock()

    def cancel(self) -> None:
        """Stop every run in progress: pending targets are skipped, in-flight scans cancelled.

        To cancel one run only, pass it a cancel_event and set that instead.
        """
        with self._runs_lock:
            for event in self._active_runs:
                event.set()

    def run(
        self,
        source: TargetSource,
        actor: str,
        reason: str,
        session_id: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> BulkScanResult:
        """Scan every target in source and add or update its device record.

        reason is mandatory and becomes the audit reason of every change made
        in the run. Raises ChangeReasonRequiredError before anything is read
        when it is blank. Per-target failures never raise.
        """
        if not (reason or "").strip():
            raise ChangeReasonRequiredError("bulk scan")
        reason = reason.strip()
        cancel = cancel_event or threading.Event()
        with self._runs_lock:
            self._active_runs.add(cancel)
        try:
            return self._run(source, actor, reason, session_id, cancel)
        finally:
            with self._runs_lock:
                self._active_runs.discard(cancel)

    def _run(
        self,
        source: TargetSource,
        actor: str,
        reason: str,
        session_id: Optional[str],
        cancel: threading.Event,
    ) -> BulkScanResult:
        targets, description = load_targets(source)
        session_id = self.store.start_session(description, session_id)
        result = BulkScanResult(session_id=session_id, source=description, started_at=now_iso(), total=len(targets))
        lock = threading.Lock()
        started = time.perf_counter()
        logger.info("Bulk scan %s: %d target(s), %d worker(s)", session_id, len(targets), self.max_workers)

        def work(target: str) -> None:
            outcome = self._process(target, actor, reason, session_id, cancel)
            with lock:
                result.record(outcome)

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="bulk-scan") as pool:
            for future in [pool.submit(work, t) for t in targets]:
                future.result()

        result.finished_at = now_iso()
        result.duration_seconds = round(time.perf_counter() - started, 2)
        if result.failed:
            result.failure_report_path = str(self._write_report(result))
            logger.warning("Bulk scan %s: %d failure(s), report at %s", session_id, result.failed, result.failure_report_path)

        status = CANCELLED if cancel.is_set() else "Completed"
        self.store.finish_session(session_id, status=status, summary=result.summary)
        logger.info("Bulk scan %s %s in %.1fs. %s", session_id, status.lower(), result.duration_seconds, result.summary)
        return result

    def _process(
        self,
        target: str,
        actor: str,
        reason: str,
        session_id: str,
        cancel: threading.Event,
    ) -> TargetResult:
        if cancel.is_set():
            return TargetResult(target=target, outcome=ScanOutcome.SKIPPED.value, error=CANCELLED)

        started = time.perf_counter()
        outcome = TargetResult(target=target, outcome=ScanOutcome.FAILED.value)
        try:
            comparison = self.engine.scan(target, cancel, session_id=session_id)
            outcome.hostname = comparison.snapshot.computer_name
            if comparison.record is not None and not comparison.diffs:
                outcome.outcome = ScanOutcome.SKIPPED.value
                outcome.device_id = comparison.record.id
                self._stamp(comparison, actor, session_id, reason)
            else:
                persisted = self.engine.apply(
                    comparison,
                    APPLY_ALL,
                    actor,
                    session_id,
                    reason,
                    device_type=BULK_DEVICE_TYPE if comparison.record is None else None,
                    discovery_method=BULK_DISCOVERY_METHOD,
                )
                outcome.device_id = persisted.device_id
                outcome.hostname = persisted.hostname
                # An update that turned out to change nothing counts as a skip
                if persisted.action == ScanOutcome.UNCHANGED.value:
                    outcome.outcome = ScanOutcome.SKIPPED.value
                    self._stamp(comparison, actor, session_id, reason)
                else:
                    outcome.outcome = persisted.action
        except CollectionCancelledError:
            outcome.outcome = ScanOutcome.SKIPPED.value
            outcome.error = CANCELLED
        except DiscoveryError as exc:
            logger.warning("Bulk target %s failed: %s", target, exc)
            outcome.error = str(exc)
        except Exception as exc:
            # One broken target must not take down the run
            logger.exception("Bulk target %s failed unexpectedly", target)
            outcome.error = f"{type(exc).__name__}: {exc}"
        outcome.duration_seconds = round(time.perf_counter() - started, 2)
        return outcome

    def _stamp(self, comparison: ComparisonResult, actor: str, session_id: str, reason: str) -> None:
        """A matching host was still seen: record it with a DISCOVER audit row."""
        self.store.record_discovery(
            comparison.record.id,
            actor,
            session_id=session_id,
            reason=reason,
            discovered_at=comparison.snapshot.collected_at or None,
        )

    def _write_report(self, result: BulkScanResult) -> Path:
        source_path = Path(result.source) if result.source != "inline" else None
        stem = source_path.stem if source_path is not None else "bulk_scan"
        if self.report_dir:
            directory = Path(self.report_dir)
        elif source_path is not None:
            directory = source_path.parent
        else:
            directory = Path.cwd()
        return write_failure_report(result, directory, stem)
