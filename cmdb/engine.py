"""
cmdb/engine.py -- Single-target reconciliation: scan, compare, apply.

DiscoveryEngine ties the pipeline stages together for one host:

  scan():  Collector.collect() -> DeviceStore.get_by_hostname() -> compare()
  apply(): plan() -> operator metadata -> DeviceStore.add() / update()

The two halves are separate calls because a person usually reviews the
ComparisonResult before choosing what to write. The Bulk Scan Orchestrator
calls both back to back with selection="all".

Errors propagate as raised by the stages: CollectionError from scan(),
ValidationError / DuplicateHostnameError / ChangeReasonRequiredError /
PersistenceError from apply().
"""

import logging
import threading
from typing import Optional

from cmdb.differ import compare
from cmdb.fields import OPERATOR_FIELDS, set_value
from cmdb.models import ComparisonResult, PersistResult, ScanOutcome
from cmdb.planner import Selection, plan, selected_fields
from cmdb.store import DeviceStore
from core.collector import Collector
from core.config import now_iso
from core.errors import CollectionError, ValidationError

logger = logging.getLogger("devdisco.engine")

# Recorded when a new device is added without an operator-supplied reason.
DEFAULT_SCAN_ADD_REASON = "New device added via scan"


class DiscoveryEngine:
    """Thread-safe as long as the collector and store are (both are)."""

    def __init__(self, collector: Collector, store: DeviceStore) -> None:
        self.collector = collector
        self.store = store

    def scan(
        self,
        target: str,
        cancel_event: Optional[threading.Event] = None,
        session_id: Optional[str] = None,
    ) -> ComparisonResult:
        """Collect a snapshot of target and diff it against the stored record.

        The stored record is found by the host name the target reported,
        falling back to the target string itself. When no session_id is
        given a new discovery session is opened for this scan.
        """
        owns_session = session_id is None
        if owns_session:
            session_id = self.store.start_session(target)

        try:
            snapshot = self.collector.collect(target, cancel_event)
        except CollectionError as exc:
            if owns_session:
                self.store.finish_session(session_id, status="Failed", summary=exc.message)
            raise

        hostname = snapshot.computer_name or snapshot.target
        record = self.store.get_by_hostname(hostname)
        comparison = compare(snapshot, record, session_id=session_id)

        logger.info(
            "Scanned %s as %s: %s, %d difference(s)",
            target,
            hostname,
            "new device" if record is None else f"device id={record.id}",
            len(comparison.diffs),
        )
        if owns_session:
            self.store.finish_session(session_id, summary=f"{len(comparison.diffs)} difference(s) found")
        return comparison

    def apply(
        self,
        comparison: ComparisonResult,
        selection: Selection,
        actor: str,
        session_id: Optional[str],
        reason: str,
        device_type: Optional[str] = None,
        discovery_method: str = "Manual Scan",
        metadata: Optional[dict] = None,
    ) -> PersistResult:
        """Persist the selected fields of a comparison.

        New devices always take the scanned hostname, whatever the selection,
        and record discovery_method. metadata may set operator-owned fields
        (area, zone, notes, ...).
        Returns an Unchanged result without writing when an existing record
        has nothing selected and no metadata to apply.
        """
        session_id = session_id or comparison.session_id
        metadata = dict(metadata or {})
        unknown = sorted(set(metadata) - set(OPERATOR_FIELDS))
        if unknown:
            raise ValidationError(unknown[0], "is not an operator-editable field")

        is_new = comparison.record is None
        if is_new and not isinstance(selection, str):
            selection = set(selection) | {"hostname"}
        chosen = selected_fields(comparison, selection)

        if not is_new and not chosen and not metadata and device_type is None:
            return PersistResult(
                action=ScanOutcome.UNCHANGED.value,
                hostname=comparison.record.hostname,
                device_id=comparison.record.id,
            )

        record = plan(comparison, selection)
        for name, value in metadata.items():
            set_value(record, name, value)
        if device_type is not None:
            record.device_type = device_type
        if is_new:
            # How the device was first found; rescans leave it alone
            record.discovery_method = discovery_method
        record.last_discovered = comparison.snapshot.collected_at or now_iso()

        if is_new:
            reason = (reason or "").strip() or DEFAULT_SCAN_ADD_REASON
            return self.store.add(record, actor, session_id=session_id, reason=reason)
        return self.store.update(record, actor, session_id=session_id, reason=reason)
