"""Unit tests for cmdb/store.py -- DeviceStore persistence and the audit log.

Covers:
- add() writes the row plus exactly one CREATE audit row
- add() rejects duplicate hostnames and invalid records without writing
- update() requires a reason and writes nothing without one
- update() writes one UPDATE audit row per changed field, old/new as text
- update() with nothing changed is Unchanged and writes no audit rows
- delete() archives the full record, audits, removes the live row
- audit history of a deleted device is still queryable by device_id
- a failure mid-delete or mid-update rolls the whole transaction back
- record_discovery() stamps last_discovered with one DISCOVER row, nothing else
- search(), sessions, audit purge (dry run and execute)
"""

from unittest.mock import patch

import pytest
from sqlalchemy.exc import SQLAlchemyError

from cmdb.models import AdapterSlot, DeviceRecord, DriveSlot
from cmdb.store import DEFAULT_CREATE_REASON, DeviceStore
from core.errors import (
    ChangeReasonRequiredError,
    DeviceNotFoundError,
    DuplicateHostnameError,
    PersistenceError,
    ValidationError,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _record(hostname="WKS-01", **overrides) -> DeviceRecord:
    record = DeviceRecord(
        hostname=hostname,
        device_type="PC",
        manufacturer="Dell Inc.",
        model="OptiPlex 7090",
        serial_number="SN-0001",
        total_ram_gb=8.0,
        primary_ip="10.0.0.5",
        primary_mac="00:11:22:33:44:55",
        is_domain_joined=True,
        drives=[DriveSlot(name="disk0", capacity="512.11GB", type="NVMe SSD", model="Samsung SSD 980")],
        secondary_adapters=[AdapterSlot(name="Ethernet 2", ip="192.168.50.10", mac="00:11:22:33:44:66")],
        area="Hall 3",
    )
    for key, value in overrides.items():
        setattr(record, key, value)
    return record


def _add(store: DeviceStore, **overrides) -> DeviceRecord:
    result = store.add(_record(**overrides), actor="alice", session_id="s-1", reason="New workstation")
    return store.get(result.device_id)


# ---------------------------------------------------------------------------
# add()
# ---------------------------------------------------------------------------


class TestAdd:
    def test_add_round_trips_every_field(self, store):
        result = store.add(_record(), actor="alice", session_id="s-1", reason="New workstation")
        assert result.action == "Added"
        assert result.audit_entries == 1

        stored = store.get(result.device_id)
        assert stored.hostname == "WKS-01"
        assert stored.total_ram_gb == 8.0
        assert stored.is_domain_joined is True
        assert stored.drives[0].type == "NVMe SSD"
        assert stored.secondary_adapters[0].ip == "192.168.50.10"
        assert stored.created_at and stored.updated_at

    def test_add_writes_one_create_row(self, store):
        device = _add(store)
        entries = store.get_audit_entries(device_id=device.id)
        assert len(entries) == 1
        entry = entries[0]
        assert entry.action == "CREATE"
        assert entry.field_name == "DEVICE_CREATED"
        assert entry.new_value == "Device created: WKS-01 (Dell Inc. OptiPlex 7090)"
        assert entry.performed_by == "alice"
        assert entry.change_reason == "New workstation"
        assert entry.session_id == "s-1"

    def test_add_without_reason_uses_default(self, store):
        result = store.add(_record(), actor="alice")
        entry = store.get_audit_entries(device_id=result.device_id)[0]
        assert entry.change_reason == DEFAULT_CREATE_REASON

    def test_duplicate_hostname_rejected(self, store):
        _add(store)
        with pytest.raises(DuplicateHostnameError):
            store.add(_record(), actor="bob", reason="again")
        assert len(store.list_devices()) == 1
        assert len(store.get_audit_entries()) == 1

    def test_invalid_record_writes_nothing(self, store):
        with pytest.raises(ValidationError):
            store.add(_record(primary_ip="10.0.0.300"), actor="alice")
        assert store.list_devices() == []
        assert store.get_audit_entries() == []


# ---------------------------------------------------------------------------
# update()
# ---------------------------------------------------------------------------


class TestUpdate:
    def test_reason_required_and_nothing_written(self, store):
        device = _add(store)
        device.total_ram_gb = 16.0
        with pytest.raises(ChangeReasonRequiredError):
            store.update(device, actor="alice", reason="   ")
        assert store.get(device.id).total_ram_gb == 8.0
        assert len(store.get_audit_entries(device_id=device.id)) == 1

    def test_one_audit_row_per_changed_field(self, store):
        device = _add(store)
        device.total_ram_gb = 16.0
        device.area = "Hall 4"
        device.drives[0].capacity = "1000.2GB"

        result = store.update(device, actor="bob", session_id="s-2", reason="Hardware refresh")

        assert result.action == "Updated"
        assert result.changed_fields == ["total_ram_gb", "area", "drives[0].capacity"]
        rows = [e for e in store.get_audit_entries(device_id=device.id) if e.action == "UPDATE"]
        assert [(e.field_name, e.old_value, e.new_value) for e in rows] == [
            ("total_ram_gb", "8", "16"),
            ("area", "Hall 3", "Hall 4"),
            ("drives[0].capacity", "512.11GB", "1000.2GB"),
        ]
        assert all(e.change_reason == "Hardware refresh" and e.performed_by == "bob" for e in rows)
        assert store.get(device.id).area == "Hall 4"

    def test_unchanged_writes_nothing(self, store):
        device = _add(store)
        result = store.update(device, actor="alice", reason="no-op")
        assert result.action == "Unchanged"
        assert len(store.get_audit_entries(device_id=device.id)) == 1

    def test_update_unknown_device(self, store):
        with pytest.raises(DeviceNotFoundError):
            store.update(_record(hostname="GHOST-01"), actor="alice", reason="x")

    def test_rename_to_existing_hostname_rejected(self, store):
        _add(store, hostname="WKS-01")
        other = _add(store, hostname="WKS-02")
        other.hostname = "WKS-01"
        with pytest.raises(DuplicateHostnameError):
            store.update(other, actor="alice", reason="rename")

    def test_failed_audit_write_rolls_back_row(self, store):
        device = _add(store)
        device.total_ram_gb = 16.0
        with patch("cmdb.store._audit_row", side_effect=SQLAlchemyError("disk I/O error")):
            with pytest.raises(PersistenceError):
                store.update(device, actor="alice", reason="RAM upgraded")
        assert store.get(device.id).total_ram_gb == 8.0
        assert len(store.get_audit_entries(device_id=device.id)) == 1


# ---------------------------------------------------------------------------
# delete()
# ---------------------------------------------------------------------------


class TestDelete:
    def test_delete_archives_and_keeps_audit(self, store):
        device = _add(store)
        result = store.delete("WKS-01", actor="carol", reason="Decommissioned")

        assert result.action == "Deleted"
        assert store.get(device.id) is None
        assert store.get_by_hostname("WKS-01") is None

        archived = store.list_deleted("WKS-01")
        assert len(archived) == 1
        assert archived[0].original_device_id == device.id
        assert archived[0].deleted_by == "carol"
        assert archived[0].deletion_reason == "Decommissioned"
        assert archived[0].record.total_ram_gb == 8.0
        assert archived[0].record.drives == device.drives

        actions = [e.action for e in store.get_audit_entries(device_id=device.id)]
        assert actions == ["CREATE", "DELETE"]
        delete_row = store.get_audit_entries(device_id=device.id)[-1]
        assert delete_row.old_value == "Device removed: WKS-01 (Dell Inc. OptiPlex 7090) - IP: 10.0.0.5"
        assert delete_row.new_value == "Device archived to deleted_devices table"

    def test_reason_required(self, store):
        _add(store)
        with pytest.raises(ChangeReasonRequiredError):
            store.delete("WKS-01", actor="carol", reason="")
        assert store.get_by_hostname("WKS-01") is not None

    def test_delete_unknown(self, store):
        with pytest.raises(DeviceNotFoundError):
            store.delete("GHOST-01", actor="carol", reason="gone")

    def test_failed_archive_rolls_back(self, store):
        device = _add(store)
        with patch.object(DeviceStore, "_archive", side_effect=SQLAlchemyError("disk full")):
            with pytest.raises(PersistenceError):
                store.delete("WKS-01", actor="carol", reason="Decommissioned")
        assert store.get(device.id) is not None
        assert store.list_deleted() == []
        assert [e.action for e in store.get_audit_entries(device_id=device.id)] == ["CREATE"]

    def test_hostname_reusable_after_delete(self, store):
        first = _add(store)
        store.delete("WKS-01", actor="carol", reason="Reimaged")
        second = _add(store)
        assert second.id != first.id
        # History of both lifetimes stays separate
        assert [e.action for e in store.get_audit_entries(device_id=first.id)] == ["CREATE", "DELETE"]
        assert [e.action for e in store.get_audit_entries(device_id=second.id)] == ["CREATE"]


# ---------------------------------------------------------------------------
# Reads, sessions, retention
# ---------------------------------------------------------------------------


class TestRecordDiscovery:
    def test_stamps_last_discovered_only(self, store):
        device = _add(store, last_discovered="2025-01-01T08:00:00+00:00")

        result = store.record_discovery(
            device.id, "bob", session_id="s-2", reason="Quarterly audit", discovered_at="2025-04-01T08:00:00+00:00"
        )

        assert result.action == "Skipped"
        assert result.audit_entries == 1
        after = store.get(device.id)
        assert after.last_discovered == "2025-04-01T08:00:00+00:00"
        assert after.updated_at == device.updated_at
        assert after.total_ram_gb == device.total_ram_gb
        row = store.get_audit_entries(session_id="s-2")[0]
        assert (row.action, row.field_name, row.old_value, row.new_value) == (
            "DISCOVER",
            "last_discovered",
            "2025-01-01T08:00:00+00:00",
            "2025-04-01T08:00:00+00:00",
        )
        assert (row.performed_by, row.change_reason, row.hostname) == ("bob", "Quarterly audit", "WKS-01")

    def test_unknown_device(self, store):
        with pytest.raises(DeviceNotFoundError):
            store.record_discovery(999, "bob")
        assert store.get_audit_entries() == []


class TestSearch:
    def test_search_matches_several_columns(self, store):
        _add(store, hostname="WKS-01", primary_ip="10.0.0.5", area="Hall 3")
        _add(store, hostname="SRV-DB-01", primary_ip="10.0.1.20", area="Server room")
        assert [r.hostname for r in store.search("wks")] == ["WKS-01"]
        assert [r.hostname for r in store.search("10.0.1.")] == ["SRV-DB-01"]
        assert [r.hostname for r in store.search("server ROOM")] == ["SRV-DB-01"]
        assert len(store.search("")) == 2

    def test_search_escapes_wildcards(self, store):
        _add(store, hostname="WKS-01")
        assert store.search("%") == []
        assert store.search("_") == []


class TestSessions:
    def test_start_and_finish(self, store):
        session_id = store.start_session("WKS-01")
        assert store.get_session(session_id).status == "Running"
        assert store.finish_session(session_id, status="Completed", summary="1 difference(s) found")
        session = store.get_session(session_id)
        assert session.status == "Completed"
        assert session.completed_at
        assert session.summary == "1 difference(s) found"

    def test_start_is_idempotent(self, store):
        assert store.start_session("bulk", "fixed-id") == "fixed-id"
        assert store.start_session("bulk", "fixed-id") == "fixed-id"

    def test_audit_filtered_by_session(self, store):
        store.add(_record(hostname="WKS-01"), actor="alice", session_id="s-A")
        store.add(_record(hostname="WKS-02"), actor="alice", session_id="s-B")
        assert [e.hostname for e in store.get_audit_entries(session_id="s-B")] == ["WKS-02"]


class TestAuditRetention:
    def test_dry_run_counts_only(self, store):
        with patch("cmdb.store.now_iso", return_value="2020-01-01T00:00:00+00:00"):
            store.add(_record(hostname="OLD-01"), actor="alice")
        _add(store, hostname="NEW-01")

        assert store.purge_audit_entries(older_than_days=365) == 1
        assert len(store.get_audit_entries()) == 2

    def test_execute_deletes_old_rows(self, store):
        with patch("cmdb.store.now_iso", return_value="2020-01-01T00:00:00+00:00"):
            store.add(_record(hostname="OLD-01"), actor="alice")
        _add(store, hostname="NEW-01")

        assert store.purge_audit_entries(older_than_days=365, dry_run=False) == 1
        assert [e.hostname for e in store.get_audit_entries()] == ["NEW-01"]

    def test_window_must_be_positive(self, store):
        with pytest.raises(ValueError):
            store.purge_audit_entries(older_than_days=0)

    def test_ping(self, store):
        assert store.ping() is True
