"""
tests/test_differ.py -- Unit tests for cmdb/differ.py, cmdb/planner.py and
the shared value rules in cmdb/fields.py.

Covers:
  - identical snapshot and record produce no diffs
  - new device: every snapshot field reported with old_value None
  - string comparison is case-sensitive, whitespace-trimmed
  - RAM compared at two decimal places
  - empty vs empty is equal, empty vs value is a diff
  - drive and secondary-adapter slots diffed by index
  - fields of a failed fact group are not diffed against a stored record
  - planner applies only the selected fields, "all" applies every diff,
    any other string is rejected
"""

import pytest

from cmdb.differ import compare
from cmdb.fields import format_value, is_empty, values_equal
from cmdb.models import DeviceRecord, DriveSlot
from cmdb.planner import plan, selected_fields
from core.models import Disk, NetworkAdapter, Snapshot


def _snapshot(**overrides) -> Snapshot:
    values = dict(
        target="WKS-01",
        computer_name="WKS-01",
        manufacturer="Dell Inc.",
        model="OptiPlex 7090",
        serial_number="SN-0001",
        total_ram_gb=16.0,
        os_name="Microsoft Windows 11 Enterprise",
        is_domain_joined=True,
        domain_name="corp.example.com",
        primary_adapter=NetworkAdapter(
            name="Ethernet", ip_address="10.0.0.5", mac_address="00:11:22:33:44:55", subnet="255.255.255.0"
        ),
        primary_dns="10.0.0.10",
        disks=(Disk(name="disk0", capacity="512.11GB", disk_type="NVMe SSD", model="Samsung SSD 980"),),
    )
    values.update(overrides)
    return Snapshot(**values)


def _record(**overrides) -> DeviceRecord:
    record = DeviceRecord(
        id=7,
        hostname="WKS-01",
        manufacturer="Dell Inc.",
        model="OptiPlex 7090",
        serial_number="SN-0001",
        total_ram_gb=16.0,
        os_name="Microsoft Windows 11 Enterprise",
        is_domain_joined=True,
        domain_name="corp.example.com",
        primary_ip="10.0.0.5",
        primary_mac="00:11:22:33:44:55",
        primary_subnet="255.255.255.0",
        primary_dns="10.0.0.10",
        drives=[DriveSlot(name="disk0", capacity="512.11GB", type="NVMe SSD", model="Samsung SSD 980")],
    )
    for key, value in overrides.items():
        setattr(record, key, value)
    return record


class TestCompare:
    def test_identical_means_no_diffs(self):
        result = compare(_snapshot(), _record(), session_id="s-1")
        assert result.diffs == []
        assert result.session_id == "s-1"
        assert result.record.id == 7

    def test_single_field_change(self):
        result = compare(_snapshot(total_ram_gb=32.0), _record())
        assert [(d.field, d.old_value, d.new_value) for d in result.diffs] == [("total_ram_gb", 16.0, 32.0)]
        assert result.diffs[0].apply is False

    def test_new_device_reports_every_field(self):
        result = compare(_snapshot(), None)
        assert result.record is None
        assert all(d.old_value is None for d in result.diffs)
        fields = [d.field for d in result.diffs]
        assert fields[0] == "hostname"
        assert "total_ram_gb" in fields
        assert "drives[0].capacity" in fields

    def test_case_sensitive(self):
        result = compare(_snapshot(manufacturer="DELL INC."), _record())
        assert [d.field for d in result.diffs] == ["manufacturer"]

    def test_whitespace_is_not_a_change(self):
        result = compare(_snapshot(model="  OptiPlex 7090 "), _record())
        assert result.diffs == []

    def test_ram_compared_at_two_places(self):
        assert compare(_snapshot(total_ram_gb=15.999), _record()).diffs == []
        assert [d.field for d in compare(_snapshot(total_ram_gb=15.9), _record()).diffs] == ["total_ram_gb"]

    def test_empty_on_both_sides_is_equal(self):
        result = compare(_snapshot(asset_tag=""), _record(asset_tag=""))
        assert result.diffs == []

    def test_value_lost_from_scan_is_a_diff(self):
        result = compare(_snapshot(serial_number=""), _record())
        assert [(d.field, d.old_value, d.new_value) for d in result.diffs] == [("serial_number", "SN-0001", "")]

    def test_new_drive_slot(self):
        disks = _snapshot().disks + (Disk(name="disk1", capacity="1000.2GB", disk_type="SATA HDD", model="WD"),)
        result = compare(_snapshot(disks=disks), _record())
        assert [d.field for d in result.diffs] == [
            "drives[1].name",
            "drives[1].capacity",
            "drives[1].type",
            "drives[1].model",
        ]

    def test_domain_join_flag(self):
        result = compare(_snapshot(is_domain_joined=False, domain_name=""), _record())
        assert {d.field for d in result.diffs} == {"is_domain_joined", "domain_name"}


class TestFailedGroups:
    def test_failed_memory_group_keeps_stored_ram(self):
        snapshot = _snapshot(total_ram_gb=0.0, ram_type="", ram_speed="", ram_manufacturer="", failed_groups=("memory",))
        assert compare(snapshot, _record()).diffs == []

    def test_failed_storage_group_keeps_stored_drives(self):
        snapshot = _snapshot(disks=(), failed_groups=("storage",))
        assert compare(snapshot, _record()).diffs == []

    def test_other_fields_still_compared(self):
        snapshot = _snapshot(total_ram_gb=0.0, bios_version="2.0", failed_groups=("memory",))
        assert [d.field for d in compare(snapshot, _record()).diffs] == ["bios_version"]

    def test_new_device_reports_every_field(self):
        snapshot = _snapshot(total_ram_gb=0.0, failed_groups=("memory",))
        fields = [d.field for d in compare(snapshot, None).diffs]
        assert "total_ram_gb" in fields
        assert fields == [d.field for d in compare(_snapshot(), None).diffs]


class TestValueRules:
    def test_format_value(self):
        assert format_value(8.0) == "8"
        assert format_value(15.5) == "15.5"
        assert format_value(True) == "True"
        assert format_value(None) is None
        assert format_value(" x ") == "x"

    def test_is_empty(self):
        assert is_empty(None)
        assert is_empty("  ")
        assert is_empty(0.0)
        assert not is_empty(False)
        assert not is_empty("0")

    def test_values_equal(self):
        assert values_equal(None, "")
        assert values_equal(16, 16.0)
        assert not values_equal("abc", "ABC")


class TestPlanner:
    def test_selected_fields_only(self):
        comparison = compare(_snapshot(total_ram_gb=32.0, model="OptiPlex 7000"), _record())
        record = plan(comparison, {"total_ram_gb"})
        assert record.total_ram_gb == 32.0
        assert record.model == "OptiPlex 7090"
        assert record.id == 7

    def test_all_applies_every_diff(self):
        comparison = compare(_snapshot(total_ram_gb=32.0, model="OptiPlex 7000"), _record())
        record = plan(comparison, "all")
        assert record.total_ram_gb == 32.0
        assert record.model == "OptiPlex 7000"

    def test_plan_does_not_mutate_stored_record(self):
        stored = _record()
        plan(compare(_snapshot(total_ram_gb=32.0), stored), "all")
        assert stored.total_ram_gb == 16.0

    def test_unknown_selection_names_are_ignored(self):
        comparison = compare(_snapshot(total_ram_gb=32.0), _record())
        assert selected_fields(comparison, ["not_a_field"]) == []

    def test_bad_string_rejected(self):
        comparison = compare(_snapshot(), _record())
        with pytest.raises(ValueError):
            selected_fields(comparison, "total_ram_gb")

    def test_new_device_builds_slots(self):
        record = plan(compare(_snapshot(), None), "all")
        assert record.id is None
        assert record.hostname == "WKS-01"
        assert record.primary_ip == "10.0.0.5"
        assert record.drives == [DriveSlot(name="disk0", capacity="512.11GB", type="NVMe SSD", model="Samsung SSD 980")]
        assert record.secondary_adapters == []
