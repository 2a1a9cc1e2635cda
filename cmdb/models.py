"""
cmdb/models.py -- Domain dataclasses for the device inventory.

These are pure data containers with zero logic. Comparison lives in
cmdb/differ.py, field selection in cmdb/planner.py, persistence and audit
rules in cmdb/store.py.

Separation of concerns: these dataclasses are the inventory's domain truth,
just as core/models.py is the collector's. cmdb/ may import core/; core/
never imports cmdb/.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from core.models import Snapshot

VALID_DEVICE_TYPES = ("Printer", "Camera", "PC", "Server", "Router", "Switch", "Other")
VALID_DEVICE_STATUSES = ("Active", "Inactive", "Maintenance", "Missing", "Retired")


class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    DISCOVER = "DISCOVER"


class ScanOutcome(str, Enum):
    ADDED = "Added"
    UPDATED = "Updated"
    UNCHANGED = "Unchanged"
    SKIPPED = "Skipped"
    FAILED = "Failed"


@dataclass
class AdapterSlot:
    """A secondary network adapter as stored on the device record."""

    name: str = ""
    ip: str = ""
    mac: str = ""
    subnet: str = ""


@dataclass
class DriveSlot:
    name: str = ""
    capacity: str = ""
    type: str = ""
    model: str = ""


@dataclass
class DeviceRecord:
    """The durable inventory entity for one host.

    drives holds at most four entries and secondary_adapters at most three;
    the primary adapter lives in the primary_* fields.

    id is None before the record is written to the database.
    """

    hostname: str = ""
    id: Optional[int] = None

    # Identity and hardware
    serial_number: str = ""
    asset_tag: str = ""
    device_type: str = "Other"
    equipment_group: str = ""
    manufacturer: str = ""
    model: str = ""
    cpu_info: str = ""
    bios_version: str = ""

    # Memory
    total_ram_gb: float = 0.0
    ram_type: str = ""
    ram_speed: str = ""
    ram_manufacturer: str = ""

    # Operating system and domain
    os_name: str = ""
    os_version: str = ""
    os_architecture: str = ""
    os_install_date: str = ""  # YYYY-MM-DD
    domain_name: str = ""
    workgroup: str = ""
    is_domain_joined: Optional[bool] = None

    # Network
    primary_ip: str = ""
    primary_mac: str = ""
    primary_subnet: str = ""
    primary_dns: str = ""
    secondary_dns: str = ""
    secondary_adapters: list[AdapterSlot] = field(default_factory=list)

    # Storage
    drives: list[DriveSlot] = field(default_factory=list)

    # Location (operator-owned)
    area: str = ""
    zone: str = ""
    line: str = ""
    pitch: str = ""
    floor: str = ""
    pillar: str = ""

    # Operator-owned extras
    web_interface_url: str = ""
    additional_notes: str = ""

    # Lifecycle
    device_status: str = "Active"
    discovery_method: str = ""
    last_discovered: str = ""  # ISO 8601
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""  # ISO 8601, set by store on every write


@dataclass
class AuditEntry:
    """Immutable record of one change to a device record.

    Append-only: rows are never updated, and deleting the device they
    describe leaves them in place. device_id is a plain lookup key, not an
    owning reference.

    id is None before the record is written to the database.
    """

    action: str  # AuditAction value
    performed_at: str  # ISO 8601
    performed_by: str
    device_id: Optional[int] = None
    hostname: str = ""
    field_name: str = ""
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    change_reason: str = ""
    session_id: Optional[str] = None
    id: Optional[int] = None


@dataclass
class ArchivedDevice:
    """Full copy of a device record taken at deletion time."""

    record: DeviceRecord
    original_device_id: int
    deleted_at: str  # ISO 8601
    deleted_by: str
    deletion_reason: str
    id: Optional[int] = None


@dataclass
class DiscoverySession:
    """Correlation label for one scan or one bulk run. Never needs closing."""

    session_id: str
    target: str
    started_at: str
    status: str = "Running"  # "Running" | "Completed" | "Failed"
    completed_at: Optional[str] = None
    summary: str = ""


@dataclass
class FieldDiff:
    """One differing field. apply stays False until the operator selects it."""

    field: str
    old_value: Any = None
    new_value: Any = None
    apply: bool = False


@dataclass
class ComparisonResult:
    """Field-level delta between a Snapshot and the stored record (if any).

    record is None when the host is not in the inventory yet; every field is
    then reported with old_value None and the result drives an Add.
    """

    target: str
    snapshot: Snapshot
    record: Optional[DeviceRecord]
    diffs: list[FieldDiff] = field(default_factory=list)
    session_id: Optional[str] = None


@dataclass
class PersistResult:
    """Outcome of one Add / Update / Delete."""

    action: str  # ScanOutcome value, or "Deleted"
    hostname: str
    device_id: Optional[int] = None
    audit_entries: int = 0
    changed_fields: list[str] = field(default_factory=list)
