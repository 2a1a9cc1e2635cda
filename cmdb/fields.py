"""
cmdb/fields.py -- Flat field view over DeviceRecord and Snapshot.

The Differencer, the Planner and the store's audit writer all work on the
same flat mapping of field name -> value. Scalar fields use their attribute
name ("total_ram_gb"); list slots use an indexed path ("drives[1].capacity",
"secondary_adapters[0].ip"). Working on one mapping keeps comparison,
selection and audit in simple loops instead of per-slot code.

Value rules shared by every consumer:
  - None, "", whitespace and numeric zero are all "empty"
  - floats are compared and recorded rounded to two places
  - strings are compared exactly (case-sensitive) after stripping
"""

import re
from dataclasses import fields as dataclass_fields
from typing import Any, Optional

from cmdb.models import AdapterSlot, DeviceRecord, DriveSlot
from core.models import MAX_DRIVES, MAX_SECONDARY_ADAPTERS, Snapshot

# Snapshot-derived scalar fields, in display order.
COMPARABLE_FIELDS = (
    "hostname",
    "serial_number",
    "asset_tag",
    "manufacturer",
    "model",
    "cpu_info",
    "bios_version",
    "total_ram_gb",
    "ram_type",
    "ram_speed",
    "ram_manufacturer",
    "os_name",
    "os_version",
    "os_architecture",
    "os_install_date",
    "domain_name",
    "workgroup",
    "is_domain_joined",
    "primary_ip",
    "primary_mac",
    "primary_subnet",
    "primary_dns",
    "secondary_dns",
)

# Set by people, never by a scan. Audited on update, never diffed.
OPERATOR_FIELDS = (
    "device_type",
    "equipment_group",
    "area",
    "zone",
    "line",
    "pitch",
    "floor",
    "pillar",
    "web_interface_url",
    "additional_notes",
    "device_status",
    "discovery_method",
)

SLOT_LISTS: dict[str, tuple[type, int]] = {
    "drives": (DriveSlot, MAX_DRIVES),
    "secondary_adapters": (AdapterSlot, MAX_SECONDARY_ADAPTERS),
}

# Collector fact group behind each snapshot-derived field. hostname comes from
# the connection probe, whose failure fails the whole collection.
GROUP_FIELDS: dict[str, tuple[str, ...]] = {
    "hardware": ("serial_number", "asset_tag", "manufacturer", "model", "cpu_info", "bios_version"),
    "os": ("os_name", "os_version", "os_architecture", "os_install_date"),
    "domain": ("domain_name", "workgroup", "is_domain_joined"),
    "memory": ("total_ram_gb", "ram_type", "ram_speed", "ram_manufacturer"),
    "storage": ("drives",),
    "network": ("primary_ip", "primary_mac", "primary_subnet", "primary_dns", "secondary_dns", "secondary_adapters"),
}

_SLOT_KEY_RE = re.compile(r"^(drives|secondary_adapters)\[(\d+)\]\.(\w+)$")


def slot_key(list_name: str, index: int, attr: str) -> str:
    return f"{list_name}[{index}].{attr}"


def field_root(key: str) -> str:
    """Record attribute a flat key belongs to: "drives[1].capacity" -> "drives"."""
    match = _SLOT_KEY_RE.match(key)
    return match.group(1) if match else key


def unavailable_fields(failed_groups) -> frozenset[str]:
    """Record attributes whose collector group failed, so the snapshot says nothing about them."""
    return frozenset(name for group in failed_groups for name in GROUP_FIELDS.get(group, ()))


def _slot_attrs(list_name: str) -> list[str]:
    slot_type, _ = SLOT_LISTS[list_name]
    return [f.name for f in dataclass_fields(slot_type)]


# ---------------------------------------------------------------------------
# Value semantics
# ---------------------------------------------------------------------------


def format_value(value: Any) -> Optional[str]:
    """Canonical text form of a value, as compared and as written to the audit log."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "True" if value else "False"
    if isinstance(value, (int, float)):
        return f"{round(float(value), 2):.2f}".rstrip("0").rstrip(".")
    return str(value).strip()


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return round(float(value), 2) == 0
    return not str(value).strip()


def values_equal(old: Any, new: Any) -> bool:
    if is_empty(old) and is_empty(new):
        return True
    if is_empty(old) or is_empty(new):
        return False
    return format_value(old) == format_value(new)


# ---------------------------------------------------------------------------
# Flatten
# ---------------------------------------------------------------------------


def record_values(record: DeviceRecord, include_operator: bool = False) -> dict[str, Any]:
    """Flat mapping of a record's comparable (and optionally operator) fields."""
    names = COMPARABLE_FIELDS + (OPERATOR_FIELDS if include_operator else ())
    values: dict[str, Any] = {name: getattr(record, name) for name in names}
    for list_name in SLOT_LISTS:
        for index, slot in enumerate(getattr(record, list_name)):
            for attr in _slot_attrs(list_name):
                values[slot_key(list_name, index, attr)] = getattr(slot, attr)
    return values


def snapshot_values(snapshot: Snapshot) -> dict[str, Any]:
    """Flat mapping of the record fields a snapshot can provide."""
    primary = snapshot.primary_adapter
    values: dict[str, Any] = {
        "hostname": snapshot.computer_name,
        "serial_number": snapshot.serial_number,
        "asset_tag": snapshot.asset_tag,
        "manufacturer": snapshot.manufacturer,
        "model": snapshot.model,
        "cpu_info": snapshot.cpu_name,
        "bios_version": snapshot.bios_version,
        "total_ram_gb": snapshot.total_ram_gb,
        "ram_type": snapshot.ram_type,
        "ram_speed": snapshot.ram_speed,
        "ram_manufacturer": snapshot.ram_manufacturer,
        "os_name": snapshot.os_name,
        "os_version": snapshot.os_version,
        "os_architecture": snapshot.os_architecture,
        "os_install_date": snapshot.os_install_date,
        "domain_name": snapshot.domain_name,
        "workgroup": snapshot.workgroup,
        "is_domain_joined": snapshot.is_domain_joined,
        "primary_ip": primary.ip_address if primary else "",
        "primary_mac": primary.mac_address if primary else "",
        "primary_subnet": primary.subnet if primary else "",
        "primary_dns": snapshot.primary_dns,
        "secondary_dns": snapshot.secondary_dns,
    }
    for index, disk in enumerate(snapshot.disks[:MAX_DRIVES]):
        values[slot_key("drives", index, "name")] = disk.name
        values[slot_key("drives", index, "capacity")] = disk.capacity
        values[slot_key("drives", index, "type")] = disk.disk_type
        values[slot_key("drives", index, "model")] = disk.model
    for index, adapter in enumerate(snapshot.secondary_adapters[:MAX_SECONDARY_ADAPTERS]):
        values[slot_key("secondary_adapters", index, "name")] = adapter.name
        values[slot_key("secondary_adapters", index, "ip")] = adapter.ip_address
        values[slot_key("secondary_adapters", index, "mac")] = adapter.mac_address
        values[slot_key("secondary_adapters", index, "subnet")] = adapter.subnet
    return values


def ordered_keys(*mappings: dict[str, Any]) -> list[str]:
    """Union of keys in canonical order: scalars first, then slots by list and index."""
    present = set()
    for mapping in mappings:
        present.update(mapping)
    keys = [name for name in COMPARABLE_FIELDS + OPERATOR_FIELDS if name in present]
    for list_name, (_, limit) in SLOT_LISTS.items():
        for index in range(limit):
            for attr in _slot_attrs(list_name):
                key = slot_key(list_name, index, attr)
                if key in present:
                    keys.append(key)
    return keys


# ---------------------------------------------------------------------------
# Write back
# ---------------------------------------------------------------------------


def set_value(record: DeviceRecord, key: str, value: Any) -> None:
    """Write one flat field into a record, growing slot lists as needed.

    Raises KeyError for a name that is neither a record field nor a valid slot path.
    """
    match = _SLOT_KEY_RE.match(key)
    if match is None:
        if key not in COMPARABLE_FIELDS and key not in OPERATOR_FIELDS:
            raise KeyError(key)
        if key == "total_ram_gb":
            value = round(float(value), 2) if not is_empty(value) else 0.0
        elif key == "is_domain_joined":
            value = value if isinstance(value, bool) else None
        else:
            value = "" if value is None else str(value).strip()
        setattr(record, key, value)
        return

    list_name, index, attr = match.group(1), int(match.group(2)), match.group(3)
    slot_type, limit = SLOT_LISTS[list_name]
    if index >= limit or attr not in _slot_attrs(list_name):
        raise KeyError(key)
    slots = getattr(record, list_name)
    while len(slots) <= index:
        slots.append(slot_type())
    setattr(slots[index], attr, "" if value is None else str(value).strip())


def trim_slots(record: DeviceRecord) -> None:
    """Drop trailing slots whose every attribute is empty."""
    for list_name in SLOT_LISTS:
        slots = getattr(record, list_name)
        while slots and all(is_empty(getattr(slots[-1], a)) for a in _slot_attrs(list_name)):
            slots.pop()
