"""
core/normalizer.py -- RawFacts -> Snapshot.

Derives canonical values from raw collector output:
  - primary network adapter, chosen among connected adapters
  - up to three secondary adapters, in scan order
  - total RAM in GB from the individual module capacities
  - primary / secondary DNS split from the primary adapter's server list

normalize() never raises. Missing or unparsable input degrades to "" or 0,
because its output feeds the Differencer, which already treats empty values
as "nothing to compare".
"""

import ipaddress
import re
from dataclasses import replace
from typing import Any, Optional

from core.models import (
    MAX_DRIVES,
    MAX_SECONDARY_ADAPTERS,
    UNAVAILABLE,
    Disk,
    MemoryModule,
    NetworkAdapter,
    RawFacts,
    Snapshot,
)

_BYTES_PER_GB = 1024**3
_CAPACITY_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*(TB|GB|MB)$", re.IGNORECASE)
_CAPACITY_SCALE = {"TB": 1024.0, "GB": 1.0, "MB": 1 / 1024}
_DNS_SEPARATORS = re.compile(r"[|,;]")


def clean(value: Any) -> str:
    """Strip a raw value and turn the unavailable sentinel into ""."""
    if value is None:
        return ""
    text = str(value).strip()
    return "" if text.upper() == UNAVAILABLE else text


# ---------------------------------------------------------------------------
# Network adapters
# ---------------------------------------------------------------------------


def _usable_ip(ip: str) -> bool:
    return bool(ip) and ip != "0.0.0.0" and not ip.startswith("169.254.")


def is_connected(adapter: NetworkAdapter) -> bool:
    """Connected status and an address that can actually carry traffic."""
    status = clean(adapter.connection_status).lower()
    return status in ("connected", "2") and _usable_ip(clean(adapter.ip_address))


def has_gateway(adapter: NetworkAdapter) -> bool:
    gateways = [g.strip() for g in _DNS_SEPARATORS.split(clean(adapter.default_gateway))]
    return any(g and g != "0.0.0.0" for g in gateways)


def _ip_literal(target: str) -> Optional[str]:
    try:
        return str(ipaddress.ip_address(target.strip()))
    except ValueError:
        return None


def select_primary(adapters: list[NetworkAdapter], target: str) -> Optional[NetworkAdapter]:
    """Pick the adapter most likely to be the one the scan reached.

    Priority among connected adapters:
      1. the adapter whose IP equals the target, when the target is an IP
      2. the first wired adapter with a non-zero default gateway
      3. the first wired adapter
      4. the first connected adapter of any kind
    """
    connected = [a for a in adapters if is_connected(a)]
    if not connected:
        return None

    address = _ip_literal(target or "")
    if address is not None:
        for adapter in connected:
            if clean(adapter.ip_address) == address:
                return adapter

    wired = [a for a in connected if not a.is_wireless]
    for adapter in wired:
        if has_gateway(adapter):
            return adapter
    if wired:
        return wired[0]
    return connected[0]


def split_dns(servers: str) -> tuple[str, str]:
    """First two entries of a multi-value DNS field. Extra entries are dropped."""
    entries = [e.strip() for e in _DNS_SEPARATORS.split(clean(servers)) if e.strip()]
    primary = entries[0] if entries else ""
    secondary = entries[1] if len(entries) > 1 else ""
    return primary, secondary


def _clean_adapter(adapter: NetworkAdapter) -> NetworkAdapter:
    return replace(
        adapter,
        name=clean(adapter.name),
        description=clean(adapter.description),
        ip_address=clean(adapter.ip_address),
        mac_address=clean(adapter.mac_address),
        subnet=clean(adapter.subnet),
        dns_servers=clean(adapter.dns_servers),
        default_gateway=clean(adapter.default_gateway),
        connection_status=clean(adapter.connection_status),
        adapter_type=clean(adapter.adapter_type),
    )


# ---------------------------------------------------------------------------
# Memory
# ---------------------------------------------------------------------------


def capacity_gb(capacity: Any) -> Optional[float]:
    """Parse one module capacity. Raw digits are bytes; "8GB"/"512MB" are taken as written."""
    text = clean(capacity).replace(",", "")
    if not text:
        return None
    if text.isdigit():
        return int(text) / _BYTES_PER_GB
    match = _CAPACITY_RE.match(text)
    if match is None:
        return None
    return float(match.group(1)) * _CAPACITY_SCALE[match.group(2).upper()]


def total_ram_gb(modules: list[MemoryModule]) -> float:
    total = 0.0
    for module in modules:
        size = capacity_gb(module.capacity)
        if size is not None:
            total += size
    return round(total, 2)


def _first_value(modules: list[MemoryModule], attr: str) -> str:
    for module in modules:
        value = clean(getattr(module, attr, ""))
        if value and value.lower() != "unknown":
            return value
    return ""


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def normalize(raw: RawFacts) -> Snapshot:
    modules = [m for m in (raw.memory_modules or []) if isinstance(m, MemoryModule)]
    disks = [
        Disk(name=clean(d.name), capacity=clean(d.capacity), disk_type=clean(d.disk_type), model=clean(d.model))
        for d in (raw.disks or [])
        if isinstance(d, Disk)
    ][:MAX_DRIVES]
    adapters = [_clean_adapter(a) for a in (raw.adapters or []) if isinstance(a, NetworkAdapter)]
    connected = [a for a in adapters if is_connected(a)]

    primary = select_primary(connected, raw.target)
    secondary = tuple(a for a in connected if a is not primary)[:MAX_SECONDARY_ADAPTERS]
    primary_dns, secondary_dns = split_dns(primary.dns_servers) if primary is not None else ("", "")

    return Snapshot(
        target=clean(raw.target),
        computer_name=clean(raw.computer_name),
        manufacturer=clean(raw.manufacturer),
        model=clean(raw.model),
        serial_number=clean(raw.serial_number),
        asset_tag=clean(raw.asset_tag),
        bios_version=clean(raw.bios_version),
        cpu_name=clean(raw.cpu_name),
        memory_modules=tuple(modules),
        total_ram_gb=total_ram_gb(modules),
        ram_type=_first_value(modules, "memory_type"),
        ram_speed=_first_value(modules, "speed"),
        ram_manufacturer=_first_value(modules, "manufacturer"),
        disks=tuple(disks),
        os_name=clean(raw.os_name),
        os_version=clean(raw.os_version),
        os_architecture=clean(raw.os_architecture),
        os_install_date=clean(raw.os_install_date),
        domain_name=clean(raw.domain_name),
        workgroup=clean(raw.workgroup),
        is_domain_joined=raw.is_domain_joined if isinstance(raw.is_domain_joined, bool) else None,
        adapters=tuple(connected),
        primary_adapter=primary,
        secondary_adapters=secondary,
        primary_dns=primary_dns,
        secondary_dns=secondary_dns,
        failed_groups=tuple(raw.failed_groups or ()),
        collected_at=clean(raw.collected_at),
    )
