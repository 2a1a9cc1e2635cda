"""
core/collector.py -- Inventory Snapshot Collector.

Given a hostname or IP, reads hardware, OS, domain, memory, storage and
network facts through CIM/WMI PowerShell queries and returns them as RawFacts
(collect_raw) or as a normalized Snapshot (collect).

Local vs remote is decided here and nowhere else: a target naming this
machine runs PowerShell in a child process, anything else goes over WinRM.

Failure model:
  - A connection probe runs first. If it fails the target is unreachable
    and CollectionError is raised. This is the only fatal path.
  - Each fact group is one script. A group that fails (script error, bad
    JSON, timeout) degrades to "N/A" / [] and is named in failed_groups;
    the remaining groups are still queried.
  - The whole call shares one time budget. Each script run gets what is
    left of it, so a hung host costs at most the budget, not budget x groups.
  - A set cancel_event kills the running query and raises
    CollectionCancelledError.

Side effects: none on the target. All scripts are read-only queries.
"""

import ipaddress
import json
import logging
import platform
import re
import socket
import threading
import time
from collections.abc import Callable
from functools import lru_cache
from typing import Any, Optional

from core.config import Settings, now_iso
from core.errors import CollectionCancelledError, CollectionError, ValidationError
from core.models import (
    FACT_GROUPS,
    UNAVAILABLE,
    Disk,
    MemoryModule,
    NetworkAdapter,
    RawFacts,
    Snapshot,
)
from core.normalizer import normalize
from core.transports import LocalTransport, QueryCancelled, QueryError, Transport, WinRMOptions, WinRMTransport

logger = logging.getLogger("devdisco.collector")

TransportFactory = Callable[[str, bool], Transport]

# ---------------------------------------------------------------------------
# PowerShell scripts -- the first line names the group (used in logs and by
# test transports). __ASSET_TAG_KEY__ is substituted at construction time.
# ---------------------------------------------------------------------------

_PROBE_SCRIPT = """# group: probe
(Get-CimInstance Win32_ComputerSystem).Name"""

_SCRIPTS: dict[str, str] = {
    "hardware": """# group: hardware
$ErrorActionPreference = 'Stop'
$cs = Get-CimInstance Win32_ComputerSystem
$bios = Get-CimInstance Win32_BIOS
$cpu = Get-CimInstance Win32_Processor | Select-Object -First 1
$tag = $null
try { $tag = (Get-ItemProperty -Path '__ASSET_TAG_KEY__' -Name AssetTag).AssetTag } catch { }
[pscustomobject]@{
  ComputerName = $cs.Name; Manufacturer = $cs.Manufacturer; Model = $cs.Model
  SerialNumber = $bios.SerialNumber; BiosVersion = $bios.SMBIOSBIOSVersion
  Processor = $cpu.Name; AssetTag = $tag
} | ConvertTo-Json -Compress""",
    "os": """# group: os
$ErrorActionPreference = 'Stop'
$os = Get-CimInstance Win32_OperatingSystem
[pscustomobject]@{
  Caption = $os.Caption; Version = $os.Version; Architecture = $os.OSArchitecture
  InstallDate = if ($os.InstallDate) { $os.InstallDate.ToString('yyyy-MM-dd') } else { $null }
} | ConvertTo-Json -Compress""",
    "domain": """# group: domain
$ErrorActionPreference = 'Stop'
$cs = Get-CimInstance Win32_ComputerSystem
[pscustomobject]@{
  PartOfDomain = [bool]$cs.PartOfDomain; Domain = $cs.Domain; Workgroup = $cs.Workgroup
} | ConvertTo-Json -Compress""",
    "memory": """# group: memory
$ErrorActionPreference = 'Stop'
$modules = @(Get-CimInstance Win32_PhysicalMemory | ForEach-Object {
  [pscustomobject]@{
    Capacity = [string]$_.Capacity; Speed = $_.Speed
    Manufacturer = $_.Manufacturer; MemoryType = $_.SMBIOSMemoryType
  }
})
ConvertTo-Json -InputObject $modules -Compress""",
    "storage": """# group: storage
$ErrorActionPreference = 'Stop'
$physical = @{}
try {
  Get-CimInstance -Namespace root\\Microsoft\\Windows\\Storage -ClassName MSFT_PhysicalDisk |
    ForEach-Object { $physical[[string]$_.DeviceId] = $_ }
} catch { }
$disks = @(Get-CimInstance Win32_DiskDrive | Sort-Object Index | ForEach-Object {
  $p = $physical[[string]$_.Index]
  [pscustomobject]@{
    Name = $_.DeviceID; Model = $_.Model; Size = [string]$_.Size
    InterfaceType = $_.InterfaceType
    BusType = if ($p) { [int]$p.BusType } else { $null }
    MediaType = if ($p) { [int]$p.MediaType } else { $null }
  }
})
ConvertTo-Json -InputObject $disks -Compress""",
    "network": """# group: network
$ErrorActionPreference = 'Stop'
$configs = @{}
Get-CimInstance Win32_NetworkAdapterConfiguration | ForEach-Object { $configs[[int]$_.Index] = $_ }
$adapters = @(Get-CimInstance Win32_NetworkAdapter | Where-Object { $_.MACAddress } | ForEach-Object {
  $c = $configs[[int]$_.Index]
  [pscustomobject]@{
    Name = $_.NetConnectionID; Description = $_.Description; AdapterType = $_.AdapterType
    PnpDeviceId = $_.PNPDeviceID; Status = $_.NetConnectionStatus; MacAddress = $_.MACAddress
    IpAddress = @($c.IPAddress); Subnet = @($c.IPSubnet)
    Gateway = @($c.DefaultIPGateway); Dns = @($c.DNSServerSearchOrder)
  }
})
ConvertTo-Json -InputObject $adapters -Compress -Depth 3""",
}

# ---------------------------------------------------------------------------
# CIM code tables
# ---------------------------------------------------------------------------

# SMBIOS memory device type (Win32_PhysicalMemory.SMBIOSMemoryType)
MEMORY_TYPES: dict[int, str] = {
    0: "Unknown",
    1: "Other",
    2: "DRAM",
    3: "Synchronous DRAM",
    4: "Cache DRAM",
    5: "EDO",
    6: "EDRAM",
    7: "VRAM",
    8: "SRAM",
    9: "RAM",
    10: "ROM",
    11: "Flash",
    12: "EEPROM",
    13: "FEPROM",
    14: "EPROM",
    15: "CDRAM",
    16: "3DRAM",
    17: "SDRAM",
    18: "SGRAM",
    19: "RDRAM",
    20: "DDR",
    21: "DDR2",
    22: "DDR2 FB-DIMM",
    24: "DDR3",
    25: "FBD2",
    26: "DDR4",
    27: "LPDDR",
    28: "LPDDR2",
    29: "LPDDR3",
    30: "LPDDR4",
    34: "DDR5",
    35: "LPDDR5",
}

# MSFT_PhysicalDisk.BusType
BUS_TYPES: dict[int, str] = {
    1: "SCSI",
    2: "ATAPI",
    3: "ATA",
    4: "IEEE 1394",
    5: "SSA",
    6: "Fibre Channel",
    7: "USB",
    8: "RAID",
    9: "iSCSI",
    10: "SAS",
    11: "SATA",
    12: "SD",
    13: "MMC",
    15: "File Backed Virtual",
    16: "Storage Spaces",
    17: "NVMe",
}

# MSFT_PhysicalDisk.MediaType
MEDIA_TYPES: dict[int, str] = {3: "HDD", 4: "SSD", 5: "SCM"}

# Win32_NetworkAdapter.NetConnectionStatus
CONNECTION_STATUS: dict[int, str] = {
    0: "Disconnected",
    1: "Connecting",
    2: "Connected",
    3: "Disconnecting",
    4: "Hardware Not Present",
    5: "Hardware Disabled",
    6: "Hardware Malfunction",
    7: "Media Disconnected",
    8: "Authenticating",
    9: "Authentication Succeeded",
    10: "Authentication Failed",
    11: "Invalid Address",
    12: "Credentials Required",
}

_VIRTUAL_RE = re.compile(r"\b(virtual|loopback|tunnel|tap|vpn|hyper-v|pseudo)\b", re.IGNORECASE)
_WIRELESS_RE = re.compile(r"wireless|wi-?fi|wlan|802\.11", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Local target detection
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def local_names() -> frozenset[str]:
    """Lower-cased names and loopback aliases that mean "this machine"."""
    names = {"localhost", "127.0.0.1", "::1", "."}
    for candidate in (socket.gethostname(), platform.node()):
        if candidate:
            names.add(candidate.lower())
            names.add(candidate.split(".")[0].lower())
    try:
        fqdn = socket.getfqdn()
    except OSError:
        fqdn = ""
    if fqdn:
        names.add(fqdn.lower())
    return frozenset(names)


def is_local_target(target: str, names: Optional[frozenset[str]] = None) -> bool:
    """Return True when target names the machine this process runs on.

    A blank target also means the local machine.
    """
    value = (target or "").strip().lower()
    if not value:
        return True
    return value in (names if names is not None else local_names())


# ---------------------------------------------------------------------------
# Output parsing -- each parser returns the RawFacts fields it owns
# ---------------------------------------------------------------------------


def _load_json(output: str) -> Any:
    output = output.strip()
    if not output:
        raise ValueError("empty output")
    return json.loads(output)


def _as_list(value: Any) -> list:
    # ConvertTo-Json unwraps single-element arrays on older PowerShell
    if value is None:
        return []
    if isinstance(value, list):
        return [v for v in value if v is not None]
    return [value]


def _text(value: Any) -> str:
    if value is None:
        return UNAVAILABLE
    text = str(value).strip()
    return text or UNAVAILABLE


def _code(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _parse_hardware(data: dict) -> dict:
    return {
        "computer_name": _text(data.get("ComputerName")),
        "manufacturer": _text(data.get("Manufacturer")),
        "model": _text(data.get("Model")),
        "serial_number": _text(data.get("SerialNumber")),
        "bios_version": _text(data.get("BiosVersion")),
        "cpu_name": _text(data.get("Processor")),
        "asset_tag": _text(data.get("AssetTag")),
    }


def _parse_os(data: dict) -> dict:
    return {
        "os_name": _text(data.get("Caption")),
        "os_version": _text(data.get("Version")),
        "os_architecture": _text(data.get("Architecture")),
        "os_install_date": _text(data.get("InstallDate")),
    }


def _parse_domain(data: dict) -> dict:
    joined = bool(data.get("PartOfDomain"))
    return {
        "is_domain_joined": joined,
        "domain_name": _text(data.get("Domain")) if joined else UNAVAILABLE,
        "workgroup": _text(data.get("Workgroup")) if not joined else UNAVAILABLE,
    }


def memory_type_name(code: Any) -> str:
    value = _code(code)
    if value is None:
        return UNAVAILABLE
    return MEMORY_TYPES.get(value, f"Type {value}")


def _parse_memory(data: Any) -> dict:
    modules = []
    for item in _as_list(data):
        speed = _code(item.get("Speed"))
        modules.append(
            MemoryModule(
                capacity=_text(item.get("Capacity")),
                memory_type=memory_type_name(item.get("MemoryType")),
                speed=f"{speed} MHz" if speed else UNAVAILABLE,
                manufacturer=_text(item.get("Manufacturer")),
            )
        )
    return {"memory_modules": modules}


def format_capacity(size: Any) -> str:
    """Bytes to decimal gigabytes with two places, e.g. 512110190592 -> '512.11GB'."""
    value = _code(size)
    if value is None or value <= 0:
        return UNAVAILABLE
    return f"{round(value / 1_000_000_000, 2)}GB"


def disk_type_name(bus_type: Any, media_type: Any, interface_type: Any = None) -> str:
    bus = BUS_TYPES.get(_code(bus_type) or 0, "")
    media = MEDIA_TYPES.get(_code(media_type) or 0, "")
    name = " ".join(part for part in (bus, media) if part)
    if name:
        return name
    return _text(interface_type)


def _parse_storage(data: Any) -> dict:
    disks = []
    for item in _as_list(data):
        disks.append(
            Disk(
                name=_text(item.get("Name")),
                capacity=format_capacity(item.get("Size")),
                disk_type=disk_type_name(item.get("BusType"), item.get("MediaType"), item.get("InterfaceType")),
                model=_text(item.get("Model")),
            )
        )
    return {"disks": disks}


def _is_ipv4(value: str) -> bool:
    try:
        return isinstance(ipaddress.ip_address(value), ipaddress.IPv4Address)
    except ValueError:
        return False


def _ipv4_entries(values: Any) -> list[str]:
    return [str(v).strip() for v in _as_list(values) if _is_ipv4(str(v).strip())]


def is_virtual_adapter(name: str, description: str, pnp_device_id: str = "") -> bool:
    if pnp_device_id.upper().startswith("ROOT\\"):
        return True
    return bool(_VIRTUAL_RE.search(name) or _VIRTUAL_RE.search(description))


def is_wireless_adapter(name: str, description: str, adapter_type: str = "") -> bool:
    return any(_WIRELESS_RE.search(v) for v in (name, description, adapter_type) if v)


def _parse_network(data: Any) -> dict:
    adapters = []
    for item in _as_list(data):
        description = str(item.get("Description") or "")
        name = str(item.get("Name") or "") or description
        adapter_type = str(item.get("AdapterType") or "")
        if is_virtual_adapter(name, description, str(item.get("PnpDeviceId") or "")):
            continue

        raw_ips = [str(v).strip() for v in _as_list(item.get("IpAddress"))]
        raw_subnets = [str(v).strip() for v in _as_list(item.get("Subnet"))]
        ip = ""
        subnet = ""
        for index, candidate in enumerate(raw_ips):
            if _is_ipv4(candidate):
                ip = candidate
                # IPSubnet is positionally aligned with IPAddress
                subnet = raw_subnets[index] if index < len(raw_subnets) else ""
                break

        status = _code(item.get("Status"))
        adapters.append(
            NetworkAdapter(
                name=name or UNAVAILABLE,
                description=description or UNAVAILABLE,
                ip_address=ip,
                mac_address=_text(item.get("MacAddress")),
                subnet=subnet,
                dns_servers=" | ".join(_ipv4_entries(item.get("Dns"))),
                default_gateway=" | ".join(_ipv4_entries(item.get("Gateway"))),
                connection_status=CONNECTION_STATUS.get(status, "Unknown") if status is not None else "Unknown",
                is_wireless=is_wireless_adapter(name, description, adapter_type),
                adapter_type=adapter_type,
            )
        )
    return {"adapters": adapters}


_PARSERS: dict[str, Callable[[Any], dict]] = {
    "hardware": _parse_hardware,
    "os": _parse_os,
    "domain": _parse_domain,
    "memory": _parse_memory,
    "storage": _parse_storage,
    "network": _parse_network,
}


# ---------------------------------------------------------------------------
# Collector
# ---------------------------------------------------------------------------


class Collector:
    """Reads one target's inventory facts. Safe to share across threads.

    Every call opens its own transport, so concurrent collect() calls from a
    worker pool never share a channel.
    """

    def __init__(
        self,
        timeout_seconds: float = 120.0,
        winrm_options: Optional[WinRMOptions] = None,
        asset_tag_registry_key: str = r"HKLM:\SOFTWARE\VWG\Inventory",
        transport_factory: Optional[TransportFactory] = None,
        names: Optional[frozenset[str]] = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.winrm_options = winrm_options or WinRMOptions()
        self._transport_factory = transport_factory or self._default_transport
        self._names = names
        # Single quotes are doubled inside a PowerShell single-quoted string
        key = asset_tag_registry_key.replace("'", "''")
        self.scripts = {group: script.replace("__ASSET_TAG_KEY__", key) for group, script in _SCRIPTS.items()}

    @classmethod
    def from_settings(cls, settings: Settings, transport_factory: Optional[TransportFactory] = None) -> "Collector":
        return cls(
            timeout_seconds=settings.collect_timeout_seconds,
            winrm_options=WinRMOptions(
                port=settings.winrm_port,
                use_ssl=settings.winrm_use_ssl,
                verify_ssl=settings.winrm_verify_ssl,
                transport=settings.winrm_transport,
                username=settings.winrm_username,
                password=settings.winrm_password,
            ),
            asset_tag_registry_key=settings.asset_tag_registry_key,
            transport_factory=transport_factory,
        )

    def _default_transport(self, target: str, local: bool) -> Transport:
        if local:
            return LocalTransport(target)
        return WinRMTransport(target, self.winrm_options)

    def collect(self, target: str, cancel_event: Optional[threading.Event] = None) -> Snapshot:
        """Collect and normalize. Raises CollectionError if the target is unreachable."""
        return normalize(self.collect_raw(target, cancel_event))

    def collect_raw(self, target: str, cancel_event: Optional[threading.Event] = None) -> RawFacts:
        target = (target or "").strip()
        if not target:
            raise ValidationError("target", "must not be blank")

        local = is_local_target(target, self._names)
        deadline = time.monotonic() + self.timeout_seconds
        facts = RawFacts(target=target, is_local=local, collected_at=now_iso())
        started = time.perf_counter()

        transport = self._transport_factory(target, local)
        try:
            try:
                name = self._run(transport, _PROBE_SCRIPT, deadline, cancel_event).strip()
            except QueryCancelled:
                raise CollectionCancelledError(target) from None
            except QueryError as exc:
                raise CollectionError(target, str(exc)) from exc
            facts.computer_name = name or UNAVAILABLE

            for group in FACT_GROUPS:
                self._collect_group(transport, group, facts, deadline, cancel_event)
        finally:
            transport.close()

        logger.info(
            "Collected %s (%s) in %.1fs%s",
            target,
            "local" if local else "remote",
            time.perf_counter() - started,
            f", unavailable: {', '.join(facts.failed_groups)}" if facts.failed_groups else "",
        )
        return facts

    def _collect_group(
        self,
        transport: Transport,
        group: str,
        facts: RawFacts,
        deadline: float,
        cancel_event: Optional[threading.Event],
    ) -> None:
        try:
            output = self._run(transport, self.scripts[group], deadline, cancel_event)
            updates = _PARSERS[group](_load_json(output))
        except QueryCancelled:
            raise CollectionCancelledError(facts.target) from None
        except (QueryError, ValueError, TypeError, AttributeError) as exc:
            # AttributeError: JSON of the wrong shape (list where dict expected)
            logger.warning("%s: %s facts unavailable (%s)", facts.target, group, exc)
            facts.failed_groups.append(group)
            return
        for name, value in updates.items():
            setattr(facts, name, value)

    def _run(
        self,
        transport: Transport,
        script: str,
        deadline: float,
        cancel_event: Optional[threading.Event],
    ) -> str:
        if cancel_event is not None and cancel_event.is_set():
            raise QueryCancelled("cancelled")
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise QueryError(f"time budget of {self.timeout_seconds:.0f}s exhausted")
        return transport.run(script, remaining, cancel_event)
