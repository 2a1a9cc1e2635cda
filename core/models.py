from dataclasses import dataclass, field
from typing import Optional

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

# Placeholder the Collector writes when a fact group could not be read.
# The Normalizer turns it into "" so the Differencer treats it as empty.
UNAVAILABLE = "N/A"

FACT_GROUPS = ("hardware", "os", "domain", "memory", "storage", "network")

MAX_DRIVES = 4
MAX_SECONDARY_ADAPTERS = 3


@dataclass(frozen=True)
class MemoryModule:
    capacity: str = ""  # raw bytes ("8589934592") or "8GB"
    memory_type: str = ""  # "DDR4"
    speed: str = ""  # "3200 MHz"
    manufacturer: str = ""


@dataclass(frozen=True)
class Disk:
    name: str = ""
    capacity: str = ""  # "512.11GB"
    disk_type: str = ""  # "NVMe SSD"
    model: str = ""


@dataclass(frozen=True)
class NetworkAdapter:
    name: str = ""
    description: str = ""
    ip_address: str = ""
    mac_address: str = ""
    subnet: str = ""
    dns_servers: str = ""  # " | "-joined
    default_gateway: str = ""  # " | "-joined
    connection_status: str = ""  # "Connected" | "Disconnected" | ...
    is_wireless: bool = False
    adapter_type: str = ""


@dataclass
class RawFacts:
    """Everything the Collector read from one target, before normalization.

    Scalar facts of a group that failed hold UNAVAILABLE; list facts of a
    failed group are empty. failed_groups names every group that degraded.
    """

    target: str
    computer_name: str = UNAVAILABLE
    manufacturer: str = UNAVAILABLE
    model: str = UNAVAILABLE
    serial_number: str = UNAVAILABLE
    asset_tag: str = UNAVAILABLE
    bios_version: str = UNAVAILABLE
    cpu_name: str = UNAVAILABLE
    os_architecture: str = UNAVAILABLE
    os_name: str = UNAVAILABLE
    os_version: str = UNAVAILABLE
    os_install_date: str = UNAVAILABLE  # YYYY-MM-DD
    domain_name: str = UNAVAILABLE
    workgroup: str = UNAVAILABLE
    is_domain_joined: Optional[bool] = None
    memory_modules: list[MemoryModule] = field(default_factory=list)
    disks: list[Disk] = field(default_factory=list)
    adapters: list[NetworkAdapter] = field(default_factory=list)
    failed_groups: list[str] = field(default_factory=list)
    is_local: bool = False
    collected_at: str = ""  # ISO 8601


@dataclass(frozen=True)
class Snapshot:
    """Normalized point-in-time capture of one target. Never mutated."""

    target: str
    computer_name: str = ""
    manufacturer: str = ""
    model: str = ""
    serial_number: str = ""
    asset_tag: str = ""
    bios_version: str = ""
    cpu_name: str = ""
    memory_modules: tuple[MemoryModule, ...] = ()
    total_ram_gb: float = 0.0
    ram_type: str = ""
    ram_speed: str = ""
    ram_manufacturer: str = ""
    disks: tuple[Disk, ...] = ()
    os_name: str = ""
    os_version: str = ""
    os_architecture: str = ""
    os_install_date: str = ""
    domain_name: str = ""
    workgroup: str = ""
    is_domain_joined: Optional[bool] = None
    adapters: tuple[NetworkAdapter, ...] = ()  # connected adapters, scan order
    primary_adapter: Optional[NetworkAdapter] = None
    secondary_adapters: tuple[NetworkAdapter, ...] = ()
    primary_dns: str = ""
    secondary_dns: str = ""
    failed_groups: tuple[str, ...] = ()
    collected_at: str = ""
