"""
tests/fakes.py -- Scripted stand-ins for the PowerShell transports.

FakeTransport answers each collector script by the group named on its
"# group: <name>" first line, so no test ever spawns PowerShell or opens a
WinRM session. FakeNetwork is the transport factory handed to Collector.
"""

import json
from typing import Optional

from core.transports import QueryError, Transport

GB = 1024**3


# ---------------------------------------------------------------------------
# Fake transports
# ---------------------------------------------------------------------------


def script_group(script: str) -> str:
    return script.splitlines()[0].split(":", 1)[1].strip()


class FakeTransport(Transport):
    """Answers collector scripts from a dict of group -> output (or exception)."""

    def __init__(self, target: str, responses: Optional[dict] = None) -> None:
        super().__init__(target)
        self.responses = responses
        self.calls: list[str] = []
        self.closed = False

    def run(self, script, timeout, cancel_event=None):
        group = script_group(script)
        self.calls.append(group)
        if self.responses is None:
            raise QueryError(f"{self.target}: connection refused")
        value = self.responses.get(group)
        if value is None:
            raise QueryError(f"no answer for {group}")
        if isinstance(value, Exception):
            raise value
        if callable(value):
            return value(cancel_event)
        return value

    def close(self):
        self.closed = True


class FakeNetwork:
    """Targets this network can reach. Unknown targets refuse the connection."""

    def __init__(self) -> None:
        self.hosts: dict[str, dict] = {}
        self.transports: list[FakeTransport] = []

    def add(self, target: str, responses: dict) -> None:
        self.hosts[target.lower()] = responses

    def factory(self, target: str, local: bool) -> FakeTransport:
        transport = FakeTransport(target, self.hosts.get(target.lower()))
        self.transports.append(transport)
        return transport


def host_responses(
    name: str = "WKS-01",
    ip: str = "10.0.0.5",
    ram_modules: tuple[int, ...] = (8 * GB, 8 * GB),
    serial: str = "SN-0001",
    mac: str = "00:11:22:33:44:55",
    adapters: Optional[list[dict]] = None,
    disks: Optional[list[dict]] = None,
) -> dict:
    """Scripted answers for a healthy, domain-joined Windows workstation."""
    if adapters is None:
        adapters = [
            {
                "Name": "Ethernet",
                "Description": "Intel(R) Ethernet Connection I219-LM",
                "AdapterType": "Ethernet 802.3",
                "PnpDeviceId": "PCI\\VEN_8086",
                "Status": 2,
                "MacAddress": mac,
                "IpAddress": [ip, "fe80::1"],
                "Subnet": ["255.255.255.0", "64"],
                "Gateway": ["10.0.0.1"],
                "Dns": ["10.0.0.10", "10.0.0.11", "10.0.0.12"],
            }
        ]
    if disks is None:
        disks = [
            {
                "Name": "\\\\.\\PHYSICALDRIVE0",
                "Model": "Samsung SSD 980",
                "Size": "512110190592",
                "InterfaceType": "SCSI",
                "BusType": 17,
                "MediaType": 4,
            }
        ]
    modules = [
        {"Capacity": str(size), "Speed": 3200, "Manufacturer": "Samsung", "MemoryType": 26} for size in ram_modules
    ]
    return {
        "probe": name,
        "hardware": json.dumps(
            {
                "ComputerName": name,
                "Manufacturer": "Dell Inc.",
                "Model": "OptiPlex 7090",
                "SerialNumber": serial,
                "BiosVersion": "1.14.0",
                "Processor": "Intel(R) Core(TM) i7-10700 CPU @ 2.90GHz",
                "AssetTag": "AT-1001",
            }
        ),
        "os": json.dumps(
            {
                "Caption": "Microsoft Windows 11 Enterprise",
                "Version": "10.0.22631",
                "Architecture": "64-bit",
                "InstallDate": "2023-05-02",
            }
        ),
        "domain": json.dumps({"PartOfDomain": True, "Domain": "corp.example.com", "Workgroup": None}),
        "memory": json.dumps(modules),
        "storage": json.dumps(disks),
        "network": json.dumps(adapters),
    }

