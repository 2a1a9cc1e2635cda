"""
formatter.py -- Renders snapshots, comparisons, bulk results and audit rows to
terminal output, JSON or CSV.

Functions take the cmdb dataclasses by attribute access only, so this module
stays importable from core/ without depending on cmdb/.
"""

import csv
import io
import json
import os
import re
import sys
from dataclasses import asdict, is_dataclass
from typing import Any, Optional

from .models import Snapshot

W = 68  # output width

# ---------------------------------------------------------------------------
# ANSI color control
# ---------------------------------------------------------------------------

_ANSI_RE = re.compile(r"\x1b\[[0-9;]*m")


def strip_ansi(text: str) -> str:
    """Remove ANSI escape sequences from a string."""
    return _ANSI_RE.sub("", text)


def _use_color() -> bool:
    """Return True if stdout is a TTY and color has not been disabled.

    Respects NO_COLOR env var (https://no-color.org) and checks sys.stdout.isatty().
    """
    if os.environ.get("NO_COLOR"):
        return False
    if os.environ.get("FORCE_COLOR"):
        return True
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


_color_enabled: Optional[bool] = None  # None = auto-detect


def disable_color() -> None:
    """Force-disable color output (called when --no-color flag is set)."""
    global _color_enabled
    _color_enabled = False


def _color_active() -> bool:
    if _color_enabled is not None:
        return _color_enabled
    return _use_color()


# ---------------------------------------------------------------------------
# ANSI code helpers -- return empty string when color is off
# ---------------------------------------------------------------------------

OUTCOME_COLORS = {
    "Added": "\033[92m",  # green
    "Updated": "\033[94m",  # blue
    "Unchanged": "\033[2m",  # dim
    "Skipped": "\033[2m",
    "Failed": "\033[91m",  # red
}


def _reset() -> str:
    return "\033[0m" if _color_active() else ""


def _bold() -> str:
    return "\033[1m" if _color_active() else ""


def _dim() -> str:
    return "\033[2m" if _color_active() else ""


def _red() -> str:
    return "\033[91m" if _color_active() else ""


def _o_color(outcome: str) -> str:
    return OUTCOME_COLORS.get(outcome, "") if _color_active() else ""


# ---------------------------------------------------------------------------
# Layout helpers
# ---------------------------------------------------------------------------


def _bar(char: str = "═") -> str:
    return char * W


def _section(title: str) -> str:
    bold = _bold()
    reset = _reset()
    return f"\n  {bold}{title}{reset}\n  {'─' * (W - 2)}"


def _show(value: Any) -> str:
    """Display form of a field value. Empty values render as '-'."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return "-"
    if isinstance(value, float):
        return f"{value:.2f}".rstrip("0").rstrip(".")
    return str(value)


# ---------------------------------------------------------------------------
# Terminal renderers
# ---------------------------------------------------------------------------


def print_snapshot(snapshot: Snapshot) -> None:
    bold = _bold()
    reset = _reset()

    print(f"\n{bold}{_bar()}{reset}")
    print(f"  {bold}{snapshot.computer_name or snapshot.target}{reset}  │  scanned as {snapshot.target}")
    print(f"{bold}{_bar()}{reset}")

    print(_section("HARDWARE"))
    for label, val in [
        ("Manufacturer", snapshot.manufacturer),
        ("Model", snapshot.model),
        ("Serial number", snapshot.serial_number),
        ("Asset tag", snapshot.asset_tag),
        ("BIOS", snapshot.bios_version),
        ("CPU", snapshot.cpu_name),
        ("RAM (GB)", snapshot.total_ram_gb),
        ("RAM type / speed", f"{_show(snapshot.ram_type)} / {_show(snapshot.ram_speed)}"),
    ]:
        print(f"    {label:<20}  {_show(val)}")

    print(_section("OPERATING SYSTEM"))
    domain = snapshot.domain_name if snapshot.is_domain_joined else f"workgroup {_show(snapshot.workgroup)}"
    for label, val in [
        ("Name", snapshot.os_name),
        ("Version", snapshot.os_version),
        ("Architecture", snapshot.os_architecture),
        ("Installed", snapshot.os_install_date),
        ("Domain", domain),
    ]:
        print(f"    {label:<20}  {_show(val)}")

    if snapshot.disks:
        print(_section("STORAGE"))
        for disk in snapshot.disks:
            print(f"    • {_show(disk.name):<14} {_show(disk.capacity):>10}  {_show(disk.disk_type):<6} {_show(disk.model)}")

    print(_section("NETWORK"))
    if snapshot.primary_adapter is None:
        print("    No connected adapter found")
    for adapter in ([snapshot.primary_adapter] if snapshot.primary_adapter else []) + list(snapshot.secondary_adapters):
        tag = "primary" if adapter is snapshot.primary_adapter else "       "
        print(f"    {tag}  {_show(adapter.ip_address):<15}  {_show(adapter.mac_address):<17}  {_show(adapter.name)}")
    print(f"    DNS  {_show(snapshot.primary_dns)} / {_show(snapshot.secondary_dns)}")

    if snapshot.failed_groups:
        red = _red()
        print(f"\n    {red}Unavailable: {', '.join(snapshot.failed_groups)}{reset}")
    print(f"\n{_bar()}\n")


def print_comparison(comparison) -> None:
    """Print the field-level delta of a ComparisonResult."""
    bold = _bold()
    reset = _reset()
    dim = _dim()

    status = "NEW DEVICE" if comparison.record is None else f"device id {comparison.record.id}"
    print(_section(f"DIFFERENCES  ({status}, {len(comparison.diffs)} field(s))"))
    if not comparison.diffs:
        print(f"    {dim}Stored record matches the scan.{reset}")
        return
    for diff in comparison.diffs:
        print(f"    {diff.field:<32} {dim}{_show(diff.old_value)}{reset} -> {bold}{_show(diff.new_value)}{reset}")
    print()


def print_persist_result(result) -> None:
    color = _o_color(result.action)
    reset = _reset()
    detail = f", {len(result.changed_fields)} field(s) changed" if result.changed_fields else ""
    print(f"  {color}{result.action}{reset}: {result.hostname} (id {result.device_id}){detail}")


def print_bulk_summary(result) -> None:
    """Print a per-target table for a BulkScanResult, failures last."""
    bold = _bold()
    reset = _reset()
    order = {"Added": 0, "Updated": 1, "Skipped": 2, "Failed": 3}

    print(f"\n{bold}{_bar()}{reset}")
    print(f"  {bold}BULK SCAN  │  {result.summary}{reset}")
    print(f"{bold}{_bar()}{reset}")
    for item in sorted(result.results, key=lambda r: (order.get(r.outcome, 9), r.target.lower())):
        color = _o_color(item.outcome)
        note = item.error or item.hostname
        print(f"  {item.target:<28} {color}{item.outcome:<8}{reset}  {item.duration_seconds:>6.1f}s  {note}")

    print(f"\n  Session   {result.session_id}")
    print(f"  Duration  {result.duration_seconds:.1f}s")
    if result.failure_report_path:
        red = _red()
        print(f"  {red}Failure report: {result.failure_report_path}{reset}")
    print(f"\n{_bar()}\n")


def print_audit(entries: list) -> None:
    if not entries:
        print("  No audit entries found.")
        return
    dim = _dim()
    reset = _reset()
    for e in entries:
        change = f"{_show(e.old_value)} -> {_show(e.new_value)}"
        print(f"  {dim}{e.performed_at[:19]}{reset}  {e.action:<8} {e.hostname:<20} {e.field_name:<28} {change}")
        if e.change_reason:
            print(f"  {'':<19}  {dim}by {e.performed_by}: {e.change_reason}{reset}")


# ---------------------------------------------------------------------------
# JSON export
# ---------------------------------------------------------------------------


def to_dict(obj: Any) -> Any:
    """Dataclass (or list of them) to plain JSON-ready structures, properties included."""
    if isinstance(obj, list):
        return [to_dict(o) for o in obj]
    if not is_dataclass(obj):
        return obj
    data = asdict(obj)
    for name in ("succeeded", "summary"):
        if hasattr(type(obj), name) and isinstance(getattr(type(obj), name), property):
            data[name] = getattr(obj, name)
    return data


def to_json(obj: Any) -> str:
    return json.dumps(to_dict(obj), indent=2, default=str)


# ---------------------------------------------------------------------------
# CSV export
# ---------------------------------------------------------------------------

# Leading characters spreadsheet applications treat as a formula (CWE-1236)
_FORMULA_PREFIXES = ("=", "+", "-", "@")


def _sanitize_csv_cell(value: Any) -> Any:
    """Prefix formula-like text with a tab so spreadsheets read it as text."""
    if isinstance(value, str) and value.startswith(_FORMULA_PREFIXES):
        return "\t" + value
    return value


def audit_to_csv(entries: list) -> str:
    """Render audit entries as CSV.

    Columns: performed_at, action, device_id, hostname, field_name,
             old_value, new_value, performed_by, change_reason, session_id

    Values come from scanned hosts and operators, so every cell is sanitized.
    """
    headers = [
        "performed_at",
        "action",
        "device_id",
        "hostname",
        "field_name",
        "old_value",
        "new_value",
        "performed_by",
        "change_reason",
        "session_id",
    ]
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(headers)
    for e in entries:
        writer.writerow([_sanitize_csv_cell("" if getattr(e, h) is None else getattr(e, h)) for h in headers])
    return buf.getvalue()
