"""
cmdb/validation.py -- Field validation run before every store write.

validate_record() raises ValidationError on the first bad field. It never
rewrites values: a record either goes to the store exactly as planned or
not at all. Validation errors mean operator or caller mistakes, so nothing
here is retried.
"""

import re
from typing import Optional

from cmdb.models import VALID_DEVICE_STATUSES, VALID_DEVICE_TYPES, DeviceRecord
from core.errors import ValidationError

HOSTNAME_RE = re.compile(r"^[a-zA-Z0-9\-_.]+$")
IPV4_RE = re.compile(r"^(\d{1,3})\.(\d{1,3})\.(\d{1,3})\.(\d{1,3})$")
MAC_RE = re.compile(r"^[0-9A-Fa-f]{2}([:-])[0-9A-Fa-f]{2}(\1[0-9A-Fa-f]{2}){4}$")
URL_RE = re.compile(r"^https?://[^\s/$.?#][^\s]*$", re.IGNORECASE)

MAX_HOSTNAME_LENGTH = 63  # DNS label limit
MAX_FIELD_LENGTH = 255
MAX_URL_LENGTH = 2048
MAX_NOTES_LENGTH = 2000


def validate_hostname(hostname: Optional[str]) -> str:
    value = (hostname or "").strip()
    if not value:
        raise ValidationError("hostname", "is required")
    if len(value) > MAX_HOSTNAME_LENGTH:
        raise ValidationError("hostname", f"must be at most {MAX_HOSTNAME_LENGTH} characters")
    if not HOSTNAME_RE.match(value):
        raise ValidationError("hostname", f"invalid format: {value!r}")
    return value


def validate_ip(value: Optional[str], field: str = "primary_ip") -> None:
    if not value:
        return
    match = IPV4_RE.match(value.strip())
    if match is None or any(int(octet) > 255 for octet in match.groups()):
        raise ValidationError(field, f"invalid IP address: {value!r}")


def validate_mac(value: Optional[str], field: str = "primary_mac") -> None:
    if value and not MAC_RE.match(value.strip()):
        raise ValidationError(field, f"invalid MAC address: {value!r}")


def validate_url(value: Optional[str], field: str = "web_interface_url") -> None:
    if not value:
        return
    if len(value) > MAX_URL_LENGTH or not URL_RE.match(value.strip()):
        raise ValidationError(field, f"invalid URL: {value!r}")


def validate_record(record: DeviceRecord) -> None:
    validate_hostname(record.hostname)

    if record.device_type not in VALID_DEVICE_TYPES:
        raise ValidationError("device_type", f"must be one of: {', '.join(VALID_DEVICE_TYPES)}")
    if record.device_status not in VALID_DEVICE_STATUSES:
        raise ValidationError("device_status", f"must be one of: {', '.join(VALID_DEVICE_STATUSES)}")

    validate_ip(record.primary_ip)
    validate_mac(record.primary_mac)
    validate_url(record.web_interface_url)
    for index, adapter in enumerate(record.secondary_adapters):
        validate_ip(adapter.ip, f"secondary_adapters[{index}].ip")
        validate_mac(adapter.mac, f"secondary_adapters[{index}].mac")

    if len(record.additional_notes or "") > MAX_NOTES_LENGTH:
        raise ValidationError("additional_notes", f"must be at most {MAX_NOTES_LENGTH} characters")
    for name in ("serial_number", "asset_tag", "manufacturer", "model", "cpu_info", "os_name", "area", "zone", "line"):
        if len(getattr(record, name) or "") > MAX_FIELD_LENGTH:
            raise ValidationError(name, f"must be at most {MAX_FIELD_LENGTH} characters")
