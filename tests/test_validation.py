"""Unit tests for cmdb/validation.py -- pre-write record validation.

Covers:
- hostname required, length-limited and restricted to [A-Za-z0-9-_.]
- IPv4 octet range, MAC separators, URL scheme
- device_type and device_status restricted to known values
- secondary adapter addresses validated with an indexed field name
"""

import pytest

from cmdb.models import AdapterSlot, DeviceRecord
from cmdb.validation import validate_hostname, validate_ip, validate_mac, validate_record, validate_url
from core.errors import ValidationError


class TestHostname:
    @pytest.mark.parametrize("name", ["WKS-01", "srv_db.corp", "a"])
    def test_valid(self, name):
        assert validate_hostname(f"  {name} ") == name

    @pytest.mark.parametrize("name", ["", "   ", None, "bad host", "wks/01", "x" * 64])
    def test_invalid(self, name):
        with pytest.raises(ValidationError) as exc_info:
            validate_hostname(name)
        assert exc_info.value.field == "hostname"


class TestAddresses:
    def test_ip(self):
        validate_ip("10.0.0.5")
        validate_ip("")
        with pytest.raises(ValidationError):
            validate_ip("10.0.0.256")
        with pytest.raises(ValidationError):
            validate_ip("fe80::1")

    def test_mac(self):
        validate_mac("00:11:22:33:44:55")
        validate_mac("00-11-22-AA-bb-CC")
        with pytest.raises(ValidationError):
            validate_mac("00:11-22:33:44:55")
        with pytest.raises(ValidationError):
            validate_mac("001122334455")

    def test_url(self):
        validate_url("https://printer-01.corp/admin")
        validate_url("")
        with pytest.raises(ValidationError):
            validate_url("ftp://printer-01")
        with pytest.raises(ValidationError):
            validate_url("javascript:alert(1)")


class TestRecord:
    def test_valid_record(self):
        validate_record(DeviceRecord(hostname="WKS-01", primary_ip="10.0.0.5", device_type="PC"))

    def test_unknown_device_type(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_record(DeviceRecord(hostname="WKS-01", device_type="Toaster"))
        assert exc_info.value.field == "device_type"

    def test_unknown_status(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_record(DeviceRecord(hostname="WKS-01", device_status="Lost"))
        assert exc_info.value.field == "device_status"

    def test_secondary_adapter_ip(self):
        record = DeviceRecord(hostname="WKS-01", secondary_adapters=[AdapterSlot(ip="10.0.0.6"), AdapterSlot(ip="999.0.0.1")])
        with pytest.raises(ValidationError) as exc_info:
            validate_record(record)
        assert exc_info.value.field == "secondary_adapters[1].ip"

    def test_notes_length(self):
        with pytest.raises(ValidationError):
            validate_record(DeviceRecord(hostname="WKS-01", additional_notes="x" * 2001))
