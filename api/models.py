"""
API request and response models for the device discovery REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in core/models.py and
cmdb/models.py, which own the internal domain representation. Route handlers
map between the two.

Separation of concerns: core/ and cmdb/ models = domain truth; api/ models =
API contract.
"""

from dataclasses import asdict
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from cmdb.bulk import BulkScanResult
from cmdb.models import (
    VALID_DEVICE_STATUSES,
    VALID_DEVICE_TYPES,
    AuditEntry,
    ComparisonResult,
    DeviceRecord,
    PersistResult,
)

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class ScanRequest(BaseModel):
    """Request body for POST /api/v1/devices/scan."""

    model_config = ConfigDict(str_strip_whitespace=True)

    target: str = Field(min_length=1, max_length=255, description="Hostname or IP address to scan.")


class DeviceMetadata(BaseModel):
    """Operator-owned fields that may be set alongside an apply."""

    model_config = ConfigDict(str_strip_whitespace=True)

    equipment_group: Optional[str] = Field(default=None, max_length=100)
    area: Optional[str] = Field(default=None, max_length=100)
    zone: Optional[str] = Field(default=None, max_length=100)
    line: Optional[str] = Field(default=None, max_length=100)
    pitch: Optional[str] = Field(default=None, max_length=100)
    floor: Optional[str] = Field(default=None, max_length=100)
    pillar: Optional[str] = Field(default=None, max_length=100)
    web_interface_url: Optional[str] = Field(default=None, max_length=2048)
    additional_notes: Optional[str] = Field(default=None, max_length=2000)
    device_status: Optional[str] = None

    @field_validator("device_status")
    @classmethod
    def known_status(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value not in VALID_DEVICE_STATUSES:
            raise ValueError(f"must be one of: {', '.join(VALID_DEVICE_STATUSES)}")
        return value


class ApplyRequest(BaseModel):
    """Request body for POST /api/v1/devices/apply.

    The target is scanned again and the selection is applied to that fresh
    comparison, so a stale client-side diff can never be written.

    fields: "all" or an explicit list of field names from the scan response.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    target: str = Field(min_length=1, max_length=255)
    fields: Union[list[str], str] = "all"
    reason: str = Field(default="", max_length=1000)
    device_type: Optional[str] = None
    metadata: Optional[DeviceMetadata] = None

    @field_validator("fields")
    @classmethod
    def all_or_list(cls, value: Union[list[str], str]) -> Union[list[str], str]:
        if isinstance(value, str) and value != "all":
            raise ValueError('must be "all" or a list of field names')
        return value

    @field_validator("device_type")
    @classmethod
    def known_type(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value not in VALID_DEVICE_TYPES:
            raise ValueError(f"must be one of: {', '.join(VALID_DEVICE_TYPES)}")
        return value


class BulkScanRequest(BaseModel):
    """Request body for POST /api/v1/bulk-scans."""

    model_config = ConfigDict(str_strip_whitespace=True)

    targets: list[str] = Field(
        min_length=1,
        max_length=500,
        description="Targets to scan. Entries may hold several targets separated by ',' or ';'.",
    )
    reason: str = Field(default="", max_length=1000)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class FieldDiffRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    old_value: Any = None
    new_value: Any = None


class ScanResponse(BaseModel):
    """Response for POST /api/v1/devices/scan. Nothing is written by a scan."""

    model_config = ConfigDict(frozen=True)

    target: str
    hostname: str
    session_id: Optional[str]
    is_new: bool
    device_id: Optional[int]
    failed_groups: list[str]
    diffs: list[FieldDiffRow]
    snapshot: dict

    @classmethod
    def from_comparison(cls, comparison: ComparisonResult) -> "ScanResponse":
        snapshot = comparison.snapshot
        return cls(
            target=comparison.target,
            hostname=snapshot.computer_name,
            session_id=comparison.session_id,
            is_new=comparison.record is None,
            device_id=comparison.record.id if comparison.record is not None else None,
            failed_groups=list(snapshot.failed_groups),
            diffs=[FieldDiffRow(field=d.field, old_value=d.old_value, new_value=d.new_value) for d in comparison.diffs],
            snapshot=asdict(snapshot),
        )


class PersistResponse(BaseModel):
    """Response for apply and delete."""

    model_config = ConfigDict(frozen=True)

    action: str
    hostname: str
    device_id: Optional[int]
    audit_entries: int
    changed_fields: list[str] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: PersistResult) -> "PersistResponse":
        return cls(**asdict(result))


class DeviceResponse(BaseModel):
    """Full device record. Slot lists are returned as lists of objects."""

    model_config = ConfigDict(frozen=True)

    id: int
    hostname: str
    device_type: str
    device_status: str
    serial_number: str
    asset_tag: str
    manufacturer: str
    model: str
    cpu_info: str
    bios_version: str
    total_ram_gb: float
    ram_type: str
    ram_speed: str
    ram_manufacturer: str
    os_name: str
    os_version: str
    os_architecture: str
    os_install_date: str
    domain_name: str
    workgroup: str
    is_domain_joined: Optional[bool]
    primary_ip: str
    primary_mac: str
    primary_subnet: str
    primary_dns: str
    secondary_dns: str
    secondary_adapters: list[dict]
    drives: list[dict]
    equipment_group: str
    area: str
    zone: str
    line: str
    pitch: str
    floor: str
    pillar: str
    web_interface_url: str
    additional_notes: str
    discovery_method: str
    last_discovered: str
    created_at: str
    updated_at: str

    @classmethod
    def from_record(cls, record: DeviceRecord) -> "DeviceResponse":
        return cls(**asdict(record))


class DeviceSummaryRow(BaseModel):
    """One row in the GET /devices list."""

    model_config = ConfigDict(frozen=True)

    id: int
    hostname: str
    device_type: str
    device_status: str
    primary_ip: str
    manufacturer: str
    model: str
    area: str
    zone: str
    line: str
    last_discovered: str

    @classmethod
    def from_record(cls, record: DeviceRecord) -> "DeviceSummaryRow":
        return cls(
            id=record.id,
            hostname=record.hostname,
            device_type=record.device_type,
            device_status=record.device_status,
            primary_ip=record.primary_ip,
            manufacturer=record.manufacturer,
            model=record.model,
            area=record.area,
            zone=record.zone,
            line=record.line,
            last_discovered=record.last_discovered,
        )


class AuditEntryRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    device_id: Optional[int]
    hostname: str
    action: str
    field_name: str
    old_value: Optional[str]
    new_value: Optional[str]
    performed_at: str
    performed_by: str
    change_reason: str
    session_id: Optional[str]

    @classmethod
    def from_entry(cls, entry: AuditEntry) -> "AuditEntryRow":
        return cls(**asdict(entry))


class TargetResultRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    target: str
    outcome: str
    hostname: str
    device_id: Optional[int]
    error: str
    duration_seconds: float


class BulkScanResponse(BaseModel):
    """Response for POST /api/v1/bulk-scans."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    total: int
    succeeded: int
    added: int
    updated: int
    failed: int
    skipped: int
    summary: str
    duration_seconds: float
    failure_report_path: Optional[str]
    results: list[TargetResultRow]

    @classmethod
    def from_result(cls, result: BulkScanResult) -> "BulkScanResponse":
        return cls(
            session_id=result.session_id,
            total=result.total,
            succeeded=result.succeeded,
            added=result.added,
            updated=result.updated,
            failed=result.failed,
            skipped=result.skipped,
            summary=result.summary,
            duration_seconds=result.duration_seconds,
            failure_report_path=result.failure_report_path,
            results=[TargetResultRow(**asdict(r)) for r in result.results],
        )


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    database: str = "ok"
