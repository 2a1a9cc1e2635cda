"""
api/routes/v1/devices.py -- Device discovery and inventory routes.

Routes (in registration order to avoid FastAPI path capture conflicts):
  GET    /devices                -- list or search live devices (?q=)
  POST   /devices/scan           -- scan a target and return the differences
  POST   /devices/apply          -- re-scan a target and persist a selection
  GET    /devices/{hostname}     -- one device record
  DELETE /devices/{hostname}     -- archive and remove a device (?reason=)
  POST   /bulk-scans             -- run the bulk orchestrator over a target list
  GET    /audit                  -- audit trail, filtered by device or session

Blocking work: collection and persistence block, so every handler is a plain
def and FastAPI runs it in its thread pool.

Errors: handlers let DiscoveryError subclasses propagate; api/main.py maps
them to status codes and the ErrorResponse envelope in one place.

Actor: taken from the X-Actor header, falling back to the configured default
actor. Authentication is out of scope for this service.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.limiter import limiter
from api.models import (
    ApplyRequest,
    AuditEntryRow,
    BulkScanRequest,
    BulkScanResponse,
    DeviceResponse,
    DeviceSummaryRow,
    ErrorDetail,
    PersistResponse,
    ScanRequest,
    ScanResponse,
)
from cmdb.bulk import BulkScanOrchestrator
from cmdb.engine import DiscoveryEngine
from cmdb.store import DeviceStore

router = APIRouter()

_MAX_AUDIT_ROWS = 1000


def get_actor(request: Request) -> str:
    """Operator identity recorded on audit rows for this request."""
    actor = (request.headers.get("X-Actor") or "").strip()
    return actor[:255] if actor else request.app.state.settings.actor()


def _not_found(hostname: str) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail=ErrorDetail(code="not_found", message=f"No device found for '{hostname}'.").model_dump(),
    )


# ---------------------------------------------------------------------------
# GET /devices -- list or search
# ---------------------------------------------------------------------------


@limiter.limit("60/minute")
@router.get("/devices", response_model=list[DeviceSummaryRow])
def list_devices(
    request: Request,
    q: Optional[str] = Query(default=None, max_length=100, description="Substring of hostname, IP, location, serial or asset tag."),
) -> list[DeviceSummaryRow]:
    store: DeviceStore = request.app.state.store
    records = store.search(q) if q else store.list_devices()
    return [DeviceSummaryRow.from_record(r) for r in records]


# ---------------------------------------------------------------------------
# POST /devices/scan -- collect and compare, write nothing
# ---------------------------------------------------------------------------


@limiter.limit("30/minute")
@router.post("/devices/scan", response_model=ScanResponse)
def scan_device(request: Request, body: ScanRequest) -> ScanResponse:
    """Scan one target and return the field-level differences to review."""
    engine: DiscoveryEngine = request.app.state.engine
    comparison = engine.scan(body.target)
    return ScanResponse.from_comparison(comparison)


# ---------------------------------------------------------------------------
# POST /devices/apply -- re-scan and persist the selected fields
# ---------------------------------------------------------------------------


@limiter.limit("30/minute")
@router.post("/devices/apply", response_model=PersistResponse)
def apply_scan(
    request: Request,
    body: ApplyRequest,
    actor: str = Depends(get_actor),
) -> PersistResponse:
    """Scan the target again and write the selected fields.

    New devices are added (reason optional), existing devices updated
    (reason required).
    """
    engine: DiscoveryEngine = request.app.state.engine
    comparison = engine.scan(body.target)
    metadata = body.metadata.model_dump(exclude_none=True) if body.metadata is not None else None
    result = engine.apply(
        comparison,
        body.fields,
        actor,
        comparison.session_id,
        body.reason,
        device_type=body.device_type,
        metadata=metadata,
    )
    return PersistResponse.from_result(result)


# ---------------------------------------------------------------------------
# GET / DELETE /devices/{hostname}
# ---------------------------------------------------------------------------


@limiter.limit("60/minute")
@router.get("/devices/{hostname}", response_model=DeviceResponse)
def get_device(request: Request, hostname: str) -> DeviceResponse:
    store: DeviceStore = request.app.state.store
    record = store.get_by_hostname(hostname)
    if record is None:
        raise _not_found(hostname)
    return DeviceResponse.from_record(record)


@limiter.limit("10/minute")
@router.delete("/devices/{hostname}", response_model=PersistResponse)
def delete_device(
    request: Request,
    hostname: str,
    reason: str = Query(default="", max_length=1000),
    actor: str = Depends(get_actor),
) -> PersistResponse:
    """Archive the record to the deleted-devices table and remove it.

    The device's audit history is kept.
    """
    store: DeviceStore = request.app.state.store
    result = store.delete(hostname, actor, reason)
    return PersistResponse.from_result(result)


# ---------------------------------------------------------------------------
# POST /bulk-scans
# ---------------------------------------------------------------------------


@limiter.limit("5/minute")
@router.post("/bulk-scans", response_model=BulkScanResponse)
def run_bulk_scan(
    request: Request,
    body: BulkScanRequest,
    actor: str = Depends(get_actor),
) -> BulkScanResponse:
    """Scan every target and add or update its record. Blocks until the run ends."""
    orchestrator: BulkScanOrchestrator = request.app.state.orchestrator
    result = orchestrator.run(body.targets, actor=actor, reason=body.reason)
    return BulkScanResponse.from_result(result)


# ---------------------------------------------------------------------------
# GET /audit
# ---------------------------------------------------------------------------


@limiter.limit("60/minute")
@router.get("/audit", response_model=list[AuditEntryRow])
def list_audit(
    request: Request,
    device_id: Optional[int] = Query(default=None, ge=1),
    session_id: Optional[str] = Query(default=None, max_length=36),
    hostname: Optional[str] = Query(default=None, max_length=255),
    limit: int = Query(default=200, ge=1, le=_MAX_AUDIT_ROWS),
) -> list[AuditEntryRow]:
    """Audit rows, oldest first. Rows of deleted devices are included."""
    store: DeviceStore = request.app.state.store
    entries = store.get_audit_entries(device_id=device_id, session_id=session_id, hostname=hostname, limit=limit)
    return [AuditEntryRow.from_entry(e) for e in entries]
