"""
cmdb/store.py -- SQLAlchemy-backed Device Store with an append-only audit log.

Uses SQLAlchemy Core (not ORM) so the domain dataclasses in cmdb/models.py
remain the authoritative domain representation. Swapping SQLite for
PostgreSQL is a connection string change, not a rewrite.

Pattern: Repository + Data Mapper. DeviceStore is the repository. The
_row_to_* functions are the mappers (raw DB rows -> domain dataclasses).
Callers never touch SQL directly.

Transactions: add(), update() and delete() each run inside one
engine.begin() block. Any exception inside the block rolls the whole
operation back, so a device row never changes without its audit rows and a
failed archive copy never lets the live row disappear. SQLAlchemy errors
surface as PersistenceError.

Audit history outlives devices: device_audit_log.device_id is a plain
indexed integer, not a foreign key. Deleting a device archives it to
deleted_devices and leaves every audit row that mentions it untouched.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = DeviceStore()                               # SQLite default
    store = DeviceStore("postgresql://user:pw@host/db") # PostgreSQL
    result = store.add(record, actor="alice", session_id=sid, reason="New workstation")
    store.update(record, actor="alice", session_id=sid, reason="RAM upgraded")
    store.delete("WKS-01", actor="alice", reason="Decommissioned")
    store.close()
"""

import json
import logging
import uuid
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import (
    Column,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    or_,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from cmdb.fields import format_value, ordered_keys, record_values, values_equal
from cmdb.models import (
    AdapterSlot,
    ArchivedDevice,
    AuditAction,
    AuditEntry,
    DeviceRecord,
    DiscoverySession,
    DriveSlot,
    PersistResult,
    ScanOutcome,
)
from cmdb.validation import validate_record
from core.config import now_iso
from core.errors import (
    ChangeReasonRequiredError,
    DeviceNotFoundError,
    DuplicateHostnameError,
    PersistenceError,
)

logger = logging.getLogger("devdisco.store")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'device_inventory.db'}"

# Recorded on CREATE rows when the caller gave no reason.
DEFAULT_CREATE_REASON = "New device added to inventory"

# Columns searched by search(), matched as case-insensitive substrings.
_SEARCH_COLUMNS = ("hostname", "primary_ip", "area", "zone", "line", "serial_number", "asset_tag")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()


def _device_columns() -> list[Column]:
    """Columns shared by the live table and the archive. Fresh objects per table."""
    return [
        Column("serial_number", String(255)),
        Column("asset_tag", String(255)),
        Column("device_type", String(50), nullable=False, server_default="Other"),
        Column("equipment_group", String(100)),
        Column("manufacturer", String(255)),
        Column("model", String(255)),
        Column("cpu_info", String(255)),
        Column("bios_version", String(100)),
        Column("total_ram_gb", Float, server_default="0"),
        Column("ram_type", String(50)),
        Column("ram_speed", String(50)),
        Column("ram_manufacturer", String(255)),
        Column("os_name", String(255)),
        Column("os_version", String(100)),
        Column("os_architecture", String(50)),
        Column("os_install_date", String(10)),  # YYYY-MM-DD
        Column("domain_name", String(255)),
        Column("workgroup", String(255)),
        Column("is_domain_joined", Integer),  # NULL unknown, 0/1
        Column("primary_ip", String(45)),
        Column("primary_mac", String(17)),
        Column("primary_subnet", String(45)),
        Column("primary_dns", String(45)),
        Column("secondary_dns", String(45)),
        Column("secondary_adapters", Text),  # JSON array of AdapterSlot
        Column("drives", Text),  # JSON array of DriveSlot
        Column("area", String(100)),
        Column("zone", String(100)),
        Column("line", String(100)),
        Column("pitch", String(100)),
        Column("floor", String(100)),
        Column("pillar", String(100)),
        Column("web_interface_url", String(2048)),
        Column("additional_notes", Text),
        Column("device_status", String(50), nullable=False, server_default="Active"),
        Column("discovery_method", String(50)),
        Column("last_discovered", String(32)),
        Column("created_at", String(32), nullable=False),
        Column("updated_at", String(32), nullable=False),
    ]


_devices = Table(
    "devices",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("hostname", String(255), nullable=False, unique=True),
    *_device_columns(),
)

_deleted_devices = Table(
    "deleted_devices",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("original_device_id", Integer, nullable=False, index=True),
    Column("hostname", String(255), nullable=False, index=True),
    *_device_columns(),
    Column("deleted_at", String(32), nullable=False),
    Column("deleted_by", String(255), nullable=False),
    Column("deletion_reason", Text, nullable=False),
)

# device_id deliberately carries no ForeignKey: audit rows must survive the
# deletion of the device they describe.
_audit_log = Table(
    "device_audit_log",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("device_id", Integer, nullable=True),
    Column("hostname", String(255)),
    Column("action", String(20), nullable=False),
    Column("field_name", String(100)),
    Column("old_value", Text),
    Column("new_value", Text),
    Column("performed_at", String(32), nullable=False),
    Column("performed_by", String(255), nullable=False),
    Column("change_reason", Text),
    Column("session_id", String(36)),
    Index("ix_audit_device_id", "device_id"),
    Index("ix_audit_performed_at", "performed_at"),
    Index("ix_audit_session_id", "session_id"),
)

_sessions = Table(
    "discovery_sessions",
    metadata,
    Column("session_id", String(36), primary_key=True),
    Column("target", String(255)),
    Column("started_at", String(32), nullable=False),
    Column("completed_at", String(32)),
    Column("status", String(20), nullable=False, server_default="Running"),
    Column("summary", Text),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def new_session_id() -> str:
    return str(uuid.uuid4())


def _device_values(record: DeviceRecord) -> dict:
    """Column values for a record, excluding id and the store-managed timestamps."""
    values = asdict(record)
    for key in ("id", "created_at", "updated_at"):
        values.pop(key)
    values["secondary_adapters"] = json.dumps(values["secondary_adapters"])
    values["drives"] = json.dumps(values["drives"])
    joined = record.is_domain_joined
    values["is_domain_joined"] = None if joined is None else int(joined)
    return values


def _describe(record: DeviceRecord) -> str:
    return f"{record.hostname} ({record.manufacturer or 'Unknown'} {record.model or 'Unknown'})"


def _audit_row(
    action: AuditAction,
    device_id: Optional[int],
    hostname: str,
    actor: str,
    reason: str,
    session_id: Optional[str],
    performed_at: str,
    field_name: str = "",
    old_value: Optional[str] = None,
    new_value: Optional[str] = None,
) -> dict:
    return {
        "device_id": device_id,
        "hostname": hostname,
        "action": action.value,
        "field_name": field_name,
        "old_value": old_value,
        "new_value": new_value,
        "performed_at": performed_at,
        "performed_by": actor,
        "change_reason": reason,
        "session_id": session_id,
    }


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so bulk-scan readers do not block on writers.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class DeviceStore:
    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        db_url = db_url or _DEFAULT_DB_URL
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # Bulk-scan workers and FastAPI's thread pool share the engine
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add(
        self,
        record: DeviceRecord,
        actor: str,
        session_id: Optional[str] = None,
        reason: str = "",
    ) -> PersistResult:
        """Insert a new device and one CREATE audit row.

        Raises DuplicateHostnameError if a live record already has this hostname.
        """
        validate_record(record)
        reason = (reason or "").strip() or DEFAULT_CREATE_REASON
        now = now_iso()
        try:
            with self.engine.begin() as conn:
                existing = conn.execute(select(_devices.c.id).where(_devices.c.hostname == record.hostname)).fetchone()
                if existing is not None:
                    raise DuplicateHostnameError(record.hostname)
                result = conn.execute(
                    _devices.insert().values(
                        hostname=record.hostname,
                        **{k: v for k, v in _device_values(record).items() if k != "hostname"},
                        created_at=now,
                        updated_at=now,
                    )
                )
                device_id = result.inserted_primary_key[0]
                conn.execute(
                    _audit_log.insert().values(
                        **_audit_row(
                            AuditAction.CREATE,
                            device_id,
                            record.hostname,
                            actor,
                            reason,
                            session_id,
                            now,
                            field_name="DEVICE_CREATED",
                            new_value=f"Device created: {_describe(record)}",
                        )
                    )
                )
        except IntegrityError as exc:
            # Lost a race with a concurrent add of the same hostname
            raise DuplicateHostnameError(record.hostname) from exc
        except SQLAlchemyError as exc:
            raise PersistenceError(f"add {record.hostname} failed: {exc}") from exc

        logger.info("Added %s (id=%s) by %s", record.hostname, device_id, actor)
        return PersistResult(
            action=ScanOutcome.ADDED.value,
            hostname=record.hostname,
            device_id=device_id,
            audit_entries=1,
        )

    def update(
        self,
        record: DeviceRecord,
        actor: str,
        session_id: Optional[str] = None,
        reason: str = "",
    ) -> PersistResult:
        """Write a changed record and one UPDATE audit row per changed field.

        The record is located by id, or by hostname when id is None. A blank
        reason fails before anything is read or written.
        """
        if not (reason or "").strip():
            raise ChangeReasonRequiredError("update")
        validate_record(record)
        reason = reason.strip()
        now = now_iso()
        try:
            with self.engine.begin() as conn:
                if record.id is not None:
                    row = conn.execute(_devices.select().where(_devices.c.id == record.id)).fetchone()
                else:
                    row = conn.execute(_devices.select().where(_devices.c.hostname == record.hostname)).fetchone()
                if row is None:
                    raise DeviceNotFoundError(record.id if record.id is not None else record.hostname)
                current = _row_to_device(row)

                if record.hostname != current.hostname:
                    clash = conn.execute(
                        select(_devices.c.id).where(_devices.c.hostname == record.hostname)
                    ).fetchone()
                    if clash is not None:
                        raise DuplicateHostnameError(record.hostname)

                old = record_values(current, include_operator=True)
                new = record_values(record, include_operator=True)
                changed = [k for k in ordered_keys(old, new) if not values_equal(old.get(k), new.get(k))]
                if not changed:
                    return PersistResult(
                        action=ScanOutcome.UNCHANGED.value,
                        hostname=current.hostname,
                        device_id=current.id,
                    )

                conn.execute(
                    _devices.update()
                    .where(_devices.c.id == current.id)
                    .values(**_device_values(record), updated_at=now)
                )
                conn.execute(
                    _audit_log.insert(),
                    [
                        _audit_row(
                            AuditAction.UPDATE,
                            current.id,
                            record.hostname,
                            actor,
                            reason,
                            session_id,
                            now,
                            field_name=key,
                            old_value=format_value(old.get(key)),
                            new_value=format_value(new.get(key)),
                        )
                        for key in changed
                    ],
                )
        except IntegrityError as exc:
            raise DuplicateHostnameError(record.hostname) from exc
        except SQLAlchemyError as exc:
            raise PersistenceError(f"update {record.hostname} failed: {exc}") from exc

        logger.info("Updated %s (%d field(s)) by %s", record.hostname, len(changed), actor)
        return PersistResult(
            action=ScanOutcome.UPDATED.value,
            hostname=record.hostname,
            device_id=current.id,
            audit_entries=len(changed),
            changed_fields=changed,
        )

    def delete(self, hostname: str, actor: str, reason: str) -> PersistResult:
        """Archive, audit and remove a live device, all in one transaction."""
        if not (reason or "").strip():
            raise ChangeReasonRequiredError("delete")
        reason = reason.strip()
        now = now_iso()
        try:
            with self.engine.begin() as conn:
                row = conn.execute(_devices.select().where(_devices.c.hostname == hostname)).fetchone()
                if row is None:
                    raise DeviceNotFoundError(hostname)
                record = _row_to_device(row)
                self._archive(conn, record, actor, reason, now)
                conn.execute(
                    _audit_log.insert().values(
                        **_audit_row(
                            AuditAction.DELETE,
                            record.id,
                            record.hostname,
                            actor,
                            reason,
                            None,
                            now,
                            field_name="DEVICE_DELETED",
                            old_value=f"Device removed: {_describe(record)} - IP: {record.primary_ip or 'N/A'}",
                            new_value="Device archived to deleted_devices table",
                        )
                    )
                )
                conn.execute(_devices.delete().where(_devices.c.id == record.id))
        except SQLAlchemyError as exc:
            raise PersistenceError(f"delete {hostname} failed: {exc}") from exc

        logger.info("Deleted %s (id=%s) by %s", hostname, record.id, actor)
        return PersistResult(action="Deleted", hostname=hostname, device_id=record.id, audit_entries=1)

    def _archive(self, conn, record: DeviceRecord, actor: str, reason: str, now: str) -> None:
        conn.execute(
            _deleted_devices.insert().values(
                original_device_id=record.id,
                **_device_values(record),
                created_at=record.created_at,
                updated_at=record.updated_at,
                deleted_at=now,
                deleted_by=actor,
                deletion_reason=reason,
            )
        )

    def record_discovery(
        self,
        device_id: int,
        actor: str,
        session_id: Optional[str] = None,
        reason: str = "",
        discovered_at: Optional[str] = None,
    ) -> PersistResult:
        """Stamp last_discovered on a device a scan found unchanged, with one DISCOVER audit row.

        No inventory field changes, so updated_at is left alone.
        """
        now = now_iso()
        seen = discovered_at or now
        try:
            with self.engine.begin() as conn:
                row = conn.execute(
                    select(_devices.c.hostname, _devices.c.last_discovered).where(_devices.c.id == device_id)
                ).fetchone()
                if row is None:
                    raise DeviceNotFoundError(device_id)
                conn.execute(_devices.update().where(_devices.c.id == device_id).values(last_discovered=seen))
                conn.execute(
                    _audit_log.insert().values(
                        **_audit_row(
                            AuditAction.DISCOVER,
                            device_id,
                            row.hostname,
                            actor,
                            (reason or "").strip(),
                            session_id,
                            now,
                            field_name="last_discovered",
                            old_value=row.last_discovered or None,
                            new_value=seen,
                        )
                    )
                )
        except SQLAlchemyError as exc:
            raise PersistenceError(f"discovery stamp for device {device_id} failed: {exc}") from exc

        logger.debug("Discovered %s (id=%s) unchanged", row.hostname, device_id)
        return PersistResult(
            action=ScanOutcome.SKIPPED.value,
            hostname=row.hostname,
            device_id=device_id,
            audit_entries=1,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, device_id: int) -> Optional[DeviceRecord]:
        """Fetch a single device by ID. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_devices.select().where(_devices.c.id == device_id)).fetchone()
        return _row_to_device(row) if row is not None else None

    def get_by_hostname(self, hostname: str) -> Optional[DeviceRecord]:
        """Look up a device by exact hostname match. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_devices.select().where(_devices.c.hostname == hostname)).fetchone()
        return _row_to_device(row) if row is not None else None

    def list_devices(self) -> list[DeviceRecord]:
        """Return all live devices ordered by hostname."""
        with self.engine.connect() as conn:
            rows = conn.execute(_devices.select().order_by(_devices.c.hostname)).fetchall()
        return [_row_to_device(r) for r in rows]

    def search(self, query: str) -> list[DeviceRecord]:
        """Case-insensitive substring match over hostname, IP, location, serial and asset tag."""
        query = (query or "").strip().lower()
        if not query:
            return self.list_devices()
        conditions = [func.lower(_devices.c[name]).contains(query, autoescape=True) for name in _SEARCH_COLUMNS]
        with self.engine.connect() as conn:
            rows = conn.execute(_devices.select().where(or_(*conditions)).order_by(_devices.c.hostname)).fetchall()
        return [_row_to_device(r) for r in rows]

    def list_deleted(self, hostname: Optional[str] = None) -> list[ArchivedDevice]:
        """Archived copies of deleted devices, newest deletion first."""
        stmt = _deleted_devices.select().order_by(_deleted_devices.c.deleted_at.desc(), _deleted_devices.c.id.desc())
        if hostname:
            stmt = stmt.where(_deleted_devices.c.hostname == hostname)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [
            ArchivedDevice(
                record=_row_to_device(r, device_id=r.original_device_id),
                original_device_id=r.original_device_id,
                deleted_at=r.deleted_at,
                deleted_by=r.deleted_by,
                deletion_reason=r.deletion_reason,
                id=r.id,
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    def get_audit_entries(
        self,
        device_id: Optional[int] = None,
        session_id: Optional[str] = None,
        hostname: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[AuditEntry]:
        """Return audit rows matching every given filter, oldest first."""
        stmt = _audit_log.select().order_by(_audit_log.c.performed_at, _audit_log.c.id)
        if device_id is not None:
            stmt = stmt.where(_audit_log.c.device_id == device_id)
        if session_id is not None:
            stmt = stmt.where(_audit_log.c.session_id == session_id)
        if hostname is not None:
            stmt = stmt.where(_audit_log.c.hostname == hostname)
        if limit is not None:
            stmt = stmt.limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_audit(r) for r in rows]

    def purge_audit_entries(self, older_than_days: int = 365, dry_run: bool = True) -> int:
        """Retention: delete audit rows older than the window. Returns the row count.

        Administrative only. No scan, apply or delete path calls this.
        With dry_run=True (the default) rows are only counted.
        """
        if older_than_days < 1:
            raise ValueError("older_than_days must be at least 1")
        cutoff = (datetime.now(timezone.utc) - timedelta(days=older_than_days)).isoformat()
        where = _audit_log.c.performed_at < cutoff
        try:
            with self.engine.begin() as conn:
                count = conn.execute(select(func.count()).select_from(_audit_log).where(where)).scalar_one()
                if not dry_run and count:
                    conn.execute(_audit_log.delete().where(where))
        except SQLAlchemyError as exc:
            raise PersistenceError(f"audit purge failed: {exc}") from exc
        logger.info(
            "Audit retention (%d days): %d row(s) %s",
            older_than_days,
            count,
            "would be deleted" if dry_run else "deleted",
        )
        return count

    # ------------------------------------------------------------------
    # Discovery sessions
    # ------------------------------------------------------------------

    def start_session(self, target: str, session_id: Optional[str] = None) -> str:
        """Record the start of a scan or bulk run and return its session id."""
        session_id = session_id or new_session_id()
        with self.engine.begin() as conn:
            existing = conn.execute(select(_sessions.c.session_id).where(_sessions.c.session_id == session_id)).fetchone()
            if existing is None:
                conn.execute(_sessions.insert().values(session_id=session_id, target=target, started_at=now_iso()))
        return session_id

    def finish_session(self, session_id: str, status: str = "Completed", summary: str = "") -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                _sessions.update()
                .where(_sessions.c.session_id == session_id)
                .values(status=status, completed_at=now_iso(), summary=summary)
            )
        return result.rowcount > 0

    def get_session(self, session_id: str) -> Optional[DiscoverySession]:
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.session_id == session_id)).fetchone()
        if row is None:
            return None
        return DiscoverySession(
            session_id=row.session_id,
            target=row.target or "",
            started_at=row.started_at,
            status=row.status,
            completed_at=row.completed_at,
            summary=row.summary or "",
        )

    def ping(self) -> bool:
        """Return True when the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.exception("Database ping failed")
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern -- DB row -> domain dataclass)
# ---------------------------------------------------------------------------


def _row_to_device(row, device_id: Optional[int] = None) -> DeviceRecord:
    adapters = [AdapterSlot(**a) for a in json.loads(row.secondary_adapters)] if row.secondary_adapters else []
    drives = [DriveSlot(**d) for d in json.loads(row.drives)] if row.drives else []
    return DeviceRecord(
        id=device_id if device_id is not None else row.id,
        hostname=row.hostname,
        serial_number=row.serial_number or "",
        asset_tag=row.asset_tag or "",
        device_type=row.device_type,
        equipment_group=row.equipment_group or "",
        manufacturer=row.manufacturer or "",
        model=row.model or "",
        cpu_info=row.cpu_info or "",
        bios_version=row.bios_version or "",
        total_ram_gb=float(row.total_ram_gb or 0.0),
        ram_type=row.ram_type or "",
        ram_speed=row.ram_speed or "",
        ram_manufacturer=row.ram_manufacturer or "",
        os_name=row.os_name or "",
        os_version=row.os_version or "",
        os_architecture=row.os_architecture or "",
        os_install_date=row.os_install_date or "",
        domain_name=row.domain_name or "",
        workgroup=row.workgroup or "",
        is_domain_joined=None if row.is_domain_joined is None else bool(row.is_domain_joined),
        primary_ip=row.primary_ip or "",
        primary_mac=row.primary_mac or "",
        primary_subnet=row.primary_subnet or "",
        primary_dns=row.primary_dns or "",
        secondary_dns=row.secondary_dns or "",
        secondary_adapters=adapters,
        drives=drives,
        area=row.area or "",
        zone=row.zone or "",
        line=row.line or "",
        pitch=row.pitch or "",
        floor=row.floor or "",
        pillar=row.pillar or "",
        web_interface_url=row.web_interface_url or "",
        additional_notes=row.additional_notes or "",
        device_status=row.device_status,
        discovery_method=row.discovery_method or "",
        last_discovered=row.last_discovered or "",
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_audit(row) -> AuditEntry:
    return AuditEntry(
        id=row.id,
        device_id=row.device_id,
        hostname=row.hostname or "",
        action=row.action,
        field_name=row.field_name or "",
        old_value=row.old_value,
        new_value=row.new_value,
        performed_at=row.performed_at,
        performed_by=row.performed_by,
        change_reason=row.change_reason or "",
        session_id=row.session_id,
    )
