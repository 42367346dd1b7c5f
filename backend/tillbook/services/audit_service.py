# Overview: Audit capture. Session-event layer that records every mutation of an audited table.

"""
Audit Capture

WHY: The audit trail must not depend on each service remembering to write
it. Capture is installed once on the SQLAlchemy Session class, so every
session (request, CLI, tests) records mutations of audited tables.

WHAT IS CAPTURED (one AuditLogEntry per mutated row per statement):
- Unit-of-work flushes: before_flush reads the prior row of every dirty or
  deleted audited object; after_flush reads the new row and inserts the
  entries on the same connection, inside the same transaction.
- ORM-enabled bulk UPDATE/DELETE (session.execute(update(Product)...),
  Query.update(), Query.delete()): do_orm_execute selects the matched rows,
  runs the statement, re-selects the updated rows and writes the entries.
- Bulk ORM INSERT into an audited table is refused (AuditCaptureError).

NOT CAPTURED: Core statements against Table objects and raw text() SQL,
and rows changed by database-side ON DELETE actions.

SNAPSHOTS: full row as column -> JSON-safe value. INSERT has no old
values, DELETE has no new values. Columns listed in REDACTED_COLUMNS are
kept as keys with a masked value.

FAILURES: an IntegrityError while inserting entries (e.g. a row that
references a ghost tenant) propagates and aborts the flush, so neither the
mutation nor the log is committed. Any other error while building a single
entry is logged and that entry is skipped.
"""

from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal

from sqlalchemy import event, inspect as sa_inspect, select
from sqlalchemy.orm import Session

from ..extensions import db
from ..models import AuditLogEntry, User
from ..pagination import paginate
from ..permissions import Identity
from ..time_utils import parse_iso_date, parse_iso_datetime, utcnow
from .tenant_service import require_tenant_id

logger = logging.getLogger(__name__)


AUDITED_ENTITIES = (
    "invoices",
    "customers",
    "products",
    "users",
    "tenant_connectors",
    "tenant_settings",
)

# Where each audited table keeps its tenant reference.
TENANT_REFERENCE_COLUMNS = {name: "tenant_id" for name in AUDITED_ENTITIES}

REDACTED_COLUMNS = {
    "users": frozenset({"password_hash"}),
}
REDACTED = "[redacted]"

ACTOR_KEY = "tillbook.audit_actor"
PENDING_KEY = "tillbook.audit_pending"


class AuditConfigurationError(Exception):
    """Invalid audited-table registration. Raised at application setup."""


class AuditCaptureError(Exception):
    """A statement against an audited table cannot be captured."""


@dataclass(frozen=True)
class AuditedEntity:
    table: object
    tenant_column: str
    redacted: frozenset = frozenset()

    @property
    def name(self) -> str:
        return self.table.name


@dataclass(frozen=True)
class AuditActor:
    """Who to attribute captured mutations to. All None for CLI/system work."""
    user_id: int | None = None
    ip_address: str | None = None
    user_agent: str | None = None


SYSTEM_ACTOR = AuditActor()

_registry: dict[str, AuditedEntity] = {}


# -- Registry -----------------------------------------------------------------

def register_audited_tables(
    names=AUDITED_ENTITIES,
    *,
    metadata=None,
    tenant_columns: dict[str, str] | None = None,
) -> dict[str, AuditedEntity]:
    """
    Validate and install the audited-table registry, then the session listeners.

    Raises AuditConfigurationError for an unknown table, a table without an
    `id` column, or a table without a tenant reference rule.
    """
    metadata = metadata if metadata is not None else db.metadata
    tenant_columns = tenant_columns if tenant_columns is not None else TENANT_REFERENCE_COLUMNS

    registry = {}
    for name in names:
        table = metadata.tables.get(name)
        if table is None:
            raise AuditConfigurationError(f"Unknown audited table: {name}")
        if "id" not in table.c:
            raise AuditConfigurationError(f"Audited table {name} has no id column")
        tenant_column = tenant_columns.get(name)
        if tenant_column is None:
            raise AuditConfigurationError(f"Audited table {name} has no tenant reference rule")
        if tenant_column not in table.c:
            raise AuditConfigurationError(
                f"Audited table {name} has no tenant reference column {tenant_column!r}"
            )
        registry[name] = AuditedEntity(
            table=table,
            tenant_column=tenant_column,
            redacted=REDACTED_COLUMNS.get(name, frozenset()),
        )

    _registry.clear()
    _registry.update(registry)
    install_listeners()
    logger.debug("Audit capture enabled for: %s", ", ".join(sorted(registry)))
    return dict(registry)


def audited_entity_types() -> tuple[str, ...]:
    return tuple(sorted(_registry))


def install_listeners(target=Session) -> None:
    """Attach the capture listeners to the Session class (idempotent)."""
    for name, fn in (
        ("before_flush", _before_flush),
        ("after_flush", _after_flush),
        ("do_orm_execute", _on_orm_execute),
    ):
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)


# -- Actor binding -------------------------------------------------------------

def bind_actor(session, identity: Identity | None, ip_address: str | None = None, user_agent: str | None = None) -> None:
    """Attribute subsequent mutations on `session` to `identity`."""
    session.info[ACTOR_KEY] = AuditActor(
        user_id=identity.user_id if identity else None,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:512] or None,
    )


def clear_actor(session) -> None:
    session.info.pop(ACTOR_KEY, None)


def current_actor(session) -> AuditActor:
    return session.info.get(ACTOR_KEY) or SYSTEM_ACTOR


# -- Snapshots -----------------------------------------------------------------

def _json_safe(value):
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, (Decimal, uuid.UUID)):
        return str(value)
    if isinstance(value, enum.Enum):
        return _json_safe(value.value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_json_safe(v) for v in value]
    raise TypeError(f"Cannot snapshot value of type {type(value).__name__}")


def snapshot(row, entity: AuditedEntity) -> dict:
    data = {}
    for key, value in dict(row).items():
        data[key] = REDACTED if key in entity.redacted else _json_safe(value)
    return data


def _fetch_rows(connection, entity: AuditedEntity, *criteria) -> dict[int, dict]:
    stmt = select(entity.table)
    if criteria:
        stmt = stmt.where(*criteria)
    return {row["id"]: dict(row) for row in connection.execute(stmt).mappings()}


def _fetch_row(connection, entity: AuditedEntity, entity_id) -> dict | None:
    return _fetch_rows(connection, entity, entity.table.c.id == entity_id).get(entity_id)


def _build_entry(action: str, entity: AuditedEntity, entity_id, old: dict | None, new: dict | None, actor: AuditActor) -> dict:
    tenant_id = None
    if new is not None:
        tenant_id = new.get(entity.tenant_column)
    if tenant_id is None and old is not None:
        tenant_id = old.get(entity.tenant_column)

    return {
        "tenant_id": tenant_id,
        "user_id": actor.user_id,
        "action": action,
        "entity_type": entity.name,
        "entity_id": entity_id,
        "old_values": snapshot(old, entity) if old is not None else None,
        "new_values": snapshot(new, entity) if new is not None else None,
        "ip_address": actor.ip_address,
        "user_agent": actor.user_agent,
        "created_at": utcnow(),
    }


def _write_entries(connection, entries: list[dict]) -> None:
    if entries:
        # IntegrityError propagates: the surrounding flush/statement fails.
        connection.execute(AuditLogEntry.__table__.insert(), entries)


# -- Unit-of-work capture --------------------------------------------------------

def _entity_for(obj) -> AuditedEntity | None:
    if not _registry:
        return None
    table = getattr(sa_inspect(obj).mapper, "local_table", None)
    if table is None:
        return None
    return _registry.get(table.name)


def _before_flush(session, flush_context, instances) -> None:
    if not _registry:
        return

    pending = []
    connection = None

    for obj in list(session.new):
        entity = _entity_for(obj)
        if entity is not None:
            pending.append(("INSERT", obj, entity, None, None))

    changed = [("UPDATE", obj) for obj in session.dirty] + [("DELETE", obj) for obj in session.deleted]
    for action, obj in changed:
        entity = _entity_for(obj)
        if entity is None:
            continue
        if action == "UPDATE" and not session.is_modified(obj, include_collections=False):
            continue
        identity = sa_inspect(obj).identity
        if not identity:
            continue
        entity_id = identity[0]
        if connection is None:
            connection = session.connection()
        try:
            old = _fetch_row(connection, entity, entity_id)
        except Exception:
            logger.exception("Failed to read prior %s row %s for audit", entity.name, entity_id)
            continue
        pending.append((action, obj, entity, entity_id, old))

    session.info[PENDING_KEY] = pending


def _after_flush(session, flush_context) -> None:
    pending = session.info.pop(PENDING_KEY, None)
    if not pending:
        return

    connection = session.connection()
    actor = current_actor(session)
    entries = []

    for action, obj, entity, entity_id, old in pending:
        try:
            if action == "INSERT":
                entity_id = sa_inspect(obj).mapper.primary_key_from_instance(obj)[0]
            new = _fetch_row(connection, entity, entity_id) if action != "DELETE" else None
            if action != "INSERT" and old is None:
                logger.warning("No prior %s row %s for %s audit entry", entity.name, entity_id, action)
            entries.append(_build_entry(action, entity, entity_id, old, new, actor))
        except Exception:
            logger.exception("Failed to build %s audit entry for %s %s", action, entity.name, entity_id)

    _write_entries(connection, entries)


# -- Bulk statement capture -------------------------------------------------------

def _bulk_criteria(orm_execute_state, entity: AuditedEntity) -> list:
    params = orm_execute_state.parameters
    if isinstance(params, (list, tuple)) and params and isinstance(params[0], dict) and "id" in params[0]:
        # bulk UPDATE by primary key: one parameter set per row
        return [entity.table.c.id.in_([p["id"] for p in params])]
    where = orm_execute_state.statement.whereclause
    return [where] if where is not None else []


def _on_orm_execute(orm_execute_state):
    if not _registry:
        return None
    if not (orm_execute_state.is_insert or orm_execute_state.is_update or orm_execute_state.is_delete):
        return None

    mapper = orm_execute_state.bind_mapper
    if mapper is None:
        return None
    entity = _registry.get(mapper.local_table.name)
    if entity is None:
        return None

    if orm_execute_state.is_insert:
        raise AuditCaptureError(
            f"Bulk INSERT into audited table {entity.name} is not supported; "
            "add objects to the session instead"
        )

    action = "UPDATE" if orm_execute_state.is_update else "DELETE"
    session = orm_execute_state.session
    connection = session.connection()

    before = _fetch_rows(connection, entity, *_bulk_criteria(orm_execute_state, entity))
    result = orm_execute_state.invoke_statement()
    if not before:
        return result

    after = {}
    if action == "UPDATE":
        after = _fetch_rows(connection, entity, entity.table.c.id.in_(list(before)))

    actor = current_actor(session)
    entries = []
    for entity_id, old in before.items():
        if action == "UPDATE":
            new = after.get(entity_id)
            if new is None:
                continue
        else:
            new = None
        try:
            entries.append(_build_entry(action, entity, entity_id, old, new, actor))
        except Exception:
            logger.exception("Failed to build bulk %s audit entry for %s %s", action, entity.name, entity_id)

    _write_entries(connection, entries)
    return result


# -- Queries --------------------------------------------------------------------------

AUDIT_FILTERS = ("action", "entity_type", "entity_id", "user_id")


def _filtered_query(query, filters: dict):
    filters = filters or {}
    if filters.get("action"):
        query = query.filter(AuditLogEntry.action == str(filters["action"]).upper())
    if filters.get("entity_type"):
        query = query.filter(AuditLogEntry.entity_type == filters["entity_type"])
    if filters.get("entity_id") is not None:
        query = query.filter(AuditLogEntry.entity_id == filters["entity_id"])
    if filters.get("user_id") is not None:
        query = query.filter(AuditLogEntry.user_id == filters["user_id"])
    if filters.get("tenant_id") is not None:
        query = query.filter(AuditLogEntry.tenant_id == filters["tenant_id"])

    start = filters.get("start_date")
    if start:
        start_dt = parse_iso_datetime(start) if "T" in str(start) else datetime.combine(parse_iso_date(start), datetime.min.time())
        query = query.filter(AuditLogEntry.created_at >= start_dt)
    end = filters.get("end_date")
    if end:
        if "T" in str(end):
            query = query.filter(AuditLogEntry.created_at <= parse_iso_datetime(end))
        else:
            end_next = datetime.combine(parse_iso_date(end), datetime.min.time()) + timedelta(days=1)
            query = query.filter(AuditLogEntry.created_at < end_next)
    return query.order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc())


def _with_user_names(rows) -> list[dict]:
    user_ids = {r.user_id for r in rows if r.user_id is not None}
    names = {}
    if user_ids:
        names = {
            u.id: (u.full_name, u.email)
            for u in db.session.query(User.id, User.full_name, User.email).filter(User.id.in_(user_ids))
        }
    out = []
    for r in rows:
        data = r.to_dict()
        name, email = names.get(r.user_id, (None, None))
        data["user_name"] = name
        data["user_email"] = email
        out.append(data)
    return out


def list_audit_logs(identity: Identity, *, filters: dict | None = None, page: int | None = None, per_page: int | None = None) -> dict:
    """
    Tenant-scoped audit listing (newest first).

    MULTI-TENANT: always restricted to identity.tenant_id; a tenant_id in
    `filters` is ignored.
    """
    filters = {k: v for k, v in (filters or {}).items() if k != "tenant_id"}
    filters["tenant_id"] = require_tenant_id(identity)
    query = _filtered_query(db.session.query(AuditLogEntry), filters)
    return paginate(query, page, per_page, serialize_rows=_with_user_names)


def list_all_audit_logs(*, filters: dict | None = None, page: int | None = None, per_page: int | None = None) -> dict:
    """Cross-tenant audit listing. Platform use only (see platform_service)."""
    query = _filtered_query(db.session.query(AuditLogEntry), filters or {})
    return paginate(query, page, per_page, serialize_rows=_with_user_names)


def recent_activity(identity: Identity, limit: int = 10) -> list[dict]:
    """Latest audit entries of the caller's tenant, with actor names."""
    limit = max(1, min(limit, 100))
    rows = (
        db.session.query(AuditLogEntry)
        .filter(AuditLogEntry.tenant_id == require_tenant_id(identity))
        .order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc())
        .limit(limit)
        .all()
    )
    return _with_user_names(rows)


def entity_history(identity: Identity, entity_type: str, entity_id: int) -> list[dict]:
    """Oldest-first audit trail of one entity within the caller's tenant."""
    rows = (
        db.session.query(AuditLogEntry)
        .filter(
            AuditLogEntry.tenant_id == require_tenant_id(identity),
            AuditLogEntry.entity_type == entity_type,
            AuditLogEntry.entity_id == entity_id,
        )
        .order_by(AuditLogEntry.id.asc())
        .all()
    )
    return [r.to_dict() for r in rows]
