import enum
import logging
from datetime import datetime, timezone
from uuid import UUID
from sqlalchemy.orm import Session
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from . import models
from .errors import AuditWriteFailure

logger = logging.getLogger(__name__)


class AuditAction(str, enum.Enum):
    USER_REGISTERED = "USER_REGISTERED"
    USER_LOGIN = "USER_LOGIN"
    USER_CREATED = "USER_CREATED"
    USER_DELETED = "USER_DELETED"
    CREATE_STRAIN = "CREATE_STRAIN"
    UPDATE_STRAIN = "UPDATE_STRAIN"
    DELETE_STRAIN = "DELETE_STRAIN"
    RESTORE_STRAIN = "RESTORE_STRAIN"


def _persist(db: Session, log: models.AuditLog):
    db.add(log)
    db.flush()


def record(
    db: Session,
    actor_id: str | UUID,
    action: AuditAction,
    resource_type: str,
    resource_id: str | UUID | None = None,
    details: dict | None = None,
    ip_address: str | None = None,
) -> models.AuditLog:
    """Append an audit event to the caller's open transaction.

    The caller commits. Any store failure surfaces as ``AuditWriteFailure`` so
    the surrounding operation is reported as failed.
    """
    log = models.AuditLog(
        user_id=UUID(str(actor_id)),
        action=AuditAction(action).value,
        resource_type=resource_type,
        resource_id=UUID(str(resource_id)) if resource_id else None,
        ip_address=ip_address,
        details=details or {},
        created_at=datetime.now(timezone.utc),
    )
    try:
        _persist(db, log)
    except SQLAlchemyError as exc:
        logger.exception("Audit write failed for %s on %s %s", log.action, resource_type, resource_id)
        raise AuditWriteFailure() from exc
    return log


def list_events(
    db: Session,
    *,
    action: str | None = None,
    resource_type: str | None = None,
    resource_id: UUID | None = None,
    actor_id: UUID | None = None,
    limit: int = 100,
    offset: int = 0,
):
    query = db.query(models.AuditLog)
    if action:
        query = query.filter(models.AuditLog.action == action)
    if resource_type:
        query = query.filter(models.AuditLog.resource_type == resource_type)
    if resource_id:
        query = query.filter(models.AuditLog.resource_id == resource_id)
    if actor_id:
        query = query.filter(models.AuditLog.user_id == actor_id)
    return (
        query.order_by(models.AuditLog.created_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def generate_report(
    db: Session,
    start: datetime,
    end: datetime,
    actor_id: UUID | None = None,
):
    query = db.query(models.AuditLog).filter(
        models.AuditLog.created_at >= start,
        models.AuditLog.created_at <= end,
    )
    if actor_id:
        query = query.filter(models.AuditLog.user_id == actor_id)
    rows = (
        query.with_entities(models.AuditLog.action, func.count(models.AuditLog.id))
        .group_by(models.AuditLog.action)
        .all()
    )
    return [{"action": r[0], "count": r[1]} for r in rows]
