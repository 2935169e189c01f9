"""Account bootstrap, provisioning, login and soft-delete."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.orm import Session

from .. import audit, models, schemas
from ..audit import AuditAction
from ..auth import burn_password_check, ensure_password_strength, get_password_hash, verify_password
from ..database import unit_of_work
from ..errors import Conflict, LoginFailed, NotFound, enforce
from ..rbac import MAX_BIOSAFETY_LEVEL, Principal, Role, can_bootstrap, can_delete_account, can_manage_accounts

logger = logging.getLogger(__name__)

RESOURCE_TYPE = "user"
_EMAIL_TAKEN = "Email already registered"


def _active_accounts(db: Session):
    return db.query(models.User).filter(models.User.deleted_at.is_(None))


def count_active_admins(db: Session) -> int:
    return (
        db.query(sa.func.count(models.User.id))
        .filter(models.User.role == Role.ADMIN.value, models.User.deleted_at.is_(None))
        .scalar()
        or 0
    )


def _email_in_use(db: Session, email: str) -> bool:
    return _active_accounts(db).filter(models.User.email == email).first() is not None


def _insert_account(
    db: Session,
    *,
    email: str,
    password: str,
    full_name: str,
    role: Role,
    biosafety_clearance: int | None,
    lab_affiliation: str | None,
    actor_id: UUID | None,
    action: AuditAction,
    ip_address: str | None,
) -> models.User:
    ensure_password_strength(password)
    if _email_in_use(db, email):
        raise Conflict(_EMAIL_TAKEN)
    user = models.User(
        email=email,
        hashed_password=get_password_hash(password),
        full_name=full_name,
        role=role.value,
        biosafety_clearance=biosafety_clearance,
        lab_affiliation=lab_affiliation,
    )
    db.add(user)
    with unit_of_work(db, conflict_message=_EMAIL_TAKEN):
        db.flush()
        audit.record(
            db,
            actor_id or user.id,
            action,
            RESOURCE_TYPE,
            user.id,
            {"email": email, "role": role.value, "biosafety_clearance": biosafety_clearance},
            ip_address,
        )
    db.refresh(user)
    return user


def bootstrap_admin(
    db: Session,
    payload: schemas.BootstrapAdminCreate,
    *,
    ip_address: str | None = None,
) -> models.User:
    """Create the first administrator; refused once any active admin exists."""

    # count-then-insert: two concurrent first registrations can both pass this check
    decision = can_bootstrap(count_active_admins(db))
    if not decision:
        logger.warning("Refused bootstrap registration for %s: system already initialized", payload.email)
    enforce(decision)
    user = _insert_account(
        db,
        email=payload.email,
        password=payload.password,
        full_name=payload.full_name,
        role=Role.ADMIN,
        biosafety_clearance=MAX_BIOSAFETY_LEVEL,
        lab_affiliation=payload.lab_affiliation,
        actor_id=None,
        action=AuditAction.USER_REGISTERED,
        ip_address=ip_address,
    )
    logger.info("Bootstrap administrator %s created", user.id)
    return user


def provision_account(
    db: Session,
    principal: Principal,
    payload: schemas.UserCreate,
    *,
    ip_address: str | None = None,
) -> models.User:
    enforce(can_manage_accounts(principal))
    user = _insert_account(
        db,
        email=payload.email,
        password=payload.password,
        full_name=payload.full_name,
        role=payload.role,
        biosafety_clearance=payload.biosafety_clearance,
        lab_affiliation=payload.lab_affiliation,
        actor_id=principal.id,
        action=AuditAction.USER_CREATED,
        ip_address=ip_address,
    )
    logger.info("Account %s (%s) provisioned by %s", user.id, user.role, principal.id)
    return user


def authenticate(
    db: Session,
    payload: schemas.LoginRequest,
    *,
    ip_address: str | None = None,
) -> models.User:
    """Return the active account matching the credentials.

    Unknown email, wrong password and disabled accounts fail identically.
    """
    user = _active_accounts(db).filter(models.User.email == payload.email).first()
    if user is None:
        burn_password_check(payload.password)
        raise LoginFailed()
    if not verify_password(payload.password, user.hashed_password):
        raise LoginFailed()
    with unit_of_work(db):
        audit.record(
            db,
            user.id,
            AuditAction.USER_LOGIN,
            RESOURCE_TYPE,
            user.id,
            {"email": user.email},
            ip_address,
        )
    return user


def list_accounts(db: Session, principal: Principal) -> list[models.User]:
    enforce(can_manage_accounts(principal))
    return _active_accounts(db).order_by(models.User.created_at.asc()).all()


def get_account(db: Session, account_id: UUID) -> models.User:
    user = _active_accounts(db).filter(models.User.id == account_id).first()
    if user is None:
        raise NotFound("User not found")
    return user


def disable_account(
    db: Session,
    principal: Principal,
    account_id: UUID,
    *,
    ip_address: str | None = None,
) -> models.User:
    enforce(can_delete_account(principal, account_id))
    user = get_account(db, account_id)
    user.deleted_at = datetime.now(timezone.utc)
    with unit_of_work(db):
        db.flush()
        audit.record(
            db,
            principal.id,
            AuditAction.USER_DELETED,
            RESOURCE_TYPE,
            user.id,
            {"email": user.email, "role": user.role},
            ip_address,
        )
    logger.info("Account %s disabled by %s", user.id, principal.id)
    return user
