from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

# purpose: single decision table for role and biosafety clearance checks
# inputs: resolved Principal, action, synthetic or store-backed resource facts
# outputs: Decision values; no I/O and no exceptions
# status: active


class Role(str, enum.Enum):
    ADMIN = "admin"
    RESEARCHER = "researcher"
    TECHNICIAN = "technician"


class Action(str, enum.Enum):
    VIEW = "view"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    RESTORE = "restore"


class DenyReason(str, enum.Enum):
    ACCOUNT_DISABLED = "account_disabled"
    INSUFFICIENT_CLEARANCE = "insufficient_clearance"
    ROLE_FORBIDDEN = "role_forbidden"
    NOT_OWNER = "not_owner"
    SELF_ACTION_BLOCKED = "self_action_blocked"
    NOT_DELETED = "not_deleted"
    ALREADY_INITIALIZED = "system_already_initialized"


MIN_BIOSAFETY_LEVEL = 1
MAX_BIOSAFETY_LEVEL = 4
DEFAULT_BIOSAFETY_LEVEL = 1

_MUTATIONS = frozenset({Action.UPDATE, Action.DELETE, Action.RESTORE})


@dataclass(frozen=True)
class Active:
    pass


@dataclass(frozen=True)
class Deleted:
    at: datetime


Lifecycle = Active | Deleted


def lifecycle_of(deleted_at: datetime | None) -> Lifecycle:
    """Map the nullable ``deleted_at`` column onto a lifecycle value."""

    return Active() if deleted_at is None else Deleted(deleted_at)


@dataclass(frozen=True)
class Principal:
    """The caller as the store describes them right now."""

    id: UUID
    role: Role
    biosafety_clearance: int
    active: bool = True

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


@dataclass(frozen=True)
class StrainResource:
    """Policy-relevant facts about one strain record."""

    created_by: UUID | None
    biosafety_level: int
    lifecycle: Lifecycle = Active()


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: DenyReason | None = None
    required: int | None = None
    current: int | None = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(allowed=True)


def deny(reason: DenyReason, *, required: int | None = None, current: int | None = None) -> Decision:
    return Decision(allowed=False, reason=reason, required=required, current=current)


def effective_clearance(clearance: int | None) -> int:
    """Accounts stored without a clearance see and create nothing."""

    return clearance if clearance is not None else 0


def check_active(principal: Principal) -> Decision:
    if not principal.active:
        return deny(DenyReason.ACCOUNT_DISABLED)
    return ALLOW


def visibility_ceiling(principal: Principal) -> int:
    """Highest biosafety level the principal may see in listings."""

    return principal.biosafety_clearance


def _clearance_covers(principal: Principal, level: int) -> Decision:
    if level > principal.biosafety_clearance:
        return deny(
            DenyReason.INSUFFICIENT_CLEARANCE,
            required=level,
            current=principal.biosafety_clearance,
        )
    return ALLOW


def can_view(principal: Principal, resource: StrainResource) -> Decision:
    decision = check_active(principal)
    if not decision:
        return decision
    return _clearance_covers(principal, resource.biosafety_level)


def can_create(principal: Principal, requested_level: int | None = None) -> Decision:
    decision = check_active(principal)
    if not decision:
        return decision
    level = DEFAULT_BIOSAFETY_LEVEL if requested_level is None else requested_level
    return _clearance_covers(principal, level)


def _ownership(principal: Principal, resource: StrainResource) -> Decision:
    if principal.role is Role.TECHNICIAN:
        return deny(DenyReason.ROLE_FORBIDDEN)
    if principal.role is Role.RESEARCHER and principal.id != resource.created_by:
        return deny(DenyReason.NOT_OWNER)
    return ALLOW


def can_mutate(
    principal: Principal,
    action: Action,
    resource: StrainResource,
    *,
    new_level: int | None = None,
) -> Decision:
    """Decide update, delete and restore requests against a loaded record.

    ``new_level`` is only consulted for updates and only when it differs from
    the record's current level.
    """

    if action not in _MUTATIONS:
        raise ValueError(f"{action!r} is not a mutation")
    decision = check_active(principal)
    if not decision:
        return decision
    decision = _ownership(principal, resource)
    if not decision:
        return decision
    if action is Action.UPDATE and new_level is not None and new_level != resource.biosafety_level:
        decision = _clearance_covers(principal, new_level)
        if not decision:
            return decision
    if action is Action.RESTORE and isinstance(resource.lifecycle, Active):
        return deny(DenyReason.NOT_DELETED)
    return ALLOW


def can_manage_accounts(principal: Principal) -> Decision:
    decision = check_active(principal)
    if not decision:
        return decision
    if not principal.is_admin:
        return deny(DenyReason.ROLE_FORBIDDEN)
    return ALLOW


def can_delete_account(principal: Principal, target_id: UUID) -> Decision:
    decision = can_manage_accounts(principal)
    if not decision:
        return decision
    if principal.id == target_id:
        return deny(DenyReason.SELF_ACTION_BLOCKED)
    return ALLOW


def can_review_audit(principal: Principal) -> Decision:
    return can_manage_accounts(principal)


def can_bootstrap(active_admin_count: int) -> Decision:
    if active_admin_count > 0:
        return deny(DenyReason.ALREADY_INITIALIZED)
    return ALLOW
