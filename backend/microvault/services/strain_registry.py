"""Strain registry orchestration: policy gate, store operation, audit event."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.orm import Session, joinedload

from .. import audit, models, schemas
from ..audit import AuditAction
from ..errors import Conflict, NotFound, ValidationError, enforce
from ..rbac import Action, Principal, can_create, can_mutate, can_view, visibility_ceiling
from ..database import unit_of_work

# purpose: resolve -> gate -> store -> audit pipeline for strain records
# depends_on: microvault.rbac, microvault.audit, microvault.models.Strain
# status: active

logger = logging.getLogger(__name__)

RESOURCE_TYPE = "strain"

SORTABLE_COLUMNS = {
    "created_at": models.Strain.created_at,
    "updated_at": models.Strain.updated_at,
    "strain_code": models.Strain.strain_code,
    "genus_species": models.Strain.genus_species,
    "genus": models.Strain.genus,
    "microorganism_type": models.Strain.microorganism_type,
    "biosafety_level": models.Strain.biosafety_level,
}
DEFAULT_SORT = "created_at"
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


@dataclass
class StrainFilters:
    microorganism_type: str | None = None
    genus: str | None = None
    sample_type: str | None = None
    search: str | None = None
    biosafety_level: int | None = None
    # flag name without the ``potential_`` prefix -> required value
    potentials: dict[str, bool] = field(default_factory=dict)


@dataclass
class PageRequest:
    page: int = 1
    limit: int = DEFAULT_PAGE_SIZE

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass
class SortRequest:
    column: str = DEFAULT_SORT
    order: str = "desc"

    def resolve(self):
        column = SORTABLE_COLUMNS.get(self.column, SORTABLE_COLUMNS[DEFAULT_SORT])
        if (self.order or "").lower() == "asc":
            return column.asc()
        return column.desc()


def _visible_predicates(principal: Principal, filters: StrainFilters) -> list:
    predicates = [
        models.Strain.deleted_at.is_(None),
        models.Strain.biosafety_level <= visibility_ceiling(principal),
    ]
    if filters.microorganism_type:
        predicates.append(models.Strain.microorganism_type == filters.microorganism_type)
    if filters.genus:
        predicates.append(models.Strain.genus == filters.genus)
    if filters.sample_type:
        predicates.append(models.Strain.sample_type == filters.sample_type)
    if filters.biosafety_level is not None:
        predicates.append(models.Strain.biosafety_level == filters.biosafety_level)
    if filters.search:
        pattern = f"%{filters.search}%"
        predicates.append(
            sa.or_(
                models.Strain.strain_code.ilike(pattern),
                models.Strain.genus_species.ilike(pattern),
                models.Strain.origin_location.ilike(pattern),
            )
        )
    for flag, wanted in filters.potentials.items():
        if flag not in models.POTENTIAL_FLAGS:
            raise ValueError(f"unknown potential flag {flag!r}")
        predicates.append(getattr(models.Strain, f"potential_{flag}").is_(wanted))
    return predicates


def list_strains(
    db: Session,
    principal: Principal,
    filters: StrainFilters | None = None,
    page: PageRequest | None = None,
    sort: SortRequest | None = None,
) -> schemas.StrainPage:
    """Return one page of strains the principal is cleared to see."""

    filters = filters or StrainFilters()
    page = page or PageRequest()
    sort = sort or SortRequest()
    predicates = _visible_predicates(principal, filters)

    total = db.query(sa.func.count(models.Strain.id)).filter(*predicates).scalar() or 0
    rows = (
        db.query(models.Strain)
        .filter(*predicates)
        .order_by(sort.resolve(), models.Strain.id)
        .limit(page.limit)
        .offset(page.offset)
        .all()
    )
    return schemas.StrainPage(
        strains=[schemas.StrainOut.model_validate(row) for row in rows],
        pagination=schemas.Pagination(
            page=page.page,
            limit=page.limit,
            total=total,
            pages=math.ceil(total / page.limit) if page.limit else 0,
        ),
    )


def _load(db: Session, strain_id: UUID, *, include_deleted: bool = False) -> models.Strain:
    query = db.query(models.Strain).filter(models.Strain.id == strain_id)
    if not include_deleted:
        query = query.filter(models.Strain.deleted_at.is_(None))
    strain = query.options(joinedload(models.Strain.creator)).first()
    if strain is None:
        raise NotFound("Strain not found")
    return strain


def get_strain(db: Session, principal: Principal, strain_id: UUID) -> models.Strain:
    strain = _load(db, strain_id)
    enforce(
        can_view(principal, strain.as_resource()),
        "Insufficient biosafety clearance to view this strain",
    )
    return strain


def _code_in_use(db: Session, strain_code: str, *, exclude_id: UUID | None = None) -> bool:
    query = db.query(models.Strain.id).filter(
        models.Strain.strain_code == strain_code,
        models.Strain.deleted_at.is_(None),
    )
    if exclude_id is not None:
        query = query.filter(models.Strain.id != exclude_id)
    return query.first() is not None


def create_strain(
    db: Session,
    principal: Principal,
    payload: schemas.StrainCreate,
    *,
    ip_address: str | None = None,
) -> models.Strain:
    enforce(
        can_create(principal, payload.biosafety_level),
        "Insufficient biosafety clearance to create this strain",
    )
    if _code_in_use(db, payload.strain_code):
        raise Conflict("Strain code already exists")

    strain = models.Strain(**payload.model_dump(mode="python"), created_by=principal.id)
    strain.microorganism_type = payload.microorganism_type.value
    db.add(strain)
    with unit_of_work(db, conflict_message="Strain code already exists"):
        db.flush()
        audit.record(
            db,
            principal.id,
            AuditAction.CREATE_STRAIN,
            RESOURCE_TYPE,
            strain.id,
            {"strain_code": strain.strain_code, "biosafety_level": strain.biosafety_level},
            ip_address,
        )
    db.refresh(strain)
    logger.info("Strain %s (%s) created by %s", strain.id, strain.strain_code, principal.id)
    return strain


def update_strain(
    db: Session,
    principal: Principal,
    strain_id: UUID,
    payload: schemas.StrainUpdate,
    *,
    ip_address: str | None = None,
) -> models.Strain:
    strain = _load(db, strain_id)
    changes = payload.model_dump(exclude_unset=True, mode="json")
    enforce(
        can_mutate(
            principal,
            Action.UPDATE,
            strain.as_resource(),
            new_level=changes.get("biosafety_level"),
        )
    )
    if not changes:
        raise ValidationError("No fields to update")
    new_code = changes.get("strain_code")
    if new_code is not None and new_code != strain.strain_code and _code_in_use(db, new_code, exclude_id=strain.id):
        raise Conflict("Strain code already exists")

    values = payload.model_dump(exclude_unset=True, mode="python")
    for key, value in values.items():
        if key == "microorganism_type":
            value = value.value
        setattr(strain, key, value)
    strain.updated_at = datetime.now(timezone.utc)
    with unit_of_work(db, conflict_message="Strain code already exists"):
        db.flush()
        audit.record(
            db,
            principal.id,
            AuditAction.UPDATE_STRAIN,
            RESOURCE_TYPE,
            strain.id,
            changes,
            ip_address,
        )
    db.refresh(strain)
    logger.info("Strain %s updated by %s: %s", strain.id, principal.id, sorted(changes))
    return strain


def delete_strain(
    db: Session,
    principal: Principal,
    strain_id: UUID,
    *,
    ip_address: str | None = None,
) -> models.Strain:
    strain = _load(db, strain_id)
    enforce(can_mutate(principal, Action.DELETE, strain.as_resource()))
    strain.deleted_at = datetime.now(timezone.utc)
    with unit_of_work(db):
        db.flush()
        audit.record(
            db,
            principal.id,
            AuditAction.DELETE_STRAIN,
            RESOURCE_TYPE,
            strain.id,
            {"strain_code": strain.strain_code},
            ip_address,
        )
    logger.info("Strain %s soft-deleted by %s", strain.id, principal.id)
    return strain


def restore_strain(
    db: Session,
    principal: Principal,
    strain_id: UUID,
    *,
    ip_address: str | None = None,
) -> models.Strain:
    strain = _load(db, strain_id, include_deleted=True)
    enforce(can_mutate(principal, Action.RESTORE, strain.as_resource()))
    if _code_in_use(db, strain.strain_code, exclude_id=strain.id):
        raise Conflict("Another active strain already uses this code")
    strain.deleted_at = None
    with unit_of_work(db, conflict_message="Another active strain already uses this code"):
        db.flush()
        audit.record(
            db,
            principal.id,
            AuditAction.RESTORE_STRAIN,
            RESOURCE_TYPE,
            strain.id,
            {"strain_code": strain.strain_code},
            ip_address,
        )
    logger.info("Strain %s restored by %s", strain.id, principal.id)
    return strain
