import uuid
import sqlalchemy as sa
from sqlalchemy import (
    Column,
    String,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    JSON,
    Integer,
    Text,
    event,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .database import Base
from .rbac import Lifecycle, Principal, Role, StrainResource, effective_clearance, lifecycle_of


def utcnow():
    return datetime.now(timezone.utc)


_ACTIVE_ROWS = sa.text("deleted_at IS NULL")

POTENTIAL_FLAGS = (
    "nitrogen_fixer",
    "phosphate_solubilizer",
    "proteolytic",
    "lipolytic",
    "amylolytic",
    "cellulolytic",
    "antimicrobial",
    "iaa_hormone",
)


class User(Base):
    __tablename__ = "users"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), nullable=False)
    hashed_password = Column(String, nullable=False)
    full_name = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default=Role.RESEARCHER.value)
    biosafety_clearance = Column(Integer, nullable=True)
    lab_affiliation = Column(String(255))
    created_at = Column(DateTime, default=utcnow)
    deleted_at = Column(DateTime, nullable=True)

    strains = relationship("Strain", back_populates="creator")

    __table_args__ = (
        # email is only unique among accounts that have not been soft-deleted
        sa.Index(
            "uq_users_email_active",
            "email",
            unique=True,
            sqlite_where=_ACTIVE_ROWS,
            postgresql_where=_ACTIVE_ROWS,
        ),
        sa.CheckConstraint(
            "biosafety_clearance IS NULL OR biosafety_clearance BETWEEN 1 AND 4",
            name="ck_users_clearance_range",
        ),
    )

    @property
    def lifecycle(self) -> Lifecycle:
        return lifecycle_of(self.deleted_at)

    def to_principal(self) -> Principal:
        return Principal(
            id=self.id,
            role=Role(self.role),
            biosafety_clearance=effective_clearance(self.biosafety_clearance),
            active=self.deleted_at is None,
        )


class Strain(Base):
    __tablename__ = "strains"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    strain_code = Column(String(50), nullable=False)
    microorganism_type = Column(String(20), nullable=False)
    genus_species = Column(String(255))
    genus = Column(String(100))
    species = Column(String(100))
    sample_type = Column(String(100))
    origin_location = Column(String(255))
    isolation_date = Column(Date)
    characteristics_macroscopic = Column(Text)
    characteristics_microscopic = Column(Text)
    characteristics_biochemical = Column(Text)
    potential_nitrogen_fixer = Column(Boolean, default=False, nullable=False)
    potential_phosphate_solubilizer = Column(Boolean, default=False, nullable=False)
    potential_proteolytic = Column(Boolean, default=False, nullable=False)
    potential_lipolytic = Column(Boolean, default=False, nullable=False)
    potential_amylolytic = Column(Boolean, default=False, nullable=False)
    potential_cellulolytic = Column(Boolean, default=False, nullable=False)
    potential_antimicrobial = Column(Boolean, default=False, nullable=False)
    potential_iaa_hormone = Column(Boolean, default=False, nullable=False)
    storage_technique = Column(String(100))
    culture_stock = Column(String(100))
    storage_location = Column(String(100))
    biosafety_level = Column(Integer, nullable=False, default=1)
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime, nullable=True)

    creator = relationship("User", back_populates="strains")

    __table_args__ = (
        sa.Index(
            "uq_strains_code_active",
            "strain_code",
            unique=True,
            sqlite_where=_ACTIVE_ROWS,
            postgresql_where=_ACTIVE_ROWS,
        ),
        sa.Index("ix_strains_biosafety_level", "biosafety_level"),
        sa.CheckConstraint("biosafety_level BETWEEN 1 AND 4", name="ck_strains_biosafety_range"),
    )

    @property
    def lifecycle(self) -> Lifecycle:
        return lifecycle_of(self.deleted_at)

    @property
    def created_by_name(self) -> str | None:
        return self.creator.full_name if self.creator else None

    @property
    def created_by_email(self) -> str | None:
        return self.creator.email if self.creator else None

    def as_resource(self) -> StrainResource:
        return StrainResource(
            created_by=self.created_by,
            biosafety_level=self.biosafety_level,
            lifecycle=self.lifecycle,
        )


class AuditLog(Base):
    __tablename__ = "audit_logs"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    action = Column(String(50), nullable=False)
    resource_type = Column(String(50), nullable=False)
    resource_id = Column(UUID(as_uuid=True))
    ip_address = Column(String(45))
    details = Column(JSON, default=dict)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        sa.Index("ix_audit_logs_resource", "resource_type", "resource_id"),
        sa.Index("ix_audit_logs_created_at", "created_at"),
    )


@event.listens_for(AuditLog, "before_update")
def _refuse_audit_update(mapper, connection, target):
    raise ValueError("audit log entries are append-only")


@event.listens_for(AuditLog, "before_delete")
def _refuse_audit_delete(mapper, connection, target):
    raise ValueError("audit log entries are append-only")
