from datetime import date, datetime
from enum import Enum
from typing import Optional, Any, Dict, List
from pydantic import BaseModel, EmailStr, ConfigDict, Field, field_validator, model_validator
from uuid import UUID

from .rbac import Role, MIN_BIOSAFETY_LEVEL, MAX_BIOSAFETY_LEVEL, DEFAULT_BIOSAFETY_LEVEL


class MicroorganismType(str, Enum):
    BAKTERI = "BAKTERI"
    YEAST = "YEAST"
    KAPANG = "KAPANG"
    ACTINOMYCETES = "ACTINOMYCETES"


class _EmailNormalized(BaseModel):
    @field_validator("email", mode="after", check_fields=False)
    @classmethod
    def lower_email(cls, value: str) -> str:
        return value.strip().lower()


class BootstrapAdminCreate(_EmailNormalized):
    email: EmailStr
    password: str
    full_name: str = Field(min_length=1, max_length=255)
    lab_affiliation: Optional[str] = Field(default=None, max_length=255)


class UserCreate(BootstrapAdminCreate):
    role: Role
    biosafety_clearance: Optional[int] = Field(
        default=None, ge=MIN_BIOSAFETY_LEVEL, le=MAX_BIOSAFETY_LEVEL
    )

    @model_validator(mode="after")
    def clearance_required_for_staff(self):
        if self.role is not Role.TECHNICIAN and self.biosafety_clearance is None:
            raise ValueError("biosafety_clearance is required for admin and researcher accounts")
        return self


class UserOut(BaseModel):
    id: UUID
    email: EmailStr
    full_name: str
    role: Role
    biosafety_clearance: Optional[int] = None
    lab_affiliation: Optional[str] = None
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class LoginRequest(_EmailNormalized):
    email: EmailStr
    password: str = Field(min_length=1)


class AuthResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserOut


class _StrainFields(BaseModel):
    genus_species: Optional[str] = Field(default=None, max_length=255)
    genus: Optional[str] = Field(default=None, max_length=100)
    species: Optional[str] = Field(default=None, max_length=100)
    sample_type: Optional[str] = Field(default=None, max_length=100)
    origin_location: Optional[str] = Field(default=None, max_length=255)
    isolation_date: Optional[date] = None
    characteristics_macroscopic: Optional[str] = None
    characteristics_microscopic: Optional[str] = None
    characteristics_biochemical: Optional[str] = None
    storage_technique: Optional[str] = Field(default=None, max_length=100)
    culture_stock: Optional[str] = Field(default=None, max_length=100)
    storage_location: Optional[str] = Field(default=None, max_length=100)

    @field_validator(
        "genus_species",
        "genus",
        "species",
        "sample_type",
        "origin_location",
        "characteristics_macroscopic",
        "characteristics_microscopic",
        "characteristics_biochemical",
        "storage_technique",
        "culture_stock",
        "storage_location",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, value):
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value


class StrainCreate(_StrainFields):
    strain_code: str = Field(min_length=1, max_length=50)
    microorganism_type: MicroorganismType
    biosafety_level: int = Field(default=DEFAULT_BIOSAFETY_LEVEL, ge=MIN_BIOSAFETY_LEVEL, le=MAX_BIOSAFETY_LEVEL)
    potential_nitrogen_fixer: bool = False
    potential_phosphate_solubilizer: bool = False
    potential_proteolytic: bool = False
    potential_lipolytic: bool = False
    potential_amylolytic: bool = False
    potential_cellulolytic: bool = False
    potential_antimicrobial: bool = False
    potential_iaa_hormone: bool = False

    @field_validator("strain_code", mode="before")
    @classmethod
    def strip_code(cls, value):
        return value.strip() if isinstance(value, str) else value


class StrainUpdate(_StrainFields):
    """Partial update; only fields present in the request body are applied."""

    strain_code: Optional[str] = Field(default=None, min_length=1, max_length=50)
    microorganism_type: Optional[MicroorganismType] = None
    biosafety_level: Optional[int] = Field(default=None, ge=MIN_BIOSAFETY_LEVEL, le=MAX_BIOSAFETY_LEVEL)
    potential_nitrogen_fixer: Optional[bool] = None
    potential_phosphate_solubilizer: Optional[bool] = None
    potential_proteolytic: Optional[bool] = None
    potential_lipolytic: Optional[bool] = None
    potential_amylolytic: Optional[bool] = None
    potential_cellulolytic: Optional[bool] = None
    potential_antimicrobial: Optional[bool] = None
    potential_iaa_hormone: Optional[bool] = None

    @field_validator("strain_code", mode="before")
    @classmethod
    def strip_code(cls, value):
        return value.strip() if isinstance(value, str) else value

    @model_validator(mode="after")
    def required_columns_not_null(self):
        # these columns are NOT NULL; an explicit null cannot be applied
        for name in ("strain_code", "microorganism_type", "biosafety_level"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        for name in self.model_fields_set:
            if name.startswith("potential_") and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self


class StrainOut(StrainCreate):
    id: UUID
    microorganism_type: str
    created_by: UUID
    created_at: datetime
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class StrainDetailOut(StrainOut):
    created_by_name: Optional[str] = None
    created_by_email: Optional[str] = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class StrainPage(BaseModel):
    strains: List[StrainOut]
    pagination: Pagination


class StrainActionResult(BaseModel):
    message: str
    id: UUID


class AccountActionResult(BaseModel):
    message: str
    id: UUID


class AuditLogOut(BaseModel):
    id: UUID
    user_id: UUID
    action: str
    resource_type: str
    resource_id: UUID | None = None
    ip_address: str | None = None
    details: Dict[str, Any] = {}
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class AuditReportItem(BaseModel):
    action: str
    count: int
