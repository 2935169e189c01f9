from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID

from ..database import get_db
from ..auth import get_current_principal, client_ip
from .. import models, schemas
from ..rbac import Principal, MIN_BIOSAFETY_LEVEL, MAX_BIOSAFETY_LEVEL
from ..services import strain_registry
from ..services.strain_registry import PageRequest, SortRequest, StrainFilters

router = APIRouter(prefix="/api/strains", tags=["strains"])


@router.get("", response_model=schemas.StrainPage)
async def list_strains(
    page: int = Query(1, ge=1),
    limit: int = Query(strain_registry.DEFAULT_PAGE_SIZE, ge=1, le=strain_registry.MAX_PAGE_SIZE),
    microorganism_type: Optional[str] = None,
    genus: Optional[str] = None,
    sample_type: Optional[str] = None,
    search: Optional[str] = None,
    biosafety: Optional[int] = Query(None, ge=MIN_BIOSAFETY_LEVEL, le=MAX_BIOSAFETY_LEVEL),
    nitrogen_fixer: Optional[bool] = None,
    phosphate_solubilizer: Optional[bool] = None,
    proteolytic: Optional[bool] = None,
    lipolytic: Optional[bool] = None,
    amylolytic: Optional[bool] = None,
    cellulolytic: Optional[bool] = None,
    antimicrobial: Optional[bool] = None,
    iaa_hormone: Optional[bool] = None,
    sort: str = strain_registry.DEFAULT_SORT,
    order: str = "desc",
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    flags = {
        "nitrogen_fixer": nitrogen_fixer,
        "phosphate_solubilizer": phosphate_solubilizer,
        "proteolytic": proteolytic,
        "lipolytic": lipolytic,
        "amylolytic": amylolytic,
        "cellulolytic": cellulolytic,
        "antimicrobial": antimicrobial,
        "iaa_hormone": iaa_hormone,
    }
    filters = StrainFilters(
        microorganism_type=microorganism_type,
        genus=genus,
        sample_type=sample_type,
        search=search,
        biosafety_level=biosafety,
        potentials={name: value for name, value in flags.items() if value is not None},
    )
    return strain_registry.list_strains(
        db,
        principal,
        filters,
        PageRequest(page=page, limit=limit),
        SortRequest(column=sort, order=order),
    )


@router.get("/{strain_id}", response_model=schemas.StrainDetailOut)
async def get_strain(
    strain_id: UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return strain_registry.get_strain(db, principal, strain_id)


@router.post("", response_model=schemas.StrainOut, status_code=201)
async def create_strain(
    strain: schemas.StrainCreate,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return strain_registry.create_strain(db, principal, strain, ip_address=client_ip(request))


@router.put("/{strain_id}", response_model=schemas.StrainOut)
async def update_strain(
    strain_id: UUID,
    strain: schemas.StrainUpdate,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return strain_registry.update_strain(db, principal, strain_id, strain, ip_address=client_ip(request))


@router.delete("/{strain_id}", response_model=schemas.StrainActionResult)
async def delete_strain(
    strain_id: UUID,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    strain: models.Strain = strain_registry.delete_strain(db, principal, strain_id, ip_address=client_ip(request))
    return schemas.StrainActionResult(message="Strain deleted successfully", id=strain.id)


@router.patch("/{strain_id}/restore", response_model=schemas.StrainActionResult)
async def restore_strain(
    strain_id: UUID,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    strain: models.Strain = strain_registry.restore_strain(db, principal, strain_id, ip_address=client_ip(request))
    return schemas.StrainActionResult(message="Strain restored successfully", id=strain.id)
