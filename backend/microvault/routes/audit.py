from uuid import UUID
from datetime import datetime
from typing import List
from sqlalchemy.orm import Session
from fastapi import APIRouter, Depends, Query
from ..database import get_db
from ..auth import get_current_principal
from ..errors import enforce
from ..rbac import Principal, can_review_audit
from .. import schemas, audit

router = APIRouter(prefix="/api/audit", tags=["audit"])


@router.get("", response_model=List[schemas.AuditLogOut])
async def list_logs(
    action: audit.AuditAction | None = None,
    resource_type: str | None = None,
    resource_id: UUID | None = None,
    user_id: UUID | None = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    enforce(can_review_audit(principal))
    return audit.list_events(
        db,
        action=action.value if action else None,
        resource_type=resource_type,
        resource_id=resource_id,
        actor_id=user_id,
        limit=limit,
        offset=offset,
    )


@router.get("/report", response_model=List[schemas.AuditReportItem])
async def audit_report(
    start: datetime,
    end: datetime,
    user_id: UUID | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    enforce(can_review_audit(principal))
    return audit.generate_report(db, start, end, user_id)
