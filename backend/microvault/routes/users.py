from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from .. import schemas, auth
from ..rbac import Principal
from ..services import accounts

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("/me", response_model=schemas.UserOut)
async def read_profile(
    db: Session = Depends(get_db),
    principal: Principal = Depends(auth.get_current_principal),
):
    return accounts.get_account(db, principal.id)
