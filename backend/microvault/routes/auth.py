from fastapi import APIRouter, Depends, Request
import os
from sqlalchemy.orm import Session
from typing import List
from uuid import UUID
from ..database import get_db
from .. import schemas
from ..auth import create_access_token, get_current_principal, client_ip
from ..rbac import Principal
from ..services import accounts
from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address)
testing = os.getenv("TESTING") == "1"

def rate_limit(limit: str):
    if testing:
        def wrapper(func):
            return func
        return wrapper
    return limiter.limit(limit)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _auth_response(user) -> schemas.AuthResponse:
    return schemas.AuthResponse(
        access_token=create_access_token(user),
        user=schemas.UserOut.model_validate(user),
    )


@router.post("/register", response_model=schemas.AuthResponse, status_code=201)
@rate_limit("5/minute")
async def register(request: Request, user: schemas.BootstrapAdminCreate, db: Session = Depends(get_db)):
    db_user = accounts.bootstrap_admin(db, user, ip_address=client_ip(request))
    return _auth_response(db_user)


@router.post("/login", response_model=schemas.AuthResponse)
@rate_limit("10/minute")
async def login(request: Request, user: schemas.LoginRequest, db: Session = Depends(get_db)):
    db_user = accounts.authenticate(db, user, ip_address=client_ip(request))
    return _auth_response(db_user)


@router.post("/admin/create-user", response_model=schemas.UserOut, status_code=201)
async def create_user(
    request: Request,
    user: schemas.UserCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return accounts.provision_account(db, principal, user, ip_address=client_ip(request))


@router.get("/admin/users", response_model=List[schemas.UserOut])
async def list_users(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return accounts.list_accounts(db, principal)


@router.delete("/admin/users/{user_id}", response_model=schemas.AccountActionResult)
async def delete_user(
    user_id: UUID,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    user = accounts.disable_account(db, principal, user_id, ip_address=client_ip(request))
    return schemas.AccountActionResult(message="User deleted successfully", id=user.id)
