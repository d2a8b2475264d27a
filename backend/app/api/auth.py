"""Auth API routes"""
import logging
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.schemas.auth import RegisterRequest, LoginRequest
from app.services.auth_service import register_user, login_user, get_user_by_id, serialize_user
from app.core.security import require_auth
from app.db.session import get_db

router = APIRouter(prefix="/api/auth", tags=["auth"])
logger = logging.getLogger(__name__)


@router.post("/register", status_code=201)
def register(request_data: RegisterRequest, db: Session = Depends(get_db)):
    """Create an account and return an access token"""
    try:
        return register_user(request_data.email, request_data.password, db, name=request_data.name)
    except ValueError as e:
        raise HTTPException(400, str(e))


@router.post("/login")
def login(request_data: LoginRequest, db: Session = Depends(get_db)):
    """Exchange email and password for an access token"""
    try:
        return login_user(request_data.email, request_data.password, db)
    except ValueError as e:
        raise HTTPException(400, str(e))


@router.get("/me")
def get_current_user(user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    """Get the authenticated user's profile"""
    user = get_user_by_id(user_id, db)
    if not user:
        # Token outlived the account
        raise HTTPException(404, "User not found")
    return {"success": True, "user": serialize_user(user)}
