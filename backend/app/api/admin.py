"""Admin API routes"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from app.schemas.admin import GenerateLinkRequest, CreditEntriesRequest
from app.core.security import require_admin
from app.db.session import get_db
from app.models.user import User
from app.services.auth_service import serialize_user
from app.services.link_service import generate_link, serialize_link
from app.services.reward_service import credit_entries
from app.services.admin_service import list_users, get_user_details

router = APIRouter(prefix="/admin", tags=["admin"])
logger = logging.getLogger(__name__)


@router.post("/generate-link", status_code=status.HTTP_201_CREATED)
def generate_link_endpoint(
    request_data: GenerateLinkRequest,
    admin_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Mint an affiliate link for a user (admin only)"""
    link = generate_link(
        admin_user,
        request_data.video_id,
        request_data.destination_url,
        request_data.target_user_id,
        db
    )
    return {"link": serialize_link(link)}


@router.post("/credit-entries")
def credit_entries_endpoint(
    request_data: CreditEntriesRequest,
    admin_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Credit entries to a user (admin only)"""
    user = credit_entries(admin_user, request_data.target_user_id, request_data.amount, db)
    return {"user": serialize_user(user)}


@router.get("/users")
def list_users_endpoint(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    search: Optional[str] = Query(None),
    admin_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """List users (admin only)"""
    return list_users(admin_user, page=page, limit=limit, search=search, db=db)


@router.get("/users/{user_id}")
def get_user_details_endpoint(
    user_id: int,
    admin_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Get user details with link statistics (admin only)"""
    return get_user_details(admin_user, user_id, db)
