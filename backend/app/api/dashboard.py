"""Dashboard API routes"""
from fastapi import APIRouter, Depends
from app.core.security import require_auth
from app.models.user import User
from app.services.dashboard_service import get_dashboard

router = APIRouter(tags=["dashboard"])


@router.get("/dashboard")
def dashboard(user: User = Depends(require_auth)):
    """Current user's counters and links"""
    return get_dashboard(user)
