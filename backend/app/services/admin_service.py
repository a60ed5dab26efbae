"""Admin service - Admin operations and user management"""
import logging
from typing import Dict, Optional
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from app.core.exceptions import NotFoundError
from app.core.security import require_role
from app.models.affiliate_link import AffiliateLink
from app.models.user import User, UserRole
from app.services.auth_service import get_user_by_id, serialize_user

logger = logging.getLogger(__name__)


def list_users(
    acting_user: User,
    page: int = 1,
    limit: int = 50,
    search: Optional[str] = None,
    db: Session = None
) -> Dict:
    """List users with their reward counters

    Args:
        acting_user: Verified caller; must hold the admin role
        page: Page number (1-indexed)
        limit: Users per page
        search: Optional search term matched against username and email
        db: Database session

    Returns:
        Dict with 'users', 'total', 'page', 'limit'
    """
    require_role(acting_user, UserRole.ADMIN)

    query = db.query(User)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(User.username.ilike(pattern), User.email.ilike(pattern)))

    total = query.count()
    users = query.order_by(User.created_at.desc(), User.id.desc()).offset((page - 1) * limit).limit(limit).all()

    return {
        "users": [serialize_user(u) for u in users],
        "total": total,
        "page": page,
        "limit": limit
    }


def get_user_details(acting_user: User, user_id: int, db: Session) -> Dict:
    """Get one user's details with link statistics

    Raises:
        NotFoundError: If user not found
    """
    require_role(acting_user, UserRole.ADMIN)

    user = get_user_by_id(user_id, db)
    if not user:
        raise NotFoundError("User not found")

    link_count, total_clicks = db.query(
        func.count(AffiliateLink.id), func.coalesce(func.sum(AffiliateLink.clicks), 0)
    ).filter(AffiliateLink.owner_id == user_id).one()

    return {
        "user": serialize_user(user),
        "link_count": int(link_count),
        "total_clicks": int(total_clicks)
    }
