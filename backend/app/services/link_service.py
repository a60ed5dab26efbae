"""Affiliate link service - link generation and click tracking"""
import logging
from typing import Dict, Optional
from urllib.parse import urlparse

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import NotFoundError, ValidationError
from app.core.security import require_role
from app.models.affiliate_link import AffiliateLink
from app.models.base import is_storable_id
from app.models.user import User, UserRole
from app.services.auth_service import get_user_by_id
from app.services.reward_service import award_xp

logger = logging.getLogger(__name__)
rewards_logger = logging.getLogger("rewards")

VIDEO_ID_MAX_LENGTH = 255
DESTINATION_URL_MAX_LENGTH = 2048


def validate_link_fields(video_id: str, destination_url: str) -> tuple[str, str]:
    """Check a link's video id and destination URL, returning the trimmed values"""
    video_id = (video_id or "").strip()
    destination_url = (destination_url or "").strip()

    if not video_id:
        raise ValidationError("videoId is required")
    if len(video_id) > VIDEO_ID_MAX_LENGTH:
        raise ValidationError(f"videoId must be at most {VIDEO_ID_MAX_LENGTH} characters")

    if not destination_url:
        raise ValidationError("destinationUrl is required")
    if len(destination_url) > DESTINATION_URL_MAX_LENGTH:
        raise ValidationError(f"destinationUrl must be at most {DESTINATION_URL_MAX_LENGTH} characters")
    parsed = urlparse(destination_url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError("destinationUrl must be an http or https URL")

    return video_id, destination_url


def generate_link(
    acting_user: User,
    video_id: str,
    destination_url: str,
    target_user_id: int,
    db: Session
) -> AffiliateLink:
    """Mint an affiliate link for a user (admin only)

    The link row and its place in the owner's link list are written in one commit.

    Raises:
        ForbiddenError: Caller is not an admin
        ValidationError: Empty or malformed videoId/destinationUrl
        NotFoundError: Target user does not exist
    """
    require_role(acting_user, UserRole.ADMIN)
    video_id, destination_url = validate_link_fields(video_id, destination_url)

    target = get_user_by_id(target_user_id, db)
    if not target:
        raise NotFoundError("User not found")

    link = AffiliateLink(video_id=video_id, destination_url=destination_url, clicks=0)
    target.links.append(link)
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error creating link for user {target_user_id}: {e}", exc_info=True)
        raise
    db.refresh(link)

    rewards_logger.info(
        f"Admin {acting_user.id} generated link {link.id} (video {video_id}) for user {target_user_id}"
    )
    return link


def get_link(link_id: int, db: Session) -> Optional[AffiliateLink]:
    if not is_storable_id(link_id):
        return None
    return db.query(AffiliateLink).filter(AffiliateLink.id == link_id).first()


def record_click(link_id: int, db: Session) -> str:
    """Count a click on a link, credit the owner's XP, and return the destination URL

    Raises:
        NotFoundError: Unknown link
    """
    if not is_storable_id(link_id):
        raise NotFoundError("Link not found")

    try:
        result = db.execute(
            update(AffiliateLink)
            .where(AffiliateLink.id == link_id)
            .values(clicks=AffiliateLink.clicks + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            db.rollback()
            raise NotFoundError("Link not found")

        link = get_link(link_id, db)
        award_xp(link.owner_id, settings.XP_PER_CLICK, db)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error recording click on link {link_id}: {e}", exc_info=True)
        raise

    return link.destination_url


def tracking_url(link: AffiliateLink) -> str:
    return f"{settings.BACKEND_URL.rstrip('/')}/r/{link.id}"


def serialize_link(link: AffiliateLink) -> Dict:
    return {
        "id": link.id,
        "owner_id": link.owner_id,
        "video_id": link.video_id,
        "destination_url": link.destination_url,
        "tracking_url": tracking_url(link),
        "clicks": link.clicks,
        "created_at": link.created_at.isoformat() if link.created_at else None,
    }
