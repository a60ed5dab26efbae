"""Reward service - XP, levels, and entries"""
import logging
from typing import Dict

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exceptions import NotFoundError, ValidationError
from app.core.security import require_role
from app.models.base import INTEGER_MAX, is_storable_id
from app.models.user import User, UserRole

logger = logging.getLogger(__name__)
rewards_logger = logging.getLogger("rewards")

# Cumulative XP required to reach each level; index 0 is level 1
LEVEL_THRESHOLDS = [0, 100, 250, 500, 1000, 2000, 3500, 5500, 8000, 11000, 15000]
MAX_CREDIT_AMOUNT = 1_000_000


def compute_level(total_xp: int) -> Dict:
    """Compute level and progress toward the next level from total XP"""
    total_xp = max(total_xp or 0, 0)
    level_index = 0
    for i, threshold in enumerate(LEVEL_THRESHOLDS):
        if total_xp >= threshold:
            level_index = i

    current = LEVEL_THRESHOLDS[level_index]
    is_max_level = level_index == len(LEVEL_THRESHOLDS) - 1
    next_threshold = current if is_max_level else LEVEL_THRESHOLDS[level_index + 1]

    return {
        "level": level_index + 1,
        "xp_into_level": total_xp - current,
        "xp_for_level": max(next_threshold - current, 1),
        "next_level_xp": None if is_max_level else next_threshold,
    }


def award_xp(user_id: int, amount: int, db: Session) -> User:
    """Add XP to a user with a SQL-side increment and recompute their level

    Does not commit; callers commit alongside their own changes.
    """
    result = db.execute(
        update(User)
        .where(User.id == user_id)
        .values(xp=User.xp + amount)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFoundError("User not found")

    user = db.query(User).filter(User.id == user_id).populate_existing().one()
    new_level = compute_level(user.xp)["level"]
    if new_level != user.level:
        rewards_logger.info(f"User {user_id} reached level {new_level}")
        user.level = new_level
    return user


def credit_entries(acting_user: User, target_user_id: int, amount: int, db: Session) -> User:
    """Credit entries to a user (admin only)

    Args:
        acting_user: Verified caller; must hold the admin role
        target_user_id: User receiving the entries
        amount: Positive number of entries to add
        db: Database session

    Returns:
        User: Target user after the credit

    Raises:
        ForbiddenError: Caller is not an admin
        ValidationError: Amount is not a positive integer up to MAX_CREDIT_AMOUNT,
            or the credit would overflow the entries counter
        NotFoundError: Target user does not exist
    """
    require_role(acting_user, UserRole.ADMIN)

    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("Amount must be a positive integer")
    if amount > MAX_CREDIT_AMOUNT:
        raise ValidationError(f"Amount must be at most {MAX_CREDIT_AMOUNT}")
    if not is_storable_id(target_user_id):
        raise NotFoundError("User not found")

    try:
        result = db.execute(
            update(User)
            .where(User.id == target_user_id)
            .where(User.entries <= INTEGER_MAX - amount)
            .values(entries=User.entries + amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            db.rollback()
            if db.query(User.id).filter(User.id == target_user_id).first() is None:
                raise NotFoundError("User not found")
            raise ValidationError("Entries balance is at its maximum")
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error crediting entries to user {target_user_id}: {e}", exc_info=True)
        raise

    target = db.query(User).filter(User.id == target_user_id).populate_existing().one()
    rewards_logger.info(
        f"Admin {acting_user.id} credited {amount} entries to user {target_user_id} (now {target.entries})"
    )
    return target
