"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from app.models.base import Base
from app.models.user import User, UserRole
from app.models.affiliate_link import AffiliateLink

# Export all for convenience
__all__ = ["Base", "User", "UserRole", "AffiliateLink"]
