"""AffiliateLink model"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from app.models.base import Base


class AffiliateLink(Base):
    """Affiliate tracking link minted by an admin for one user"""
    __tablename__ = "affiliate_links"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    video_id = Column(String(255), nullable=False)
    destination_url = Column(String(2048), nullable=False)
    clicks = Column(Integer, default=0, nullable=False)  # Incremented by the /r/{id} redirect only
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    # Relationship
    owner = relationship("User", back_populates="links")

    __table_args__ = (
        Index('ix_affiliate_links_owner_created', 'owner_id', 'created_at'),
    )
