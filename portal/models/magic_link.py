"""
MagicLinkToken model: a single-use login credential. Only the SHA-256 hash
of the emailed token is stored.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from datetime import datetime, timezone
from ..database import Base


class MagicLinkToken(Base):
    __tablename__ = "magic_links"

    id = Column(Integer, primary_key=True, index=True)
    token_hash = Column(String(64), unique=True, index=True, nullable=False)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    email = Column(String(255), nullable=False, index=True)
    portal_type = Column(String(50), nullable=False)  # cs, customer, agency
    campaign_id = Column(Integer, ForeignKey("campaigns.id"), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
