"""
CampaignActivity model: the append-only audit trail of a campaign.
"""
from sqlalchemy import Column, Integer, String, DateTime, JSON, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from ..database import Base


class CampaignActivity(Base):
    __tablename__ = "campaign_activities"

    id = Column(Integer, primary_key=True, index=True)
    campaign_id = Column(Integer, ForeignKey("campaigns.id"), nullable=False, index=True)
    actor_type = Column(String(50), nullable=False)  # cs, customer, agency, system
    actor_email = Column(String(255), nullable=False)
    action = Column(String(100), nullable=False, index=True)  # campaign_created, assets_uploaded, draft_started, ...
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True)

    # Relationships
    campaign = relationship("Campaign", back_populates="activities")
