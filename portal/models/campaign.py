"""
Campaign model: the subject of the approval workflow.
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from ..database import Base
from ..workflow.states import CampaignStatus


class Campaign(Base):
    __tablename__ = "campaigns"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    customer_name = Column(String(255), nullable=False)
    customer_email = Column(String(255), nullable=False, index=True)
    campaign_type = Column(String(100), nullable=False)
    agency_id = Column(Integer, ForeignKey("agencies.id"), nullable=False, index=True)
    cs_user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String(50), nullable=False, default=CampaignStatus.AWAITING_ASSETS.value, index=True)
    asset_deadline = Column(DateTime(timezone=True), nullable=False)
    go_live_date = Column(DateTime(timezone=True), nullable=False)
    customer_feedback = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    # Relationships
    tenant = relationship("Tenant", back_populates="campaigns")
    agency = relationship("Agency", back_populates="campaigns")
    cs_user = relationship("User", back_populates="owned_campaigns")
    assets = relationship("CampaignAsset", back_populates="campaign")
    activities = relationship("CampaignActivity", back_populates="campaign")
    notifications = relationship("CampaignNotification", back_populates="campaign")

    @property
    def workflow_status(self) -> CampaignStatus:
        return CampaignStatus.parse(self.status)
