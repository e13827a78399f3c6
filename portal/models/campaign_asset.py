"""
CampaignAsset model: an uploaded brand asset or agency draft. Rows are never updated.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from ..database import Base


class CampaignAsset(Base):
    __tablename__ = "campaign_assets"

    id = Column(Integer, primary_key=True, index=True)
    campaign_id = Column(Integer, ForeignKey("campaigns.id"), nullable=False, index=True)
    asset_type = Column(String(50), nullable=False, index=True)  # asset, draft
    uploaded_by = Column(String(50), nullable=False)  # customer, agency
    filename = Column(String(255), nullable=False)
    storage_key = Column(String(500), nullable=False)
    file_size = Column(Integer, nullable=True)
    mime_type = Column(String(100), nullable=True)
    uploaded_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True)

    # Relationships
    campaign = relationship("Campaign", back_populates="assets")
