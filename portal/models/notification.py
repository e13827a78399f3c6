"""
CampaignNotification model: the reminder/escalation ledger.

One row per (campaign, notification type); the unique constraint is what
keeps a reminder from being sent twice.
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from ..database import Base


class CampaignNotification(Base):
    __tablename__ = "campaign_notifications"
    __table_args__ = (
        UniqueConstraint("campaign_id", "notification_type", name="uq_campaign_notification_type"),
    )

    id = Column(Integer, primary_key=True, index=True)
    campaign_id = Column(Integer, ForeignKey("campaigns.id"), nullable=False, index=True)
    notification_type = Column(String(100), nullable=False)  # asset_reminder_7d, draft_overdue_escalation, ...
    recipient_type = Column(String(50), nullable=False)  # customer, agency, cs
    recipient_email = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default="pending", index=True)  # pending, sent, failed
    attempts = Column(Integer, nullable=False, default=1)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    # Relationships
    campaign = relationship("Campaign", back_populates="notifications")
