from pydantic import BaseModel, EmailStr, field_validator, model_validator
from datetime import datetime
from typing import Optional

from ..utils import as_utc, days_until
from ..workflow.states import SETTLED_STATUSES


class CampaignCreate(BaseModel):
    customer_name: str
    customer_email: EmailStr
    campaign_type: str
    agency_id: int
    asset_deadline: datetime
    go_live_date: datetime

    @field_validator("customer_name", "campaign_type")
    @classmethod
    def not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("asset_deadline", "go_live_date")
    @classmethod
    def to_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    @model_validator(mode="after")
    def deadline_before_go_live(self):
        if self.asset_deadline > self.go_live_date:
            raise ValueError("asset_deadline must be on or before go_live_date")
        return self


class RequestChanges(BaseModel):
    feedback: str


class AgencyCreate(BaseModel):
    name: str
    email: EmailStr
    contact_name: Optional[str] = None


# ============================================================
# SERIALIZERS
# ============================================================

def _iso(value: Optional[datetime]) -> Optional[str]:
    return as_utc(value).isoformat() if value else None


def campaign_to_dict(campaign, now: datetime) -> dict:
    deadline = as_utc(campaign.asset_deadline)
    return {
        "id": campaign.id,
        "tenant_id": campaign.tenant_id,
        "customer_name": campaign.customer_name,
        "customer_email": campaign.customer_email,
        "campaign_type": campaign.campaign_type,
        "agency_id": campaign.agency_id,
        "cs_user_id": campaign.cs_user_id,
        "status": campaign.status,
        "asset_deadline": _iso(deadline),
        "go_live_date": _iso(campaign.go_live_date),
        "customer_feedback": campaign.customer_feedback,
        "created_at": _iso(campaign.created_at),
        "updated_at": _iso(campaign.updated_at),
        "is_overdue": now > deadline and campaign.workflow_status not in SETTLED_STATUSES,
        "days_until_deadline": days_until(deadline, now),
    }


def asset_to_dict(asset, download_url: Optional[str] = None) -> dict:
    data = {
        "id": asset.id,
        "campaign_id": asset.campaign_id,
        "asset_type": asset.asset_type,
        "filename": asset.filename,
        "file_size": asset.file_size,
        "mime_type": asset.mime_type,
        "uploaded_by": asset.uploaded_by,
        "uploaded_at": _iso(asset.uploaded_at),
    }
    if download_url:
        data["download_url"] = download_url
    return data


def activity_to_dict(activity) -> dict:
    return {
        "id": activity.id,
        "actor_type": activity.actor_type,
        "actor_email": activity.actor_email,
        "action": activity.action,
        "details": activity.details or {},
        "created_at": _iso(activity.created_at),
    }


def agency_to_dict(agency) -> dict:
    return {
        "id": agency.id,
        "name": agency.name,
        "email": agency.email,
        "contact_name": agency.contact_name,
        "is_active": agency.is_active,
    }
