from .auth import MagicLinkRequest
from .campaign import (
    CampaignCreate,
    RequestChanges,
    AgencyCreate,
    campaign_to_dict,
    asset_to_dict,
    activity_to_dict,
    agency_to_dict,
)

__all__ = [
    "MagicLinkRequest",
    "CampaignCreate", "RequestChanges", "AgencyCreate",
    "campaign_to_dict", "asset_to_dict", "activity_to_dict", "agency_to_dict",
]
