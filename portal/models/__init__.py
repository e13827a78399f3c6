from .tenant import Tenant
from .user import User
from .agency import Agency
from .campaign import Campaign
from .campaign_asset import CampaignAsset
from .activity import CampaignActivity
from .notification import CampaignNotification
from .magic_link import MagicLinkToken

__all__ = [
    "Tenant",
    "User",
    "Agency",
    "Campaign",
    "CampaignAsset",
    "CampaignActivity",
    "CampaignNotification",
    "MagicLinkToken",
]
