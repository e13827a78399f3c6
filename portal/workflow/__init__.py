from .states import (
    ActorType,
    AssetType,
    CampaignStatus,
    PortalType,
    Transition,
    TRANSITIONS,
)

__all__ = [
    "ActorType",
    "AssetType",
    "CampaignStatus",
    "PortalType",
    "Transition",
    "TRANSITIONS",
]
