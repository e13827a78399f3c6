"""
Campaign status enum and the transition table of the approval workflow.
"""
from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet

from ..errors import ValidationFailed


class PortalType(str, Enum):
    """Role lens an actor uses to reach the workflow."""
    CS = "cs"
    CUSTOMER = "customer"
    AGENCY = "agency"


class ActorType(str, Enum):
    """Who performed an activity; ``system`` covers automatic transitions and reminders."""
    CS = "cs"
    CUSTOMER = "customer"
    AGENCY = "agency"
    SYSTEM = "system"


class AssetType(str, Enum):
    ASSET = "asset"  # customer-supplied brand material
    DRAFT = "draft"  # agency-produced deliverable


class CampaignStatus(str, Enum):
    CREATED = "created"
    AWAITING_ASSETS = "awaiting_assets"
    ASSETS_UPLOADED = "assets_uploaded"
    DRAFT_IN_PROGRESS = "draft_in_progress"
    DRAFT_SUBMITTED = "draft_submitted"
    CUSTOMER_REVIEW = "customer_review"
    APPROVED = "approved"
    REVISION_REQUESTED = "revision_requested"
    LIVE = "live"

    @classmethod
    def parse(cls, value) -> "CampaignStatus":
        """Strict conversion from a stored string; unknown values are rejected."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ValidationFailed(f"Unknown campaign status: {value!r}", {"status": value})


@dataclass(frozen=True)
class Transition:
    """One edge of the workflow graph.

    ``auto`` edges may be fired by the system and are idempotent: repeating
    them once the target is reached is a no-op instead of an error.
    """
    action: str
    sources: FrozenSet[CampaignStatus]
    target: CampaignStatus
    actors: FrozenSet[ActorType]
    activity: str
    event: str
    auto: bool = False

    def allows(self, actor: ActorType) -> bool:
        return actor in self.actors

    def accepts(self, status: CampaignStatus) -> bool:
        return status in self.sources


def _edge(action, sources, target, actors, activity, event, auto=False) -> Transition:
    return Transition(
        action=action,
        sources=frozenset(sources),
        target=target,
        actors=frozenset(actors),
        activity=activity,
        event=event,
        auto=auto,
    )


UPLOAD_ASSETS = _edge(
    "upload_assets",
    [CampaignStatus.CREATED, CampaignStatus.AWAITING_ASSETS],
    CampaignStatus.ASSETS_UPLOADED,
    [ActorType.CUSTOMER],
    activity="assets_uploaded",
    event="assets_uploaded",
)

START_DRAFT = _edge(
    "start_draft",
    [CampaignStatus.ASSETS_UPLOADED, CampaignStatus.REVISION_REQUESTED],
    CampaignStatus.DRAFT_IN_PROGRESS,
    [ActorType.AGENCY, ActorType.SYSTEM],
    activity="draft_started",
    event="draft_in_progress",
    auto=True,
)

SUBMIT_DRAFT = _edge(
    "submit_draft",
    [CampaignStatus.DRAFT_IN_PROGRESS],
    CampaignStatus.DRAFT_SUBMITTED,
    [ActorType.AGENCY],
    activity="draft_submitted",
    event="draft_submitted",
)

START_REVIEW = _edge(
    "start_review",
    [CampaignStatus.DRAFT_SUBMITTED],
    CampaignStatus.CUSTOMER_REVIEW,
    [ActorType.CUSTOMER, ActorType.SYSTEM],
    activity="review_started",
    event="customer_review",
    auto=True,
)

APPROVE = _edge(
    "approve",
    [CampaignStatus.CUSTOMER_REVIEW],
    CampaignStatus.APPROVED,
    [ActorType.CUSTOMER],
    activity="draft_approved",
    event="campaign_approved",
)

REQUEST_CHANGES = _edge(
    "request_changes",
    [CampaignStatus.CUSTOMER_REVIEW],
    CampaignStatus.REVISION_REQUESTED,
    [ActorType.CUSTOMER],
    activity="revision_requested",
    event="revision_requested",
)

MARK_LIVE = _edge(
    "mark_live",
    [CampaignStatus.APPROVED],
    CampaignStatus.LIVE,
    [ActorType.CS],
    activity="marked_live",
    event="campaign_live",
)

TRANSITIONS = {
    t.action: t
    for t in (UPLOAD_ASSETS, START_DRAFT, SUBMIT_DRAFT, START_REVIEW, APPROVE, REQUEST_CHANGES, MARK_LIVE)
}

# Statuses swept by the reminder scheduler
ASSET_PENDING_STATUSES = (CampaignStatus.CREATED, CampaignStatus.AWAITING_ASSETS)
DRAFT_PENDING_STATUSES = (
    CampaignStatus.ASSETS_UPLOADED,
    CampaignStatus.DRAFT_IN_PROGRESS,
    CampaignStatus.REVISION_REQUESTED,
)
# A campaign past its asset deadline in any other status is not overdue
SETTLED_STATUSES = (CampaignStatus.APPROVED, CampaignStatus.LIVE)
