"""
Campaign workflow engine.

Every status change goes through ``_apply``: check tenant and ownership,
check that the actor may take the edge, check the source status, then move
the campaign with a conditional UPDATE and write exactly one activity row in
the same transaction. Committed transitions are broadcast once. Emails are
sent afterwards and a failed send never undoes a transition.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import BinaryIO, Callable, List, Optional

from ..auth import AuthUser, build_magic_link_url, can_access_campaign, issue_magic_link
from ..config import Settings, get_settings
from ..errors import (
    Forbidden,
    InvalidTransition,
    NotFound,
    PortalError,
    PrematureGoLive,
    ValidationFailed,
)
from ..logging_config import workflow_logger
from .. import mailer
from ..models import Campaign, CampaignActivity, CampaignAsset
from ..realtime import CampaignEvent, RealtimeHub
from ..repository import CampaignRepository
from ..storage import build_object_key
from ..utils import as_utc, utcnow
from .states import (
    APPROVE,
    MARK_LIVE,
    REQUEST_CHANGES,
    START_DRAFT,
    START_REVIEW,
    SUBMIT_DRAFT,
    UPLOAD_ASSETS,
    ActorType,
    AssetType,
    CampaignStatus,
    PortalType,
    Transition,
)

SYSTEM_EMAIL = "system"


@dataclass
class UploadedFile:
    filename: str
    fileobj: BinaryIO
    content_type: Optional[str] = None
    size: Optional[int] = None


@dataclass
class TransitionResult:
    """Outcome of a workflow action.

    ``applied`` is False only for an automatic transition that had already
    happened; nothing was written in that case.
    """
    campaign: Campaign
    applied: bool
    activity: Optional[CampaignActivity] = None
    assets: List[CampaignAsset] = field(default_factory=list)


class WorkflowEngine:
    def __init__(
        self,
        repo: CampaignRepository,
        hub: Optional[RealtimeHub] = None,
        email_sender=None,
        storage=None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repo = repo
        self.hub = hub
        self.email_sender = email_sender
        self.storage = storage
        self.settings = settings or get_settings()
        self.clock = clock

    # ============================================================
    # LOOKUPS
    # ============================================================

    def get_campaign_for(self, user: AuthUser, campaign_id: int) -> Campaign:
        """Load a campaign the user is entitled to see."""
        campaign = self.repo.get_campaign(user.tenant_id, campaign_id)
        if campaign is None:
            raise NotFound("Campaign not found")
        if not can_access_campaign(self.repo, user, campaign):
            raise Forbidden("Not authorized for this campaign")
        return campaign

    def _require_campaign(self, tenant_id: int, campaign_id: int) -> Campaign:
        campaign = self.repo.get_campaign(tenant_id, campaign_id)
        if campaign is None:
            raise NotFound("Campaign not found")
        return campaign

    def is_overdue(self, campaign: Campaign) -> bool:
        return self.clock() > as_utc(campaign.asset_deadline) and campaign.workflow_status not in (
            CampaignStatus.APPROVED,
            CampaignStatus.LIVE,
        )

    # ============================================================
    # CAMPAIGN CREATION
    # ============================================================

    def create_campaign(
        self,
        user: AuthUser,
        customer_name: str,
        customer_email: str,
        campaign_type: str,
        agency_id: int,
        asset_deadline: datetime,
        go_live_date: datetime,
    ) -> Campaign:
        if user.portal_type != PortalType.CS:
            raise Forbidden("Only CS users can create campaigns")
        cs_user = self.repo.get_cs_user_by_email(user.tenant_id, user.email)
        if not cs_user or not cs_user.is_active:
            raise Forbidden("CS user not authorized")
        agency = self.repo.get_agency(user.tenant_id, agency_id)
        if not agency or not agency.is_active:
            raise ValidationFailed("Invalid agency selection", {"field": "agency_id"})
        if as_utc(asset_deadline) > as_utc(go_live_date):
            raise ValidationFailed(
                "Asset deadline must be on or before go-live date",
                {"field": "asset_deadline"},
            )

        campaign = self.repo.create_campaign(
            tenant_id=user.tenant_id,
            customer_name=customer_name.strip(),
            customer_email=customer_email,
            campaign_type=campaign_type.strip(),
            agency_id=agency.id,
            cs_user_id=cs_user.id,
            asset_deadline=as_utc(asset_deadline),
            go_live_date=as_utc(go_live_date),
        )
        self.repo.log_activity(
            campaign.id,
            ActorType.CS.value,
            user.email,
            "campaign_created",
            {"campaign_type": campaign.campaign_type},
        )
        self.repo.commit()
        self.repo.refresh(campaign)

        workflow_logger.info(
            "Campaign created",
            campaign_id=campaign.id,
            tenant_id=campaign.tenant_id,
            agency_id=agency.id,
        )
        self._publish(campaign, "campaign_created", {"status": campaign.status})
        self._deliver(lambda: mailer.campaign_created_email(
            campaign,
            self._login_url(campaign, campaign.customer_email, PortalType.CUSTOMER),
            self.settings.magic_link_expiry_minutes,
        ), campaign)
        return campaign

    # ============================================================
    # TRANSITIONS
    # ============================================================

    def upload_assets(self, user: AuthUser, campaign_id: int, files: List[UploadedFile]) -> TransitionResult:
        """Customer uploads brand assets: ``awaiting_assets -> assets_uploaded``."""
        result = self._apply_with_files(UPLOAD_ASSETS, user, campaign_id, files, AssetType.ASSET)
        campaign = result.campaign

        agency = self.repo.get_agency(campaign.tenant_id, campaign.agency_id)
        if agency is not None:
            self._deliver(lambda: mailer.assets_uploaded_email(
                campaign, agency, self._login_url(campaign, agency.email, PortalType.AGENCY),
            ), campaign)

        if self.settings.workflow_auto_advance:
            self.start_draft(None, campaign.tenant_id, campaign.id)
            self.repo.refresh(campaign)
        return result

    def start_draft(self, user: Optional[AuthUser], tenant_id: int, campaign_id: int) -> TransitionResult:
        """Agency (or the system) begins work. Idempotent."""
        return self._apply(START_DRAFT, user, tenant_id, campaign_id)

    def submit_draft(self, user: AuthUser, campaign_id: int, files: List[UploadedFile]) -> TransitionResult:
        """Agency uploads drafts: ``draft_in_progress -> draft_submitted``."""
        result = self._apply_with_files(SUBMIT_DRAFT, user, campaign_id, files, AssetType.DRAFT)
        campaign = result.campaign

        self._deliver(lambda: mailer.draft_submitted_email(
            campaign, self._login_url(campaign, campaign.customer_email, PortalType.CUSTOMER),
        ), campaign)

        if self.settings.workflow_auto_advance:
            self.start_review(None, campaign.tenant_id, campaign.id)
            self.repo.refresh(campaign)
        return result

    def start_review(self, user: Optional[AuthUser], tenant_id: int, campaign_id: int) -> TransitionResult:
        """Customer (or the system) opens the draft for review. Idempotent."""
        return self._apply(START_REVIEW, user, tenant_id, campaign_id)

    def approve(self, user: AuthUser, campaign_id: int) -> TransitionResult:
        result = self._apply(APPROVE, user, user.tenant_id, campaign_id, values={"customer_feedback": None})
        campaign = result.campaign

        agency = self.repo.get_agency(campaign.tenant_id, campaign.agency_id)
        cs_user = self.repo.get_cs_user(campaign.tenant_id, campaign.cs_user_id)
        if cs_user is not None and cs_user.is_active:
            self._deliver(lambda: mailer.campaign_approved_email(
                campaign, cs_user.email, cs_user.display_name,
            ), campaign)
        if agency is not None and agency.is_active:
            self._deliver(lambda: mailer.campaign_approved_email(
                campaign, agency.email, agency.contact_name or agency.name,
            ), campaign)
        return result

    def request_changes(self, user: AuthUser, campaign_id: int, feedback: str) -> TransitionResult:
        feedback = (feedback or "").strip()
        if not feedback:
            raise ValidationFailed("Feedback is required", {"field": "feedback"})

        result = self._apply(
            REQUEST_CHANGES,
            user,
            user.tenant_id,
            campaign_id,
            values={"customer_feedback": feedback},
            details={"feedback": feedback},
            payload={"feedback": feedback},
        )
        campaign = result.campaign

        agency = self.repo.get_agency(campaign.tenant_id, campaign.agency_id)
        if agency is not None:
            self._deliver(lambda: mailer.revision_requested_email(
                campaign, agency, feedback, self._login_url(campaign, agency.email, PortalType.AGENCY),
            ), campaign)

        if self.settings.workflow_auto_advance:
            self.start_draft(None, campaign.tenant_id, campaign.id)
            self.repo.refresh(campaign)
        return result

    def mark_live(self, user: AuthUser, campaign_id: int) -> TransitionResult:
        """CS marks an approved campaign live once its go-live date is reached."""
        campaign = self._require_campaign(user.tenant_id, campaign_id)

        def go_live_guard(c: Campaign):
            if self.clock() < as_utc(c.go_live_date):
                raise PrematureGoLive(details={"go_live_date": as_utc(c.go_live_date).isoformat()})

        return self._apply(MARK_LIVE, user, user.tenant_id, campaign.id, guard=go_live_guard)

    # ============================================================
    # CORE
    # ============================================================

    def _actor(self, transition: Transition, user: Optional[AuthUser], campaign: Campaign):
        """Resolve and authorize the actor for ``transition`` on ``campaign``."""
        if user is None:
            actor, email = ActorType.SYSTEM, SYSTEM_EMAIL
        else:
            if user.tenant_id != campaign.tenant_id:
                raise Forbidden("Invalid tenant access")
            actor, email = ActorType(user.portal_type.value), user.email

        if not transition.allows(actor):
            raise InvalidTransition(
                f"{actor.value} cannot perform {transition.action}",
                {"action": transition.action, "actor": actor.value},
            )
        if user is not None and not can_access_campaign(self.repo, user, campaign):
            raise Forbidden("Not authorized for this campaign")
        return actor, email

    def _check_source(self, transition: Transition, campaign: Campaign) -> bool:
        """True if the edge can fire, False if an auto edge already fired."""
        status = campaign.workflow_status
        if transition.accepts(status):
            return True
        if transition.auto and status == transition.target:
            return False
        raise InvalidTransition(
            f"Cannot {transition.action.replace('_', ' ')} while campaign is {status.value}",
            {"action": transition.action, "status": status.value},
        )

    def _apply(
        self,
        transition: Transition,
        user: Optional[AuthUser],
        tenant_id: int,
        campaign_id: int,
        values: Optional[dict] = None,
        details: Optional[dict] = None,
        payload: Optional[dict] = None,
        guard: Optional[Callable[[Campaign], None]] = None,
        before_commit: Optional[Callable[[Campaign], None]] = None,
    ) -> TransitionResult:
        campaign = self._require_campaign(tenant_id, campaign_id)
        actor, actor_email = self._actor(transition, user, campaign)
        if not self._check_source(transition, campaign):
            return TransitionResult(campaign=campaign, applied=False)
        if guard is not None:
            guard(campaign)

        if before_commit is not None:
            before_commit(campaign)

        moved = self.repo.transition_status(
            campaign.tenant_id,
            campaign.id,
            transition.sources,
            transition.target,
            **(values or {}),
        )
        if not moved:
            # Lost the race against another request; re-read the winner's status
            self.repo.rollback()
            self.repo.refresh(campaign)
            if transition.auto and campaign.workflow_status == transition.target:
                return TransitionResult(campaign=campaign, applied=False)
            raise InvalidTransition(
                "Campaign status changed concurrently",
                {"action": transition.action, "status": campaign.status},
            )

        activity = self.repo.log_activity(campaign.id, actor.value, actor_email, transition.activity, details)
        self.repo.commit()
        self.repo.refresh(campaign)

        workflow_logger.info(
            f"Campaign {transition.action}",
            campaign_id=campaign.id,
            tenant_id=campaign.tenant_id,
            actor=actor.value,
            status=campaign.status,
        )
        event_payload = {"status": campaign.status}
        event_payload.update(payload or {})
        self._publish(campaign, transition.event, event_payload)
        return TransitionResult(campaign=campaign, applied=True, activity=activity)

    def _apply_with_files(
        self,
        transition: Transition,
        user: AuthUser,
        campaign_id: int,
        files: List[UploadedFile],
        asset_type: AssetType,
    ) -> TransitionResult:
        if not files:
            raise ValidationFailed("No files uploaded", {"field": "files"})
        if self.storage is None:
            raise ValidationFailed("File storage is not configured")

        campaign = self._require_campaign(user.tenant_id, campaign_id)
        self._actor(transition, user, campaign)
        self._check_source(transition, campaign)

        stored_keys: List[str] = []
        assets: List[CampaignAsset] = []

        def store_files(c: Campaign):
            for upload in files:
                key = build_object_key(
                    c.tenant_id, c.id, asset_type.value, upload.filename, self.settings.storage_prefix
                )
                self.storage.upload(key, upload.fileobj, upload.content_type)
                stored_keys.append(key)
                assets.append(self.repo.add_asset(
                    campaign_id=c.id,
                    asset_type=asset_type.value,
                    uploaded_by=user.portal_type.value,
                    filename=upload.filename,
                    storage_key=key,
                    file_size=upload.size,
                    mime_type=upload.content_type,
                ))

        try:
            result = self._apply(
                transition,
                user,
                user.tenant_id,
                campaign_id,
                details={"file_count": len(files)},
                payload={"file_count": len(files)},
                before_commit=store_files,
            )
        except Exception:
            self.repo.rollback()
            for key in stored_keys:
                self.storage.delete(key)
            raise

        for asset in assets:
            self.repo.refresh(asset)
        result.assets = assets
        return result

    # ============================================================
    # SIDE EFFECTS
    # ============================================================

    def _publish(self, campaign: Campaign, event_type: str, payload: dict):
        if self.hub is None:
            return
        self.hub.publish(CampaignEvent(
            tenant_id=campaign.tenant_id,
            campaign_id=campaign.id,
            event_type=event_type,
            payload=payload,
        ))

    def _login_url(self, campaign: Campaign, email: str, portal_type: PortalType) -> str:
        token = issue_magic_link(self.repo.db, campaign.tenant_id, email, portal_type, campaign.id)
        return build_magic_link_url(self.settings.base_url, token, portal_type, campaign.id)

    def _deliver(self, build_message: Callable[[], "mailer.EmailMessage"], campaign: Campaign):
        """Render and send a workflow email; failures are logged, not raised."""
        if self.email_sender is None:
            return
        try:
            self.email_sender.send_message(build_message())
        except PortalError as e:
            workflow_logger.warning(
                "Workflow email failed",
                campaign_id=campaign.id,
                error_code=e.error_code,
                error_message=e.message,
            )
