"""
Campaign repository: the persistence contract the workflow engine, the auth
layer and the reminder scheduler share.

Methods that only add or change rows flush but leave committing to the
caller, so a status change and its activity entry land in one transaction.
The notification ledger is the exception: a claim is committed before the
send it guards.
"""
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import and_, func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .models import (
    Agency,
    Campaign,
    CampaignActivity,
    CampaignAsset,
    CampaignNotification,
    Tenant,
    User,
)
from .models.user import CS_ROLES
from .utils import canonical_email, emails_match, normalize_email, utcnow
from .workflow.states import CampaignStatus


def _like_escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def email_candidates(column, email: str):
    """SQL filter narrowing ``column`` to addresses that may match ``email``.

    Covers the canonical address and its ``+tag`` variants. Rows it lets
    through are still checked with ``emails_match``.
    """
    canonical = canonical_email(email)
    stored = func.lower(func.trim(column))
    local, sep, domain = canonical.partition("@")
    if not sep:
        return stored == canonical
    return or_(
        stored == canonical,
        stored.like(f"{_like_escape(local)}+%@{_like_escape(domain)}", escape="\\"),
    )


class CampaignRepository:
    def __init__(self, db: Session):
        self.db = db

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()

    # ============================================================
    # TENANTS & PRINCIPALS
    # ============================================================

    def get_tenant_by_domain(self, domain: str) -> Optional[Tenant]:
        return self.db.query(Tenant).filter(Tenant.domain == domain.lower()).first()

    def get_cs_user(self, tenant_id: int, user_id: int) -> Optional[User]:
        return self.db.query(User).filter(
            User.tenant_id == tenant_id,
            User.id == user_id,
            User.role.in_(CS_ROLES),
        ).first()

    def get_cs_user_by_email(self, tenant_id: int, email: str) -> Optional[User]:
        users = self.db.query(User).filter(
            User.tenant_id == tenant_id,
            User.role.in_(CS_ROLES),
            email_candidates(User.email, email),
        ).all()
        return next((u for u in users if emails_match(u.email, email)), None)

    def list_agencies(self, tenant_id: int) -> List[Agency]:
        return self.db.query(Agency).filter(Agency.tenant_id == tenant_id).order_by(Agency.name).all()

    def get_agency(self, tenant_id: int, agency_id: int) -> Optional[Agency]:
        return self.db.query(Agency).filter(
            Agency.tenant_id == tenant_id,
            Agency.id == agency_id,
        ).first()

    def get_agency_by_email(self, tenant_id: int, email: str) -> Optional[Agency]:
        agencies = self.db.query(Agency).filter(
            Agency.tenant_id == tenant_id,
            email_candidates(Agency.email, email),
        ).all()
        return next((a for a in agencies if emails_match(a.email, email)), None)

    def create_agency(self, tenant_id: int, name: str, email: str, contact_name: Optional[str] = None) -> Agency:
        agency = Agency(
            tenant_id=tenant_id,
            name=name,
            email=normalize_email(email),
            contact_name=contact_name,
            is_active=True,
        )
        self.db.add(agency)
        self.db.flush()
        return agency

    # ============================================================
    # CAMPAIGNS
    # ============================================================

    def list_campaigns(
        self,
        tenant_id: int,
        status: Optional[CampaignStatus] = None,
        agency_id: Optional[int] = None,
        cs_user_id: Optional[int] = None,
    ) -> List[Campaign]:
        query = self.db.query(Campaign).filter(Campaign.tenant_id == tenant_id)
        if status:
            query = query.filter(Campaign.status == CampaignStatus.parse(status).value)
        if agency_id:
            query = query.filter(Campaign.agency_id == agency_id)
        if cs_user_id:
            query = query.filter(Campaign.cs_user_id == cs_user_id)
        return query.order_by(Campaign.created_at.desc(), Campaign.id.desc()).all()

    def get_campaign(self, tenant_id: int, campaign_id: int) -> Optional[Campaign]:
        return self.db.query(Campaign).filter(
            Campaign.tenant_id == tenant_id,
            Campaign.id == campaign_id,
        ).first()

    def campaigns_for_customer(self, tenant_id: int, email: str) -> List[Campaign]:
        campaigns = self.db.query(Campaign).filter(
            Campaign.tenant_id == tenant_id,
            email_candidates(Campaign.customer_email, email),
        ).order_by(Campaign.created_at.desc(), Campaign.id.desc()).all()
        return [c for c in campaigns if emails_match(c.customer_email, email)]

    def campaigns_for_agency(self, tenant_id: int, agency_id: int) -> List[Campaign]:
        return self.list_campaigns(tenant_id, agency_id=agency_id)

    def campaigns_in_statuses(self, statuses: Iterable[CampaignStatus]) -> List[Campaign]:
        """Campaigns of every tenant currently in one of ``statuses``."""
        values = [CampaignStatus.parse(s).value for s in statuses]
        return self.db.query(Campaign).filter(Campaign.status.in_(values)).order_by(Campaign.id).all()

    def create_campaign(
        self,
        tenant_id: int,
        customer_name: str,
        customer_email: str,
        campaign_type: str,
        agency_id: int,
        cs_user_id: int,
        asset_deadline: datetime,
        go_live_date: datetime,
    ) -> Campaign:
        campaign = Campaign(
            tenant_id=tenant_id,
            customer_name=customer_name,
            customer_email=normalize_email(customer_email),
            campaign_type=campaign_type,
            agency_id=agency_id,
            cs_user_id=cs_user_id,
            status=CampaignStatus.AWAITING_ASSETS.value,
            asset_deadline=asset_deadline,
            go_live_date=go_live_date,
        )
        self.db.add(campaign)
        self.db.flush()
        return campaign

    def transition_status(
        self,
        tenant_id: int,
        campaign_id: int,
        sources: Iterable[CampaignStatus],
        target: CampaignStatus,
        **values,
    ) -> bool:
        """Move a campaign to ``target`` only if it is still in one of ``sources``.

        A single conditional UPDATE, so two concurrent callers that both read
        the old status cannot both win. Returns False when no row matched.
        """
        result = self.db.execute(
            update(Campaign)
            .where(
                Campaign.id == campaign_id,
                Campaign.tenant_id == tenant_id,
                Campaign.status.in_([s.value for s in sources]),
            )
            .values(status=target.value, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def refresh(self, instance):
        self.db.refresh(instance)
        return instance

    # ============================================================
    # ASSETS
    # ============================================================

    def add_asset(
        self,
        campaign_id: int,
        asset_type: str,
        uploaded_by: str,
        filename: str,
        storage_key: str,
        file_size: Optional[int] = None,
        mime_type: Optional[str] = None,
    ) -> CampaignAsset:
        asset = CampaignAsset(
            campaign_id=campaign_id,
            asset_type=asset_type,
            uploaded_by=uploaded_by,
            filename=filename,
            storage_key=storage_key,
            file_size=file_size,
            mime_type=mime_type,
            uploaded_at=utcnow(),
        )
        self.db.add(asset)
        self.db.flush()
        return asset

    def list_assets(self, campaign_id: int, asset_type: Optional[str] = None) -> List[CampaignAsset]:
        query = self.db.query(CampaignAsset).filter(CampaignAsset.campaign_id == campaign_id)
        if asset_type:
            query = query.filter(CampaignAsset.asset_type == asset_type)
        return query.order_by(CampaignAsset.uploaded_at.desc(), CampaignAsset.id.desc()).all()

    def get_asset(self, campaign_id: int, asset_id: int) -> Optional[CampaignAsset]:
        return self.db.query(CampaignAsset).filter(
            CampaignAsset.campaign_id == campaign_id,
            CampaignAsset.id == asset_id,
        ).first()

    def latest_draft(self, campaign_id: int) -> Optional[CampaignAsset]:
        drafts = self.list_assets(campaign_id, "draft")
        return drafts[0] if drafts else None

    # ============================================================
    # ACTIVITY LOG
    # ============================================================

    def log_activity(
        self,
        campaign_id: int,
        actor_type: str,
        actor_email: str,
        action: str,
        details: Optional[dict] = None,
    ) -> CampaignActivity:
        activity = CampaignActivity(
            campaign_id=campaign_id,
            actor_type=actor_type,
            actor_email=actor_email,
            action=action,
            details=details or {},
            created_at=utcnow(),
        )
        self.db.add(activity)
        self.db.flush()
        return activity

    def list_activities(self, campaign_id: int) -> List[CampaignActivity]:
        return self.db.query(CampaignActivity).filter(
            CampaignActivity.campaign_id == campaign_id
        ).order_by(CampaignActivity.created_at.desc(), CampaignActivity.id.desc()).all()

    # ============================================================
    # NOTIFICATION LEDGER
    # ============================================================

    def get_notification(self, campaign_id: int, notification_type: str) -> Optional[CampaignNotification]:
        return self.db.query(CampaignNotification).filter(
            CampaignNotification.campaign_id == campaign_id,
            CampaignNotification.notification_type == notification_type,
        ).populate_existing().first()

    def claim_notification(
        self,
        campaign_id: int,
        notification_type: str,
        recipient_type: str,
        recipient_email: str,
        stale_before: datetime,
    ) -> Optional[CampaignNotification]:
        """Reserve the right to send ``notification_type`` for a campaign.

        Inserts a ``pending`` row, or takes over a ``failed`` row (or a
        ``pending`` row abandoned before ``stale_before``). Returns None when
        the notification was already sent or another sweep holds it. The
        claim is committed before returning.
        """
        now = utcnow()
        existing = self.get_notification(campaign_id, notification_type)
        if existing is None:
            notification = CampaignNotification(
                campaign_id=campaign_id,
                notification_type=notification_type,
                recipient_type=recipient_type,
                recipient_email=recipient_email,
                status="pending",
                attempts=1,
                created_at=now,
                updated_at=now,
            )
            self.db.add(notification)
            try:
                self.db.commit()
            except IntegrityError:
                # A concurrent sweep inserted the same (campaign, type) first
                self.db.rollback()
                return None
            return notification

        if existing.status == "sent":
            return None

        result = self.db.execute(
            update(CampaignNotification)
            .where(
                CampaignNotification.id == existing.id,
                or_(
                    CampaignNotification.status == "failed",
                    and_(
                        CampaignNotification.status == "pending",
                        CampaignNotification.updated_at < stale_before,
                    ),
                ),
            )
            .values(
                status="pending",
                attempts=CampaignNotification.attempts + 1,
                recipient_email=recipient_email,
                error_message=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            return None
        self.db.commit()
        return self.get_notification(campaign_id, notification_type)

    def mark_notification_sent(self, notification_id: int):
        now = utcnow()
        self.db.execute(
            update(CampaignNotification)
            .where(CampaignNotification.id == notification_id)
            .values(status="sent", sent_at=now, updated_at=now, error_message=None)
            .execution_options(synchronize_session=False)
        )

    def mark_notification_failed(self, notification_id: int, error: str):
        self.db.execute(
            update(CampaignNotification)
            .where(CampaignNotification.id == notification_id)
            .values(status="failed", error_message=error[:2000], updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
