"""
Deadline reminders and overdue escalations.

A periodic sweep over campaigns still waiting on assets or on a draft. Every
email is guarded by a row in the notification ledger that is claimed before
the send, so a reminder goes out at most once per (campaign, type) no matter
how many sweeps or processes run. Failed sends stay in the ledger as
``failed`` and are retried on the next sweep.
"""
import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..logging_config import scheduler_logger, timed
from .. import mailer
from ..models import Campaign
from ..realtime import CampaignEvent, RealtimeHub
from ..repository import CampaignRepository
from ..utils import as_utc, days_until, utcnow
from ..workflow.states import ASSET_PENDING_STATUSES, DRAFT_PENDING_STATUSES, ActorType

SYSTEM_EMAIL = "system"


@dataclass
class Notice:
    """One email the sweep wants to send."""
    notification_type: str
    recipient_type: str
    message: mailer.EmailMessage


@dataclass
class SweepReport:
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    errors: int = 0

    def to_dict(self) -> dict:
        return {"sent": self.sent, "failed": self.failed, "skipped": self.skipped, "errors": self.errors}


class ReminderScheduler:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        email_sender,
        hub: Optional[RealtimeHub] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.email_sender = email_sender
        self.hub = hub
        self.settings = settings or get_settings()
        self.clock = clock
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    # ============================================================
    # LIFECYCLE
    # ============================================================

    def start(self):
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run_forever())
            scheduler_logger.info(
                "Reminder scheduler started",
                interval_seconds=self.settings.reminder_interval_seconds,
            )

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        scheduler_logger.info("Reminder scheduler stopped")

    async def _run_forever(self):
        while True:
            try:
                await self.run_once()
            except Exception as e:
                scheduler_logger.error("Reminder sweep crashed", error=e)
            await asyncio.sleep(self.settings.reminder_interval_seconds)

    # ============================================================
    # SWEEP
    # ============================================================

    @timed(scheduler_logger)
    async def run_once(self) -> Optional[SweepReport]:
        """Run one sweep. Returns None if a previous sweep is still running.

        Database work runs in worker threads so the event loop keeps serving
        WebSocket clients while a sweep is in progress.
        """
        if self._lock.locked():
            scheduler_logger.warning("Previous reminder sweep still running, skipping tick")
            return None

        async with self._lock:
            report = SweepReport()
            db = self.session_factory()
            try:
                repo = CampaignRepository(db)
                now = self.clock()
                for statuses, build_notices in (
                    (ASSET_PENDING_STATUSES, self._asset_notices),
                    (DRAFT_PENDING_STATUSES, self._draft_notices),
                ):
                    pending = await asyncio.to_thread(self._load_campaigns, repo, statuses)
                    for campaign_id, campaign in pending:
                        await self._process_campaign(repo, campaign_id, campaign, build_notices, now, report)
            finally:
                await asyncio.to_thread(db.close)

            scheduler_logger.info("Reminder sweep complete", **report.to_dict())
            return report

    @staticmethod
    def _load_campaigns(repo: CampaignRepository, statuses) -> List[Tuple[int, Campaign]]:
        return [(c.id, c) for c in repo.campaigns_in_statuses(statuses)]

    async def _process_campaign(self, repo: CampaignRepository, campaign_id: int, campaign: Campaign, build_notices, now, report: SweepReport):
        def prepare():
            return campaign.tenant_id, build_notices(repo, campaign, now, report)

        try:
            tenant_id, notices = await asyncio.to_thread(prepare)
            for notice in notices:
                await self._send_notice(repo, campaign_id, tenant_id, notice, report)
        except Exception as e:
            await asyncio.to_thread(repo.rollback)
            report.errors += 1
            scheduler_logger.error("Reminder processing failed for campaign", error=e, campaign_id=campaign_id)

    def _asset_notices(self, repo: CampaignRepository, campaign: Campaign, now: datetime, report: SweepReport) -> List[Notice]:
        days = days_until(as_utc(campaign.asset_deadline), now)

        if days in self.settings.asset_reminder_days:
            return [Notice(
                notification_type=f"asset_reminder_{days}d",
                recipient_type=ActorType.CUSTOMER.value,
                message=mailer.deadline_reminder_email(
                    campaign, campaign.customer_email, ActorType.CUSTOMER.value, days, "asset"
                ),
            )]

        if days < 0 and -days >= self.settings.reminder_escalate_after_days:
            cs_user = repo.get_cs_user(campaign.tenant_id, campaign.cs_user_id)
            if cs_user is None or not cs_user.is_active:
                report.skipped += 1
                return []
            return [Notice(
                notification_type="asset_overdue_escalation",
                recipient_type=ActorType.CS.value,
                message=mailer.escalation_email(campaign, cs_user.email, "asset_deadline_overdue", -days),
            )]
        return []

    def _draft_notices(self, repo: CampaignRepository, campaign: Campaign, now: datetime, report: SweepReport) -> List[Notice]:
        days = days_until(as_utc(campaign.go_live_date), now)

        if days in self.settings.draft_reminder_days:
            agency = repo.get_agency(campaign.tenant_id, campaign.agency_id)
            if agency is None or not agency.is_active:
                report.skipped += 1
                return []
            return [Notice(
                notification_type=f"draft_reminder_{days}d",
                recipient_type=ActorType.AGENCY.value,
                message=mailer.deadline_reminder_email(
                    campaign, agency.email, ActorType.AGENCY.value, days, "draft"
                ),
            )]

        if days < 0 and -days >= self.settings.reminder_escalate_after_days:
            cs_user = repo.get_cs_user(campaign.tenant_id, campaign.cs_user_id)
            if cs_user is None or not cs_user.is_active:
                report.skipped += 1
                return []
            return [Notice(
                notification_type="draft_overdue_escalation",
                recipient_type=ActorType.CS.value,
                message=mailer.escalation_email(campaign, cs_user.email, "draft_overdue", -days),
            )]
        return []

    async def _send_notice(self, repo: CampaignRepository, campaign_id: int, tenant_id: int, notice: Notice, report: SweepReport):
        stale_before = utcnow() - timedelta(seconds=self.settings.reminder_pending_timeout_seconds)
        notification_id = await asyncio.to_thread(self._claim, repo, campaign_id, notice, stale_before)
        if notification_id is None:
            report.skipped += 1
            return

        try:
            await asyncio.wait_for(
                asyncio.to_thread(self.email_sender.send_message, notice.message),
                timeout=self.settings.email_timeout_seconds,
            )
        except asyncio.TimeoutError:
            await asyncio.to_thread(self._record_failure, repo, campaign_id, notification_id, notice, "Email send timed out", report)
            return
        except Exception as e:
            error = getattr(e, "message", None) or str(e)
            await asyncio.to_thread(self._record_failure, repo, campaign_id, notification_id, notice, error, report)
            return

        await asyncio.to_thread(self._record_sent, repo, campaign_id, notification_id, notice)
        report.sent += 1

        scheduler_logger.info(
            "Notification sent",
            campaign_id=campaign_id,
            notification_type=notice.notification_type,
        )
        if self.hub is not None:
            self.hub.publish(CampaignEvent(
                tenant_id=tenant_id,
                campaign_id=campaign_id,
                event_type="notification_sent",
                payload={
                    "notification_type": notice.notification_type,
                    "recipient_type": notice.recipient_type,
                },
            ))

    @staticmethod
    def _claim(repo: CampaignRepository, campaign_id: int, notice: Notice, stale_before: datetime) -> Optional[int]:
        claim = repo.claim_notification(
            campaign_id,
            notice.notification_type,
            notice.recipient_type,
            notice.message.to,
            stale_before,
        )
        return claim.id if claim is not None else None

    @staticmethod
    def _record_sent(repo: CampaignRepository, campaign_id: int, notification_id: int, notice: Notice):
        repo.mark_notification_sent(notification_id)
        repo.log_activity(
            campaign_id,
            ActorType.SYSTEM.value,
            SYSTEM_EMAIL,
            f"notification_{notice.notification_type}",
            {"recipient_type": notice.recipient_type, "recipient_email": notice.message.to},
        )
        repo.commit()

    def _record_failure(self, repo, campaign_id, notification_id, notice: Notice, error: str, report: SweepReport):
        repo.mark_notification_failed(notification_id, error)
        repo.commit()
        report.failed += 1
        scheduler_logger.warning(
            "Notification failed",
            campaign_id=campaign_id,
            notification_type=notice.notification_type,
            error_message=error,
        )
