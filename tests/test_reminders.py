"""
Tests for the deadline reminder and escalation sweep.
"""
import asyncio
import time
from datetime import timedelta

import pytest

from portal.models import CampaignActivity, CampaignNotification
from portal.repository import CampaignRepository
from portal.utils import utcnow
from portal.worker.reminders import ReminderScheduler
from portal.workflow.states import CampaignStatus

from conftest import AGENCY_EMAIL, CS_EMAIL, CUSTOMER_EMAIL, NOW, TestingSessionLocal


@pytest.fixture
def scheduler(db, email_sender, hub, settings, clock):
    return ReminderScheduler(TestingSessionLocal, email_sender, hub=hub, settings=settings, clock=clock)


def sweep(scheduler):
    return asyncio.run(scheduler.run_once())


def ledger(db, campaign):
    return {
        n.notification_type: n
        for n in db.query(CampaignNotification).filter(
            CampaignNotification.campaign_id == campaign.id
        ).populate_existing()
    }


class TestAssetReminders:
    def test_reminder_on_threshold_day(self, db, scheduler, make_campaign, email_sender, hub):
        campaign = make_campaign(asset_deadline=NOW + timedelta(days=3))

        report = sweep(scheduler)

        assert report.sent == 1
        assert [m.to for m in email_sender.sent] == [CUSTOMER_EMAIL]
        assert "3 days remaining" in email_sender.sent[0].html
        notification = ledger(db, campaign)["asset_reminder_3d"]
        assert notification.status == "sent"
        assert notification.sent_at is not None
        assert hub.types() == ["notification_sent"]

        action = db.query(CampaignActivity).filter(CampaignActivity.campaign_id == campaign.id).one()
        assert action.action == "notification_asset_reminder_3d"
        assert action.actor_type == "system"

    def test_partial_day_rounds_up(self, db, scheduler, make_campaign):
        campaign = make_campaign(asset_deadline=NOW + timedelta(days=6, hours=2))
        sweep(scheduler)
        assert "asset_reminder_7d" in ledger(db, campaign)

    def test_no_reminder_between_thresholds(self, db, scheduler, make_campaign, email_sender):
        make_campaign(asset_deadline=NOW + timedelta(days=5))
        report = sweep(scheduler)
        assert report.sent == 0
        assert email_sender.sent == []

    def test_never_sent_twice(self, db, scheduler, make_campaign, email_sender):
        make_campaign(asset_deadline=NOW + timedelta(days=1))

        sweep(scheduler)
        second = sweep(scheduler)

        assert len(email_sender.sent) == 1
        assert second.sent == 0
        assert second.skipped == 1

    def test_overdue_escalates_to_cs(self, db, scheduler, make_campaign, email_sender):
        campaign = make_campaign(asset_deadline=NOW - timedelta(days=2))

        sweep(scheduler)

        assert [m.to for m in email_sender.sent] == [CS_EMAIL]
        assert ledger(db, campaign)["asset_overdue_escalation"].recipient_type == "cs"

    def test_escalation_skipped_for_inactive_cs(self, db, scheduler, make_campaign, cs_user, email_sender):
        cs_user.is_active = False
        db.commit()
        campaign = make_campaign(asset_deadline=NOW - timedelta(days=2))

        report = sweep(scheduler)

        assert report.skipped == 1
        assert email_sender.sent == []
        assert ledger(db, campaign) == {}

    def test_settled_campaigns_ignored(self, db, scheduler, make_campaign, email_sender):
        make_campaign(status=CampaignStatus.APPROVED, asset_deadline=NOW - timedelta(days=5))
        make_campaign(status=CampaignStatus.LIVE, go_live_date=NOW - timedelta(days=5))
        sweep(scheduler)
        assert email_sender.sent == []


class TestDraftReminders:
    def test_agency_reminder_before_go_live(self, db, scheduler, make_campaign, email_sender):
        campaign = make_campaign(
            status=CampaignStatus.DRAFT_IN_PROGRESS,
            asset_deadline=NOW - timedelta(days=10),
            go_live_date=NOW + timedelta(days=7),
        )

        sweep(scheduler)

        assert [m.to for m in email_sender.sent] == [AGENCY_EMAIL]
        assert ledger(db, campaign)["draft_reminder_7d"].recipient_type == "agency"

    def test_inactive_agency_skipped(self, db, scheduler, make_campaign, agency, email_sender):
        agency.is_active = False
        db.commit()
        make_campaign(
            status=CampaignStatus.ASSETS_UPLOADED,
            asset_deadline=NOW - timedelta(days=10),
            go_live_date=NOW + timedelta(days=3),
        )

        report = sweep(scheduler)

        assert report.skipped == 1
        assert email_sender.sent == []

    def test_overdue_draft_escalates(self, db, scheduler, make_campaign, email_sender):
        campaign = make_campaign(
            status=CampaignStatus.REVISION_REQUESTED,
            asset_deadline=NOW - timedelta(days=20),
            go_live_date=NOW - timedelta(days=1),
        )

        sweep(scheduler)

        assert "draft_overdue_escalation" in ledger(db, campaign)
        assert email_sender.sent[0].to == CS_EMAIL


class TestFailures:
    def test_failed_send_is_retried(self, db, scheduler, make_campaign, email_sender, hub):
        campaign = make_campaign(asset_deadline=NOW + timedelta(days=7))
        email_sender.fail = True

        first = sweep(scheduler)

        assert first.failed == 1
        notification = ledger(db, campaign)["asset_reminder_7d"]
        assert notification.status == "failed"
        assert "500" in notification.error_message
        assert hub.events == []

        email_sender.fail = False
        second = sweep(scheduler)

        assert second.sent == 1
        notification = ledger(db, campaign)["asset_reminder_7d"]
        assert notification.status == "sent"
        assert notification.attempts == 2

    def test_timeout_counts_as_failure(self, db, make_campaign, hub, settings, clock):
        class SlowSender:
            def send_message(self, message):
                time.sleep(0.3)

        fast = settings.model_copy(update={"email_timeout_seconds": 0.05})
        scheduler = ReminderScheduler(TestingSessionLocal, SlowSender(), hub=hub, settings=fast, clock=clock)
        campaign = make_campaign(asset_deadline=NOW + timedelta(days=1))

        report = sweep(scheduler)

        assert report.failed == 1
        assert ledger(db, campaign)["asset_reminder_1d"].status == "failed"

    def test_one_bad_campaign_does_not_stop_sweep(self, db, scheduler, make_campaign, email_sender, monkeypatch):
        broken = make_campaign(asset_deadline=NOW + timedelta(days=3), customer_email="broken@example.com")
        healthy = make_campaign(asset_deadline=NOW + timedelta(days=3))

        original = ReminderScheduler._asset_notices

        def flaky(self, repo, campaign, now, report):
            if campaign.id == broken.id:
                raise RuntimeError("template exploded")
            return original(self, repo, campaign, now, report)

        monkeypatch.setattr(ReminderScheduler, "_asset_notices", flaky)

        report = sweep(scheduler)

        assert report.errors == 1
        assert report.sent == 1
        assert "asset_reminder_3d" in ledger(db, healthy)

    def test_stale_pending_claim_is_reclaimed(self, db, scheduler, make_campaign, email_sender):
        campaign = make_campaign(asset_deadline=NOW + timedelta(days=3))
        db.add(CampaignNotification(
            campaign_id=campaign.id,
            notification_type="asset_reminder_3d",
            recipient_type="customer",
            recipient_email=CUSTOMER_EMAIL,
            status="pending",
            attempts=1,
            updated_at=utcnow() - timedelta(days=1),
        ))
        db.commit()

        report = sweep(scheduler)

        assert report.sent == 1
        assert ledger(db, campaign)["asset_reminder_3d"].attempts == 2

    def test_fresh_pending_claim_is_left_alone(self, db, scheduler, make_campaign, email_sender):
        campaign = make_campaign(asset_deadline=NOW + timedelta(days=3))
        db.add(CampaignNotification(
            campaign_id=campaign.id,
            notification_type="asset_reminder_3d",
            recipient_type="customer",
            recipient_email=CUSTOMER_EMAIL,
            status="pending",
            attempts=1,
            updated_at=utcnow(),
        ))
        db.commit()

        report = sweep(scheduler)

        assert report.skipped == 1
        assert email_sender.sent == []


def test_overlapping_sweep_is_skipped(scheduler):
    async def overlapping():
        await scheduler._lock.acquire()
        try:
            return await scheduler.run_once()
        finally:
            scheduler._lock.release()

    assert asyncio.run(overlapping()) is None


def test_event_loop_keeps_running_during_sweep(scheduler, make_campaign, monkeypatch):
    make_campaign(asset_deadline=NOW + timedelta(days=3))
    original = CampaignRepository.campaigns_in_statuses

    def slow_query(self, statuses):
        time.sleep(0.3)
        return original(self, statuses)

    monkeypatch.setattr(CampaignRepository, "campaigns_in_statuses", slow_query)

    async def scenario():
        gaps = []
        done = asyncio.Event()

        async def heartbeat():
            last = time.monotonic()
            while not done.is_set():
                await asyncio.sleep(0.02)
                tick = time.monotonic()
                gaps.append(tick - last)
                last = tick

        beat = asyncio.create_task(heartbeat())
        report = await scheduler.run_once()
        done.set()
        await beat
        return report, gaps

    report, gaps = asyncio.run(scenario())

    assert report.sent == 1
    assert len(gaps) > 10
    assert max(gaps) < 0.2
