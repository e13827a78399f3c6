"""
Outbound email: templates for workflow and reminder messages plus the
sender used to deliver them.

The ``log`` backend only records messages (development and tests); the
``http`` backend posts to a transactional email API with a bounded timeout.
"""
from dataclasses import dataclass
from datetime import datetime
from html import escape
from typing import Optional

import requests

from .config import Settings, get_settings
from .errors import DeliveryFailure
from .logging_config import email_logger


@dataclass
class EmailMessage:
    to: str
    subject: str
    html: str


class EmailSender:
    """Deliver rendered emails through the configured backend."""

    def __init__(self, settings: Optional[Settings] = None, session: Optional[requests.Session] = None):
        self.settings = settings or get_settings()
        self.session = session or requests.Session()

    def send(self, to: str, subject: str, html: str) -> None:
        backend = self.settings.email_backend
        if backend == "log":
            email_logger.info("Email (log backend)", to=to, subject=subject)
            return
        if backend != "http":
            raise DeliveryFailure(f"Unknown email backend: {backend}")
        if not self.settings.email_api_key:
            raise DeliveryFailure("Email API key not configured")

        try:
            response = self.session.post(
                self.settings.email_api_url,
                json={
                    "from": self.settings.from_email,
                    "to": [to],
                    "subject": subject,
                    "html": html,
                },
                headers={"Authorization": f"Bearer {self.settings.email_api_key}"},
                timeout=self.settings.email_timeout_seconds,
            )
        except requests.Timeout as e:
            raise DeliveryFailure(f"Email API timed out after {self.settings.email_timeout_seconds}s") from e
        except requests.RequestException as e:
            raise DeliveryFailure(f"Email API request failed: {e}") from e

        if response.status_code >= 400:
            raise DeliveryFailure(f"Email API error: {response.status_code} - {response.text[:200]}")

        email_logger.info("Email sent", to=to, subject=subject, status_code=response.status_code)

    def send_message(self, message: EmailMessage) -> None:
        self.send(message.to, message.subject, message.html)


# ============================================================
# TEMPLATES
# ============================================================

PORTAL_LABELS = {
    "cs": "CS Dashboard",
    "customer": "Customer Portal",
    "agency": "Agency Portal",
}


def _format_date(value: datetime) -> str:
    return value.strftime("%A, %d %B %Y")


def _layout(title: str, body: str) -> str:
    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        f'<h1 style="color: #0066cc;">{escape(title)}</h1>'
        f"{body}"
        "</div>"
    )


def _button(url: str, label: str) -> str:
    return (
        f'<a href="{escape(url, quote=True)}" style="display: inline-block; background: #0066cc; '
        'color: white; padding: 12px 24px; text-decoration: none; border-radius: 6px; margin: 16px 0;">'
        f"{escape(label)} -&gt;</a>"
    )


def _expiry_note(minutes: int) -> str:
    return (
        '<p style="color: #666; font-size: 12px;">'
        f"This link will expire in {minutes} minutes. If expired, request a new login link.</p>"
    )


def magic_link_email(to: str, portal_type: str, login_url: str, expiry_minutes: int) -> EmailMessage:
    label = PORTAL_LABELS.get(portal_type, "Portal")
    body = (
        "<p>Hello,</p>"
        f"<p>Use the secure link below to access your {escape(label)}.</p>"
        f"{_button(login_url, f'Open {label}')}"
        f"{_expiry_note(expiry_minutes)}"
    )
    return EmailMessage(to, f"Your {label} login link", _layout(f"{label} Access", body))


def campaign_created_email(campaign, login_url: str, expiry_minutes: int) -> EmailMessage:
    body = (
        f"<p>Hello {escape(campaign.customer_name)},</p>"
        "<p>A new campaign has been created for you. Please upload your brand assets by:</p>"
        f'<p style="font-size: 18px; font-weight: bold;">{_format_date(campaign.asset_deadline)}</p>'
        f"{_button(login_url, 'Upload Assets')}"
        f"{_expiry_note(expiry_minutes)}"
    )
    return EmailMessage(
        campaign.customer_email,
        "New Campaign Created - Please Upload Your Assets",
        _layout(f"New Campaign: {campaign.campaign_type}", body),
    )


def assets_uploaded_email(campaign, agency, login_url: str) -> EmailMessage:
    body = (
        f"<p>Hello {escape(agency.contact_name or agency.name)},</p>"
        f"<p>{escape(campaign.customer_name)} has uploaded the assets for their "
        f"{escape(campaign.campaign_type)} campaign. The campaign goes live on "
        f"<strong>{_format_date(campaign.go_live_date)}</strong>.</p>"
        f"{_button(login_url, 'Start Draft')}"
    )
    return EmailMessage(
        agency.email,
        f"Assets Ready - Draft Required for {campaign.customer_name}",
        _layout("Assets Ready for Review", body),
    )


def draft_submitted_email(campaign, login_url: str) -> EmailMessage:
    body = (
        f"<p>Hello {escape(campaign.customer_name)},</p>"
        "<p>A draft of your campaign is ready for your review.</p>"
        f"{_button(login_url, 'Review Draft')}"
    )
    return EmailMessage(campaign.customer_email, "Your Campaign Draft Is Ready", _layout("Draft Ready", body))


def revision_requested_email(campaign, agency, feedback: str, login_url: str) -> EmailMessage:
    body = (
        f"<p>Hello {escape(agency.contact_name or agency.name)},</p>"
        f"<p>{escape(campaign.customer_name)} requested changes to the draft:</p>"
        f'<blockquote style="border-left: 4px solid #0066cc; padding-left: 12px;">{escape(feedback)}</blockquote>'
        f"{_button(login_url, 'Open Campaign')}"
    )
    return EmailMessage(
        agency.email,
        f"Revision Requested - {campaign.customer_name}",
        _layout("Revision Requested", body),
    )


def campaign_approved_email(campaign, to: str, recipient_name: Optional[str] = None) -> EmailMessage:
    body = (
        f"<p>Hello {escape(recipient_name or 'there')},</p>"
        f"<p>{escape(campaign.customer_name)} approved the {escape(campaign.campaign_type)} campaign. "
        f"It is scheduled to go live on <strong>{_format_date(campaign.go_live_date)}</strong>.</p>"
    )
    return EmailMessage(to, f"Campaign Approved - {campaign.customer_name}", _layout("Campaign Approved", body))


def deadline_reminder_email(campaign, to: str, recipient_role: str, days_left: int, kind: str) -> EmailMessage:
    if kind == "asset":
        what = "upload your brand assets"
        deadline = campaign.asset_deadline
    else:
        what = "submit the campaign draft"
        deadline = campaign.go_live_date
    day_word = "day" if days_left == 1 else "days"
    body = (
        "<p>Hello,</p>"
        f"<p>This is a reminder to {what} for the {escape(campaign.campaign_type)} campaign of "
        f"{escape(campaign.customer_name)}. {days_left} {day_word} remaining "
        f"(deadline: <strong>{_format_date(deadline)}</strong>).</p>"
        f"<p>Open the {escape(PORTAL_LABELS.get(recipient_role, 'portal'))} to continue.</p>"
    )
    return EmailMessage(
        to,
        f"Reminder: {days_left} {day_word} left - {campaign.customer_name}",
        _layout("Deadline Reminder", body),
    )


ESCALATION_REASONS = {
    "asset_deadline_overdue": "The customer has not uploaded assets",
    "draft_overdue": "The agency has not delivered an approved draft",
}


def escalation_email(campaign, to: str, reason: str, days_overdue: int) -> EmailMessage:
    description = ESCALATION_REASONS.get(reason, reason)
    body = (
        f"<p>{escape(description)} for the campaign of {escape(campaign.customer_name)} "
        f"(#{campaign.id}). The deadline passed {days_overdue} day(s) ago.</p>"
        "<p>Please follow up.</p>"
    )
    return EmailMessage(
        to,
        f"Escalation: {campaign.customer_name} is {days_overdue} day(s) overdue",
        _layout("Deadline Escalation", body),
    )
