"""
Authentication routes: magic link request and verification, session lookup, logout.
"""
from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from ..auth import (
    AuthUser,
    build_magic_link_url,
    ensure_principal_active,
    get_auth_user,
    is_principal_active,
    issue_magic_link,
    issue_session,
    redeem_magic_link,
)
from ..config import get_settings
from ..database import get_db
from ..dependencies import get_email_sender, get_repository
from ..errors import DeliveryFailure
from ..limiter import limiter
from ..logging_config import auth_logger
from ..mailer import EmailSender, magic_link_email
from ..models.tenant import Tenant
from ..repository import CampaignRepository
from ..schemas.auth import MagicLinkRequest
from ..tenancy import get_tenant

settings = get_settings()

router = APIRouter(prefix="/api/auth", tags=["auth"])

MAGIC_LINK_SENT_MESSAGE = "If that email has access, a login link is on its way."


def _set_session_cookie(response: Response, token: str):
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=settings.session_expiry_days * 24 * 60 * 60,
        httponly=True,
        secure=settings.environment == "production",
        samesite="lax",
        path="/",
    )


@router.post("/request-magic-link")
@limiter.limit(settings.magic_link_rate_limit)
def request_magic_link(
    request: Request,
    payload: MagicLinkRequest,
    tenant: Tenant = Depends(get_tenant),
    repo: CampaignRepository = Depends(get_repository),
    email_sender: EmailSender = Depends(get_email_sender),
):
    """Email a login link. The response never reveals whether the email is known."""
    candidate = AuthUser(
        email=payload.email,
        tenant_id=tenant.id,
        portal_type=payload.portal_type,
        campaign_id=payload.campaign_id,
    )
    if not is_principal_active(repo, candidate):
        auth_logger.info(
            "Magic link requested for unknown principal",
            tenant_id=tenant.id,
            portal_type=payload.portal_type.value,
        )
        return {"ok": True, "message": MAGIC_LINK_SENT_MESSAGE}

    token = issue_magic_link(repo.db, tenant.id, payload.email, payload.portal_type, payload.campaign_id)
    login_url = build_magic_link_url(settings.base_url, token, payload.portal_type, payload.campaign_id)
    try:
        email_sender.send_message(
            magic_link_email(payload.email, payload.portal_type.value, login_url, settings.magic_link_expiry_minutes)
        )
    except DeliveryFailure as e:
        auth_logger.error("Magic link email failed", error=e, tenant_id=tenant.id)

    return {"ok": True, "message": MAGIC_LINK_SENT_MESSAGE}


@router.get("/verify/{token}")
def verify_magic_link(
    token: str,
    response: Response,
    tenant: Tenant = Depends(get_tenant),
    db: Session = Depends(get_db),
):
    """Redeem a magic link for a session (cookie plus bearer token)."""
    user = redeem_magic_link(db, token, tenant_id=tenant.id)
    ensure_principal_active(CampaignRepository(db), user)

    session_token = issue_session(user)
    _set_session_cookie(response, session_token)
    auth_logger.info(
        "Session started",
        tenant_id=user.tenant_id,
        portal_type=user.portal_type.value,
        campaign_id=user.campaign_id,
    )
    return {"user": user.to_dict(), "token": session_token, "token_type": "bearer"}


@router.get("/session")
def get_session(
    user: AuthUser = Depends(get_auth_user),
    repo: CampaignRepository = Depends(get_repository),
):
    """Current session identity."""
    ensure_principal_active(repo, user)
    return {"user": user.to_dict()}


@router.post("/logout")
def logout(response: Response):
    """Clear the session cookie. Bearer tokens simply expire."""
    response.delete_cookie(settings.session_cookie_name, path="/")
    return {"ok": True, "message": "Logged out"}
