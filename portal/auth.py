"""
Authentication: single-use magic links and signed session tokens.

Magic links are stored only as SHA-256 hashes and redeemed with one
conditional UPDATE, so a token can be used at most once even when two
requests race. Sessions are stateless JWTs. Every failure surfaces to the
caller as the same 401; the specific reason is only logged.
"""
import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlencode

from fastapi import Depends, Request
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy import update
from sqlalchemy.orm import Session

from .config import get_settings
from .errors import Forbidden, InvalidOrExpiredToken, Unauthorized
from .logging_config import auth_logger
from .models.campaign import Campaign
from .models.magic_link import MagicLinkToken
from .models.tenant import Tenant
from .repository import CampaignRepository
from .tenancy import get_tenant
from .utils import as_utc, emails_match, normalize_email, utcnow
from .workflow.states import PortalType

settings = get_settings()

SESSION_TOKEN_TYPE = "session"


@dataclass(frozen=True)
class AuthUser:
    """Identity derived from a verified session token. Never persisted."""
    email: str
    tenant_id: int
    portal_type: PortalType
    campaign_id: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "email": self.email,
            "tenant_id": self.tenant_id,
            "portal_type": self.portal_type.value,
            "campaign_id": self.campaign_id,
        }


# ============================================================
# MAGIC LINKS
# ============================================================

def hash_token(token: str) -> str:
    """One-way hash used to store and look up magic link tokens."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def issue_magic_link(
    db: Session,
    tenant_id: int,
    email: str,
    portal_type: PortalType,
    campaign_id: Optional[int] = None,
    expires_minutes: Optional[int] = None,
    now: Optional[datetime] = None,
) -> str:
    """Create a magic link token and return the plaintext for one-time delivery."""
    now = now or utcnow()
    token = secrets.token_hex(32)
    minutes = expires_minutes if expires_minutes is not None else settings.magic_link_expiry_minutes

    db.add(MagicLinkToken(
        token_hash=hash_token(token),
        tenant_id=tenant_id,
        email=normalize_email(email),
        portal_type=PortalType(portal_type).value,
        campaign_id=campaign_id,
        expires_at=now + timedelta(minutes=minutes),
        created_at=now,
    ))
    db.commit()

    auth_logger.info(
        "Magic link issued",
        tenant_id=tenant_id,
        portal_type=PortalType(portal_type).value,
        campaign_id=campaign_id,
    )
    return token


def redeem_magic_link(
    db: Session,
    token: str,
    tenant_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> AuthUser:
    """Exchange a magic link token for the identity it was issued to.

    With ``tenant_id`` set, a token issued for another tenant is treated as
    unknown and left unused.

    Raises InvalidOrExpiredToken when the token is unknown, expired or
    already used.
    """
    now = now or utcnow()
    token_hash = hash_token(token or "")

    conditions = [
        MagicLinkToken.token_hash == token_hash,
        MagicLinkToken.used_at.is_(None),
        MagicLinkToken.expires_at > now,
    ]
    if tenant_id is not None:
        conditions.append(MagicLinkToken.tenant_id == tenant_id)

    result = db.execute(
        update(MagicLinkToken)
        .where(*conditions)
        .values(used_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        reason = _rejection_reason(db, token_hash, now, tenant_id)
        auth_logger.warning("Magic link rejected", reason=reason)
        raise InvalidOrExpiredToken(reason)
    db.commit()

    link = db.query(MagicLinkToken).filter(MagicLinkToken.token_hash == token_hash).populate_existing().one()
    return AuthUser(
        email=link.email,
        tenant_id=link.tenant_id,
        portal_type=PortalType(link.portal_type),
        campaign_id=link.campaign_id,
    )


def _rejection_reason(db: Session, token_hash: str, now: datetime, tenant_id: Optional[int] = None) -> str:
    link = db.query(MagicLinkToken).filter(MagicLinkToken.token_hash == token_hash).first()
    if link is None:
        return "unknown"
    if tenant_id is not None and link.tenant_id != tenant_id:
        return "wrong_tenant"
    if link.used_at is not None:
        return "used"
    if as_utc(link.expires_at) <= as_utc(now):
        return "expired"
    return "unknown"


def build_magic_link_url(
    base_url: str,
    token: str,
    portal_type: PortalType,
    campaign_id: Optional[int] = None,
) -> str:
    """Portal login URL that carries the magic link token."""
    params = {"token": token}
    if campaign_id:
        params["campaignId"] = str(campaign_id)
    return f"{base_url.rstrip('/')}/{PortalType(portal_type).value}/auth/verify?{urlencode(params)}"


# ============================================================
# SESSIONS
# ============================================================

def issue_session(user: AuthUser, expires_delta: Optional[timedelta] = None) -> str:
    """Sign a session token for ``user``."""
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(days=settings.session_expiry_days))
    claims = {
        "sub": user.email,
        "tenant_id": user.tenant_id,
        "portal_type": user.portal_type.value,
        "campaign_id": user.campaign_id,
        "type": SESSION_TOKEN_TYPE,
        "exp": expire,
    }
    return jwt.encode(claims, settings.secret_key, algorithm=settings.algorithm)


def verify_session(token: Optional[str]) -> AuthUser:
    """Verify a session token. Fails closed on any decode or claim problem."""
    if not token:
        raise InvalidOrExpiredToken("missing")
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except ExpiredSignatureError:
        raise InvalidOrExpiredToken("expired")
    except JWTError:
        raise InvalidOrExpiredToken("forged")

    try:
        if payload.get("type") != SESSION_TOKEN_TYPE:
            raise ValueError("wrong token type")
        email = payload["sub"]
        tenant_id = payload["tenant_id"]
        campaign_id = payload.get("campaign_id")
        if not isinstance(email, str) or not email:
            raise ValueError("bad subject")
        if not isinstance(tenant_id, int) or isinstance(tenant_id, bool):
            raise ValueError("bad tenant")
        if campaign_id is not None and not isinstance(campaign_id, int):
            raise ValueError("bad campaign scope")
        portal_type = PortalType(payload["portal_type"])
    except (KeyError, TypeError, ValueError):
        raise InvalidOrExpiredToken("malformed")

    return AuthUser(email=email, tenant_id=tenant_id, portal_type=portal_type, campaign_id=campaign_id)


# ============================================================
# ENTITLEMENT
# ============================================================

def can_access_campaign(repo: CampaignRepository, user: AuthUser, campaign: Optional[Campaign]) -> bool:
    """Whether ``user`` may see ``campaign``: any CS in the tenant, the
    campaign's customer, or its assigned agency."""
    if campaign is None or campaign.tenant_id != user.tenant_id:
        return False
    if user.portal_type == PortalType.CS:
        return True
    if user.portal_type == PortalType.CUSTOMER:
        return emails_match(campaign.customer_email, user.email)
    if user.portal_type == PortalType.AGENCY:
        agency = repo.get_agency_by_email(user.tenant_id, user.email)
        return agency is not None and agency.id == campaign.agency_id
    return False


def is_principal_active(repo: CampaignRepository, user: AuthUser) -> bool:
    """Whether the identity behind ``user`` still exists and may sign in."""
    if user.portal_type == PortalType.CS:
        cs_user = repo.get_cs_user_by_email(user.tenant_id, user.email)
        return cs_user is not None and cs_user.is_active
    if user.portal_type == PortalType.AGENCY:
        agency = repo.get_agency_by_email(user.tenant_id, user.email)
        return agency is not None and agency.is_active
    if user.campaign_id:
        campaign = repo.get_campaign(user.tenant_id, user.campaign_id)
        return campaign is not None and emails_match(campaign.customer_email, user.email)
    return len(repo.campaigns_for_customer(user.tenant_id, user.email)) > 0


def ensure_principal_active(repo: CampaignRepository, user: AuthUser):
    if not is_principal_active(repo, user):
        raise InvalidOrExpiredToken("inactive")


# ============================================================
# FASTAPI DEPENDENCIES
# ============================================================

def get_session_token(request) -> Optional[str]:
    """Session token from the bearer header, falling back to the session cookie."""
    auth_header = request.headers.get("authorization")
    if auth_header and auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip() or None
    return request.cookies.get(settings.session_cookie_name)


def get_auth_user(request: Request, tenant: Tenant = Depends(get_tenant)) -> AuthUser:
    """Authenticated user for the current tenant, raising 401/403 otherwise."""
    token = get_session_token(request)
    if not token:
        raise Unauthorized("Authorization required")
    try:
        user = verify_session(token)
    except InvalidOrExpiredToken as exc:
        auth_logger.warning("Session rejected", reason=exc.reason, path=request.url.path)
        raise
    if user.tenant_id != tenant.id:
        raise Forbidden("Invalid tenant access")
    return user


def require_portal(*portal_types: PortalType):
    """Dependency factory restricting a route to the given portal types."""
    allowed = {PortalType(p) for p in portal_types}

    def dependency(user: AuthUser = Depends(get_auth_user)) -> AuthUser:
        if user.portal_type not in allowed:
            raise Forbidden("Access denied for this portal type")
        return user

    return dependency
