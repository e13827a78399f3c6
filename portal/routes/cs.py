"""
CS dashboard routes: campaign and agency management, go-live.
"""
from typing import Optional

from fastapi import APIRouter, Depends

from ..auth import AuthUser, require_portal
from ..dependencies import get_workflow_engine
from ..errors import Forbidden, ValidationFailed
from ..logging_config import api_logger
from ..schemas.campaign import AgencyCreate, CampaignCreate, agency_to_dict, campaign_to_dict
from ..workflow.engine import WorkflowEngine
from ..workflow.states import CampaignStatus, PortalType
from .campaigns import campaign_detail, transition_response

router = APIRouter(prefix="/api/cs", tags=["cs"])

require_cs = require_portal(PortalType.CS)


@router.get("/campaigns")
def list_campaigns(
    status: Optional[str] = None,
    agency_id: Optional[int] = None,
    mine: bool = False,
    user: AuthUser = Depends(require_cs),
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    """All campaigns of the tenant, optionally filtered."""
    status_filter = CampaignStatus.parse(status) if status else None
    cs_user_id = None
    if mine:
        cs_user = engine.repo.get_cs_user_by_email(user.tenant_id, user.email)
        if cs_user is None:
            raise Forbidden("CS user not authorized")
        cs_user_id = cs_user.id

    campaigns = engine.repo.list_campaigns(user.tenant_id, status_filter, agency_id, cs_user_id)
    now = engine.clock()
    return {"campaigns": [campaign_to_dict(c, now) for c in campaigns]}


@router.post("/campaigns", status_code=201)
def create_campaign(
    payload: CampaignCreate,
    user: AuthUser = Depends(require_cs),
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    """Create a campaign and invite the customer."""
    campaign = engine.create_campaign(
        user,
        customer_name=payload.customer_name,
        customer_email=payload.customer_email,
        campaign_type=payload.campaign_type,
        agency_id=payload.agency_id,
        asset_deadline=payload.asset_deadline,
        go_live_date=payload.go_live_date,
    )
    return {"ok": True, "campaign": campaign_to_dict(campaign, engine.clock())}


@router.get("/campaigns/{campaign_id}")
def get_campaign(
    campaign_id: int,
    user: AuthUser = Depends(require_cs),
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    campaign = engine.get_campaign_for(user, campaign_id)
    return campaign_detail(engine, campaign)


@router.post("/campaigns/{campaign_id}/mark-live")
def mark_live(
    campaign_id: int,
    user: AuthUser = Depends(require_cs),
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    """Mark an approved campaign live once its go-live date has arrived."""
    result = engine.mark_live(user, campaign_id)
    return transition_response(engine, result)


# ============================================================
# AGENCIES
# ============================================================

@router.get("/agencies")
def list_agencies(
    user: AuthUser = Depends(require_cs),
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    return {"agencies": [agency_to_dict(a) for a in engine.repo.list_agencies(user.tenant_id)]}


@router.post("/agencies", status_code=201)
def create_agency(
    payload: AgencyCreate,
    user: AuthUser = Depends(require_cs),
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    repo = engine.repo
    if repo.get_agency_by_email(user.tenant_id, payload.email):
        raise ValidationFailed("An agency with this email already exists", {"field": "email"})

    agency = repo.create_agency(user.tenant_id, payload.name.strip(), payload.email, payload.contact_name)
    repo.commit()
    repo.refresh(agency)
    api_logger.info("Agency created", tenant_id=user.tenant_id, agency_id=agency.id)
    return {"ok": True, "agency": agency_to_dict(agency)}
