"""
Agency portal routes: assigned campaigns, customer assets, draft delivery.
"""
from typing import List

from fastapi import APIRouter, Depends, File, UploadFile

from ..auth import AuthUser, require_portal
from ..dependencies import get_workflow_engine
from ..errors import Forbidden
from ..schemas.campaign import campaign_to_dict
from ..workflow.engine import WorkflowEngine
from ..workflow.states import AssetType, PortalType
from .campaigns import asset_with_url, campaign_detail, collect_uploads, transition_response

router = APIRouter(prefix="/api/agency", tags=["agency"])

require_agency = require_portal(PortalType.AGENCY)


@router.get("/campaigns")
def list_campaigns(
    user: AuthUser = Depends(require_agency),
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    """Campaigns assigned to the signed-in agency."""
    agency = engine.repo.get_agency_by_email(user.tenant_id, user.email)
    if agency is None or not agency.is_active:
        raise Forbidden("Agency not authorized")
    campaigns = engine.repo.campaigns_for_agency(user.tenant_id, agency.id)
    now = engine.clock()
    return {"campaigns": [campaign_to_dict(c, now) for c in campaigns]}


@router.get("/campaign/{campaign_id}")
def get_campaign(
    campaign_id: int,
    user: AuthUser = Depends(require_agency),
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    campaign = engine.get_campaign_for(user, campaign_id)
    return campaign_detail(engine, campaign, include_activity=False)


@router.get("/campaign/{campaign_id}/assets")
def list_assets(
    campaign_id: int,
    user: AuthUser = Depends(require_agency),
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    """Customer-supplied assets with signed download URLs."""
    campaign = engine.get_campaign_for(user, campaign_id)
    assets = engine.repo.list_assets(campaign.id, AssetType.ASSET.value)
    return {"assets": [asset_with_url(a, engine.storage) for a in assets]}


@router.post("/campaign/{campaign_id}/start-draft")
def start_draft(
    campaign_id: int,
    user: AuthUser = Depends(require_agency),
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    """Begin work on the draft. Safe to call repeatedly."""
    result = engine.start_draft(user, user.tenant_id, campaign_id)
    return transition_response(engine, result)


@router.post("/campaign/{campaign_id}/draft")
def submit_draft(
    campaign_id: int,
    files: List[UploadFile] = File(...),
    user: AuthUser = Depends(require_agency),
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    """Upload the draft for customer review."""
    result = engine.submit_draft(user, campaign_id, collect_uploads(files))
    return transition_response(engine, result)
