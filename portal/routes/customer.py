"""
Customer portal routes: asset upload and draft review.
"""
from typing import List

from fastapi import APIRouter, Depends, File, UploadFile

from ..auth import AuthUser, require_portal
from ..dependencies import get_workflow_engine
from ..schemas.campaign import RequestChanges, campaign_to_dict
from ..workflow.engine import WorkflowEngine
from ..workflow.states import PortalType
from .campaigns import campaign_detail, collect_uploads, transition_response

router = APIRouter(prefix="/api/customer", tags=["customer"])

require_customer = require_portal(PortalType.CUSTOMER)


@router.get("/campaigns")
def list_campaigns(
    user: AuthUser = Depends(require_customer),
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    """Campaigns addressed to the signed-in customer."""
    campaigns = engine.repo.campaigns_for_customer(user.tenant_id, user.email)
    now = engine.clock()
    return {"campaigns": [campaign_to_dict(c, now) for c in campaigns]}


@router.get("/campaign/{campaign_id}")
def get_campaign(
    campaign_id: int,
    user: AuthUser = Depends(require_customer),
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    campaign = engine.get_campaign_for(user, campaign_id)
    return campaign_detail(engine, campaign, include_activity=False)


@router.post("/campaign/{campaign_id}/assets")
def upload_assets(
    campaign_id: int,
    files: List[UploadFile] = File(...),
    user: AuthUser = Depends(require_customer),
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    """Upload brand assets for the campaign."""
    result = engine.upload_assets(user, campaign_id, collect_uploads(files))
    return transition_response(engine, result)


@router.post("/campaign/{campaign_id}/start-review")
def start_review(
    campaign_id: int,
    user: AuthUser = Depends(require_customer),
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    """Open the submitted draft for review. Safe to call repeatedly."""
    result = engine.start_review(user, user.tenant_id, campaign_id)
    return transition_response(engine, result)


@router.post("/campaign/{campaign_id}/approve")
def approve(
    campaign_id: int,
    user: AuthUser = Depends(require_customer),
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    result = engine.approve(user, campaign_id)
    return transition_response(engine, result)


@router.post("/campaign/{campaign_id}/request-changes")
def request_changes(
    campaign_id: int,
    payload: RequestChanges,
    user: AuthUser = Depends(require_customer),
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    result = engine.request_changes(user, campaign_id, payload.feedback)
    return transition_response(engine, result)
