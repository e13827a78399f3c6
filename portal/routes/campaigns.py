"""
Campaign routes shared by every portal: timeline, signed downloads, and the
local file endpoint those download URLs point at.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, UploadFile
from fastapi.responses import FileResponse

from ..auth import AuthUser, get_auth_user
from ..config import get_settings
from ..dependencies import get_storage, get_workflow_engine
from ..errors import Forbidden, NotFound, ValidationFailed
from ..schemas.campaign import activity_to_dict, agency_to_dict, asset_to_dict, campaign_to_dict
from ..storage import LocalObjectStorage
from ..workflow.engine import TransitionResult, UploadedFile, WorkflowEngine

settings = get_settings()

router = APIRouter(tags=["campaigns"])


# ============================================================
# HELPERS
# ============================================================

def collect_uploads(files: List[UploadFile]) -> List[UploadedFile]:
    """Check multipart uploads against the configured limits."""
    if not files:
        raise ValidationFailed("No files uploaded", {"field": "files"})
    if len(files) > settings.upload_max_files:
        raise ValidationFailed(
            f"Too many files (max {settings.upload_max_files})",
            {"field": "files", "max_files": settings.upload_max_files},
        )

    max_bytes = settings.upload_max_mb * 1024 * 1024
    uploads = []
    for upload in files:
        if upload.content_type not in settings.allowed_mime_types:
            raise ValidationFailed(
                f"File type not allowed: {upload.content_type}",
                {"field": "files", "filename": upload.filename},
            )
        upload.file.seek(0, 2)
        size = upload.file.tell()
        upload.file.seek(0)
        if size > max_bytes:
            raise ValidationFailed(
                f"File too large (max {settings.upload_max_mb} MB)",
                {"field": "files", "filename": upload.filename},
            )
        uploads.append(UploadedFile(
            filename=upload.filename or "file",
            fileobj=upload.file,
            content_type=upload.content_type,
            size=size,
        ))
    return uploads


def asset_with_url(asset, storage: Optional[LocalObjectStorage]) -> dict:
    url = None
    if storage is not None:
        url = storage.signed_download_url(
            asset.storage_key, asset.filename, settings.download_url_expiry_seconds
        )
    return asset_to_dict(asset, url)


def campaign_detail(engine: WorkflowEngine, campaign, include_activity: bool = True) -> dict:
    """Campaign with its agency, assets (newest first) and activity log."""
    repo = engine.repo
    assets = [asset_with_url(a, engine.storage) for a in repo.list_assets(campaign.id)]
    agency = repo.get_agency(campaign.tenant_id, campaign.agency_id)
    latest_draft = repo.latest_draft(campaign.id)

    detail = {
        "campaign": campaign_to_dict(campaign, engine.clock()),
        "agency": agency_to_dict(agency) if agency else None,
        "assets": [a for a in assets if a["asset_type"] == "asset"],
        "drafts": [a for a in assets if a["asset_type"] == "draft"],
        "latest_draft": asset_with_url(latest_draft, engine.storage) if latest_draft else None,
    }
    if include_activity:
        detail["activities"] = [activity_to_dict(a) for a in repo.list_activities(campaign.id)]
    return detail


def transition_response(engine: WorkflowEngine, result: TransitionResult) -> dict:
    return {
        "ok": True,
        "applied": result.applied,
        "campaign": campaign_to_dict(result.campaign, engine.clock()),
        "assets": [asset_with_url(a, engine.storage) for a in result.assets],
    }


# ============================================================
# ROUTES
# ============================================================

@router.get("/api/campaign/{campaign_id}/timeline")
def get_timeline(
    campaign_id: int,
    user: AuthUser = Depends(get_auth_user),
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    """Activity log of a campaign, newest first."""
    campaign = engine.get_campaign_for(user, campaign_id)
    return {
        "campaign_id": campaign.id,
        "activities": [activity_to_dict(a) for a in engine.repo.list_activities(campaign.id)],
    }


@router.get("/api/campaign/{campaign_id}/assets/{asset_id}/download")
def get_download_url(
    campaign_id: int,
    asset_id: int,
    user: AuthUser = Depends(get_auth_user),
    engine: WorkflowEngine = Depends(get_workflow_engine),
    storage: LocalObjectStorage = Depends(get_storage),
):
    """Short-lived signed URL for one asset or draft."""
    campaign = engine.get_campaign_for(user, campaign_id)
    asset = engine.repo.get_asset(campaign.id, asset_id)
    if asset is None:
        raise NotFound("Asset not found")
    return {
        "url": storage.signed_download_url(
            asset.storage_key, asset.filename, settings.download_url_expiry_seconds
        ),
        "expires_in": settings.download_url_expiry_seconds,
    }


@router.get("/api/files/{key:path}")
def download_file(
    key: str,
    filename: str = Query(...),
    expires: int = Query(...),
    signature: str = Query(...),
    storage: LocalObjectStorage = Depends(get_storage),
):
    """Serve a stored file to holders of a valid signed URL."""
    if not storage.verify_download(key, filename, expires, signature):
        raise Forbidden("Invalid or expired download link")
    return FileResponse(storage.open_path(key), filename=filename)
