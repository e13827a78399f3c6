"""
Request-scoped wiring of the process-wide collaborators kept on ``app.state``.
"""
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from .config import get_settings
from .database import get_db
from .mailer import EmailSender
from .realtime import RealtimeHub
from .repository import CampaignRepository
from .storage import LocalObjectStorage
from .utils import utcnow
from .workflow.engine import WorkflowEngine


def get_hub(request: Request) -> RealtimeHub:
    return request.app.state.hub


def get_email_sender(request: Request) -> EmailSender:
    return request.app.state.email_sender


def get_storage(request: Request) -> LocalObjectStorage:
    return request.app.state.storage


def get_clock():
    """Time source for request handlers; tests override it to freeze time."""
    return utcnow


def get_repository(db: Session = Depends(get_db)) -> CampaignRepository:
    return CampaignRepository(db)


def get_workflow_engine(
    repo: CampaignRepository = Depends(get_repository),
    hub: RealtimeHub = Depends(get_hub),
    email_sender: EmailSender = Depends(get_email_sender),
    storage: LocalObjectStorage = Depends(get_storage),
    clock=Depends(get_clock),
) -> WorkflowEngine:
    return WorkflowEngine(
        repo,
        hub=hub,
        email_sender=email_sender,
        storage=storage,
        settings=get_settings(),
        clock=clock,
    )
