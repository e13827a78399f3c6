from pydantic import BaseModel, EmailStr
from typing import Optional

from ..workflow.states import PortalType


class MagicLinkRequest(BaseModel):
    email: EmailStr
    portal_type: PortalType
    campaign_id: Optional[int] = None
