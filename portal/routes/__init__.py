from .auth import router as auth_router
from .cs import router as cs_router
from .customer import router as customer_router
from .agency import router as agency_router
from .campaigns import router as campaigns_router
from .realtime import router as realtime_router

__all__ = [
    "auth_router",
    "cs_router",
    "customer_router",
    "agency_router",
    "campaigns_router",
    "realtime_router",
]
