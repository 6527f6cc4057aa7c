from fastapi import APIRouter

from app.api.v1.health import router as health_router
from app.api.v1.auth import router as auth_router
from app.api.v1.audit import router as audit_router

from app.api.v1.timeline import router as timeline_router
from app.api.v1.wallet import router as wallet_router
from app.api.v1.research_papers import router as research_papers_router
from app.api.v1.notifications import router as notifications_router


v1_router = APIRouter()

# ------------------------------------------------------------------
# SYSTEM / CORE
# ------------------------------------------------------------------
v1_router.include_router(health_router, tags=["health"])
v1_router.include_router(auth_router, tags=["auth"])
v1_router.include_router(audit_router, tags=["audit"])

# ------------------------------------------------------------------
# FUNDING TIMELINE / CONTINGENCY
# ------------------------------------------------------------------
v1_router.include_router(timeline_router, tags=["timeline"])

# ------------------------------------------------------------------
# WALLET / RESEARCH MARKETPLACE
# ------------------------------------------------------------------
v1_router.include_router(wallet_router, tags=["wallet"])
v1_router.include_router(research_papers_router, tags=["research"])

# ------------------------------------------------------------------
# DASHBOARD
# ------------------------------------------------------------------
v1_router.include_router(notifications_router, tags=["notifications"])
