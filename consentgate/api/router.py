from fastapi import APIRouter
from consentgate.modules.authorizations.router import router as authorizations_router
from consentgate.modules.encounters.router import router as encounters_router
from consentgate.modules.audit.router import router as audit_router
from consentgate.modules.directory.router import router as directory_router
from consentgate.modules.notifications.router import router as notifications_router

api_router = APIRouter()
api_router.include_router(authorizations_router, tags=["authorizations"])
api_router.include_router(encounters_router, tags=["encounters"])
api_router.include_router(audit_router, tags=["audit"])
api_router.include_router(directory_router, tags=["directory"])
api_router.include_router(notifications_router, tags=["notifications"])

@api_router.get("/health", tags=["health"])
async def health():
    return {"status": "ok"}
