from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from consentgate.core.db import get_session
from consentgate.core.security import Principal, get_principal
from consentgate.modules.notifications.schemas import NotificationOut
from consentgate.modules.notifications.service import NotificationsService

router = APIRouter()

def svc(s: AsyncSession = Depends(get_session)) -> NotificationsService: return NotificationsService(s)

@router.get("/notifications", response_model=list[NotificationOut])
async def list_notifications(
    limit: int = Query(50, ge=1, le=200),
    principal: Principal = Depends(get_principal),
    service: NotificationsService = Depends(svc),
):
    return await service.list_for_recipient(principal.user_id, limit)
