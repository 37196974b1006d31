"""Trader portal visit alerts."""
from fastapi import APIRouter, Depends

from tradyfi.api import deps
from tradyfi.db.models.user import User
from tradyfi.schemas import VisitorLoginRequest, VisitorLoginResponse
from tradyfi.services.visitor_notification import VisitorNotificationService

router = APIRouter(prefix="/visitors", tags=["visitors"])


@router.post("/{trader_id}/login", response_model=VisitorLoginResponse)
async def visitor_login(
    trader_id: int,
    payload: VisitorLoginRequest | None = None,
    service: VisitorNotificationService = Depends(deps.get_visitor_service),
    current_user: User = Depends(deps.get_current_user),
):
    visitor_name = (payload.visitor_name if payload else None) or current_user.display_name
    notified = await service.handle_visitor_login(trader_id, current_user.id, visitor_name)
    return VisitorLoginResponse(notified=notified, trader_id=trader_id)
