"""API router for version 1."""
from fastapi import APIRouter

from tradyfi.api.v1.endpoints import chat, fcm, push, visitors


api_router = APIRouter()
api_router.include_router(push.router)
api_router.include_router(fcm.router)
api_router.include_router(visitors.router)
api_router.include_router(chat.router)
