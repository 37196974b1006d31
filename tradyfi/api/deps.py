"""Shared API dependencies."""
from __future__ import annotations

import uuid

from fastapi import Depends, HTTPException, status
from fastapi.requests import HTTPConnection
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import ValidationError
from sqlalchemy.orm import Session

from tradyfi.core.security import InvalidTokenError, decode_token
from tradyfi.db.models.user import User
from tradyfi.db.session import SessionLocal
from tradyfi.schemas import TokenPayload
from tradyfi.services.chat_relay import ChatRelay
from tradyfi.services.dispatch import DispatchService
from tradyfi.services.notification_service import NotificationService
from tradyfi.services.realtime import ChatConnectionManager, build_default_connection_manager
from tradyfi.services.visitor_notification import VisitorNotificationService

bearer_scheme = HTTPBearer(auto_error=False)

_connection_manager_singleton: ChatConnectionManager | None = None


def get_db() -> Session:
    """Yield a database session for request lifetime."""

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def resolve_token(token: str) -> TokenPayload:
    """Validate an access token and return its payload."""

    payload = decode_token(token)
    if payload.get("type") != "access":
        raise InvalidTokenError("Token must be an access token")
    return TokenPayload.model_validate(payload)


def get_token_payload(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> TokenPayload:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None or not credentials.credentials:
        raise credentials_exception
    try:
        return resolve_token(credentials.credentials)
    except (InvalidTokenError, ValidationError, ValueError, KeyError) as exc:
        raise credentials_exception from exc


def get_current_user(
    token_data: TokenPayload = Depends(get_token_payload), db: Session = Depends(get_db)
) -> User:
    """Resolve the authenticated user from the Authorization header."""

    user = db.get(User, uuid.UUID(str(token_data.sub)))
    if not user or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def get_current_admin(
    token_data: TokenPayload = Depends(get_token_payload),
    user: User = Depends(get_current_user),
) -> User:
    """Require the admin role claim on the bearer token."""

    if token_data.role != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user


def get_dispatch_service(connection: HTTPConnection) -> DispatchService:
    """Return the dispatcher constructed at application startup."""

    dispatcher = getattr(connection.app.state, "dispatch_service", None)
    if dispatcher is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Notification providers are not initialised",
        )
    return dispatcher


def get_notification_service(
    db: Session = Depends(get_db),
    dispatcher: DispatchService = Depends(get_dispatch_service),
) -> NotificationService:
    return NotificationService(db, dispatcher)


def get_visitor_service(
    db: Session = Depends(get_db),
    notifier: NotificationService = Depends(get_notification_service),
) -> VisitorNotificationService:
    return VisitorNotificationService(db, notifier)


def get_chat_relay(
    db: Session = Depends(get_db),
    notifier: NotificationService = Depends(get_notification_service),
) -> ChatRelay:
    return ChatRelay(db, notifier)


def get_connection_manager() -> ChatConnectionManager:
    """Return the process-wide chat connection manager."""

    global _connection_manager_singleton
    if _connection_manager_singleton is None:
        _connection_manager_singleton = build_default_connection_manager()
    return _connection_manager_singleton
