"""Visitor alert bookkeeping model."""
import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from tradyfi.db.base import Base


class VisitorNotification(Base):
    """Last time a trader was alerted about a given visitor."""

    __tablename__ = "visitor_notifications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    trader_id = Column(Integer, ForeignKey("traders.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    visitor_name = Column(Text, nullable=False)
    last_notification_sent = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("trader_id", "user_id", name="uq_visitor_notifications_trader_user"),
    )
