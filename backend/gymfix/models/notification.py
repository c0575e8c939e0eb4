from __future__ import annotations
from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, JSON, DateTime, ForeignKey
from gymfix.models.authz import Base, utcnow


class Notification(Base):
    __tablename__ = 'notifications'
    TYPE_TICKET_CREATED = 'ticket_created'
    TYPE_TICKET_UPDATED = 'ticket_updated'
    TYPE_VISIT_REQUESTED = 'visit_requested'
    TYPE_VISIT_APPROVED = 'visit_approved'
    TYPE_VISIT_REJECTED = 'visit_rejected'
    TYPE_GYM_APPROVED = 'gym_approved'
    TYPE_MEMBER_APPROVED = 'member_approved'
    ALL_TYPES = (
        TYPE_TICKET_CREATED, TYPE_TICKET_UPDATED, TYPE_VISIT_REQUESTED, TYPE_VISIT_APPROVED,
        TYPE_VISIT_REJECTED, TYPE_GYM_APPROVED, TYPE_MEMBER_APPROVED,
    )
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, default=dict)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
