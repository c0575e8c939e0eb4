from __future__ import annotations
from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Text, Boolean, JSON, DateTime, ForeignKey, UniqueConstraint
from gymfix.models.authz import Base, utcnow


class Ticket(Base):
    __tablename__ = 'tickets'
    # Status constants
    STATUS_OPEN = 'open'
    STATUS_IN_REVIEW = 'in_review'
    STATUS_GYM_FIX = 'gym_fix_in_progress'
    STATUS_AWAITING_FACTORY = 'awaiting_factory_review'
    STATUS_VISIT_REQUESTED = 'factory_visit_requested'
    STATUS_VISIT_APPROVED = 'factory_visit_approved'
    STATUS_RESOLVED = 'resolved'
    STATUS_CLOSED = 'closed'
    STATUS_REJECTED = 'rejected'
    ALL_STATUSES = (
        STATUS_OPEN, STATUS_IN_REVIEW, STATUS_GYM_FIX, STATUS_AWAITING_FACTORY,
        STATUS_VISIT_REQUESTED, STATUS_VISIT_APPROVED, STATUS_RESOLVED, STATUS_CLOSED, STATUS_REJECTED,
    )
    PRIORITIES = ('low', 'medium', 'high')
    DEFAULT_PRIORITY = 'medium'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    equipment_id: Mapped[int] = mapped_column(ForeignKey('equipment.id'), nullable=False, index=True)
    gym_id: Mapped[int] = mapped_column(ForeignKey('gyms.id'), nullable=False, index=True)
    factory_id: Mapped[int] = mapped_column(ForeignKey('factories.id'), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=STATUS_OPEN, index=True)
    priority: Mapped[str] = mapped_column(String(8), nullable=False, default=DEFAULT_PRIORITY)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    photo_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    created_by: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    resolved_by: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolution_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_by: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'), nullable=True)
    # bumped atomically by each side's confirmation; 2 means both sides attested
    confirmation_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    equipment = relationship('Equipment')

# Status flow: open -> in_review -> gym_fix_in_progress -> resolved | awaiting_factory_review
#   -> factory_visit_requested -> factory_visit_approved -> resolved -> closed
# rejected is a terminal branch off the visit-request states.


class TicketEvent(Base):
    __tablename__ = 'ticket_events'
    TYPE_STATUS_CHANGE = 'status_change'
    TYPE_COMMENT = 'comment'
    TYPE_ATTACHMENT = 'attachment'
    TYPE_APPROVAL_REQUESTED = 'approval_requested'
    TYPE_APPROVAL_GRANTED = 'approval_granted'
    TYPE_APPROVAL_REJECTED = 'approval_rejected'
    TYPE_CONFIRMATION = 'confirmation'
    ALL_TYPES = (
        TYPE_STATUS_CHANGE, TYPE_COMMENT, TYPE_ATTACHMENT, TYPE_APPROVAL_REQUESTED,
        TYPE_APPROVAL_GRANTED, TYPE_APPROVAL_REJECTED, TYPE_CONFIRMATION,
    )
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ticket_id: Mapped[int] = mapped_column(ForeignKey('tickets.id'), nullable=False, index=True)
    actor_user_id: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False)
    event_type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    data: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class FactoryVisitRequest(Base):
    __tablename__ = 'factory_visit_requests'
    APPROVAL_PENDING = 'pending'
    APPROVAL_APPROVED = 'approved'
    APPROVAL_REJECTED = 'rejected'
    ticket_id: Mapped[int] = mapped_column(ForeignKey('tickets.id'), primary_key=True)
    requested_by_gym_owner: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    gym_owner_user_id: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'), nullable=True)
    gym_owner_requested_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    requested_by_factory_employee: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    factory_employee_user_id: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'), nullable=True)
    factory_employee_requested_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approval_status: Mapped[str] = mapped_column(String(16), nullable=False, default=APPROVAL_PENDING)
    approved_by: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    scheduled_visit_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    technician_assigned_id: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'), nullable=True)
    visit_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    @property
    def both_requested(self) -> bool:
        return bool(self.requested_by_gym_owner and self.requested_by_factory_employee)


class TicketConfirmation(Base):
    __tablename__ = 'ticket_confirmations'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ticket_id: Mapped[int] = mapped_column(ForeignKey('tickets.id'), nullable=False, index=True)
    side: Mapped[str] = mapped_column(String(8), nullable=False)
    confirmed_by_user_id: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False)
    confirmer_role: Mapped[str] = mapped_column(String(32), nullable=False)
    notes: Mapped[str] = mapped_column(Text, nullable=False)
    photo_url: Mapped[str] = mapped_column(String(512), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    __table_args__ = (UniqueConstraint('ticket_id', 'side', name='uq_ticket_confirmation_side'),)
