from __future__ import annotations
from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, DateTime, ForeignKey
from gymfix.models.authz import Base, utcnow


class Equipment(Base):
    __tablename__ = 'equipment'
    STATUS_ACTIVE = 'active'
    STATUS_RETIRED = 'retired'
    STATUS_MAINTENANCE = 'maintenance'
    ALL_STATUSES = (STATUS_ACTIVE, STATUS_RETIRED, STATUS_MAINTENANCE)
    TYPES = ('treadmill', 'bike', 'elliptical', 'rower', 'strength', 'free_weights', 'cable', 'bench', 'rack', 'other')
    MUSCLE_GROUPS = ('chest', 'back', 'shoulders', 'arms', 'legs', 'core', 'cardio', 'full_body', 'other')
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    factory_id: Mapped[int] = mapped_column(ForeignKey('factories.id'), nullable=False, index=True)
    gym_id: Mapped[Optional[int]] = mapped_column(ForeignKey('gyms.id'), nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    serial_number: Mapped[str] = mapped_column(String(64), nullable=False)
    qr_code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    equipment_type: Mapped[str] = mapped_column(String(32), nullable=False, default='other')
    muscle_group: Mapped[str] = mapped_column(String(32), nullable=False, default='other')
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_ACTIVE)
    created_by: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
