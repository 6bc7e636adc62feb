from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.db import Base


# -------------------------
# Helpers
# -------------------------

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def uuid_str() -> str:
    return str(uuid.uuid4())


# -------------------------
# Core models
# -------------------------

class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    role: Mapped[str] = mapped_column(String(40), nullable=False, default="operador")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class SaleRecord(Base):
    """
    One cumulative meter reading per machine per hour per business day.

    `hour` closes the period (hour-1):00-hour:00; `amount` is always derived
    from `cumulative_total` and the previous reading of the same machine/day.
    """

    __tablename__ = "sale_records"
    __table_args__ = (
        UniqueConstraint("sale_date", "machine_id", "hour", name="uq_sale_records_slot"),
        Index("ix_sale_records_sale_date", "sale_date"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    sale_date: Mapped[date] = mapped_column(Date, nullable=False)
    machine_id: Mapped[str] = mapped_column(String(20), nullable=False)
    hour: Mapped[int] = mapped_column(Integer, nullable=False)

    cumulative_total: Mapped[float] = mapped_column(Float, nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    operator_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    last_updated: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sale_date": self.sale_date,
            "machine_id": self.machine_id,
            "hour": self.hour,
            "cumulative_total": self.cumulative_total,
            "amount": self.amount,
            "operator_id": self.operator_id,
            "notes": self.notes,
            "last_updated": self.last_updated,
        }
