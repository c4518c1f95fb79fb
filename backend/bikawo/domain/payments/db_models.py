from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bikawo.domain.payments import statuses
from bikawo.infra.db import Base

if TYPE_CHECKING:  # pragma: no cover
    from bikawo.domain.bookings.db_models import Booking


class Payment(Base):
    __tablename__ = "payments"

    payment_id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    booking_id: Mapped[str] = mapped_column(
        ForeignKey("bookings.booking_id", ondelete="CASCADE"), nullable=False, index=True
    )
    provider: Mapped[str] = mapped_column(String(32), nullable=False, default="stripe")
    payment_intent_id: Mapped[str | None] = mapped_column(String(255))
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=statuses.PAYMENT_STATUS_PAID
    )
    refund_status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=statuses.REFUND_STATUS_NONE
    )
    refunded_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    refund_id: Mapped[str | None] = mapped_column(String(255))
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    admin_notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    booking: Mapped["Booking"] = relationship("Booking", back_populates="payments")

    __table_args__ = (
        Index("ix_payments_status", "status"),
        Index("ix_payments_refund_status", "refund_status"),
        UniqueConstraint("provider", "payment_intent_id", name="uq_payments_provider_intent"),
    )

    @property
    def refundable_cents(self) -> int:
        return max(0, self.amount_cents - (self.refunded_amount_cents or 0))
