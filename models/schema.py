# models/schema.py
from datetime import datetime
from decimal import Decimal
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import (
    Boolean, String, Text, Integer, Numeric, DateTime, CheckConstraint, Index
)
from models.base import Base


# --- ORDERS (booking payment state mirrored from Payzone callbacks)

class Order(Base):
    __tablename__ = "orders"
    # merchant-assigned id echoed back by Payzone
    order_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default="pending")
    amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2))
    currency: Mapped[Optional[str]] = mapped_column(String(3))
    transaction_id: Mapped[Optional[str]] = mapped_column(String(128))
    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False)
    __table_args__ = (
        CheckConstraint(
            "status in ('pending','paid')", name="ck_orders_status"),
    )


Index("idx_orders_status", Order.status)


class PaymentCallbackEvent(Base):
    __tablename__ = "payment_callback_events"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    provider: Mapped[str] = mapped_column(
        String, nullable=False, default="payzone")
    order_id: Mapped[Optional[str]] = mapped_column(String(128))
    status: Mapped[Optional[str]] = mapped_column(String(32))
    # CallbackOutcome value
    outcome: Mapped[str] = mapped_column(String(32), nullable=False)
    signature_ok: Mapped[bool] = mapped_column(Boolean, nullable=False)
    raw: Mapped[str] = mapped_column(Text, nullable=False)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False)


Index("idx_callback_events_order", PaymentCallbackEvent.order_id)
