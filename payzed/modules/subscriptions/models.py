import uuid
from sqlalchemy import Column, String, Boolean, Integer, DateTime, func, Enum, ForeignKey, Numeric, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
import enum
from payzed.core.db import Base
from payzed.modules.tokens.schemas import Currency

class SubscriptionStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    CANCELLED_BY_CREATOR = "cancelled_by_creator"
    CANCELLED_BY_PAYER = "cancelled_by_payer"
    PAUSED = "paused"

class CancelledBy(str, enum.Enum):
    CREATOR = "creator"
    PAYER = "payer"

def _enum(enum_cls):
    # Store the lower-case values, not the member names
    return Enum(enum_cls, values_callable=lambda e: [m.value for m in e], native_enum=False, length=32)

class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    subscription_id_bytes32 = Column(String(66), unique=True, index=True, nullable=False)

    creator_wallet_address = Column(String(42), index=True, nullable=False)
    payer_wallet_address = Column(String(42), index=True, nullable=False) # zero address until first payment
    receiver_wallet_address = Column(String(42), index=True, nullable=False)

    amount = Column(Numeric(18, 6, asdecimal=False), nullable=False)
    currency = Column(_enum(Currency), nullable=False)
    period_seconds = Column(Integer, nullable=False)
    next_payment_due = Column(DateTime(timezone=True), nullable=False)
    paused_at = Column(DateTime(timezone=True), nullable=True)

    status = Column(_enum(SubscriptionStatus), default=SubscriptionStatus.PENDING, nullable=False)
    description = Column(Text, nullable=True)
    total_payments = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

class SubscriptionPayment(Base):
    __tablename__ = "subscription_payments"
    # Event listener and receipt wait both report the same transaction
    __table_args__ = (UniqueConstraint("subscription_id", "transaction_hash", name="uq_subscription_payment_tx"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    subscription_id = Column(UUID(as_uuid=True), ForeignKey("subscriptions.id"), index=True, nullable=False)
    payer_wallet_address = Column(String(42), nullable=False)

    amount = Column(Numeric(18, 6, asdecimal=False), nullable=False)
    currency = Column(_enum(Currency), nullable=False)
    transaction_hash = Column(String(66), nullable=True)
    payment_date = Column(DateTime(timezone=True), nullable=False)
    renewal_fee = Column(Numeric(18, 6, asdecimal=False), nullable=False)
    gas_cost = Column(Numeric(36, 18, asdecimal=False), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

class SubscriptionCancellation(Base):
    __tablename__ = "subscription_cancellations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    subscription_id = Column(UUID(as_uuid=True), ForeignKey("subscriptions.id"), unique=True, nullable=False)

    cancelled_by = Column(_enum(CancelledBy), nullable=False)
    cancelled_by_wallet_address = Column(String(42), nullable=False)
    cancellation_reason = Column(Text, nullable=True)

    cancelled_at = Column(DateTime(timezone=True), server_default=func.now())
    notified_at = Column(DateTime(timezone=True), nullable=True)
    notification_sent = Column(Boolean, default=False, nullable=False)
