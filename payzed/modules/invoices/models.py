import uuid
from sqlalchemy import Column, String, DateTime, func, Enum, Numeric, Text
from sqlalchemy.dialects.postgresql import UUID
import enum
from payzed.core.db import Base
from payzed.modules.tokens.schemas import Currency

class InvoiceStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"

class Invoice(Base):
    __tablename__ = "invoices"

    # Chosen at build time; invoice_id_bytes32 is derived from it
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    invoice_id_bytes32 = Column(String(66), unique=True, index=True, nullable=False)

    creator_wallet_address = Column(String(42), index=True, nullable=False)
    receiver_wallet_address = Column(String(42), index=True, nullable=False)
    payer_wallet_address = Column(String(42), index=True, nullable=True)

    amount = Column(Numeric(18, 6, asdecimal=False), nullable=False)
    currency = Column(Enum(Currency, values_callable=lambda e: [m.value for m in e], native_enum=False, length=32), nullable=False)
    description = Column(Text, nullable=True)

    status = Column(Enum(InvoiceStatus, values_callable=lambda e: [m.value for m in e], native_enum=False, length=32),
                    default=InvoiceStatus.PENDING, nullable=False)
    transaction_hash = Column(String(66), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    gas_cost = Column(Numeric(36, 18, asdecimal=False), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
