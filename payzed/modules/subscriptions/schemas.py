from datetime import datetime
from uuid import UUID
from pydantic import BaseModel, Field, field_validator
from typing import List, Optional
from web3 import Web3
from payzed.core.chain import ZERO_ADDRESS, is_bytes32_hex
from payzed.modules.subscriptions.models import SubscriptionStatus, CancelledBy
from payzed.modules.tokens.schemas import Currency, ContractCallRead

SECONDS_PER_DAY = 86400

def _address(v: str) -> str:
    if not Web3.is_address(v):
        raise ValueError("Invalid Ethereum address")
    return v.lower()

class SubscriptionForm(BaseModel):
    """Creation form. Validated before anything touches the chain."""
    amount: float = Field(ge=0.01)
    currency: Currency
    receiver_wallet_address: str = Field(min_length=1)
    period_days: int = Field(ge=1)
    description: str = Field(min_length=1, max_length=500)
    payer_wallet_address: Optional[str] = None

    @field_validator("receiver_wallet_address")
    @classmethod
    def check_receiver(cls, v: str) -> str:
        return _address(v)

    @field_validator("payer_wallet_address")
    @classmethod
    def check_payer(cls, v: Optional[str]) -> Optional[str]:
        return _address(v) if v else None

    @property
    def period_seconds(self) -> int:
        return self.period_days * SECONDS_PER_DAY

class SubscriptionCreate(BaseModel):
    subscription_id_bytes32: str
    creator_wallet_address: str
    payer_wallet_address: str = ZERO_ADDRESS
    receiver_wallet_address: str
    amount: float = Field(gt=0)
    currency: Currency
    period_seconds: int = Field(gt=0)
    next_payment_due: datetime
    description: Optional[str] = None

    @field_validator("subscription_id_bytes32")
    @classmethod
    def check_bytes32(cls, v: str) -> str:
        if not is_bytes32_hex(v):
            raise ValueError("Must be a 0x-prefixed 32-byte hex string")
        return v.lower()

    @field_validator("creator_wallet_address", "payer_wallet_address", "receiver_wallet_address")
    @classmethod
    def check_addresses(cls, v: str) -> str:
        return _address(v)

class SubscriptionUpdate(BaseModel):
    status: Optional[SubscriptionStatus] = None
    next_payment_due: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    total_payments: Optional[int] = None
    payer_wallet_address: Optional[str] = None

class SubscriptionRead(BaseModel):
    id: UUID
    subscription_id_bytes32: str
    creator_wallet_address: str
    payer_wallet_address: str
    receiver_wallet_address: str
    amount: float
    currency: Currency
    period_seconds: int
    next_payment_due: datetime
    paused_at: Optional[datetime] = None
    status: SubscriptionStatus
    description: Optional[str] = None
    total_payments: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class SubscriptionSaveRead(BaseModel):
    data: Optional[SubscriptionRead] = None
    is_duplicate: bool = False
    error: Optional[str] = None

class SubscriptionPage(BaseModel):
    data: List[SubscriptionRead]
    has_more: bool

class SubscriptionPaymentRead(BaseModel):
    id: UUID
    subscription_id: UUID
    payer_wallet_address: str
    amount: float
    currency: Currency
    transaction_hash: Optional[str] = None
    payment_date: datetime
    renewal_fee: float
    gas_cost: Optional[float] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class PaymentReport(BaseModel):
    """Sent by the paying wallet's browser once the pay transaction is broadcast."""
    transaction_hash: str
    payer_wallet_address: str

    @field_validator("transaction_hash")
    @classmethod
    def check_hash(cls, v: str) -> str:
        if not is_bytes32_hex(v):
            raise ValueError("Invalid transaction hash")
        return v.lower()

    @field_validator("payer_wallet_address")
    @classmethod
    def check_payer(cls, v: str) -> str:
        return _address(v)

class CancellationCreate(BaseModel):
    cancelled_by: CancelledBy
    cancelled_by_wallet_address: str
    cancellation_reason: Optional[str] = Field(default=None, max_length=500)

    @field_validator("cancelled_by_wallet_address")
    @classmethod
    def check_wallet(cls, v: str) -> str:
        return _address(v)

class CancellationRead(BaseModel):
    id: UUID
    subscription_id: UUID
    cancelled_by: CancelledBy
    cancelled_by_wallet_address: str
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    notified_at: Optional[datetime] = None
    notification_sent: bool

    class Config:
        from_attributes = True

class SubscriptionBuildRead(BaseModel):
    create: ContractCallRead
    creation_fee: float
    period_seconds: int

class PaymentQuoteRead(BaseModel):
    allowed: bool
    reason: Optional[str] = None
    label: str
    renewal_fee: float
    total_amount: float
    allowance_state: str
    needs_approval: bool
    on_chain_status: Optional[str] = None
    approve: Optional[ContractCallRead] = None
    pay: Optional[ContractCallRead] = None
