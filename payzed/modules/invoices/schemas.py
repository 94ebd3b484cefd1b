from datetime import datetime
from uuid import UUID
from pydantic import BaseModel, Field, field_validator
from typing import List, Optional
from web3 import Web3
from payzed.core.chain import is_bytes32_hex
from payzed.modules.invoices.models import InvoiceStatus
from payzed.modules.tokens.schemas import Currency, ContractCallRead

def _address(v: str) -> str:
    if not Web3.is_address(v):
        raise ValueError("Invalid Ethereum address")
    return v.lower()

class InvoiceForm(BaseModel):
    amount: float = Field(ge=0.01)
    currency: Currency
    receiver_wallet_address: str
    description: str = Field(min_length=1, max_length=500)

    @field_validator("receiver_wallet_address")
    @classmethod
    def check_receiver(cls, v: str) -> str:
        return _address(v)

class InvoiceCreate(BaseModel):
    id: UUID
    invoice_id_bytes32: str
    creator_wallet_address: str
    receiver_wallet_address: str
    amount: float = Field(gt=0)
    currency: Currency
    description: Optional[str] = None

    @field_validator("invoice_id_bytes32")
    @classmethod
    def check_bytes32(cls, v: str) -> str:
        if not is_bytes32_hex(v):
            raise ValueError("Must be a 0x-prefixed 32-byte hex string")
        return v.lower()

    @field_validator("creator_wallet_address", "receiver_wallet_address")
    @classmethod
    def check_addresses(cls, v: str) -> str:
        return _address(v)

class InvoiceRead(BaseModel):
    id: UUID
    invoice_id_bytes32: str
    creator_wallet_address: str
    receiver_wallet_address: str
    payer_wallet_address: Optional[str] = None
    amount: float
    currency: Currency
    description: Optional[str] = None
    status: InvoiceStatus
    transaction_hash: Optional[str] = None
    paid_at: Optional[datetime] = None
    gas_cost: Optional[float] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class InvoiceSaveRead(BaseModel):
    data: Optional[InvoiceRead] = None
    is_duplicate: bool = False
    error: Optional[str] = None

class InvoicePage(BaseModel):
    data: List[InvoiceRead]
    has_more: bool

class InvoiceBuildRead(BaseModel):
    id: UUID
    invoice_id_bytes32: str
    create: ContractCallRead
    creation_fee: float

class InvoicePaymentReport(BaseModel):
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
