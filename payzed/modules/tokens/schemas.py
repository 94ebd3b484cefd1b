import enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, field_validator
from web3 import Web3


class Currency(str, enum.Enum):
    USDC = "USDC"
    EURC = "EURC"


class AllowancePurpose(str, enum.Enum):
    CREATE_INVOICE = "create_invoice"
    CREATE_SUBSCRIPTION = "create_subscription"
    PAY_SUBSCRIPTION = "pay_subscription"


class ContractCallRead(BaseModel):
    address: str
    abi: List[Dict[str, Any]]
    functionName: str
    args: List[Any]


class AllowanceRead(BaseModel):
    state: str
    allowance: Optional[str] = None
    required: Optional[str] = None
    error: Optional[str] = None
    approve: Optional[ContractCallRead] = None


class ApprovalConfirm(BaseModel):
    owner: str
    currency: Currency
    amount: float
    purpose: AllowancePurpose
    tx_hash: str
    chain_id: int

    @field_validator("owner")
    @classmethod
    def check_owner(cls, v: str) -> str:
        if not Web3.is_address(v):
            raise ValueError("Invalid Ethereum address")
        return v
