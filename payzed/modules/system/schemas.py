from pydantic import BaseModel
from typing import Dict, List, Optional

class DisabledAction(BaseModel):
    action: str
    message: str

class ConfigRead(BaseModel):
    chain_id: int
    rpc_url: str
    block_explorer_url: str
    walletconnect_project_id: Optional[str] = None
    payzed_contract_address: Optional[str] = None
    subscription_contract_address: Optional[str] = None
    token_addresses: Dict[str, str]
    token_decimals: int
    fee_rate: float
    disabled_actions: List[DisabledAction]
