from typing import Any, List

from fastapi import APIRouter

from payzed.core.config import settings
from payzed.core.errors import ContractNotConfiguredError
from payzed.modules.subscriptions.contract import subscription_contract_address
from payzed.modules.system import schemas
from payzed.modules.tokens.schemas import Currency
from payzed.modules.tokens.service import FEE_RATE, default_spender, get_token_address

router = APIRouter()

# Action -> contract address it cannot work without
ACTION_REQUIREMENTS = [
    ("create_invoice", default_spender),
    ("pay_invoice", default_spender),
    ("create_subscription", subscription_contract_address),
    ("pay_subscription", subscription_contract_address),
    ("cancel_subscription", subscription_contract_address),
]


def disabled_actions(requirements: List[tuple] = ACTION_REQUIREMENTS) -> List[schemas.DisabledAction]:
    disabled = []
    for action, require in requirements:
        try:
            require()
        except ContractNotConfiguredError as e:
            disabled.append(schemas.DisabledAction(action=action, message=str(e)))
    return disabled


@router.get("/config", response_model=schemas.ConfigRead)
async def read_config() -> Any:
    """Public chain configuration for the front end, including which actions are switched off."""
    return {
        "chain_id": settings.CHAIN_ID,
        "rpc_url": settings.RPC_URL,
        "block_explorer_url": settings.BLOCK_EXPLORER_URL,
        "walletconnect_project_id": settings.WALLETCONNECT_PROJECT_ID,
        "payzed_contract_address": settings.PAYZED_CONTRACT_ADDRESS,
        "subscription_contract_address": settings.INVOPAY_SUBSCRIPTION_CONTRACT_ADDRESS,
        "token_addresses": {c.value: get_token_address(c) for c in Currency},
        "token_decimals": settings.TOKEN_DECIMALS,
        "fee_rate": FEE_RATE,
        "disabled_actions": disabled_actions(),
    }
