from dataclasses import dataclass
from typing import Optional

from payzed.core.abi import ON_CHAIN_STATUS_LABELS, SUBSCRIPTION_ABI
from payzed.core.chain import ZERO_ADDRESS, ContractCall, parse_amount, to_bytes32_identifier
from payzed.core.config import settings
from payzed.core.errors import ContractNotConfiguredError
from payzed.modules.tokens.allowance import Loadable
from payzed.modules.tokens.service import calculate_fee, get_token_address


@dataclass
class CreateSubscriptionParams:
    receiver: str
    payer: str
    amount: float
    currency: str
    period: int  # seconds
    description: str


def subscription_contract_address() -> str:
    if not settings.INVOPAY_SUBSCRIPTION_CONTRACT_ADDRESS:
        raise ContractNotConfiguredError("INVOPAY_SUBSCRIPTION_CONTRACT_ADDRESS", "Subscription contract")
    return settings.INVOPAY_SUBSCRIPTION_CONTRACT_ADDRESS


def calculate_creation_fee(amount: float) -> float:
    return calculate_fee(amount)


def calculate_renewal_fee(amount: float) -> float:
    return calculate_fee(amount)


def get_create_subscription_args(params: CreateSubscriptionParams) -> ContractCall:
    return ContractCall(
        address=subscription_contract_address(),
        abi=SUBSCRIPTION_ABI,
        function_name="createSubscription",
        args=[
            params.receiver,
            params.payer,
            parse_amount(params.amount, settings.TOKEN_DECIMALS),
            get_token_address(params.currency),
            int(params.period),
            params.description,
        ],
    )


def _by_id(function_name: str, subscription_id: str) -> ContractCall:
    return ContractCall(
        address=subscription_contract_address(),
        abi=SUBSCRIPTION_ABI,
        function_name=function_name,
        args=[to_bytes32_identifier(subscription_id)],
    )


def get_pay_subscription_args(subscription_id: str) -> ContractCall:
    return _by_id("paySubscription", subscription_id)


def get_cancel_by_creator_args(subscription_id: str) -> ContractCall:
    return _by_id("cancelByCreator", subscription_id)


def get_cancel_by_payer_args(subscription_id: str) -> ContractCall:
    return _by_id("cancelByPayer", subscription_id)


def get_subscription_read_args(subscription_id: str) -> ContractCall:
    return _by_id("getSubscription", subscription_id)


def on_chain_creator(raw) -> Optional[str]:
    """Creator address out of a getSubscription result (tuple or named struct)."""
    if raw is None:
        return None
    if isinstance(raw, dict):
        return raw.get("creator")
    return raw[0] if len(raw) else None


def on_chain_status_label(raw) -> Optional[str]:
    if raw is None:
        return None
    status = raw.get("status") if isinstance(raw, dict) else (raw[8] if len(raw) > 8 else None)
    if status is None:
        return None
    return ON_CHAIN_STATUS_LABELS.get(int(status), "Unknown")


def is_registered_on_chain(on_chain: Loadable) -> bool:
    # Unknown ids read back as an all-zero struct
    if not on_chain.is_loaded:
        return False
    creator = on_chain_creator(on_chain.value)
    return bool(creator) and str(creator).lower() != ZERO_ADDRESS
