from typing import Optional

from payzed.core.abi import ERC20_ABI
from payzed.core.chain import ContractCall, parse_amount
from payzed.core.config import settings
from payzed.core.errors import ContractNotConfiguredError
from payzed.modules.tokens.schemas import Currency

# Creation and renewal fee rate (0.05%)
FEE_RATE = 0.0005


def get_token_address(currency) -> str:
    # Unknown currencies raise: forms only ever produce USDC / EURC
    addresses = {
        Currency.USDC: settings.USDC_CONTRACT_ADDRESS,
        Currency.EURC: settings.EURC_CONTRACT_ADDRESS,
    }
    return addresses[Currency(currency)]


def default_spender() -> str:
    if not settings.PAYZED_CONTRACT_ADDRESS:
        raise ContractNotConfiguredError("PAYZED_CONTRACT_ADDRESS", "Contract")
    return settings.PAYZED_CONTRACT_ADDRESS


def get_allowance_args(token_address: str, owner: str, spender: Optional[str] = None) -> ContractCall:
    return ContractCall(
        address=token_address,
        abi=ERC20_ABI,
        function_name="allowance",
        args=[owner, spender or default_spender()],
    )


def get_approve_args(token_address: str, amount: int, spender: Optional[str] = None) -> ContractCall:
    return ContractCall(
        address=token_address,
        abi=ERC20_ABI,
        function_name="approve",
        args=[spender or default_spender(), int(amount)],
    )


def get_balance_args(token_address: str, owner: str) -> ContractCall:
    return ContractCall(address=token_address, abi=ERC20_ABI, function_name="balanceOf", args=[owner])


def get_decimals_args(token_address: str) -> ContractCall:
    return ContractCall(address=token_address, abi=ERC20_ABI, function_name="decimals", args=[])


def needs_approval(allowance: int, required: int) -> bool:
    return allowance < required


def parse_token_amount(amount, decimals: int = 6) -> int:
    return parse_amount(amount, decimals)


def calculate_fee(amount: float) -> float:
    return amount * FEE_RATE
