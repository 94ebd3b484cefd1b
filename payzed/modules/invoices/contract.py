from payzed.core.abi import PAYZED_ABI
from payzed.core.chain import ContractCall, parse_amount, to_bytes32_identifier
from payzed.core.config import settings
from payzed.modules.tokens.service import calculate_fee, default_spender, get_token_address


def calculate_creation_fee(amount: float) -> float:
    return calculate_fee(amount)


def get_create_invoice_args(invoice_id, receiver: str, amount: float, currency: str, description: str) -> ContractCall:
    return ContractCall(
        address=default_spender(),
        abi=PAYZED_ABI,
        function_name="createInvoice",
        args=[
            to_bytes32_identifier(invoice_id),
            receiver,
            parse_amount(amount, settings.TOKEN_DECIMALS),
            get_token_address(currency),
            description,
        ],
    )


def get_pay_invoice_args(invoice_id) -> ContractCall:
    return ContractCall(
        address=default_spender(),
        abi=PAYZED_ABI,
        function_name="payInvoice",
        args=[to_bytes32_identifier(invoice_id)],
    )


def get_invoice_read_args(invoice_id) -> ContractCall:
    return ContractCall(
        address=default_spender(),
        abi=PAYZED_ABI,
        function_name="getInvoice",
        args=[to_bytes32_identifier(invoice_id)],
    )
