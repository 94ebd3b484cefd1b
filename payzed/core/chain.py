"""
Thin async wrapper over web3.py.

``ChainClient`` is the only object in the service that talks to the RPC
node. Everything else works with ``ContractCall`` descriptors and the
normalized ``SubscriptionPaidEvent`` it returns, which keeps reconciliation
testable with a fake client.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional, Union

from web3 import AsyncWeb3, Web3
from web3.exceptions import LogTopicError, MismatchedABI

from payzed.core.abi import SUBSCRIPTION_ABI

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
NATIVE_DECIMALS = 18


@dataclass
class ContractCall:
    address: str
    abi: List[dict]
    function_name: str
    args: List[Any] = field(default_factory=list)

    def as_json(self) -> Dict[str, Any]:
        """Shape expected by the wallet library; uint256 values go out as strings."""
        return {
            "address": self.address,
            "abi": self.abi,
            "functionName": self.function_name,
            "args": [_json_arg(a) for a in self.args],
        }


def _json_arg(value):
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(value)
    return value


@dataclass
class SubscriptionPaidEvent:
    subscription_id_bytes32: str
    payer: str
    receiver: str
    amount: int
    token_address: str
    next_payment_due: int
    total_payments: int
    transaction_hash: Optional[str] = None
    block_number: Optional[int] = None

    @property
    def next_payment_due_at(self) -> datetime:
        return datetime.fromtimestamp(int(self.next_payment_due), tz=timezone.utc)


def parse_amount(amount: Union[int, float, Decimal, str], decimals: int = 6) -> int:
    """Decimal display amount -> integer base units (half-up on the last digit)."""
    scaled = Decimal(str(amount)) * (Decimal(10) ** decimals)
    return int(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def format_units(value: int, decimals: int = 6) -> str:
    return str(Decimal(int(value)) / (Decimal(10) ** decimals))


def uuid_to_bytes32(value: Union[str, uuid.UUID]) -> str:
    """Deterministic one-way mapping of a UUID to a 0x-prefixed bytes32 identifier."""
    canonical = str(uuid.UUID(str(value)))
    return Web3.to_hex(Web3.keccak(text=canonical))


def is_bytes32_hex(value: str) -> bool:
    return isinstance(value, str) and value.startswith("0x") and len(value) == 66


def to_bytes32_identifier(value: Union[str, uuid.UUID]) -> str:
    """Stored on-chain ids pass through; internal UUIDs are encoded."""
    if isinstance(value, str) and is_bytes32_hex(value):
        return value.lower()
    return uuid_to_bytes32(value)


def _get(obj, key, default=None):
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def _hex(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value.lower()
    return Web3.to_hex(value).lower()


def calculate_gas_cost(receipt) -> Optional[float]:
    """Gas paid for a receipt, in native units (USDC on Arc, 18 decimals)."""
    gas_used = _get(receipt, "gasUsed")
    gas_price = _get(receipt, "effectiveGasPrice")
    if gas_used is None or gas_price is None:
        return None
    return float(Decimal(int(gas_used) * int(gas_price)) / (Decimal(10) ** NATIVE_DECIMALS))


def receipt_succeeded(receipt) -> bool:
    return int(_get(receipt, "status", 0) or 0) == 1


def address_field(obj, key: str) -> Optional[str]:
    """Lowercased ``from`` / ``to`` of a receipt or transaction; None for contract creation."""
    value = _get(obj, key)
    return str(value).lower() if value else None


def _event_from_decoded(decoded) -> SubscriptionPaidEvent:
    args = decoded["args"]
    return SubscriptionPaidEvent(
        subscription_id_bytes32=_hex(args["subscriptionId"]),
        payer=str(args["payer"]).lower(),
        receiver=str(args["receiver"]).lower(),
        amount=int(args["amount"]),
        token_address=str(args["tokenAddress"]).lower(),
        next_payment_due=int(args["nextPaymentDue"]),
        total_payments=int(args["totalPayments"]),
        transaction_hash=_hex(decoded.get("transactionHash")),
        block_number=decoded.get("blockNumber"),
    )


class ChainClient:
    def __init__(self, rpc_url: str, request_timeout: int = 60):
        self.rpc_url = rpc_url
        self.w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(
            rpc_url,
            request_kwargs={"timeout": request_timeout}
        ))

    def _contract(self, address: str, abi: List[dict]):
        return self.w3.eth.contract(address=AsyncWeb3.to_checksum_address(address), abi=abi)

    async def chain_id(self) -> int:
        return await self.w3.eth.chain_id

    async def block_number(self) -> int:
        return await self.w3.eth.block_number

    async def read(self, call: ContractCall):
        contract = self._contract(call.address, call.abi)
        fn = contract.get_function_by_name(call.function_name)
        return await fn(*call.args).call()

    async def get_transaction_receipt(self, tx_hash: str):
        return await self.w3.eth.get_transaction_receipt(tx_hash)

    async def wait_for_transaction_receipt(self, tx_hash: str, timeout: float = 120):
        return await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)

    async def get_subscription_paid_events(
        self,
        contract_address: str,
        from_block: int,
        to_block: int,
        subscription_id_bytes32: Optional[str] = None,
    ) -> List[SubscriptionPaidEvent]:
        contract = self._contract(contract_address, SUBSCRIPTION_ABI)
        argument_filters = None
        if subscription_id_bytes32:
            argument_filters = {"subscriptionId": subscription_id_bytes32}
        logs = await contract.events.SubscriptionPaid().get_logs(
            argument_filters=argument_filters,
            from_block=from_block,
            to_block=to_block,
        )
        return [_event_from_decoded(log) for log in logs]

    def decode_subscription_paid(self, receipt, contract_address: str) -> List[SubscriptionPaidEvent]:
        """Decodes SubscriptionPaid logs emitted by ``contract_address`` in a receipt."""
        contract = self._contract(contract_address, SUBSCRIPTION_ABI)
        event = contract.events.SubscriptionPaid()
        wanted = contract_address.lower()
        decoded = []
        for log in _get(receipt, "logs", []) or []:
            if str(_get(log, "address", "")).lower() != wanted:
                continue
            try:
                decoded.append(_event_from_decoded(event.process_log(log)))
            except (MismatchedABI, LogTopicError):
                continue
        return decoded

    async def get_transaction(self, tx_hash: str):
        return await self.w3.eth.get_transaction(tx_hash)

    def decode_function_call(self, transaction, contract_address: str, abi: List[dict]) -> Optional[tuple]:
        """``(function name, arguments)`` of a transaction sent to ``contract_address``, else None."""
        if address_field(transaction, "to") != contract_address.lower():
            return None
        contract = self._contract(contract_address, abi)
        try:
            fn, params = contract.decode_function_input(_get(transaction, "input"))
        except (TypeError, ValueError):
            return None
        return fn.fn_name, {name: _hex(value) if isinstance(value, (bytes, bytearray)) else value
                            for name, value in params.items()}
