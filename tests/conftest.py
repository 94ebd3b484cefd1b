import os

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DB_CREATE_ALL"] = "true"
os.environ["DB_RETRY_DELAY_SECONDS"] = "0"
os.environ["EVENT_WATCHER_ENABLED"] = "false"
os.environ["PAYMENT_SUCCESS_DELAY_SECONDS"] = "0"
os.environ["SUBSCRIPTION_POLL_SECONDS"] = "0.05"
os.environ["INVOICE_POLL_SECONDS"] = "0.05"
os.environ["PAYZED_CONTRACT_ADDRESS"] = "0x1111111111111111111111111111111111111111"
os.environ["INVOPAY_SUBSCRIPTION_CONTRACT_ADDRESS"] = "0x2222222222222222222222222222222222222222"

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from payzed.core.chain import SubscriptionPaidEvent, uuid_to_bytes32
from payzed.core.db import Database
from payzed.modules.subscriptions import schemas as subscription_schemas
from payzed.modules.subscriptions import service as subscription_service

SUBSCRIPTION_CONTRACT = os.environ["INVOPAY_SUBSCRIPTION_CONTRACT_ADDRESS"]
PAYZED_CONTRACT = os.environ["PAYZED_CONTRACT_ADDRESS"]
CREATOR = "0xaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa"
RECEIVER = "0xbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbb"
PAYER = "0xcccccccccccccccccccccccccccccccccccccccc"
OTHER_WALLET = "0xdddddddddddddddddddddddddddddddddddddddd"


def pytest_configure(config):
    config.addinivalue_line("markers", "db: mark test as database-backed")


class PgError(Exception):
    """Driver error carrying a SQLSTATE, like asyncpg/psycopg exceptions do."""

    def __init__(self, message, sqlstate):
        super().__init__(message)
        self.sqlstate = sqlstate


class FakeSession:
    """Stand-in AsyncSession whose execute/commit can be made to fail."""

    def __init__(self, execute_error=None, commit_errors=()):
        self.execute_error = execute_error
        self.commit_errors = list(commit_errors)
        self.added = []
        self.commits = 0
        self.rollbacks = 0

    async def execute(self, stmt):
        if self.execute_error:
            raise self.execute_error

    def add(self, row):
        self.added.append(row)

    async def commit(self):
        self.commits += 1
        if self.commit_errors:
            raise self.commit_errors.pop(0)

    async def rollback(self):
        self.rollbacks += 1

    async def refresh(self, row):
        pass


class FakeChain:
    """
    ChainClient double. ``reads`` maps a function name to a value, an
    exception to raise, or a callable taking the ContractCall.
    """

    def __init__(self):
        self.reads = {}
        self.receipts = {}
        self.decoded = {}
        self.events = []
        self.transactions = {}
        self.head = 100
        self.calls = []

    async def read(self, call):
        self.calls.append(call)
        if call.function_name not in self.reads:
            raise LookupError(f"no fake value for {call.function_name}")
        value = self.reads[call.function_name]
        if isinstance(value, Exception):
            raise value
        if callable(value):
            return value(call)
        return value

    async def chain_id(self):
        return 5042002

    async def block_number(self):
        return self.head

    async def get_transaction_receipt(self, tx_hash):
        if tx_hash not in self.receipts:
            raise LookupError(f"receipt {tx_hash} not found")
        return self.receipts[tx_hash]

    async def wait_for_transaction_receipt(self, tx_hash, timeout=120):
        return await self.get_transaction_receipt(tx_hash)

    async def get_subscription_paid_events(self, contract_address, from_block, to_block, subscription_id_bytes32=None):
        return [
            e for e in self.events
            if from_block <= e.block_number <= to_block
            and (subscription_id_bytes32 is None or e.subscription_id_bytes32 == subscription_id_bytes32)
        ]

    def decode_subscription_paid(self, receipt, contract_address):
        return self.decoded.get(receipt["transactionHash"], [])

    async def get_transaction(self, tx_hash):
        if tx_hash not in self.transactions:
            raise LookupError(f"transaction {tx_hash} not found")
        return self.transactions[tx_hash]

    def decode_function_call(self, transaction, contract_address, abi):
        if transaction["to"].lower() != contract_address.lower():
            return None
        return transaction.get("call")


def make_receipt(tx_hash, status=1, gas_used=50_000, gas_price=2 * 10**9, sender=PAYER, to=SUBSCRIPTION_CONTRACT):
    return {
        "transactionHash": tx_hash,
        "from": sender,
        "to": to,
        "status": status,
        "gasUsed": gas_used,
        "effectiveGasPrice": gas_price,
        "logs": [],
    }


def make_pay_invoice_transaction(invoice_id_bytes32, sender=PAYER, to=PAYZED_CONTRACT, function_name="payInvoice"):
    return {"from": sender, "to": to, "call": (function_name, {"invoiceId": invoice_id_bytes32})}


def make_event(subscription_id_bytes32, tx_hash, payer=PAYER, total_payments=1, block_number=100, due=None):
    due = due or datetime.now(timezone.utc) + timedelta(days=30)
    return SubscriptionPaidEvent(
        subscription_id_bytes32=subscription_id_bytes32,
        payer=payer,
        receiver=RECEIVER,
        amount=10_000_000,
        token_address="0x3600000000000000000000000000000000000000",
        next_payment_due=int(due.timestamp()),
        total_payments=total_payments,
        transaction_hash=tx_hash,
        block_number=block_number,
    )


def tx(n: int) -> str:
    return "0x" + f"{n:064x}"


def subscription_in(**overrides) -> subscription_schemas.SubscriptionCreate:
    values = dict(
        subscription_id_bytes32=uuid_to_bytes32(uuid.uuid4()),
        creator_wallet_address=CREATOR,
        receiver_wallet_address=RECEIVER,
        amount=10.0,
        currency="USDC",
        period_seconds=30 * 86400,
        next_payment_due=datetime.now(timezone.utc),
        description="Monthly hosting",
    )
    values.update(overrides)
    return subscription_schemas.SubscriptionCreate(**values)


@pytest.fixture
async def database():
    database = Database("sqlite+aiosqlite:///:memory:")
    await database.create_all()
    yield database
    await database.dispose()


@pytest.fixture
async def db(database):
    async with database.session() as session:
        yield session


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def create_subscription(db):
    async def _create(**overrides):
        result = await subscription_service.create_subscription(db, subscription_in(**overrides))
        return result.data
    return _create
