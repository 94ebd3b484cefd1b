import uuid

import pytest

from conftest import (
    CREATOR,
    OTHER_WALLET,
    PAYER,
    PAYZED_CONTRACT,
    RECEIVER,
    make_pay_invoice_transaction,
    make_receipt,
    tx,
)
from payzed.core.chain import uuid_to_bytes32
from payzed.core.config import settings
from payzed.modules.invoices import contract, schemas, service
from payzed.modules.invoices.models import InvoiceStatus

pytestmark = pytest.mark.db


def invoice_in(**overrides):
    invoice_id = uuid.uuid4()
    values = dict(
        id=invoice_id,
        invoice_id_bytes32=uuid_to_bytes32(invoice_id),
        creator_wallet_address=CREATOR,
        receiver_wallet_address=RECEIVER,
        amount=250.0,
        currency="EURC",
        description="Logo design",
    )
    values.update(overrides)
    return schemas.InvoiceCreate(**values)


def test_create_invoice_args():
    invoice_id = uuid.uuid4()
    call = contract.get_create_invoice_args(invoice_id, RECEIVER, 250, "EURC", "Logo design")

    assert call.address == settings.PAYZED_CONTRACT_ADDRESS
    assert call.args == [uuid_to_bytes32(invoice_id), RECEIVER, 250_000_000, settings.EURC_CONTRACT_ADDRESS, "Logo design"]
    assert contract.calculate_creation_fee(250) == pytest.approx(0.125)


async def test_create_and_duplicate(db):
    data = invoice_in()
    created = await service.create_invoice(db, data)
    duplicate = await service.create_invoice(db, data)

    assert created.data.status == InvoiceStatus.PENDING
    assert duplicate.is_duplicate is True

    page = await service.get_invoices_by_user_paginated(db, "0x" + RECEIVER[2:].upper())
    assert len(page.data) == 1
    assert page.has_more is False


async def test_lookup_by_bytes32(db):
    data = invoice_in()
    await service.create_invoice(db, data)

    found = await service.get_invoice_by_bytes32(db, data.invoice_id_bytes32)
    assert found.id == data.id
    assert await service.get_invoice_by_id(db, uuid.uuid4()) is None


async def test_mark_paid_only_once(db):
    data = invoice_in()
    await service.create_invoice(db, data)

    invoice, changed = await service.mark_invoice_paid(db, data.id, tx(1), PAYER)
    assert changed is True
    assert invoice.status == InvoiceStatus.PAID
    assert invoice.payer_wallet_address == PAYER

    invoice, changed = await service.mark_invoice_paid(db, data.id, tx(2), PAYER)
    assert changed is False
    assert invoice.transaction_hash == tx(1)


async def test_settle_receipt(database, db, chain):
    data = invoice_in()
    await service.create_invoice(db, data)
    for n, status in [(3, 0), (4, 1)]:
        chain.receipts[tx(n)] = make_receipt(tx(n), status=status, to=PAYZED_CONTRACT)
        chain.transactions[tx(n)] = make_pay_invoice_transaction(data.invoice_id_bytes32)

    assert await service.settle_invoice_receipt(database, chain, data.id, tx(3), PAYER, PAYZED_CONTRACT) is None
    paid = await service.settle_invoice_receipt(database, chain, data.id, tx(4), PAYER, PAYZED_CONTRACT)

    assert paid.status == InvoiceStatus.PAID
    assert paid.gas_cost == pytest.approx(0.0001)
    # Second report of the same payment changes nothing
    assert await service.settle_invoice_receipt(database, chain, data.id, tx(4), PAYER, PAYZED_CONTRACT) is None


@pytest.mark.parametrize("receipt_overrides, transaction_overrides, pays_other_invoice", [
    # A token transfer
    (dict(to=settings.EURC_CONTRACT_ADDRESS), dict(to=settings.EURC_CONTRACT_ADDRESS), False),
    # Sent by someone other than the reporting wallet
    (dict(sender=OTHER_WALLET), dict(sender=OTHER_WALLET), False),
    # A different call on the same contract
    (dict(), dict(function_name="createInvoice"), False),
    # Paying another invoice
    (dict(), dict(), True),
])
async def test_settle_ignores_transactions_that_do_not_pay_this_invoice(
    database, db, chain, receipt_overrides, transaction_overrides, pays_other_invoice
):
    data = invoice_in()
    await service.create_invoice(db, data)
    paid_id = uuid_to_bytes32(uuid.uuid4()) if pays_other_invoice else data.invoice_id_bytes32
    receipt_values = {"to": PAYZED_CONTRACT, **receipt_overrides}
    chain.receipts[tx(5)] = make_receipt(tx(5), **receipt_values)
    chain.transactions[tx(5)] = make_pay_invoice_transaction(paid_id, **transaction_overrides)

    assert await service.settle_invoice_receipt(database, chain, data.id, tx(5), PAYER, PAYZED_CONTRACT) is None

    async with database.session() as fresh:
        stored = await service.get_invoice_by_id(fresh, data.id)
    assert stored.status == InvoiceStatus.PENDING
    assert stored.transaction_hash is None


async def test_settle_unknown_invoice(database, chain):
    assert await service.settle_invoice_receipt(database, chain, uuid.uuid4(), tx(6), PAYER, PAYZED_CONTRACT) is None
