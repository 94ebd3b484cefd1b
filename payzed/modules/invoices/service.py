import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from payzed.core.abi import PAYZED_ABI
from payzed.core.chain import address_field, calculate_gas_cost, receipt_succeeded
from payzed.core.errors import NotFoundError, classify_store_error
from payzed.core.store import InsertResult, insert_with_retry
from payzed.modules.invoices import models, schemas

logger = logging.getLogger(__name__)

PAGE_SIZE = 10


async def _first(db: AsyncSession, stmt):
    try:
        result = await db.execute(stmt.limit(1))
    except Exception as e:
        await db.rollback()
        raise classify_store_error(e) from e
    return result.scalars().first()


async def create_invoice(db: AsyncSession, data: schemas.InvoiceCreate) -> InsertResult:
    """Saves an invoice after createInvoice confirmed; duplicate saves come back flagged."""
    values = data.model_dump()
    values["status"] = models.InvoiceStatus.PENDING
    result = await insert_with_retry(db, models.Invoice, values, label="invoice")
    if result.is_duplicate:
        logger.info(f"[Invoices] {data.invoice_id_bytes32} already saved")
    return result


async def get_invoice_by_id(db: AsyncSession, invoice_id: UUID) -> Optional[models.Invoice]:
    return await _first(db, select(models.Invoice).where(models.Invoice.id == invoice_id))


async def get_invoice_by_bytes32(db: AsyncSession, invoice_id_bytes32: str) -> Optional[models.Invoice]:
    return await _first(
        db, select(models.Invoice).where(models.Invoice.invoice_id_bytes32 == invoice_id_bytes32.lower())
    )


async def get_invoices_by_user_paginated(db: AsyncSession, address: str, page: int = 0) -> schemas.InvoicePage:
    address = address.lower()
    stmt = (
        select(models.Invoice)
        .where(or_(
            models.Invoice.creator_wallet_address == address,
            models.Invoice.receiver_wallet_address == address,
            models.Invoice.payer_wallet_address == address,
        ))
        .order_by(models.Invoice.created_at.desc())
        .offset(page * PAGE_SIZE)
        .limit(PAGE_SIZE)
    )
    try:
        result = await db.execute(stmt)
    except Exception as e:
        await db.rollback()
        raise classify_store_error(e) from e
    rows = list(result.scalars().all())
    return schemas.InvoicePage(
        data=[schemas.InvoiceRead.model_validate(r) for r in rows],
        has_more=len(rows) == PAGE_SIZE,
    )


async def mark_invoice_paid(
    db: AsyncSession,
    invoice_id: UUID,
    transaction_hash: str,
    payer_wallet_address: str,
    gas_cost: Optional[float] = None,
) -> tuple:
    """
    Moves a pending invoice to paid. Returns ``(invoice, changed)``;
    ``changed`` is False when it was already paid, in which case the stored
    transaction is left untouched.
    """
    now = datetime.now(timezone.utc)
    try:
        result = await db.execute(
            update(models.Invoice)
            .where(
                models.Invoice.id == invoice_id,
                models.Invoice.status == models.InvoiceStatus.PENDING,
            )
            .values(
                status=models.InvoiceStatus.PAID,
                transaction_hash=transaction_hash.lower(),
                payer_wallet_address=payer_wallet_address.lower(),
                paid_at=now,
                gas_cost=gas_cost,
                updated_at=now,
            )
        )
        await db.commit()
    except Exception as e:
        await db.rollback()
        raise classify_store_error(e) from e

    invoice = await db.get(models.Invoice, invoice_id, populate_existing=True)
    if invoice is None:
        raise NotFoundError(f"Invoice {invoice_id} not found")
    return invoice, result.rowcount > 0


async def settle_invoice_receipt(database, chain, invoice_id: UUID, transaction_hash: str, payer_wallet_address: str,
                                 contract_address: str, timeout: float = 120) -> Optional[models.Invoice]:
    """
    Waits for the reported payInvoice transaction and marks the invoice paid.
    The transaction must have succeeded, been sent by the reporting wallet
    to the PayZed contract, and call payInvoice for this very invoice;
    otherwise nothing changes.
    """
    async with database.session() as db:
        invoice = await get_invoice_by_id(db, invoice_id)
    if invoice is None:
        logger.warning(f"[Invoices] Payment {transaction_hash} reported for unknown invoice {invoice_id}")
        return None

    receipt = await chain.wait_for_transaction_receipt(transaction_hash, timeout=timeout)
    if not receipt_succeeded(receipt):
        logger.warning(f"[Invoices] Payment {transaction_hash} for {invoice_id} reverted")
        return None
    if address_field(receipt, "to") != contract_address.lower():
        logger.warning(f"[Invoices] {transaction_hash} was not sent to {contract_address}")
        return None
    if address_field(receipt, "from") != payer_wallet_address.lower():
        logger.warning(f"[Invoices] {transaction_hash} was not sent by {payer_wallet_address}")
        return None

    transaction = await chain.get_transaction(transaction_hash)
    call = chain.decode_function_call(transaction, contract_address, PAYZED_ABI)
    paid_id = call[1].get("invoiceId") if call and call[0] == "payInvoice" else None
    if str(paid_id).lower() != invoice.invoice_id_bytes32.lower():
        logger.warning(f"[Invoices] {transaction_hash} does not pay invoice {invoice_id}")
        return None

    async with database.session() as db:
        invoice, changed = await mark_invoice_paid(
            db, invoice_id, transaction_hash, payer_wallet_address, calculate_gas_cost(receipt)
        )
    if changed:
        logger.info(f"[Invoices] Invoice {invoice_id} paid in {transaction_hash}")
    return invoice if changed else None
