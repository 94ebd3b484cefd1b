import json
import uuid
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from payzed.core import deps
from payzed.core.chain import uuid_to_bytes32
from payzed.core.config import settings
from payzed.core.db import Database
from payzed.core.polling import StatusPoller
from payzed.modules.invoices import contract, schemas, service
from payzed.modules.invoices.models import InvoiceStatus
from payzed.modules.notifications.broadcaster import PaymentBroadcaster, invoice_key

router = APIRouter()

# Invoices only change while waiting for payment
POLLED_STATUSES = frozenset({InvoiceStatus.PENDING.value})


async def _get_or_404(db: AsyncSession, invoice_id: UUID):
    invoice = await service.get_invoice_by_id(db, invoice_id)
    if not invoice:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return invoice


@router.post("/build", response_model=schemas.InvoiceBuildRead)
async def build_invoice(form: schemas.InvoiceForm) -> Any:
    """
    Picks the invoice id and returns the createInvoice call for it. The
    same id is sent back on save.
    """
    invoice_id = uuid.uuid4()
    return {
        "id": invoice_id,
        "invoice_id_bytes32": uuid_to_bytes32(invoice_id),
        "create": contract.get_create_invoice_args(
            invoice_id, form.receiver_wallet_address, form.amount, form.currency.value, form.description
        ).as_json(),
        "creation_fee": contract.calculate_creation_fee(form.amount),
    }


@router.post("", response_model=schemas.InvoiceSaveRead)
async def save_invoice(
    invoice_in: schemas.InvoiceCreate,
    db: AsyncSession = Depends(deps.get_db)
) -> Any:
    result = await service.create_invoice(db, invoice_in)
    if result.is_duplicate:
        return {"data": None, "is_duplicate": True, "error": None}
    return {"data": result.data, "is_duplicate": False, "error": None}


@router.get("/users/{address}", response_model=schemas.InvoicePage)
async def list_user_invoices(
    address: str,
    page: int = Query(0, ge=0),
    db: AsyncSession = Depends(deps.get_db)
) -> Any:
    return await service.get_invoices_by_user_paginated(db, address, page)


@router.get("/{invoice_id}", response_model=schemas.InvoiceRead)
async def read_invoice(
    invoice_id: UUID,
    db: AsyncSession = Depends(deps.get_db)
) -> Any:
    return await _get_or_404(db, invoice_id)


@router.get("/{invoice_id}/pay-args", response_model=schemas.ContractCallRead)
async def get_pay_args(
    invoice_id: UUID,
    db: AsyncSession = Depends(deps.get_db)
) -> Any:
    invoice = await _get_or_404(db, invoice_id)
    if invoice.status != InvoiceStatus.PENDING:
        raise HTTPException(status_code=409, detail="Invoice is already paid")
    return contract.get_pay_invoice_args(invoice.invoice_id_bytes32).as_json()


@router.post("/{invoice_id}/payments", status_code=status.HTTP_202_ACCEPTED)
async def report_invoice_payment(
    invoice_id: UUID,
    report: schemas.InvoicePaymentReport,
    db: AsyncSession = Depends(deps.get_db),
    worker=Depends(deps.get_worker),
) -> Any:
    invoice = await _get_or_404(db, invoice_id)
    if invoice.status != InvoiceStatus.PENDING:
        raise HTTPException(status_code=409, detail="Invoice is already paid")
    await worker.enqueue_job(
        "reconcile_invoice_receipt",
        invoice_id=invoice.id,
        transaction_hash=report.transaction_hash,
        payer=report.payer_wallet_address,
    )
    return {"status": "queued", "transaction_hash": report.transaction_hash}


@router.get("/{invoice_id}/stream")
async def stream_invoice(
    invoice_id: UUID,
    database: Database = Depends(deps.get_database),
    broadcaster: PaymentBroadcaster = Depends(deps.get_broadcaster),
):
    """SSE stream of invoice snapshots; ends once the invoice is paid."""
    async def fetch():
        async with database.session() as db:
            return await service.get_invoice_by_id(db, invoice_id)

    async def event_generator():
        key = invoice_key(invoice_id)
        queue = await broadcaster.connect(key)
        poller = StatusPoller(
            fetch,
            settings.INVOICE_POLL_SECONDS,
            POLLED_STATUSES,
            wake=queue,
            name=f"invoice {invoice_id}",
        )
        try:
            async for invoice in poller:
                payload = schemas.InvoiceRead.model_validate(invoice).model_dump(mode="json")
                yield f"data: {json.dumps(payload)}\n\n"
        finally:
            poller.cancel()
            await broadcaster.disconnect(key, queue)

    return StreamingResponse(event_generator(), media_type="text/event-stream")
