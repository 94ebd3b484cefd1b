import asyncio
import json
from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from payzed.core import deps
from payzed.core.chain import ZERO_ADDRESS, ChainClient, parse_amount
from payzed.core.config import settings
from payzed.core.db import Database
from payzed.core.polling import StatusPoller, status_value
from payzed.modules.notifications.broadcaster import PaymentBroadcaster, subscription_key
from payzed.modules.subscriptions import contract, policy, schemas, service
from payzed.modules.subscriptions.models import CancelledBy
from payzed.modules.tokens.allowance import AllowanceTracker, Loadable, load
from payzed.modules.tokens.service import get_allowance_args, get_approve_args, get_balance_args, get_token_address

router = APIRouter()


async def _get_or_404(db: AsyncSession, subscription_id: UUID):
    sub = await service.get_subscription_by_id(db, subscription_id)
    if not sub:
        raise HTTPException(status_code=404, detail="Subscription not found")
    return sub


@router.post("/build", response_model=schemas.SubscriptionBuildRead)
async def build_subscription(form: schemas.SubscriptionForm) -> Any:
    """
    Turns the creation form into the createSubscription call the wallet signs.
    """
    params = contract.CreateSubscriptionParams(
        receiver=form.receiver_wallet_address,
        payer=form.payer_wallet_address or ZERO_ADDRESS,
        amount=form.amount,
        currency=form.currency.value,
        period=form.period_seconds,
        description=form.description,
    )
    return {
        "create": contract.get_create_subscription_args(params).as_json(),
        "creation_fee": contract.calculate_creation_fee(form.amount),
        "period_seconds": form.period_seconds,
    }


@router.post("", response_model=schemas.SubscriptionSaveRead)
async def save_subscription(
    subscription_in: schemas.SubscriptionCreate,
    db: AsyncSession = Depends(deps.get_db)
) -> Any:
    """
    Saves a subscription after createSubscription confirmed on-chain.
    Saving the same on-chain id twice is reported, not rejected.
    """
    result = await service.create_subscription(db, subscription_in)
    if result.is_duplicate:
        return {"data": None, "is_duplicate": True, "error": None}
    return {"data": result.data, "is_duplicate": False, "error": None}


@router.get("/active", response_model=List[schemas.SubscriptionRead])
async def list_active_subscriptions(db: AsyncSession = Depends(deps.get_db)) -> Any:
    return await service.get_active_subscriptions(db)


@router.get("/by-chain-id/{subscription_id_bytes32}", response_model=schemas.SubscriptionRead)
async def read_subscription_by_chain_id(
    subscription_id_bytes32: str,
    db: AsyncSession = Depends(deps.get_db)
) -> Any:
    sub = await service.get_subscription_by_bytes32(db, subscription_id_bytes32)
    if not sub:
        raise HTTPException(status_code=404, detail="Subscription not found")
    return sub


USER_SCOPES = {
    "all": (service.get_all_subscriptions_by_user, service.get_all_subscriptions_by_user_paginated),
    "active": (service.get_active_subscriptions_by_user, service.get_active_subscriptions_by_user_paginated),
    "created": (service.get_subscriptions_i_created, service.get_subscriptions_i_created_paginated),
    "paying": (service.get_subscriptions_i_pay, service.get_subscriptions_i_pay_paginated),
}


@router.get("/users/{address}", response_model=schemas.SubscriptionPage)
async def list_user_subscriptions(
    address: str,
    scope: str = Query("all", pattern="^(all|active|created|paying)$"),
    page: Optional[int] = Query(None, ge=0),
    db: AsyncSession = Depends(deps.get_db)
) -> Any:
    """Without ``page`` every matching row comes back and ``has_more`` is False."""
    list_all, list_page = USER_SCOPES[scope]
    if page is not None:
        return await list_page(db, address, page)
    rows = await list_all(db, address)
    return {"data": rows, "has_more": False}


@router.post("/cancellations/{cancellation_id}/notified", status_code=status.HTTP_204_NO_CONTENT)
async def mark_cancellation_notified(
    cancellation_id: UUID,
    db: AsyncSession = Depends(deps.get_db)
):
    await service.mark_cancellation_as_notified(db, cancellation_id)


@router.get("/{subscription_id}", response_model=schemas.SubscriptionRead)
async def read_subscription(
    subscription_id: UUID,
    db: AsyncSession = Depends(deps.get_db)
) -> Any:
    return await _get_or_404(db, subscription_id)


@router.get("/{subscription_id}/payment-quote", response_model=schemas.PaymentQuoteRead)
async def get_payment_quote(
    subscription_id: UUID,
    wallet: str,
    chain_id: Optional[int] = None,
    db: AsyncSession = Depends(deps.get_db),
    chain: ChainClient = Depends(deps.get_chain),
) -> Any:
    """
    Everything the pay button needs: allowance, balance and the on-chain
    record are read in parallel, then folded into one eligibility verdict.
    """
    sub = await _get_or_404(db, subscription_id)
    spender = contract.subscription_contract_address()
    currency = getattr(sub.currency, "value", sub.currency)
    token = get_token_address(currency)

    renewal_fee = contract.calculate_renewal_fee(sub.amount)
    total_amount = sub.amount + renewal_fee
    required = parse_amount(total_amount, settings.TOKEN_DECIMALS)

    allowance, balance, on_chain = await asyncio.gather(
        load(chain.read(get_allowance_args(token, wallet, spender))),
        load(chain.read(get_balance_args(token, wallet))),
        load(chain.read(contract.get_subscription_read_args(sub.subscription_id_bytes32))),
    )

    tracker = AllowanceTracker(settings.CHAIN_ID)
    allowance_state = tracker.evaluate(allowance, Loadable.loaded(required), chain_id)

    eligibility = policy.payment_eligibility(
        sub,
        wallet,
        on_chain_registered=contract.is_registered_on_chain(on_chain),
        needs_approval=tracker.needs_approval,
        renewal_fee=renewal_fee,
    )
    allowed, reason = eligibility.allowed, eligibility.reason
    if allowed:
        try:
            policy.check_balance(balance, required, settings.TOKEN_DECIMALS, total_amount, currency)
        except policy.InsufficientBalanceError as e:
            allowed, reason = False, str(e)

    return {
        "allowed": allowed,
        "reason": reason,
        "label": eligibility.label,
        "renewal_fee": renewal_fee,
        "total_amount": total_amount,
        "allowance_state": allowance_state.value,
        "needs_approval": tracker.needs_approval,
        "on_chain_status": contract.on_chain_status_label(on_chain.value) if on_chain.is_loaded else None,
        "approve": get_approve_args(token, required, spender).as_json() if tracker.needs_approval else None,
        "pay": contract.get_pay_subscription_args(sub.subscription_id_bytes32).as_json() if allowed else None,
    }


@router.post("/{subscription_id}/payments", status_code=status.HTTP_202_ACCEPTED)
async def report_payment(
    subscription_id: UUID,
    report: schemas.PaymentReport,
    db: AsyncSession = Depends(deps.get_db),
    worker=Depends(deps.get_worker),
) -> Any:
    """
    The paying wallet reports its paySubscription hash. Recording happens
    once the receipt confirms; the event watcher may get there first.
    """
    sub = await _get_or_404(db, subscription_id)
    await worker.enqueue_job(
        "reconcile_subscription_receipt",
        subscription_id_bytes32=sub.subscription_id_bytes32,
        transaction_hash=report.transaction_hash,
        payer=report.payer_wallet_address,
    )
    return {"status": "queued", "transaction_hash": report.transaction_hash}


@router.get("/{subscription_id}/payments", response_model=List[schemas.SubscriptionPaymentRead])
async def list_payments(
    subscription_id: UUID,
    db: AsyncSession = Depends(deps.get_db)
) -> Any:
    await _get_or_404(db, subscription_id)
    return await service.get_subscription_payments(db, subscription_id)


@router.get("/{subscription_id}/cancel-args", response_model=schemas.ContractCallRead)
async def get_cancel_args(
    subscription_id: UUID,
    by: CancelledBy,
    db: AsyncSession = Depends(deps.get_db)
) -> Any:
    sub = await _get_or_404(db, subscription_id)
    if by == CancelledBy.CREATOR:
        return contract.get_cancel_by_creator_args(sub.subscription_id_bytes32).as_json()
    return contract.get_cancel_by_payer_args(sub.subscription_id_bytes32).as_json()


@router.post("/{subscription_id}/cancellations", response_model=schemas.CancellationRead)
async def cancel_subscription(
    subscription_id: UUID,
    cancellation_in: schemas.CancellationCreate,
    db: AsyncSession = Depends(deps.get_db)
) -> Any:
    """Records a cancellation that already went through on-chain."""
    sub = await _get_or_404(db, subscription_id)
    try:
        target = policy.check_cancellation(sub, cancellation_in.cancelled_by, cancellation_in.cancelled_by_wallet_address)
    except policy.CancellationNotAllowedError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except policy.InvalidStatusTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))

    cancellation = await service.create_subscription_cancellation(db, subscription_id, cancellation_in)
    await service.update_subscription(db, subscription_id, schemas.SubscriptionUpdate(status=target))
    return cancellation


@router.get("/{subscription_id}/cancellation", response_model=schemas.CancellationRead)
async def read_cancellation(
    subscription_id: UUID,
    db: AsyncSession = Depends(deps.get_db)
) -> Any:
    cancellation = await service.get_subscription_cancellation(db, subscription_id)
    if not cancellation:
        raise HTTPException(status_code=404, detail="Cancellation not found")
    return cancellation


def _snapshot_fingerprint(sub):
    return (status_value(sub), sub.total_payments, sub.next_payment_due)


@router.get("/{subscription_id}/stream")
async def stream_subscription(
    subscription_id: UUID,
    database: Database = Depends(deps.get_database),
    broadcaster: PaymentBroadcaster = Depends(deps.get_broadcaster),
):
    """
    SSE stream of subscription snapshots. Polls while the subscription is
    pending or active; a recorded payment pushes a fresh snapshot at once.
    """
    async def fetch():
        async with database.session() as db:
            return await service.get_subscription_by_id(db, subscription_id)

    async def event_generator():
        key = subscription_key(subscription_id)
        queue = await broadcaster.connect(key)
        poller = StatusPoller(
            fetch,
            settings.SUBSCRIPTION_POLL_SECONDS,
            policy.POLLED_STATUSES,
            fingerprint=_snapshot_fingerprint,
            wake=queue,
            name=f"subscription {subscription_id}",
        )
        try:
            async for sub in poller:
                payload = schemas.SubscriptionRead.model_validate(sub).model_dump(mode="json")
                yield f"data: {json.dumps(payload)}\n\n"
        finally:
            poller.cancel()
            await broadcaster.disconnect(key, queue)

    return StreamingResponse(event_generator(), media_type="text/event-stream")
