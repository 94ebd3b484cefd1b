import asyncio
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from payzed.core import deps
from payzed.core.chain import ChainClient
from payzed.core.config import settings
from payzed.modules.subscriptions.contract import subscription_contract_address
from payzed.modules.tokens import schemas, service
from payzed.modules.tokens.allowance import AllowanceTracker, InvalidAllowanceTransition, Loadable, confirm_approval, load

router = APIRouter()


def spender_for(purpose: schemas.AllowancePurpose) -> str:
    if purpose == schemas.AllowancePurpose.CREATE_INVOICE:
        return service.default_spender()
    return subscription_contract_address()


async def read_required(chain: ChainClient, token_address: str, amount: float) -> Loadable:
    """Amount in base units, using the token's own decimals."""
    decimals = await load(chain.read(service.get_decimals_args(token_address)))
    if not decimals.is_loaded:
        return Loadable.failed(decimals.error)
    return Loadable.loaded(service.parse_token_amount(amount, int(decimals.value)))


@router.get("/allowance", response_model=schemas.AllowanceRead)
async def get_allowance(
    owner: str,
    currency: schemas.Currency,
    amount: float = Query(gt=0),
    purpose: schemas.AllowancePurpose = schemas.AllowancePurpose.PAY_SUBSCRIPTION,
    chain_id: Optional[int] = None,
    chain: ChainClient = Depends(deps.get_chain),
) -> Any:
    """
    Where the wallet stands on the token allowance for ``purpose``.
    Any read that is still missing or failed reports ``insufficient``.
    """
    token = service.get_token_address(currency)
    spender = spender_for(purpose)

    allowance, required = await asyncio.gather(
        load(chain.read(service.get_allowance_args(token, owner, spender))),
        read_required(chain, token, amount),
    )
    tracker = AllowanceTracker(settings.CHAIN_ID)
    state = tracker.evaluate(allowance, required, chain_id)

    approve = None
    if tracker.needs_approval and required.is_loaded:
        approve = service.get_approve_args(token, required.value, spender).as_json()

    return schemas.AllowanceRead(
        state=state.value,
        allowance=str(allowance.value) if allowance.is_loaded else None,
        required=str(required.value) if required.is_loaded else None,
        error=allowance.error or required.error,
        approve=approve,
    )


@router.post("/approvals", response_model=schemas.AllowanceRead)
async def confirm_token_approval(
    approval_in: schemas.ApprovalConfirm,
    chain: ChainClient = Depends(deps.get_chain),
) -> Any:
    """
    Waits for an approve transaction the wallet broadcast, then re-reads the
    allowance.
    """
    token = service.get_token_address(approval_in.currency)
    spender = spender_for(approval_in.purpose)
    required = await read_required(chain, token, approval_in.amount)

    tracker = AllowanceTracker(settings.CHAIN_ID)
    # The allowance before approval is never trusted
    tracker.evaluate(Loadable.not_loaded(), required, approval_in.chain_id)
    try:
        state = await confirm_approval(
            chain,
            tracker,
            approval_in.tx_hash,
            service.get_allowance_args(token, approval_in.owner, spender),
            required,
            approval_in.chain_id,
            timeout=settings.RECEIPT_TIMEOUT_SECONDS,
        )
    except InvalidAllowanceTransition as e:
        raise HTTPException(status_code=409, detail=str(e))

    return schemas.AllowanceRead(
        state=state.value,
        required=str(required.value) if required.is_loaded else None,
        error=required.error,
    )
