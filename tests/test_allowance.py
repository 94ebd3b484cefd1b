import pytest

from conftest import PAYER, make_receipt, tx
from payzed.core.config import settings
from payzed.modules.tokens import service as token_service
from payzed.modules.tokens.allowance import (
    AllowanceState,
    AllowanceTracker,
    InvalidAllowanceTransition,
    Loadable,
    confirm_approval,
    is_sufficient,
    load,
)

CHAIN = 5042002


def test_sufficient_needs_every_precondition():
    required = Loadable.loaded(1_000)
    assert is_sufficient(Loadable.loaded(1_000), required, CHAIN, CHAIN) is True
    assert is_sufficient(Loadable.loaded(5_000), required, CHAIN, CHAIN) is True

    assert is_sufficient(Loadable.loaded(999), required, CHAIN, CHAIN) is False
    assert is_sufficient(Loadable.loaded(5_000), required, 1, CHAIN) is False
    assert is_sufficient(Loadable.loaded(5_000), required, None, CHAIN) is False
    assert is_sufficient(Loadable.not_loaded(), required, CHAIN, CHAIN) is False
    assert is_sufficient(Loadable.failed("rpc error"), required, CHAIN, CHAIN) is False
    assert is_sufficient(Loadable.loaded(5_000), Loadable.not_loaded(), CHAIN, CHAIN) is False
    assert is_sufficient(Loadable.loaded(0), Loadable.loaded(0), CHAIN, CHAIN) is False


def test_tracker_defaults_to_needing_approval():
    tracker = AllowanceTracker(CHAIN)
    assert tracker.state == AllowanceState.UNKNOWN
    assert tracker.needs_approval

    assert tracker.evaluate(Loadable.failed("timeout"), Loadable.loaded(10), CHAIN) == AllowanceState.INSUFFICIENT
    assert tracker.evaluate(Loadable.loaded(10), Loadable.loaded(10), CHAIN) == AllowanceState.SUFFICIENT
    assert not tracker.needs_approval


def test_approval_only_from_insufficient():
    tracker = AllowanceTracker(CHAIN)
    with pytest.raises(InvalidAllowanceTransition):
        tracker.begin_approval()

    tracker.evaluate(Loadable.loaded(0), Loadable.loaded(10), CHAIN)
    tracker.begin_approval()
    assert tracker.state == AllowanceState.APPROVING

    # Reads arriving mid-approval do not move the state
    assert tracker.evaluate(Loadable.loaded(10), Loadable.loaded(10), CHAIN) == AllowanceState.APPROVING

    tracker.approval_submitted(tx(1))
    assert tracker.state == AllowanceState.CONFIRMING
    assert tracker.approval_confirmed(Loadable.loaded(10), Loadable.loaded(10), CHAIN) == AllowanceState.SUFFICIENT


def test_failed_approval_goes_back_to_insufficient():
    tracker = AllowanceTracker(CHAIN)
    tracker.evaluate(Loadable.loaded(0), Loadable.loaded(10), CHAIN)
    tracker.begin_approval()
    tracker.approval_failed()
    assert tracker.state == AllowanceState.INSUFFICIENT


async def test_load_folds_errors():
    async def boom():
        raise RuntimeError("execution reverted")

    async def ok():
        return 42

    failed = await load(boom())
    assert failed.state.value == "failed"
    assert "execution reverted" in failed.error
    assert (await load(ok())).value == 42


async def test_confirm_approval_refetches_allowance(chain):
    chain.receipts[tx(7)] = make_receipt(tx(7))
    chain.reads["allowance"] = 10_005_000
    call = token_service.get_allowance_args(settings.USDC_CONTRACT_ADDRESS, PAYER)

    tracker = AllowanceTracker(CHAIN)
    tracker.evaluate(Loadable.not_loaded(), Loadable.loaded(10_005_000), CHAIN)
    state = await confirm_approval(chain, tracker, tx(7), call, Loadable.loaded(10_005_000), CHAIN)

    assert state == AllowanceState.SUFFICIENT
    assert tracker.approval_tx_hash == tx(7)


async def test_confirm_approval_reverted(chain):
    chain.receipts[tx(8)] = make_receipt(tx(8), status=0)
    chain.reads["allowance"] = 10_005_000
    call = token_service.get_allowance_args(settings.USDC_CONTRACT_ADDRESS, PAYER)

    tracker = AllowanceTracker(CHAIN)
    tracker.evaluate(Loadable.not_loaded(), Loadable.loaded(10_005_000), CHAIN)
    state = await confirm_approval(chain, tracker, tx(8), call, Loadable.loaded(10_005_000), CHAIN)

    assert state == AllowanceState.INSUFFICIENT
