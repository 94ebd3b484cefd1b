from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from conftest import CREATOR, OTHER_WALLET, PAYER
from payzed.core.chain import ZERO_ADDRESS
from payzed.modules.subscriptions import policy
from payzed.modules.subscriptions.models import SubscriptionStatus
from payzed.modules.tokens.allowance import Loadable

NOW = datetime(2026, 6, 1, tzinfo=timezone.utc)


def make_sub(**overrides):
    values = dict(
        status=SubscriptionStatus.PENDING,
        subscription_id_bytes32="0x" + "ab" * 32,
        creator_wallet_address=CREATOR,
        payer_wallet_address=ZERO_ADDRESS,
        amount=10.0,
        currency="USDC",
        next_payment_due=NOW - timedelta(days=1),
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def eligibility(sub, wallet=PAYER, registered=True, needs_approval=False):
    return policy.payment_eligibility(
        sub, wallet, on_chain_registered=registered, needs_approval=needs_approval, renewal_fee=0.005, now=NOW
    )


def test_pending_subscription_offers_first_payment():
    result = eligibility(make_sub(), registered=False)
    assert result.allowed
    assert result.label.startswith("Make First Payment")


def test_first_payment_detection():
    assert policy.is_first_payment(make_sub())
    assert policy.is_first_payment(make_sub(status=SubscriptionStatus.ACTIVE, payer_wallet_address=None))
    assert not policy.is_first_payment(make_sub(status=SubscriptionStatus.ACTIVE, payer_wallet_address=PAYER))


def test_other_wallet_cannot_pay_active_subscription():
    sub = make_sub(status=SubscriptionStatus.ACTIVE, payer_wallet_address=PAYER)

    rejected = eligibility(sub, wallet=OTHER_WALLET)
    assert not rejected.allowed
    assert rejected.label == "Wrong wallet address"
    assert "0xcccc...cccc" in rejected.reason

    accepted = eligibility(sub, wallet=PAYER.upper().replace("0X", "0x"))
    assert accepted.allowed
    assert accepted.label.startswith("Pay ")


def test_active_not_due_is_disabled():
    sub = make_sub(status=SubscriptionStatus.ACTIVE, payer_wallet_address=PAYER, next_payment_due=NOW + timedelta(days=3))
    result = eligibility(sub)
    assert not result.allowed
    assert result.label == "Payment not due yet"


def test_naive_due_dates_are_utc():
    sub = make_sub(status=SubscriptionStatus.ACTIVE, payer_wallet_address=PAYER, next_payment_due=datetime(2026, 5, 1))
    assert eligibility(sub).allowed


@pytest.mark.parametrize("overrides, registered, needs_approval, label", [
    (dict(status=SubscriptionStatus.CANCELLED_BY_PAYER), True, False, "Subscription is not active"),
    (dict(subscription_id_bytes32=""), True, False, "Waiting for on-chain registration..."),
    (dict(status=SubscriptionStatus.ACTIVE, payer_wallet_address=PAYER), False, False, "Waiting for on-chain registration..."),
    (dict(), True, True, "Approve USDC"),
])
def test_disabled_states(overrides, registered, needs_approval, label):
    result = eligibility(make_sub(**overrides), registered=registered, needs_approval=needs_approval)
    assert not result.allowed
    assert result.label == label


def test_status_transitions():
    policy.check_transition("pending", "active")
    policy.check_transition("active", "cancelled_by_creator")
    policy.check_transition("paused", "active")
    with pytest.raises(policy.InvalidStatusTransitionError):
        policy.check_transition("cancelled_by_payer", "active")
    with pytest.raises(policy.InvalidStatusTransitionError):
        policy.check_transition("pending", "paused")


def test_cancellation_rules():
    sub = make_sub(status=SubscriptionStatus.ACTIVE, payer_wallet_address=PAYER)

    assert policy.check_cancellation(sub, "creator", CREATOR) == SubscriptionStatus.CANCELLED_BY_CREATOR
    assert policy.check_cancellation(sub, "payer", PAYER) == SubscriptionStatus.CANCELLED_BY_PAYER
    with pytest.raises(policy.CancellationNotAllowedError):
        policy.check_cancellation(sub, "payer", OTHER_WALLET)
    with pytest.raises(policy.InvalidStatusTransitionError):
        policy.check_cancellation(make_sub(), "creator", CREATOR)


def test_balance_check_messages():
    policy.check_balance(Loadable.loaded(20_000_000), 10_005_000, 6, 10.005, "USDC")

    with pytest.raises(policy.InsufficientBalanceError) as exc:
        policy.check_balance(Loadable.loaded(5_000_000), 10_005_000, 6, 10.005, "USDC")
    assert "You need 10.005000 USDC" in str(exc.value)
    assert "you only have 5 USDC" in str(exc.value)

    with pytest.raises(policy.InsufficientBalanceError) as exc:
        policy.check_balance(Loadable.failed("rpc"), 10_005_000, 6, 10.005, "USDC")
    assert str(exc.value) == "Unable to check your balance. Please try again."
