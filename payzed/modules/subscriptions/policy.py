"""
Rules for who may pay or cancel a subscription, and when.

The contract enforces these on-chain as well; checking them here keeps the
pay/cancel actions disabled instead of letting the wallet send a
transaction that is bound to revert.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from payzed.core.chain import ZERO_ADDRESS, format_units
from payzed.modules.subscriptions.models import CancelledBy, SubscriptionStatus
from payzed.modules.tokens.allowance import Loadable

ALLOWED_TRANSITIONS = {
    SubscriptionStatus.PENDING: {SubscriptionStatus.ACTIVE},
    SubscriptionStatus.ACTIVE: {
        SubscriptionStatus.PAUSED,
        SubscriptionStatus.CANCELLED_BY_CREATOR,
        SubscriptionStatus.CANCELLED_BY_PAYER,
    },
    SubscriptionStatus.PAUSED: {SubscriptionStatus.ACTIVE},
    SubscriptionStatus.CANCELLED_BY_CREATOR: set(),
    SubscriptionStatus.CANCELLED_BY_PAYER: set(),
}

# Statuses that still change without user action; status streams stop outside them
POLLED_STATUSES = frozenset({SubscriptionStatus.PENDING.value, SubscriptionStatus.ACTIVE.value})


class InvalidStatusTransitionError(Exception):
    pass


class CancellationNotAllowedError(Exception):
    pass


class InsufficientBalanceError(Exception):
    pass


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_payer_set(subscription) -> bool:
    payer = (subscription.payer_wallet_address or "").lower()
    return bool(payer) and payer != ZERO_ADDRESS


def is_first_payment(subscription) -> bool:
    return subscription.status == SubscriptionStatus.PENDING or not is_payer_set(subscription)


def check_transition(current, target):
    current, target = SubscriptionStatus(current), SubscriptionStatus(target)
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidStatusTransitionError(f"Cannot move subscription from '{current.value}' to '{target.value}'")


@dataclass
class PaymentEligibility:
    allowed: bool
    label: str
    reason: Optional[str] = None


def payment_eligibility(
    subscription,
    wallet: Optional[str],
    *,
    on_chain_registered: bool,
    needs_approval: bool,
    renewal_fee: float,
    now: Optional[datetime] = None,
) -> PaymentEligibility:
    now = now or datetime.now(timezone.utc)
    status = SubscriptionStatus(subscription.status)
    currency = getattr(subscription.currency, "value", subscription.currency)
    amount_text = f"{subscription.amount} {currency} (+ {renewal_fee:.6f} {currency} fee)"

    payer_set = is_payer_set(subscription)
    correct_payer = not payer_set or (wallet is not None and wallet.lower() == subscription.payer_wallet_address.lower())
    payment_due = _as_utc(subscription.next_payment_due) <= now

    if status not in (SubscriptionStatus.PENDING, SubscriptionStatus.ACTIVE):
        return PaymentEligibility(False, "Subscription is not active", f"Subscription is {status.value}")
    if not subscription.subscription_id_bytes32:
        return PaymentEligibility(False, "Waiting for on-chain registration...", "Subscription ID not found")
    if status != SubscriptionStatus.PENDING and not on_chain_registered:
        return PaymentEligibility(
            False,
            "Waiting for on-chain registration...",
            "Subscription is not yet registered on-chain. Please wait for the registration to complete.",
        )
    if status == SubscriptionStatus.ACTIVE and payer_set and not correct_payer:
        payer = subscription.payer_wallet_address
        return PaymentEligibility(
            False,
            "Wrong wallet address",
            f"Only the wallet that made the first payment ({payer[:6]}...{payer[-4:]}) can pay this subscription.",
        )
    if status == SubscriptionStatus.ACTIVE and not payment_due:
        due = _as_utc(subscription.next_payment_due).date().isoformat()
        return PaymentEligibility(False, "Payment not due yet", f"Next payment is due on {due}")
    if needs_approval:
        return PaymentEligibility(False, f"Approve {currency}", "Token approval required before paying")

    if status == SubscriptionStatus.PENDING or not payer_set:
        return PaymentEligibility(True, f"Make First Payment: {amount_text}")
    return PaymentEligibility(True, f"Pay {amount_text}")


def cancelled_status(cancelled_by) -> SubscriptionStatus:
    if CancelledBy(cancelled_by) == CancelledBy.CREATOR:
        return SubscriptionStatus.CANCELLED_BY_CREATOR
    return SubscriptionStatus.CANCELLED_BY_PAYER


def check_cancellation(subscription, cancelled_by, wallet: str) -> SubscriptionStatus:
    """Returns the terminal status the cancellation moves the subscription to."""
    cancelled_by = CancelledBy(cancelled_by)
    owner = subscription.creator_wallet_address if cancelled_by == CancelledBy.CREATOR else subscription.payer_wallet_address
    if not owner or wallet.lower() != owner.lower():
        raise CancellationNotAllowedError(f"Only the subscription {cancelled_by.value} can cancel as {cancelled_by.value}")
    target = cancelled_status(cancelled_by)
    check_transition(subscription.status, target)
    return target


def check_balance(balance: Loadable, required_base_units: int, decimals: int, total_amount: float, currency: str):
    """Raises when the wallet cannot cover amount + fee, or its balance is unknown."""
    if not balance.is_loaded or not isinstance(balance.value, int):
        raise InsufficientBalanceError("Unable to check your balance. Please try again.")
    if balance.value < required_base_units:
        raise InsufficientBalanceError(
            f"Insufficient balance. You need {total_amount:.6f} {currency} to pay this subscription "
            f"(including renewal fee), but you only have {format_units(balance.value, decimals)} {currency}."
        )
