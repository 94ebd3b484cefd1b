"""
Mirrors confirmed subscription payments into the database.

Two independent signals report the same payment:

* the ``SubscriptionPaid`` event, picked up by ``SubscriptionPaymentWatcher``;
* the payer's own transaction receipt, reported by the browser and awaited
  by the worker.

Both end in ``record_subscription_payment``. The payment row is keyed on
``(subscription_id, transaction_hash)`` and inserted in the same
transaction as the subscription update, so whichever signal arrives second
finds the row already there and changes nothing.
"""
import asyncio
import inspect
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from payzed.core.chain import SubscriptionPaidEvent, address_field, calculate_gas_cost, receipt_succeeded
from payzed.core.errors import ConflictError, NotFoundError, classify_store_error
from payzed.modules.subscriptions import models, service
from payzed.modules.subscriptions.contract import calculate_renewal_fee
from payzed.modules.subscriptions.policy import is_first_payment

logger = logging.getLogger(__name__)

SuccessCallback = Callable[["ReconcileResult"], Union[None, Awaitable[None]]]


@dataclass
class PaymentObservation:
    subscription_id_bytes32: str
    payer: str
    transaction_hash: Optional[str]
    next_payment_due: Optional[datetime] = None
    total_payments: Optional[int] = None
    gas_cost: Optional[float] = None
    source: str = "event"

    @classmethod
    def from_event(cls, event: SubscriptionPaidEvent, gas_cost: Optional[float] = None, source: str = "event"):
        return cls(
            subscription_id_bytes32=event.subscription_id_bytes32,
            payer=event.payer,
            transaction_hash=event.transaction_hash,
            next_payment_due=event.next_payment_due_at,
            total_payments=event.total_payments,
            gas_cost=gas_cost,
            source=source,
        )


@dataclass
class ReconcileResult:
    subscription: models.Subscription
    payment: Optional[models.SubscriptionPayment]
    duplicate: bool = False
    first_payment: bool = False


async def record_subscription_payment(db: AsyncSession, observation: PaymentObservation) -> ReconcileResult:
    """
    Inserts the payment row and advances the subscription in one
    transaction. Contract-reported ``next_payment_due`` / ``total_payments``
    win over locally derived values.
    """
    subscription = await service.get_subscription_by_bytes32(db, observation.subscription_id_bytes32)
    if subscription is None:
        raise NotFoundError(f"No subscription stored for {observation.subscription_id_bytes32}")

    subscription_id = subscription.id
    first = is_first_payment(subscription)
    payer = observation.payer.lower()
    tx_hash = observation.transaction_hash.lower() if observation.transaction_hash else None

    payment = models.SubscriptionPayment(
        subscription_id=subscription_id,
        payer_wallet_address=payer,
        amount=subscription.amount,
        currency=subscription.currency,
        transaction_hash=tx_hash,
        payment_date=datetime.now(timezone.utc),
        renewal_fee=calculate_renewal_fee(subscription.amount),
        gas_cost=observation.gas_cost,
    )
    db.add(payment)
    try:
        await db.flush()
    except Exception as e:
        await db.rollback()
        err = classify_store_error(e)
        if not isinstance(err, ConflictError):
            raise err from e
        logger.info(f"[Reconciler] Payment {tx_hash} already recorded ({observation.source} path)")
        current = await service.get_subscription_by_id(db, subscription_id)
        return ReconcileResult(subscription=current, payment=None, duplicate=True)

    if observation.total_payments is not None:
        subscription.total_payments = observation.total_payments
    else:
        subscription.total_payments = (subscription.total_payments or 0) + 1
    if observation.next_payment_due is not None:
        subscription.next_payment_due = observation.next_payment_due
    if first:
        subscription.payer_wallet_address = payer
        subscription.status = models.SubscriptionStatus.ACTIVE
    subscription.updated_at = datetime.now(timezone.utc)

    try:
        await db.commit()
    except Exception as e:
        await db.rollback()
        raise classify_store_error(e) from e
    await db.refresh(subscription)
    await db.refresh(payment)

    logger.info(
        f"[Reconciler] Recorded payment {tx_hash} for {subscription.id} via {observation.source} "
        f"(total={subscription.total_payments}, first={first})"
    )
    return ReconcileResult(subscription=subscription, payment=payment, first_payment=first)


class PaymentReconciler:
    """Runs the record sequence for both signal paths against one Database/ChainClient pair."""

    def __init__(self, database, chain, contract_address: str, on_payment_success: Optional[SuccessCallback] = None,
                 success_delay: float = 1.0, receipt_timeout: float = 120):
        self.database = database
        self.chain = chain
        self.contract_address = contract_address
        self.on_payment_success = on_payment_success
        self.success_delay = success_delay
        self.receipt_timeout = receipt_timeout
        self._pending = set()

    async def _notify(self, result: ReconcileResult):
        if self.on_payment_success is None:
            return
        try:
            outcome = self.on_payment_success(result)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.error(f"[Reconciler] Success callback failed: {e}", exc_info=True)

    async def _notify_later(self, result: ReconcileResult):
        await asyncio.sleep(self.success_delay)
        await self._notify(result)

    def _schedule_notify(self, result: ReconcileResult):
        task = asyncio.create_task(self._notify_later(result))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def wait_for_callbacks(self):
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _gas_cost(self, tx_hash: Optional[str]) -> Optional[float]:
        if not tx_hash:
            return None
        try:
            receipt = await self.chain.get_transaction_receipt(tx_hash)
            return calculate_gas_cost(receipt)
        except Exception as e:
            logger.warning(f"[Reconciler] Could not compute gas cost for {tx_hash}: {e}")
            return None

    async def handle_event(self, event: SubscriptionPaidEvent, subscription_id_bytes32: Optional[str] = None) -> Optional[ReconcileResult]:
        """Signal path A: a decoded SubscriptionPaid log."""
        if subscription_id_bytes32 and event.subscription_id_bytes32.lower() != subscription_id_bytes32.lower():
            return None
        if not event.payer:
            return None

        gas_cost = await self._gas_cost(event.transaction_hash)
        observation = PaymentObservation.from_event(event, gas_cost=gas_cost, source="event")
        try:
            async with self.database.session() as db:
                result = await record_subscription_payment(db, observation)
        except NotFoundError:
            logger.debug(f"[Reconciler] Ignoring event for untracked subscription {event.subscription_id_bytes32}")
            return None

        if not result.duplicate:
            await self._notify(result)
        return result

    async def handle_receipt(self, subscription_id_bytes32: str, transaction_hash: str, payer: str,
                             receipt=None) -> Optional[ReconcileResult]:
        """
        Signal path B: the payer's own transaction, as reported by the
        browser. Only a successful call to the subscription contract, sent by
        ``payer`` and carrying a SubscriptionPaid log for this subscription,
        is recorded; anything else records nothing.
        """
        if not self.contract_address:
            logger.warning(f"[Reconciler] No subscription contract configured; {transaction_hash} ignored")
            return None
        if receipt is None:
            receipt = await self.chain.wait_for_transaction_receipt(transaction_hash, timeout=self.receipt_timeout)
        if not receipt_succeeded(receipt):
            logger.warning(f"[Reconciler] Transaction {transaction_hash} reverted; nothing recorded")
            return None

        target = address_field(receipt, "to")
        if target != self.contract_address.lower():
            logger.warning(f"[Reconciler] Transaction {transaction_hash} went to {target}, not {self.contract_address}")
            return None
        sender = address_field(receipt, "from")
        if sender != payer.lower():
            logger.warning(f"[Reconciler] Transaction {transaction_hash} was sent by {sender}, not {payer}")
            return None

        wanted = subscription_id_bytes32.lower()
        event = next(
            (e for e in self.chain.decode_subscription_paid(receipt, self.contract_address)
             if e.subscription_id_bytes32.lower() == wanted),
            None,
        )
        if event is None:
            logger.warning(f"[Reconciler] Transaction {transaction_hash} paid nothing for {subscription_id_bytes32}")
            return None

        observation = PaymentObservation.from_event(event, gas_cost=calculate_gas_cost(receipt), source="receipt")
        observation.transaction_hash = transaction_hash

        async with self.database.session() as db:
            result = await record_subscription_payment(db, observation)

        if not result.duplicate:
            self._schedule_notify(result)
        return result


class SubscriptionPaymentWatcher:
    """Signal path A: follows SubscriptionPaid logs block range by block range."""

    def __init__(self, chain, reconciler: PaymentReconciler, contract_address: str, interval: float = 4.0,
                 subscription_id_bytes32: Optional[str] = None):
        self.chain = chain
        self.reconciler = reconciler
        self.contract_address = contract_address
        self.interval = interval
        self.subscription_id_bytes32 = subscription_id_bytes32
        self.next_block: Optional[int] = None
        self.is_running = False
        self._task = None

    async def start(self):
        if self.is_running:
            return
        self.is_running = True
        self._task = asyncio.create_task(self._run())
        logger.info(f"[Watcher] Watching SubscriptionPaid on {self.contract_address}")

    async def stop(self):
        self.is_running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("[Watcher] Stopped.")

    async def poll_once(self) -> int:
        """Processes every new block since the last call; returns the number of matching events."""
        head = await self.chain.block_number()
        if self.next_block is None:
            self.next_block = head
        if head < self.next_block:
            return 0

        events = await self.chain.get_subscription_paid_events(
            self.contract_address, self.next_block, head, self.subscription_id_bytes32
        )
        handled = 0
        for event in events:
            result = await self.reconciler.handle_event(event, self.subscription_id_bytes32)
            if result is not None:
                handled += 1
        self.next_block = head + 1
        return handled

    async def _run(self):
        while self.is_running:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"[Watcher] Poll failed: {e}", exc_info=True)
            await asyncio.sleep(self.interval)
