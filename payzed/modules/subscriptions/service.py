import logging
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from payzed.core.errors import NotFoundError, classify_store_error
from payzed.core.store import InsertResult, insert_with_retry
from payzed.modules.subscriptions import models, schemas

logger = logging.getLogger(__name__)

PAGE_SIZE = 10


async def _all(db: AsyncSession, stmt) -> list:
    try:
        result = await db.execute(stmt)
    except Exception as e:
        await db.rollback()
        raise classify_store_error(e) from e
    return list(result.scalars().all())


async def _first(db: AsyncSession, stmt):
    rows = await _all(db, stmt.limit(1))
    return rows[0] if rows else None


async def _page(db: AsyncSession, stmt, page: int) -> schemas.SubscriptionPage:
    # has_more is an approximation: a full last page still reports True
    rows = await _all(db, stmt.offset(page * PAGE_SIZE).limit(PAGE_SIZE))
    return schemas.SubscriptionPage(
        data=[schemas.SubscriptionRead.model_validate(r) for r in rows],
        has_more=len(rows) == PAGE_SIZE,
    )


def _user_filter(address: str):
    address = address.lower()
    return or_(
        models.Subscription.creator_wallet_address == address,
        models.Subscription.receiver_wallet_address == address,
        models.Subscription.payer_wallet_address == address,
    )


def _newest_first(stmt):
    return stmt.order_by(models.Subscription.created_at.desc())


async def create_subscription(db: AsyncSession, data: schemas.SubscriptionCreate) -> InsertResult:
    """
    Saves a subscription that is already registered on-chain.

    A second save of the same ``subscription_id_bytes32`` is not an error:
    it returns ``is_duplicate=True`` and leaves the existing row alone.
    """
    values = data.model_dump()
    values["status"] = models.SubscriptionStatus.PENDING
    values["total_payments"] = 0
    result = await insert_with_retry(db, models.Subscription, values, label="subscription")
    if result.is_duplicate:
        logger.info(f"[Subscriptions] {data.subscription_id_bytes32} already saved")
    return result


async def get_subscription_by_id(db: AsyncSession, subscription_id: UUID) -> Optional[models.Subscription]:
    return await _first(db, select(models.Subscription).where(models.Subscription.id == subscription_id))


async def get_subscription_by_bytes32(db: AsyncSession, subscription_id_bytes32: str) -> Optional[models.Subscription]:
    return await _first(
        db,
        select(models.Subscription)
        .where(models.Subscription.subscription_id_bytes32 == subscription_id_bytes32.lower())
    )


async def get_subscriptions_by_creator(db: AsyncSession, creator_address: str) -> List[models.Subscription]:
    return await _all(db, _newest_first(
        select(models.Subscription)
        .where(models.Subscription.creator_wallet_address == creator_address.lower())
    ))


async def get_subscriptions_by_receiver(db: AsyncSession, receiver_address: str) -> List[models.Subscription]:
    return await _all(db, _newest_first(
        select(models.Subscription)
        .where(models.Subscription.receiver_wallet_address == receiver_address.lower())
    ))


async def get_subscriptions_by_payer(db: AsyncSession, payer_address: str) -> List[models.Subscription]:
    return await _all(db, _newest_first(
        select(models.Subscription)
        .where(models.Subscription.payer_wallet_address == payer_address.lower())
    ))


async def get_active_subscriptions(db: AsyncSession) -> List[models.Subscription]:
    return await _all(
        db,
        select(models.Subscription)
        .where(models.Subscription.status == models.SubscriptionStatus.ACTIVE)
        .order_by(models.Subscription.next_payment_due.asc())
    )


def _all_by_user_stmt(address: str):
    return _newest_first(select(models.Subscription).where(_user_filter(address)))


def _active_by_user_stmt(address: str):
    return _all_by_user_stmt(address).where(models.Subscription.status == models.SubscriptionStatus.ACTIVE)


def _created_stmt(address: str):
    return _newest_first(
        select(models.Subscription)
        .where(models.Subscription.creator_wallet_address == address.lower())
    )


def _paying_stmt(address: str):
    return _newest_first(
        select(models.Subscription)
        .where(
            models.Subscription.payer_wallet_address == address.lower(),
            models.Subscription.status == models.SubscriptionStatus.ACTIVE,
        )
    )


async def get_all_subscriptions_by_user(db: AsyncSession, address: str) -> List[models.Subscription]:
    return await _all(db, _all_by_user_stmt(address))


async def get_active_subscriptions_by_user(db: AsyncSession, address: str) -> List[models.Subscription]:
    return await _all(db, _active_by_user_stmt(address))


async def get_subscriptions_i_created(db: AsyncSession, address: str) -> List[models.Subscription]:
    return await _all(db, _created_stmt(address))


async def get_subscriptions_i_pay(db: AsyncSession, address: str) -> List[models.Subscription]:
    return await _all(db, _paying_stmt(address))


async def get_all_subscriptions_by_user_paginated(db: AsyncSession, address: str, page: int = 0) -> schemas.SubscriptionPage:
    return await _page(db, _all_by_user_stmt(address), page)


async def get_active_subscriptions_by_user_paginated(db: AsyncSession, address: str, page: int = 0) -> schemas.SubscriptionPage:
    return await _page(db, _active_by_user_stmt(address), page)


async def get_subscriptions_i_created_paginated(db: AsyncSession, address: str, page: int = 0) -> schemas.SubscriptionPage:
    return await _page(db, _created_stmt(address), page)


async def get_subscriptions_i_pay_paginated(db: AsyncSession, address: str, page: int = 0) -> schemas.SubscriptionPage:
    return await _page(db, _paying_stmt(address), page)


async def update_subscription(db: AsyncSession, subscription_id: UUID, updates: schemas.SubscriptionUpdate) -> models.Subscription:
    """Partial update. Unlike the read path, a missing row is an error here."""
    try:
        sub = await db.get(models.Subscription, subscription_id)
    except Exception as e:
        await db.rollback()
        raise classify_store_error(e) from e
    if sub is None:
        raise NotFoundError(f"Subscription {subscription_id} not found")

    for key, value in updates.model_dump(exclude_unset=True).items():
        if key == "payer_wallet_address" and value:
            value = value.lower()
        setattr(sub, key, value)
    sub.updated_at = datetime.now(timezone.utc)

    try:
        await db.commit()
    except Exception as e:
        await db.rollback()
        raise classify_store_error(e) from e
    await db.refresh(sub)
    return sub


async def create_subscription_payment(db: AsyncSession, **payment) -> models.SubscriptionPayment:
    row = models.SubscriptionPayment(**payment)
    db.add(row)
    try:
        await db.commit()
    except Exception as e:
        await db.rollback()
        raise classify_store_error(e) from e
    await db.refresh(row)
    return row


async def get_subscription_payments(db: AsyncSession, subscription_id: UUID) -> List[models.SubscriptionPayment]:
    return await _all(
        db,
        select(models.SubscriptionPayment)
        .where(models.SubscriptionPayment.subscription_id == subscription_id)
        .order_by(models.SubscriptionPayment.payment_date.desc())
    )


async def create_subscription_cancellation(
    db: AsyncSession,
    subscription_id: UUID,
    cancellation_in: schemas.CancellationCreate,
) -> models.SubscriptionCancellation:
    """One per subscription; a second one surfaces as ConflictError."""
    row = models.SubscriptionCancellation(
        subscription_id=subscription_id,
        cancelled_by=cancellation_in.cancelled_by,
        cancelled_by_wallet_address=cancellation_in.cancelled_by_wallet_address,
        cancellation_reason=cancellation_in.cancellation_reason,
        notification_sent=False,
    )
    db.add(row)
    try:
        await db.commit()
    except Exception as e:
        await db.rollback()
        raise classify_store_error(e) from e
    await db.refresh(row)
    return row


async def get_subscription_cancellation(db: AsyncSession, subscription_id: UUID) -> Optional[models.SubscriptionCancellation]:
    return await _first(
        db,
        select(models.SubscriptionCancellation)
        .where(models.SubscriptionCancellation.subscription_id == subscription_id)
    )


async def mark_cancellation_as_notified(db: AsyncSession, cancellation_id: UUID):
    # Only the first call sets notified_at
    try:
        await db.execute(
            update(models.SubscriptionCancellation)
            .where(
                models.SubscriptionCancellation.id == cancellation_id,
                models.SubscriptionCancellation.notification_sent == False,  # noqa: E712
            )
            .values(notification_sent=True, notified_at=datetime.now(timezone.utc))
        )
        await db.commit()
    except Exception as e:
        await db.rollback()
        raise classify_store_error(e) from e
