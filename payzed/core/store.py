"""
Insert path shared by the subscription and invoice stores.

Records are saved *after* the matching on-chain transaction confirmed, so
every failure raised from here says so explicitly and tells the caller
whether a plain retry of the database save makes sense.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payzed.core.config import settings
from payzed.core.errors import (
    ConflictError,
    PermissionDeniedError,
    SchemaCacheStaleError,
    StoreError,
    TableMissingError,
    classify_store_error,
    is_column_missing,
)

logger = logging.getLogger(__name__)


@dataclass
class InsertResult:
    data: Optional[Any]
    is_duplicate: bool = False
    error: Optional[str] = None


async def check_table(db: AsyncSession, model) -> Optional[StoreError]:
    """Returns the classified failure if the table cannot be read, else None."""
    try:
        await db.execute(select(model.id).limit(0))
    except Exception as e:
        await db.rollback()
        return classify_store_error(e)
    return None


async def refresh_schema_cache(db: AsyncSession, model):
    # Best effort: a cheap read forces the store to reload table metadata
    try:
        await db.execute(select(model.id).limit(0))
    except Exception as e:
        await db.rollback()
        logger.debug(f"[Store] Schema refresh probe on {model.__tablename__} failed: {e}")


def _unreachable_table_error(err: StoreError, table: str, label: str) -> StoreError:
    registered = f"Your {label} was successfully registered on-chain."
    if isinstance(err, TableMissingError):
        return TableMissingError(
            f"Table 'public.{table}' does not exist. {registered} "
            f"Please run the database migration for the '{table}' table.",
            on_chain_confirmed=True,
        )
    if isinstance(err, SchemaCacheStaleError):
        return SchemaCacheStaleError(
            f"Could not find the table 'public.{table}' in the schema cache. {registered} "
            f"If you already restarted the database project, the table may not exist. "
            f"Please verify that '{table}' exists (SELECT * FROM {table} LIMIT 1;).",
            on_chain_confirmed=True,
        )
    if isinstance(err, PermissionDeniedError):
        return PermissionDeniedError(
            f"Permission denied accessing 'public.{table}'. {registered} "
            f"Please check the row level security policies; the table should allow INSERT.",
            on_chain_confirmed=True,
        )
    return StoreError(
        f"Database error: {err.message} {registered} Please check your database configuration.",
        on_chain_confirmed=True,
    )


async def insert_with_retry(
    db: AsyncSession,
    model,
    values: dict,
    *,
    label: str,
    attempts: Optional[int] = None,
    retry_delay: Optional[float] = None,
) -> InsertResult:
    """
    Inserts one row of ``model``.

    The table is probed first; an unreachable table fails straight away
    with a kind-specific message. Stale schema cache errors are retried
    with linear backoff (``retry_delay * attempt``); a uniqueness violation
    comes back as ``InsertResult(is_duplicate=True)``.
    """
    attempts = attempts or settings.DB_INSERT_ATTEMPTS
    retry_delay = settings.DB_RETRY_DELAY_SECONDS if retry_delay is None else retry_delay
    table = model.__tablename__

    table_error = await check_table(db, model)
    if table_error is not None:
        logger.error(f"[Store] Table check failed for {table}: {table_error.error_type.value} | {table_error.message}")
        raise _unreachable_table_error(table_error, table, label)

    for attempt in range(attempts):
        row = model(**values)
        db.add(row)
        try:
            await db.commit()
        except Exception as e:
            await db.rollback()
            err = classify_store_error(e)

            if isinstance(err, SchemaCacheStaleError) and attempt < attempts - 1:
                logger.warning(f"[Store] Schema cache miss on {table} (attempt {attempt + 1}/{attempts}), retrying")
                await refresh_schema_cache(db, model)
                await asyncio.sleep(retry_delay * (attempt + 1))
                continue

            if is_column_missing(e):
                raise StoreError(
                    f"Database column missing: {err.message}. Please run the database migration for '{table}'.",
                    on_chain_confirmed=True,
                ) from e
            if isinstance(err, ConflictError):
                logger.info(f"[Store] Duplicate {label} insert ignored on {table}")
                return InsertResult(data=None, is_duplicate=True)
            if isinstance(err, SchemaCacheStaleError):
                break
            raise err from e

        await db.refresh(row)
        return InsertResult(data=row)

    raise SchemaCacheStaleError(
        f"Failed to create {label} after multiple attempts. The table may not exist in the schema cache. "
        f"Your {label} was successfully registered on-chain. This is a temporary database issue. "
        f"You can retry saving to database. If you are the project owner, restart the database project.",
        on_chain_confirmed=True,
        retry_available=True,
    )
