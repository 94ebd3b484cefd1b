"""
Typed failures produced by the store adapter.

Every database exception that leaves the persistence layer is translated
into one of the classes below by ``classify_store_error`` so callers branch
on the type instead of sniffing codes and messages themselves.
"""
import enum
from typing import Optional

from sqlalchemy.exc import NoResultFound


class StoreErrorType(str, enum.Enum):
    SCHEMA_CACHE = "cache"
    TABLE_MISSING = "missing"
    PERMISSION = "permission"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    OTHER = "other"


class StoreError(Exception):
    error_type = StoreErrorType.OTHER
    retry_available = False

    def __init__(self, message: str, *, on_chain_confirmed: bool = False, retry_available: Optional[bool] = None):
        super().__init__(message)
        self.message = message
        self.on_chain_confirmed = on_chain_confirmed
        if retry_available is not None:
            self.retry_available = retry_available


class SchemaCacheStaleError(StoreError):
    error_type = StoreErrorType.SCHEMA_CACHE
    retry_available = True


class TableMissingError(StoreError):
    error_type = StoreErrorType.TABLE_MISSING


class PermissionDeniedError(StoreError):
    error_type = StoreErrorType.PERMISSION


class ConflictError(StoreError):
    error_type = StoreErrorType.CONFLICT


class NotFoundError(StoreError):
    error_type = StoreErrorType.NOT_FOUND


class ContractNotConfiguredError(Exception):
    """A contract address is missing from the environment."""

    def __init__(self, setting_name: str, label: str):
        self.setting_name = setting_name
        super().__init__(f"{label} address not configured. Please set {setting_name}")


# Postgres SQLSTATEs
UNIQUE_VIOLATION = "23505"
UNDEFINED_TABLE = "42P01"
UNDEFINED_COLUMN = "42703"
INSUFFICIENT_PRIVILEGE = "42501"
FEATURE_NOT_SUPPORTED = "0A000"  # asyncpg: cached plan invalidated by a schema change

# PostgREST codes seen when the hosted store's schema cache lags behind
SCHEMA_CACHE_CODES = {"PGRST301", "PGRST205"}
SCHEMA_CACHE_DRIVER_ERRORS = {"InvalidCachedStatementError", "OutdatedSchemaCacheError"}


def _sqlstate(exc: BaseException) -> Optional[str]:
    orig = getattr(exc, "orig", None) or exc
    for attr in ("sqlstate", "pgcode", "code"):
        value = getattr(orig, attr, None)
        if isinstance(value, str) and value:
            return value
    return None


def _driver_error_names(exc: BaseException) -> set:
    names = set()
    current = getattr(exc, "orig", None) or exc
    seen = 0
    while current is not None and seen < 5:
        names.add(type(current).__name__)
        current = current.__cause__ or current.__context__
        seen += 1
    return names


def is_column_missing(exc: BaseException) -> bool:
    message = str(exc).lower()
    if _sqlstate(exc) == UNDEFINED_COLUMN or "no such column" in message:
        return True
    return "column" in message and "does not exist" in message


def classify_store_error(exc: BaseException) -> StoreError:
    if isinstance(exc, StoreError):
        return exc
    if isinstance(exc, NoResultFound):
        return NotFoundError(str(exc))

    code = _sqlstate(exc)
    message = str(exc)
    lowered = message.lower()

    if (
        code in SCHEMA_CACHE_CODES
        or _driver_error_names(exc) & SCHEMA_CACHE_DRIVER_ERRORS
        or (code == FEATURE_NOT_SUPPORTED and "cached statement" in lowered)
        or "schema cache" in lowered
        or "could not find the table" in lowered
    ):
        return SchemaCacheStaleError(message)

    if code == UNIQUE_VIOLATION or "unique constraint" in lowered or "duplicate key" in lowered:
        return ConflictError(message)

    if not is_column_missing(exc) and (
        code == UNDEFINED_TABLE
        or "no such table" in lowered
        or ("relation" in lowered and "does not exist" in lowered)
    ):
        return TableMissingError(message)

    if code == INSUFFICIENT_PRIVILEGE or "permission denied" in lowered or "insufficient_privilege" in lowered:
        return PermissionDeniedError(message)

    return StoreError(message or type(exc).__name__)
