"""
Token allowance state machine.

    unknown -> sufficient | insufficient
    insufficient -> approving -> confirming -> (re-fetch) sufficient | insufficient

Every asynchronous input is carried as a ``Loadable`` so a value that is
still loading or failed to load can never be mistaken for a real number.
Anything short of a clean, successful read on the right chain evaluates
to ``insufficient``.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Any, Optional

from payzed.core.chain import receipt_succeeded

logger = logging.getLogger(__name__)


class LoadState(str, enum.Enum):
    NOT_LOADED = "not_loaded"
    LOADED = "loaded"
    FAILED = "failed"


@dataclass(frozen=True)
class Loadable:
    state: LoadState = LoadState.NOT_LOADED
    value: Any = None
    error: Optional[str] = None

    @classmethod
    def not_loaded(cls) -> "Loadable":
        return cls()

    @classmethod
    def loaded(cls, value) -> "Loadable":
        return cls(LoadState.LOADED, value)

    @classmethod
    def failed(cls, error) -> "Loadable":
        return cls(LoadState.FAILED, error=str(error))

    @property
    def is_loaded(self) -> bool:
        return self.state == LoadState.LOADED


async def load(awaitable) -> Loadable:
    """Awaits a read and folds its outcome into a Loadable."""
    try:
        return Loadable.loaded(await awaitable)
    except Exception as e:
        logger.warning(f"[Allowance] Read failed: {e}")
        return Loadable.failed(e)


class AllowanceState(str, enum.Enum):
    UNKNOWN = "unknown"
    SUFFICIENT = "sufficient"
    INSUFFICIENT = "insufficient"
    APPROVING = "approving"
    CONFIRMING = "confirming"


class InvalidAllowanceTransition(Exception):
    pass


def is_sufficient(allowance: Loadable, required: Loadable, chain_id: Optional[int], required_chain_id: int) -> bool:
    if chain_id != required_chain_id:
        return False
    if not (allowance.is_loaded and required.is_loaded):
        return False
    if not isinstance(allowance.value, int) or not isinstance(required.value, int):
        return False
    if allowance.value == 0 or required.value <= 0:
        return False
    return allowance.value >= required.value


class AllowanceTracker:
    def __init__(self, required_chain_id: int):
        self.required_chain_id = required_chain_id
        self.state = AllowanceState.UNKNOWN
        self.approval_tx_hash: Optional[str] = None

    @property
    def needs_approval(self) -> bool:
        return self.state != AllowanceState.SUFFICIENT

    def evaluate(self, allowance: Loadable, required: Loadable, chain_id: Optional[int]) -> AllowanceState:
        if self.state in (AllowanceState.APPROVING, AllowanceState.CONFIRMING):
            return self.state
        if is_sufficient(allowance, required, chain_id, self.required_chain_id):
            self.state = AllowanceState.SUFFICIENT
        else:
            self.state = AllowanceState.INSUFFICIENT
        return self.state

    def begin_approval(self):
        if self.state != AllowanceState.INSUFFICIENT:
            raise InvalidAllowanceTransition(f"Cannot approve from state '{self.state.value}'")
        self.state = AllowanceState.APPROVING

    def approval_submitted(self, tx_hash: str):
        if self.state != AllowanceState.APPROVING:
            raise InvalidAllowanceTransition(f"No approval in progress (state '{self.state.value}')")
        self.approval_tx_hash = tx_hash
        self.state = AllowanceState.CONFIRMING

    def approval_failed(self):
        self.approval_tx_hash = None
        self.state = AllowanceState.INSUFFICIENT

    def approval_confirmed(self, allowance: Loadable, required: Loadable, chain_id: Optional[int]) -> AllowanceState:
        if self.state != AllowanceState.CONFIRMING:
            raise InvalidAllowanceTransition(f"No approval awaiting confirmation (state '{self.state.value}')")
        self.state = AllowanceState.UNKNOWN
        return self.evaluate(allowance, required, chain_id)


async def confirm_approval(chain, tracker: AllowanceTracker, tx_hash: str, allowance_call, required: Loadable,
                           chain_id: Optional[int], timeout: float = 120) -> AllowanceState:
    """
    Drives insufficient -> approving -> confirming -> re-fetch for an
    approval transaction the wallet already broadcast.
    """
    tracker.begin_approval()
    tracker.approval_submitted(tx_hash)

    receipt = await load(chain.wait_for_transaction_receipt(tx_hash, timeout=timeout))
    if not receipt.is_loaded or not receipt_succeeded(receipt.value):
        logger.warning(f"[Allowance] Approval {tx_hash} did not succeed")
        tracker.approval_failed()
        return tracker.state

    allowance = await load(chain.read(allowance_call))
    return tracker.approval_confirmed(allowance, required, chain_id)
