from __future__ import annotations

from enum import Enum


class LedgerFailureKind(str, Enum):
    """Tag attached to every failed ledger operation."""
    CONFIGURATION = "configuration"
    CONNECTION = "connection"
    VALIDATION = "validation"
    REVERTED = "reverted"
    DUPLICATE = "duplicate"
    TRANSACTION_FAILED = "transaction_failed"
    CONTRACT_NOT_DEPLOYED = "contract_not_deployed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    RPC = "rpc"


RETRYABLE_FAILURE_KINDS = frozenset(
    {
        LedgerFailureKind.CONNECTION,
        LedgerFailureKind.TIMEOUT,
        LedgerFailureKind.CANCELLED,
        LedgerFailureKind.RPC,
    }
)

_DUPLICATE_MARKERS = (
    "already registered",
    "recipe hash already",
    "hash already exists",
    "duplicate",
)


def is_duplicate_hash_message(message: str | None) -> bool:
    """Best-effort match of an untyped revert string against "hash already registered"."""
    if not message:
        return False
    text = message.lower()
    if any(marker in text for marker in _DUPLICATE_MARKERS):
        return True
    return "exists" in text and "execution reverted" in text and "already" in text


def classify_revert_reason(reason: str | None) -> LedgerFailureKind:
    if is_duplicate_hash_message(reason):
        return LedgerFailureKind.DUPLICATE
    return LedgerFailureKind.REVERTED


class LedgerError(Exception):
    kind: LedgerFailureKind = LedgerFailureKind.RPC


class LedgerConfigurationError(LedgerError):
    kind = LedgerFailureKind.CONFIGURATION

    def __init__(self, errors: list[str]):
        super().__init__(f"Ledger configuration errors: {', '.join(errors)}")
        self.errors = errors


class LedgerConnectionError(LedgerError):
    kind = LedgerFailureKind.CONNECTION

    def __init__(self, url: str, reason: str = "Node is not reachable"):
        super().__init__(f"Cannot connect to ledger node at {url}: {reason}")
        self.url = url
        self.reason = reason


class LedgerValidationError(LedgerError):
    kind = LedgerFailureKind.VALIDATION


class ContractNotDeployedError(LedgerError):
    kind = LedgerFailureKind.CONTRACT_NOT_DEPLOYED

    def __init__(self, message: str = "Contract not deployed yet"):
        super().__init__(message)


class EstimationRevertError(LedgerError):
    kind = LedgerFailureKind.REVERTED

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class DuplicateHashError(EstimationRevertError):
    kind = LedgerFailureKind.DUPLICATE


class TransactionFailedError(LedgerError):
    kind = LedgerFailureKind.TRANSACTION_FAILED

    def __init__(self, tx_hash: str | None = None):
        super().__init__("Transaction failed or was reverted")
        self.tx_hash = tx_hash


class LedgerTimeoutError(LedgerError):
    kind = LedgerFailureKind.TIMEOUT

    def __init__(self, operation: str, timeout_seconds: float):
        super().__init__(f"Ledger {operation} timed out after {timeout_seconds}s")
        self.operation = operation
        self.timeout_seconds = timeout_seconds


class LedgerCancelledError(LedgerError):
    kind = LedgerFailureKind.CANCELLED

    def __init__(self, operation: str):
        super().__init__(f"Ledger {operation} was cancelled because the client is closing")
        self.operation = operation


class RecipeRepositoryError(Exception):
    def __init__(self, operation: str, reason: str):
        super().__init__(f"Recipe repository error during {operation}: {reason}")
        self.operation = operation
        self.reason = reason


class RecipeNotFoundError(RecipeRepositoryError):
    def __init__(self, recipe_id: str):
        super().__init__("lookup", f"Recipe not found: {recipe_id}")
        self.recipe_id = recipe_id
