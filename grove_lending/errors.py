"""Lending error taxonomy."""
from __future__ import annotations


class LendingError(Exception):
    """Base class for every error raised by the lending engine."""


# ---------------------------------------------------------------------------
# Validation errors: returned to the caller, never retried
# ---------------------------------------------------------------------------


class InvalidAmount(LendingError):
    def __init__(self, field: str, value: object) -> None:
        self.field = field
        self.value = value
        super().__init__(f"Invalid {field}: {value!r} (must be a positive integer)")


class InsufficientCollateral(LendingError):
    def __init__(self, required: object, provided: object) -> None:
        self.required = required
        self.provided = provided
        super().__init__(
            f"Insufficient collateral. Required: {required}, Provided: {provided}"
        )


class InsufficientLiquidity(LendingError):
    def __init__(self, asset: str, available: int, requested: int) -> None:
        self.asset = asset
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient {asset} pool liquidity. "
            f"Available: {available}, Requested: {requested}"
        )


class ExcessPayment(LendingError):
    def __init__(self, loan_id: str, remaining: int, amount: int) -> None:
        self.loan_id = loan_id
        self.remaining = remaining
        self.amount = amount
        super().__init__(
            f"Payment {amount} exceeds remaining balance {remaining} on loan {loan_id}"
        )


# ---------------------------------------------------------------------------
# State errors
# ---------------------------------------------------------------------------


class PoolNotFound(LendingError):
    def __init__(self, asset: str) -> None:
        self.asset = asset
        super().__init__(f"Lending pool not found: {asset}")


class LoanNotFound(LendingError):
    def __init__(self, loan_id: str) -> None:
        self.loan_id = loan_id
        super().__init__(f"Loan not found: {loan_id}")


class LoanNotActive(LendingError):
    def __init__(self, loan_id: str, status: str) -> None:
        self.loan_id = loan_id
        self.status = status
        super().__init__(f"Loan {loan_id} is not active. Status: {status}")


class LoanNotLiquidatable(LendingError):
    """Caller logic error: the loan is healthy or already closed."""

    def __init__(self, loan_id: str, reason: str) -> None:
        self.loan_id = loan_id
        self.reason = reason
        super().__init__(f"Loan {loan_id} cannot be liquidated: {reason}")


# ---------------------------------------------------------------------------
# External / transient errors
# ---------------------------------------------------------------------------


class PriceUnavailable(LendingError):
    def __init__(self, asset: str, reason: str = "no quote") -> None:
        self.asset = asset
        self.reason = reason
        super().__init__(f"Price unavailable for {asset}: {reason}")


class SettlementFailed(LendingError):
    def __init__(self, kind: str, reason: str) -> None:
        self.kind = kind
        self.reason = reason
        super().__init__(f"Settlement of {kind} failed: {reason}")


class ConcurrentStateConflict(LendingError):
    """A staged row was written by someone else since it was read."""

    def __init__(self, entity: str, expected: int, found: int) -> None:
        self.entity = entity
        self.expected = expected
        self.found = found
        super().__init__(
            f"Concurrent update on {entity}: expected version {expected}, found {found}"
        )
