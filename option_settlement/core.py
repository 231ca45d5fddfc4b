"""
Core types and pure functions for the option settlement engine.

This module provides the foundational data structures and protocols:
1. Constants: fixed-point scale, exercise window, amount bounds
2. Enums: OptionState, ExecuteResult
3. Protocols: TokenLedger for the external token ledger
4. Exceptions: OptionError and LedgerError families
5. Immutable data structures: Move
6. Pure functions: fixed-point conversion and strike amount arithmetic

Nothing in this module holds or mutates engine state.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_DOWN, InvalidOperation, localcontext
from enum import Enum
from typing import Any, Dict, Optional, Protocol, runtime_checkable


# ============================================================================
# CONSTANTS
# ============================================================================

# Scale factor for fixed-point amounts (18 decimal places).
FIXED_POINT_SCALE = 10 ** 18

# Default number of decimals for token accounts.
DEFAULT_DECIMALS = 18

# Largest amount representable by an unsigned 256-bit word.
MAX_AMOUNT = 2 ** 256 - 1

# Fixed interval after expiration during which the holder may exercise.
EXERCISE_WINDOW = timedelta(days=10)

# Reserved wallet for token issuance and redemption.
# The system wallet is exempt from balance validation.
SYSTEM_WALLET = "system"

# Decimal precision for amount conversions; wide enough for any MAX_AMOUNT value.
_CONVERSION_PRECISION = 100


# ============================================================================
# ENUMS
# ============================================================================

class OptionState(Enum):
    """
    Lifecycle state of an option agreement.

    Values match the numbering used by existing indexers:
    0=Created, 1=Active, 2=Expired, 3=Exercised.
    """
    CREATED = 0
    ACTIVE = 1
    EXPIRED = 2
    EXERCISED = 3

    @property
    def is_terminal(self) -> bool:
        return self in (OptionState.EXPIRED, OptionState.EXERCISED)


# Legal forward transitions. Terminal states have no outgoing edges.
ALLOWED_TRANSITIONS = {
    OptionState.CREATED: frozenset({OptionState.ACTIVE, OptionState.EXPIRED}),
    OptionState.ACTIVE: frozenset({OptionState.EXERCISED, OptionState.EXPIRED}),
    OptionState.EXPIRED: frozenset(),
    OptionState.EXERCISED: frozenset(),
}


class ExecuteResult(Enum):
    """
    Outcome of a token ledger execution attempt.

    APPLIED: All moves were validated and applied.
    REJECTED: Validation failed; nothing was applied.
    """
    APPLIED = "applied"
    REJECTED = "rejected"


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class TokenLedger(Protocol):
    """
    Interface the engine consumes from the external token ledger.

    The ledger is untrusted: transfer() may report failure as False instead
    of raising, and it may call back into the engine before returning.
    checkpoint() and revert() are the platform's commit primitives; every
    mutating engine operation takes a checkpoint on entry and reverts to it
    if the operation aborts.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current instant as seen by the platform."""
        ...

    def balance_of(self, account: str, wallet: str) -> int:
        """Return the balance of a token account held by a wallet."""
        ...

    def transfer(self, account: str, source: str, dest: str, amount: int) -> bool:
        """Move amount units of account from source to dest. Return success."""
        ...

    def checkpoint(self) -> Any:
        """Capture ledger state for a later revert()."""
        ...

    def revert(self, checkpoint: Any) -> None:
        """Restore ledger state captured by checkpoint()."""
        ...


# ============================================================================
# EXCEPTIONS
# ============================================================================

class OptionError(Exception):
    """
    Base exception for all option engine errors.

    Keyword arguments are kept in `context` so callers can report which
    precondition failed (expected caller, current state, window bounds).
    """

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a dict with stable keys."""
        return {
            'error': type(self).__name__,
            'message': self.message,
            'context': {k: _render(v) for k, v in self.context.items()},
        }


class InvalidParameter(OptionError):
    """Raised when a construction or call parameter violates its constraint."""
    pass


class Unauthorized(OptionError):
    """Raised when the caller is not the party allowed to perform the operation."""
    pass


class InvalidState(OptionError):
    """Raised when the agreement is not in a state that permits the operation."""
    pass


class AlreadyAssigned(OptionError):
    """Raised when a holder is assigned to an agreement that already has one."""
    pass


class NotYetExercisable(OptionError):
    """Raised when exercise is attempted before the expiration instant."""
    pass


class ExerciseWindowExpired(OptionError):
    """Raised when exercise is attempted after the exercise window has closed."""
    pass


class TransferFailed(OptionError):
    """Raised when the token ledger reports a failed transfer."""
    pass


class ReentrantCall(OptionError):
    """Raised when a guarded operation is entered while another is in flight."""
    pass


class NotFound(OptionError):
    """Raised when a registry lookup has no matching record."""
    pass


class ArithmeticOverflow(OptionError):
    """Raised when a settlement amount does not fit in MAX_AMOUNT."""
    pass


class LedgerError(Exception):
    """Base exception for token ledger errors."""
    pass


class TokenNotRegistered(LedgerError):
    """Raised when operating on a token account that has not been registered."""
    pass


class WalletNotRegistered(LedgerError):
    """Raised when operating on a wallet that has not been registered."""
    pass


def _render(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.name
    if isinstance(value, datetime):
        return value.isoformat()
    return value


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of a token account between two wallets.

    Attributes:
        quantity: Amount in base units (positive int).
        account: Token account being transferred (e.g. "SA", "UA").
        source: Wallet debited.
        dest: Wallet credited.
        memo: Identifier of the operation generating this move.
    """
    quantity: int
    account: str
    source: str
    dest: str
    memo: str

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.account or not self.account.strip():
            raise ValueError("Move account cannot be empty")
        if not self.memo or not self.memo.strip():
            raise ValueError("Move memo cannot be empty")
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise ValueError(f"Move quantity must be int, got {type(self.quantity)}")
        if self.quantity <= 0:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.account}: {self.source}→{self.dest})"


# ============================================================================
# VALIDATION AND FIXED-POINT ARITHMETIC
# ============================================================================

def require_identity(name: str, value: Optional[str]) -> str:
    """Return value if it is a non-empty identity string, else raise InvalidParameter."""
    if not isinstance(value, str) or not value.strip():
        raise InvalidParameter(f"{name} must be a non-empty identity", parameter=name, value=value)
    return value


def require_amount(name: str, value: int) -> int:
    """Return value if it is an int in (0, MAX_AMOUNT], else raise InvalidParameter."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidParameter(f"{name} must be an integer amount, got {type(value).__name__}",
                               parameter=name, value=value)
    if value <= 0:
        raise InvalidParameter(f"{name} must be positive, got {value}", parameter=name, value=value)
    if value > MAX_AMOUNT:
        raise InvalidParameter(f"{name} exceeds maximum amount", parameter=name, value=value)
    return value


def to_base_units(value, decimals: int = DEFAULT_DECIMALS) -> int:
    """
    Convert a human-readable amount to fixed-point base units.

    to_base_units("100") == 100 * 10**18. Fractions finer than the token's
    precision are rejected rather than silently truncated.

    Raises:
        InvalidParameter: If the value is not a finite positive number or
                          does not fit the token's precision.
    """
    if isinstance(value, float):
        value = str(value)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidParameter(f"not a decimal amount: {value!r}", value=value)
    if not amount.is_finite() or amount <= 0:
        raise InvalidParameter(f"amount must be positive and finite, got {value}", value=value)
    with localcontext() as ctx:
        ctx.prec = _CONVERSION_PRECISION
        scaled = amount.scaleb(decimals)
        whole = scaled.to_integral_value(rounding=ROUND_DOWN)
    if whole != scaled:
        raise InvalidParameter(
            f"amount {value} has more than {decimals} decimal places", value=value
        )
    return require_amount("amount", int(whole))


def from_base_units(amount: int, decimals: int = DEFAULT_DECIMALS) -> Decimal:
    """Convert fixed-point base units back to a Decimal for display."""
    with localcontext() as ctx:
        ctx.prec = _CONVERSION_PRECISION
        return Decimal(amount).scaleb(-decimals)


def compute_strike_amount(strike_price: int, contract_size: int) -> int:
    """
    Strike-asset amount owed on exercise: (strike_price * contract_size) / S.

    The product is formed before the division so sub-unit strike prices keep
    their precision. Python ints give the wide intermediate; a result that
    does not fit MAX_AMOUNT traps instead of wrapping.

    Raises:
        ArithmeticOverflow: If the scaled-down result exceeds MAX_AMOUNT.
    """
    product = strike_price * contract_size
    strike_amount = product // FIXED_POINT_SCALE
    if strike_amount > MAX_AMOUNT:
        raise ArithmeticOverflow(
            "strike amount exceeds maximum amount",
            strike_price=strike_price,
            contract_size=contract_size,
        )
    return strike_amount
