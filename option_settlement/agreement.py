"""
agreement.py - European Call Option Agreement

One OptionAgreement per option. It owns its parameters and lifecycle state
and settles by calling the token ledger:

    CREATED --assign_holder--> CREATED (matched) --pay_premium--> ACTIVE
    ACTIVE  --exercise--> EXERCISED
    CREATED | ACTIVE --mark_expired--> EXPIRED

Every mutating operation is guarded against reentry and is all-or-nothing
(see atomic.py). Exercise is only possible inside the fixed window
[expiration_time, expiration_time + EXERCISE_WINDOW].
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional
import hashlib
import itertools

from .core import (
    TokenLedger, OptionState,
    ALLOWED_TRANSITIONS, EXERCISE_WINDOW,
    InvalidParameter, Unauthorized, InvalidState, AlreadyAssigned,
    NotYetExercisable, ExerciseWindowExpired, TransferFailed,
    require_identity, require_amount, compute_strike_amount,
)
from .events import (
    EventLog, OptionEvent,
    OptionCreated, HolderAssigned, PremiumPaid, OptionExercised, OptionExpired,
)
from .atomic import guarded_operation

# Nonces for agreements created without a registry-assigned reference
_standalone_nonces = itertools.count()


@dataclass(frozen=True, slots=True)
class OptionDetails:
    """Point-in-time view of an agreement, as read by dashboards."""
    reference: str
    underlying_account: str
    strike_account: str
    strike_price: int
    contract_size: int
    expiration_time: datetime
    exercise_window_end: datetime
    issuer: str
    holder: Optional[str]
    registry: str
    state: OptionState
    is_exercisable: bool
    created_at: datetime


def derive_reference(registry: str, issuer: str, nonce: int, created_at: datetime) -> str:
    """
    Deterministic agreement identity derived from its creator and a nonce.

    Same inputs always produce the same reference.
    """
    content = f"{registry}|{issuer}|{nonce}|{created_at.isoformat()}"
    return "opt_" + hashlib.sha256(content.encode()).hexdigest()[:16]


def validate_option_terms(
    ledger: TokenLedger,
    underlying_account: str,
    strike_account: str,
    strike_price: int,
    expiration_time: datetime,
    contract_size: int,
) -> None:
    """
    Check option terms shared by agreement construction and registry creation.

    Raises:
        InvalidParameter: On the first violated constraint.
    """
    require_identity("underlying_account", underlying_account)
    require_identity("strike_account", strike_account)
    require_amount("strike_price", strike_price)
    require_amount("contract_size", contract_size)
    if not isinstance(expiration_time, datetime):
        raise InvalidParameter("expiration_time must be a datetime",
                               parameter="expiration_time", value=expiration_time)
    now = ledger.current_time
    if (expiration_time.utcoffset() is None) != (now.utcoffset() is None):
        raise InvalidParameter(
            "expiration_time and the ledger clock must both be naive or both be timezone-aware",
            parameter="expiration_time", value=expiration_time, now=now,
        )
    if expiration_time <= now:
        raise InvalidParameter(
            f"expiration_time must be in the future: {expiration_time} <= {now}",
            parameter="expiration_time", value=expiration_time, now=now,
        )


class OptionAgreement:
    """
    A physically settled European call option between an issuer and a holder.

    Attributes are read-only from the outside; the only way to change an
    agreement is through assign_holder, pay_premium, exercise and the
    module-level mark_expired.

    Example:
        agreement = OptionAgreement(
            ledger, "UA", "SA",
            strike_price=100 * 10**18,
            expiration_time=datetime(2025, 6, 1),
            contract_size=10**18,
            holder=None, issuer="alice", registry="registry",
        )
    """

    def __init__(
        self,
        ledger: TokenLedger,
        underlying_account: str,
        strike_account: str,
        strike_price: int,
        expiration_time: datetime,
        contract_size: int,
        holder: Optional[str],
        issuer: str,
        registry: str,
        events: Optional[EventLog] = None,
        reference: Optional[str] = None,
    ):
        """
        Create an agreement in the CREATED state.

        Args:
            ledger: Token ledger used for time and transfers
            underlying_account: Token account delivered on exercise
            strike_account: Token account used for premium and strike payment
            strike_price: Strike per unit of underlying, scaled by 10**18
            expiration_time: Instant after which exercise becomes possible
            contract_size: Underlying base units covered by the option
            holder: Holder identity, or None to leave the option unmatched
            issuer: Issuer identity
            registry: Identity allowed to call assign_holder
            events: Event log to publish to (a private log if omitted)
            reference: Agreement identity (derived if omitted)

        Raises:
            InvalidParameter: If any constraint is violated
        """
        validate_option_terms(ledger, underlying_account, strike_account,
                              strike_price, expiration_time, contract_size)
        require_identity("issuer", issuer)
        require_identity("registry", registry)
        if holder is not None:
            require_identity("holder", holder)

        self._ledger = ledger
        self._events = events if events is not None else EventLog()
        self._underlying_account = underlying_account
        self._strike_account = strike_account
        self._strike_price = strike_price
        self._contract_size = contract_size
        self._expiration_time = expiration_time
        self._issuer = issuer
        self._registry = registry
        self._created_at = ledger.current_time
        self._reference = reference or derive_reference(
            registry, issuer, next(_standalone_nonces), self._created_at)
        self._holder: Optional[str] = holder
        self._state = OptionState.CREATED

        # Guard and per-operation event buffer, managed by guarded_operation
        self._entered = False
        self._pending_events: List[OptionEvent] = []

        self._events.publish([OptionCreated(
            reference=self._reference,
            timestamp=self._created_at,
            issuer=issuer,
            holder=holder,
            registry=registry,
            underlying_account=underlying_account,
            strike_account=strike_account,
            strike_price=strike_price,
            expiration_time=expiration_time,
            contract_size=contract_size,
        )])

    # ========================================================================
    # READ ACCESS
    # ========================================================================

    @property
    def reference(self) -> str:
        return self._reference

    @property
    def ledger(self) -> TokenLedger:
        return self._ledger

    @property
    def events(self) -> EventLog:
        return self._events

    @property
    def underlying_account(self) -> str:
        return self._underlying_account

    @property
    def strike_account(self) -> str:
        return self._strike_account

    @property
    def strike_price(self) -> int:
        return self._strike_price

    @property
    def contract_size(self) -> int:
        return self._contract_size

    @property
    def expiration_time(self) -> datetime:
        return self._expiration_time

    @property
    def exercise_window_end(self) -> datetime:
        return self._expiration_time + EXERCISE_WINDOW

    @property
    def issuer(self) -> str:
        return self._issuer

    @property
    def holder(self) -> Optional[str]:
        return self._holder

    @property
    def registry(self) -> str:
        return self._registry

    @property
    def state(self) -> OptionState:
        return self._state

    @property
    def created_at(self) -> datetime:
        return self._created_at

    @property
    def strike_amount(self) -> int:
        """Strike-asset amount the holder pays on exercise."""
        return compute_strike_amount(self._strike_price, self._contract_size)

    def is_exercisable(self) -> bool:
        """True if ACTIVE and the current time is inside the exercise window."""
        now = self._ledger.current_time
        return (
            self._state == OptionState.ACTIVE
            and self._expiration_time <= now <= self.exercise_window_end
        )

    def is_window_elapsed(self) -> bool:
        """True once the current time is past the end of the exercise window."""
        return self._ledger.current_time > self.exercise_window_end

    def details(self) -> OptionDetails:
        return OptionDetails(
            reference=self._reference,
            underlying_account=self._underlying_account,
            strike_account=self._strike_account,
            strike_price=self._strike_price,
            contract_size=self._contract_size,
            expiration_time=self._expiration_time,
            exercise_window_end=self.exercise_window_end,
            issuer=self._issuer,
            holder=self._holder,
            registry=self._registry,
            state=self._state,
            is_exercisable=self.is_exercisable(),
            created_at=self._created_at,
        )

    def __repr__(self) -> str:
        return (f"OptionAgreement({self._reference}, {self._state.name}, "
                f"issuer={self._issuer}, holder={self._holder})")

    # ========================================================================
    # OPERATIONS
    # ========================================================================

    @guarded_operation
    def assign_holder(self, candidate: str, caller: str) -> None:
        """
        Bind the holder. Write-once; only the owning registry may call it.

        Raises:
            Unauthorized: If caller is not the registry
            InvalidParameter: If candidate is empty
            AlreadyAssigned: If a holder is already set (even the same one)
            InvalidState: If the agreement is no longer CREATED
        """
        if caller != self._registry:
            raise Unauthorized("Only the registry can assign a holder",
                               expected_caller=self._registry, caller=caller)
        require_identity("candidate", candidate)
        if self._holder is not None:
            raise AlreadyAssigned(f"{self._reference} already has a holder",
                                  holder=self._holder, candidate=candidate)
        self._require_state(OptionState.CREATED, "assign_holder")

        self._holder = candidate
        self._emit(HolderAssigned(
            reference=self._reference,
            timestamp=self._ledger.current_time,
            holder=candidate,
        ))

    @guarded_operation
    def pay_premium(self, amount: int, caller: str) -> None:
        """
        Pay the premium from holder to issuer and activate the option.

        Raises:
            Unauthorized: If caller is not the holder
            InvalidState: If the agreement is not CREATED
            InvalidParameter: If amount is not a positive integer
            TransferFailed: If the ledger rejects the transfer
        """
        if self._holder is None or caller != self._holder:
            raise Unauthorized("Only holder can pay premium",
                               expected_caller=self._holder, caller=caller)
        self._require_state(OptionState.CREATED, "pay_premium")
        require_amount("amount", amount)

        self._transfer(self._strike_account, self._holder, self._issuer, amount, "premium")
        self._advance(OptionState.ACTIVE)
        self._emit(PremiumPaid(
            reference=self._reference,
            timestamp=self._ledger.current_time,
            payer=self._holder,
            payee=self._issuer,
            account=self._strike_account,
            amount=amount,
        ))

    @guarded_operation
    def exercise(self, caller: str) -> None:
        """
        Settle the option: strike asset holder -> issuer, underlying issuer -> holder.

        Both legs apply or neither does.

        Raises:
            Unauthorized: If caller is not the holder
            InvalidState: If the agreement is not ACTIVE
            NotYetExercisable: If called before expiration_time
            ExerciseWindowExpired: If called after the exercise window
            ArithmeticOverflow: If the strike amount does not fit MAX_AMOUNT
            TransferFailed: If either leg is rejected
        """
        if self._holder is None or caller != self._holder:
            raise Unauthorized("Only holder can exercise",
                               expected_caller=self._holder, caller=caller)
        self._require_state(OptionState.ACTIVE, "exercise")
        now = self._ledger.current_time
        if now < self._expiration_time:
            raise NotYetExercisable("Not yet exercisable",
                                    now=now, window_start=self._expiration_time,
                                    window_end=self.exercise_window_end)
        if now > self.exercise_window_end:
            raise ExerciseWindowExpired("Exercise window expired",
                                        now=now, window_start=self._expiration_time,
                                        window_end=self.exercise_window_end)

        strike_amount = compute_strike_amount(self._strike_price, self._contract_size)
        # A strike amount that rounds to zero has no strike leg to pay.
        if strike_amount > 0:
            self._transfer(self._strike_account, self._holder, self._issuer,
                           strike_amount, "strike")
        self._transfer(self._underlying_account, self._issuer, self._holder,
                       self._contract_size, "delivery")
        self._advance(OptionState.EXERCISED)
        self._emit(OptionExercised(
            reference=self._reference,
            timestamp=now,
            holder=self._holder,
            issuer=self._issuer,
            strike_account=self._strike_account,
            strike_amount=strike_amount,
            underlying_account=self._underlying_account,
            contract_size=self._contract_size,
        ))

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _transfer(self, account: str, source: str, dest: str, amount: int, leg: str) -> None:
        if not self._ledger.transfer(account, source, dest, amount):
            raise TransferFailed(
                f"{leg} transfer of {amount} {account} from {source} to {dest} failed",
                leg=leg, account=account, source=source, dest=dest, amount=amount,
            )

    def _require_state(self, expected: OptionState, operation: str) -> None:
        if self._state != expected:
            raise InvalidState(
                f"{operation} requires {expected.name}, agreement is {self._state.name}",
                expected_state=expected, state=self._state,
            )

    def _advance(self, new_state: OptionState) -> None:
        if new_state not in ALLOWED_TRANSITIONS[self._state]:
            raise InvalidState(f"illegal transition {self._state.name} -> {new_state.name}",
                               state=self._state, target_state=new_state)
        self._state = new_state

    def _emit(self, event: OptionEvent) -> None:
        self._pending_events.append(event)

    def _snapshot_fields(self) -> Dict[str, Any]:
        return {'holder': self._holder, 'state': self._state}

    def _restore_fields(self, saved: Dict[str, Any]) -> None:
        self._holder = saved['holder']
        self._state = saved['state']


@guarded_operation
def mark_expired(agreement: OptionAgreement, caller: str) -> None:
    """
    Move an unsettled agreement to EXPIRED. Any caller may do this.

    Only the state is checked: there is no check that the exercise window
    has elapsed, so an ACTIVE agreement can be expired at any time. Callers
    that want the window convention use agreement.is_window_elapsed() first
    (see keeper.ExpiryKeeper).

    Raises:
        InvalidState: If the agreement is already EXERCISED or EXPIRED
    """
    previous = agreement.state
    if previous.is_terminal:
        raise InvalidState(f"cannot expire an agreement that is {previous.name}",
                           state=previous)
    agreement._advance(OptionState.EXPIRED)
    agreement._emit(OptionExpired(
        reference=agreement.reference,
        timestamp=agreement.ledger.current_time,
        caller=caller,
        previous_state=previous,
    ))


def create_option_agreement(
    ledger: TokenLedger,
    underlying_account: str,
    strike_account: str,
    strike_price: int,
    expiration_time: datetime,
    contract_size: int,
    issuer: str,
    registry: str,
    holder: Optional[str] = None,
    events: Optional[EventLog] = None,
    reference: Optional[str] = None,
) -> OptionAgreement:
    """
    Create a standalone agreement, optionally already bound to a holder.

    Registries use OptionRegistry.create_option instead, which also indexes it.
    """
    return OptionAgreement(
        ledger=ledger,
        underlying_account=underlying_account,
        strike_account=strike_account,
        strike_price=strike_price,
        expiration_time=expiration_time,
        contract_size=contract_size,
        holder=holder,
        issuer=issuer,
        registry=registry,
        events=events,
        reference=reference,
    )
