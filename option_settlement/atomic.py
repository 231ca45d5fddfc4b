"""
atomic.py - Reentrancy Guard and All-or-Nothing Commit

Every state-mutating agreement operation runs through `guarded_operation`:

1. Refuse immediately with ReentrantCall if another guarded operation on the
   same agreement is in flight (for example, a token ledger calling back from
   inside transfer()).
2. Take a ledger checkpoint and a snapshot of the agreement's mutable fields.
3. Run the operation with an empty event buffer.
4. On any exception, revert the ledger, restore the fields, drop the buffer
   and re-raise. Nothing the operation did is observable afterwards.
5. On success, release the guard and publish the buffered events.

Operations may nest across agreements: a token ledger can call into a
different agreement from inside transfer(). A nested operation that succeeds
while an outer operation on the same ledger is in flight does not commit on
its own. Its field snapshot and events are handed to the outer operation, so
a failing outer operation also restores the nested agreement and drops its
events, and the outermost commit publishes everything in commit order.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from .core import ReentrantCall

F = TypeVar("F", bound=Callable[..., Any])


@dataclass
class _Frame:
    """One guarded operation in flight."""
    agreement: Any
    checkpoint: Any
    saved_fields: Dict[str, Any]
    # Agreements that committed inside this operation, with their prior fields
    nested: List[Tuple[Any, Dict[str, Any]]] = field(default_factory=list)
    # (event log, batch) pairs held back until the outermost commit
    deferred: List[Tuple[Any, List[Any]]] = field(default_factory=list)


# Operations in flight, outermost first
_in_flight: List[_Frame] = []


def _enclosing(ledger) -> Optional[_Frame]:
    for frame in reversed(_in_flight):
        if frame.agreement.ledger is ledger:
            return frame
    return None


def guarded_operation(func: F) -> F:
    """
    Decorate a function whose first argument is an OptionAgreement.

    Works for methods (first argument is self) and for free functions that
    take the agreement explicitly.
    """

    @wraps(func)
    def wrapper(agreement, *args, **kwargs):
        if agreement._entered:
            raise ReentrantCall(
                f"{func.__name__} re-entered {agreement.reference} while an operation is in flight",
                reference=agreement.reference,
                operation=func.__name__,
            )
        frame = _Frame(
            agreement=agreement,
            checkpoint=agreement.ledger.checkpoint(),
            saved_fields=agreement._snapshot_fields(),
        )
        agreement._entered = True
        agreement._pending_events = []
        _in_flight.append(frame)
        try:
            result = func(agreement, *args, **kwargs)
        except BaseException:
            agreement.ledger.revert(frame.checkpoint)
            for nested, saved in reversed(frame.nested):
                nested._restore_fields(saved)
            agreement._restore_fields(frame.saved_fields)
            agreement._pending_events = []
            raise
        finally:
            _in_flight.pop()
            agreement._entered = False

        events, agreement._pending_events = agreement._pending_events, []
        outer = _enclosing(agreement.ledger)
        if outer is not None:
            outer.nested.extend(frame.nested)
            outer.nested.append((agreement, frame.saved_fields))
            outer.deferred.extend(frame.deferred)
            outer.deferred.append((agreement.events, events))
            return result

        for log, batch in frame.deferred:
            log.publish(batch)
        agreement.events.publish(events)
        return result

    return wrapper  # type: ignore[return-value]
