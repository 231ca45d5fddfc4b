"""
events.py - Settlement Events and the Event Log

Events are immutable records emitted by committed engine operations. Each one
carries the identities and amounts an external indexer needs to rebuild
agreement state without querying the engine.

An operation buffers its events while it runs and publishes them as one batch
only after it commits, so aborted operations leave no trace in the log.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Iterator, List, Optional, Tuple, Type

from .core import OptionState


@dataclass(frozen=True, slots=True)
class OptionEvent:
    """
    Base event.

    Attributes:
        reference: Identity of the agreement the event belongs to
        timestamp: Ledger time at which the emitting operation ran
    """
    reference: str
    timestamp: datetime

    @property
    def event_type(self) -> str:
        return type(self).__name__


@dataclass(frozen=True, slots=True)
class OptionCreated(OptionEvent):
    """An agreement was constructed."""
    issuer: str
    holder: Optional[str]
    registry: str
    underlying_account: str
    strike_account: str
    strike_price: int
    expiration_time: datetime
    contract_size: int


@dataclass(frozen=True, slots=True)
class OptionRegistered(OptionEvent):
    """A registry listed a newly created agreement."""
    option_id: int
    issuer: str
    registry: str


@dataclass(frozen=True, slots=True)
class HolderAssigned(OptionEvent):
    """The agreement bound its holder."""
    holder: str


@dataclass(frozen=True, slots=True)
class OptionMatched(OptionEvent):
    """A registry brokered a holder for one of its agreements."""
    option_id: int
    holder: str
    registry: str


@dataclass(frozen=True, slots=True)
class PremiumPaid(OptionEvent):
    """The holder paid the premium and the agreement became active."""
    payer: str
    payee: str
    account: str
    amount: int


@dataclass(frozen=True, slots=True)
class OptionExercised(OptionEvent):
    """The holder exercised; both settlement legs were applied."""
    holder: str
    issuer: str
    strike_account: str
    strike_amount: int
    underlying_account: str
    contract_size: int


@dataclass(frozen=True, slots=True)
class OptionExpired(OptionEvent):
    """The agreement was marked expired."""
    caller: str
    previous_state: OptionState


EventCallback = Callable[[OptionEvent], None]


class EventLog:
    """
    Ordered, append-only log of committed events.

    Example:
        log = EventLog(verbose=False)
        seen = []
        unsubscribe = log.subscribe(seen.append)
        ...
        log.for_reference(reference)
    """

    def __init__(self, verbose: bool = False):
        self._events: List[OptionEvent] = []
        self._subscribers: List[EventCallback] = []
        self.verbose = verbose

    def publish(self, events: Iterable[OptionEvent]) -> None:
        """
        Append a committed batch and notify subscribers in order.

        The whole batch is appended before any subscriber runs.
        """
        batch = tuple(events)
        self._events.extend(batch)
        for event in batch:
            if self.verbose:
                print(f"📣 {event.event_type} {event.reference} @ {event.timestamp}")
            for callback in list(self._subscribers):
                callback(event)

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        """Register a callback for future events. Returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def for_reference(self, reference: str) -> Tuple[OptionEvent, ...]:
        """All events for one agreement, in emission order."""
        return tuple(e for e in self._events if e.reference == reference)

    def of_type(self, event_type: Type[OptionEvent]) -> Tuple[OptionEvent, ...]:
        return tuple(e for e in self._events if isinstance(e, event_type))

    def since(self, position: int) -> Tuple[OptionEvent, ...]:
        """Events appended after the first `position` entries."""
        return tuple(self._events[position:])

    def last(self) -> Optional[OptionEvent]:
        return self._events[-1] if self._events else None

    def __iter__(self) -> Iterator[OptionEvent]:
        return iter(tuple(self._events))

    def __len__(self) -> int:
        return len(self._events)
