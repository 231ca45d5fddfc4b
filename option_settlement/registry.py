"""
registry.py - Option Registry

The registry creates agreements, keeps them discoverable and brokers holder
assignment. It never holds funds.

Storage is an arena plus indices:
    _records:               ordered RegistryRecord list (position == option_id)
    _agreements:            option_id -> OptionAgreement (the arena)
    _position_by_reference: reference -> option_id
    _references_by_issuer:  issuer -> [reference, ...]

Agreements only know the registry's address, which authorizes assign_holder.
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from .core import (
    TokenLedger, OptionState,
    OptionError, NotFound, InvalidState, AlreadyAssigned,
    require_identity,
)
from .events import EventLog, OptionRegistered, OptionMatched
from .agreement import OptionAgreement, derive_reference, validate_option_terms


@dataclass(frozen=True, slots=True)
class RegistryRecord:
    """
    Index entry for one agreement.

    holder is a cached copy refreshed after matching; the agreement's own
    holder is authoritative.
    """
    option_id: int
    reference: str
    issuer: str
    holder: Optional[str]
    created_at: datetime
    exists: bool = True


class OptionRegistry:
    """
    Creates, indexes and matches option agreements.

    Example:
        registry = OptionRegistry(ledger, address="registry", verbose=False)
        option_id, ref = registry.create_option(
            "UA", "SA", 100 * 10**18, expiry, 10**18, caller="alice")
        registry.match_option(ref, caller="bob")
        registry.get_agreement(ref).pay_premium(10 * 10**18, caller="bob")
    """

    def __init__(
        self,
        ledger: TokenLedger,
        address: str = "registry",
        events: Optional[EventLog] = None,
        verbose: bool = True,
    ):
        self.ledger = ledger
        self.address = require_identity("address", address)
        self.events = events if events is not None else EventLog(verbose=verbose)
        self.verbose = verbose
        self._records: List[RegistryRecord] = []
        self._agreements: Dict[int, OptionAgreement] = {}
        self._position_by_reference: Dict[str, int] = {}
        self._references_by_issuer: Dict[str, List[str]] = defaultdict(list)

    # ========================================================================
    # MUTATING OPERATIONS
    # ========================================================================

    def create_option(
        self,
        underlying_account: str,
        strike_account: str,
        strike_price: int,
        expiration_time: datetime,
        contract_size: int,
        caller: str,
    ) -> Tuple[int, str]:
        """
        Create and index an unmatched agreement issued by caller.

        Returns:
            (option_id, reference)

        Raises:
            InvalidParameter: If any term or the caller identity is invalid
        """
        validate_option_terms(self.ledger, underlying_account, strike_account,
                              strike_price, expiration_time, contract_size)
        require_identity("caller", caller)

        option_id = len(self._records)
        created_at = self.ledger.current_time
        reference = derive_reference(self.address, caller, option_id, created_at)
        agreement = OptionAgreement(
            ledger=self.ledger,
            underlying_account=underlying_account,
            strike_account=strike_account,
            strike_price=strike_price,
            expiration_time=expiration_time,
            contract_size=contract_size,
            holder=None,
            issuer=caller,
            registry=self.address,
            events=self.events,
            reference=reference,
        )

        self._records.append(RegistryRecord(
            option_id=option_id,
            reference=reference,
            issuer=caller,
            holder=None,
            created_at=created_at,
        ))
        self._agreements[option_id] = agreement
        self._position_by_reference[reference] = option_id
        self._references_by_issuer[caller].append(reference)

        self.events.publish([OptionRegistered(
            reference=reference,
            timestamp=created_at,
            option_id=option_id,
            issuer=caller,
            registry=self.address,
        )])
        if self.verbose:
            print(f"📝 Listed option #{option_id} {reference} issued by {caller}")
        return option_id, reference

    def match_option(self, reference: str, caller: str) -> None:
        """
        Make caller the holder of an unmatched agreement.

        The agreement's live state is checked, not the cached record.

        Raises:
            NotFound: If no live record exists for reference
            InvalidState: If the agreement is no longer CREATED
            AlreadyAssigned: If the agreement already has a holder
            (and anything assign_holder raises)
        """
        position = self._require_position(reference)
        record = self._records[position]
        agreement = self._load(position)

        if agreement.state != OptionState.CREATED:
            raise InvalidState(f"{reference} is {agreement.state.name}, not matchable",
                               reference=reference, state=agreement.state)
        if agreement.holder is not None:
            raise AlreadyAssigned(f"{reference} already matched",
                                  reference=reference, holder=agreement.holder)

        agreement.assign_holder(caller, self.address)

        self._records[position] = replace(record, holder=agreement.holder)
        self.events.publish([OptionMatched(
            reference=reference,
            timestamp=self.ledger.current_time,
            option_id=record.option_id,
            holder=agreement.holder,
            registry=self.address,
        )])
        if self.verbose:
            print(f"🤝 Matched option #{record.option_id} {reference} to {agreement.holder}")

    # ========================================================================
    # QUERIES (read-only)
    # ========================================================================

    def find_position(self, reference: str) -> Optional[int]:
        """Position of a reference in creation order, or None if unknown."""
        return self._position_by_reference.get(reference)

    def get_info(self, reference: str) -> RegistryRecord:
        """
        Record for a reference.

        Raises:
            NotFound: If the reference is unknown
        """
        position = self.find_position(reference)
        if position is None:
            raise NotFound(f"No option {reference}", reference=reference)
        return self._records[position]

    def get_agreement(self, reference: str) -> OptionAgreement:
        """
        Live agreement for a reference.

        Raises:
            NotFound: If the reference is unknown, retired or its agreement is gone
        """
        return self._load(self._require_position(reference))

    def get_by_index(self, option_id: int) -> RegistryRecord:
        if not 0 <= option_id < len(self._records):
            raise NotFound(f"No option #{option_id}", option_id=option_id)
        return self._records[option_id]

    def get_by_issuer(self, issuer: str) -> Tuple[str, ...]:
        """References issued by issuer, in creation order."""
        return tuple(self._references_by_issuer.get(issuer, ()))

    def list_all(self) -> Tuple[str, ...]:
        """All references in creation order."""
        return tuple(record.reference for record in self._records)

    def list_matchable(self) -> Tuple[str, ...]:
        """
        References whose agreement is CREATED with no holder.

        Entries whose agreement cannot be read are skipped.
        """
        return self._scan(
            lambda a: a.holder is None and a.state == OptionState.CREATED
        )

    def get_by_holder(self, holder: str) -> Tuple[str, ...]:
        """References whose agreement's live holder is holder."""
        return self._scan(lambda a: a.holder == holder)

    def option_count(self) -> int:
        return len(self._records)

    def __len__(self) -> int:
        return len(self._records)

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _require_position(self, reference: str) -> int:
        position = self.find_position(reference)
        if position is None or not self._records[position].exists:
            raise NotFound(f"No option {reference}", reference=reference)
        return position

    def _load(self, position: int) -> OptionAgreement:
        agreement = self._agreements.get(position)
        if agreement is None:
            raise NotFound(f"Option #{position} has no backing agreement", option_id=position)
        return agreement

    def _scan(self, predicate: Callable[[OptionAgreement], bool]) -> Tuple[str, ...]:
        matches = []
        for record in self._records:
            if not record.exists:
                continue
            try:
                agreement = self._load(record.option_id)
                selected = predicate(agreement)
            except (OptionError, LookupError, AttributeError, TypeError) as e:
                if self.verbose:
                    print(f"⚠️  SKIPPED {record.reference}: {e!r}")
                continue
            if selected:
                matches.append(record.reference)
        return tuple(matches)
