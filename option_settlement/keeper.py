"""
keeper.py - Expiry Keeper

Drives agreements whose exercise window has closed into EXPIRED.

mark_expired itself only checks state. The keeper applies the time
convention on top of it: an agreement is expired once
now > expiration_time + EXERCISE_WINDOW and it is not yet terminal.

Execution order each step():
1. Advance ledger time
2. Collect watched agreements and, if attached, every registry agreement
3. Mark expired each non-terminal agreement whose window has elapsed

Registry entries that cannot be loaded are skipped, as registry scans do.
"""

from __future__ import annotations
from datetime import datetime
from typing import Dict, List, Optional

from .core import OptionError, require_identity
from .events import OptionExpired
from .agreement import OptionAgreement, mark_expired
from .ledger import Ledger
from .registry import OptionRegistry


class ExpiryKeeper:
    """
    Periodic expiry sweeper.

    Example:
        keeper = ExpiryKeeper(ledger, registry=registry)
        expired = keeper.step(expiry + EXERCISE_WINDOW + timedelta(seconds=1))
    """

    def __init__(
        self,
        ledger: Ledger,
        registry: Optional[OptionRegistry] = None,
        caller: str = "keeper",
    ):
        """
        Args:
            ledger: Ledger whose clock the keeper advances
            registry: Registry whose agreements are swept on every step
            caller: Identity recorded as the caller of mark_expired
        """
        self.ledger = ledger
        self.registry = registry
        self.caller = require_identity("caller", caller)
        self.verbose = ledger.verbose
        self._watched: Dict[str, OptionAgreement] = {}

    def watch(self, agreement: OptionAgreement) -> None:
        """Sweep a standalone agreement in addition to the registry's."""
        self._watched[agreement.reference] = agreement

    def step(self, timestamp: datetime) -> List[OptionExpired]:
        """
        Advance time and expire every agreement whose window has elapsed.

        Returns:
            OptionExpired events emitted during this step, in sweep order
        """
        self.ledger.advance_time(timestamp)
        expired: List[OptionExpired] = []

        for agreement in self._candidates():
            if agreement.state.is_terminal or not agreement.is_window_elapsed():
                continue
            log = agreement.events
            position = len(log)
            mark_expired(agreement, self.caller)
            expired.extend(e for e in log.since(position)
                           if isinstance(e, OptionExpired) and e.reference == agreement.reference)
            if self.verbose:
                print(f"⌛ [KEEPER] Expired {agreement.reference}")

        return expired

    def run(self, timestamps: List[datetime]) -> List[OptionExpired]:
        """Step through a sequence of timestamps."""
        all_expired: List[OptionExpired] = []
        for timestamp in timestamps:
            all_expired.extend(self.step(timestamp))
        return all_expired

    def pending_count(self) -> int:
        """Number of swept agreements that are not yet terminal."""
        return sum(1 for a in self._candidates() if not a.state.is_terminal)

    def _candidates(self) -> List[OptionAgreement]:
        seen: Dict[str, OptionAgreement] = {}
        if self.registry is not None:
            for reference in self.registry.list_all():
                try:
                    seen[reference] = self.registry.get_agreement(reference)
                except (OptionError, LookupError) as e:
                    if self.verbose:
                        print(f"⚠️  SKIPPED {reference}: {e!r}")
        for reference, agreement in self._watched.items():
            seen.setdefault(reference, agreement)
        return list(seen.values())
