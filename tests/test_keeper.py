"""
test_keeper.py - Unit tests for keeper.py

Tests:
- step(): advances time, expires only elapsed non-terminal agreements
- run(): sequences of timestamps
- watch(): standalone agreements
"""

import pytest
from datetime import timedelta

from option_settlement import (
    ExpiryKeeper, OptionState, OptionExpired, EXERCISE_WINDOW,
    InvalidParameter, create_option_agreement,
)
from .fake_ledger import START, EXPIRY, UNIT, ISSUER, HOLDER, OTHER

WINDOW_END = EXPIRY + EXERCISE_WINDOW
AFTER_WINDOW = WINDOW_END + timedelta(seconds=1)


@pytest.fixture
def keeper(ledger, registry):
    return ExpiryKeeper(ledger, registry=registry)


class TestStep:

    def test_step_advances_ledger_time(self, ledger, keeper):
        keeper.step(START + timedelta(days=3))
        assert ledger.current_time == START + timedelta(days=3)

    def test_nothing_expires_inside_window(self, keeper, active_option):
        assert keeper.step(EXPIRY) == []
        assert keeper.step(WINDOW_END) == []
        assert active_option.state == OptionState.ACTIVE

    def test_elapsed_agreements_expire(self, registry, keeper, active_option):
        expired = keeper.step(AFTER_WINDOW)
        assert [e.reference for e in expired] == [active_option.reference]
        assert isinstance(expired[0], OptionExpired)
        assert expired[0].timestamp == AFTER_WINDOW
        assert registry.get_agreement(active_option.reference).state == OptionState.EXPIRED

    def test_unmatched_and_active_both_expire(self, registry, keeper, active_option):
        _, unmatched = registry.create_option("UA", "SA", 100 * UNIT, EXPIRY, UNIT, caller=OTHER)
        expired = keeper.step(AFTER_WINDOW)
        previous = {e.reference: e.previous_state for e in expired}
        assert previous == {
            active_option.reference: OptionState.ACTIVE,
            unmatched: OptionState.CREATED,
        }
        assert all(e.caller == "keeper" for e in expired)

    def test_exercised_agreements_are_left_alone(self, ledger, keeper, active_option):
        ledger.advance_time(EXPIRY)
        active_option.exercise(caller=HOLDER)
        assert keeper.step(AFTER_WINDOW) == []
        assert active_option.state == OptionState.EXERCISED

    def test_each_agreement_expires_once(self, keeper, active_option):
        assert len(keeper.step(AFTER_WINDOW)) == 1
        assert keeper.step(AFTER_WINDOW + timedelta(days=1)) == []

    def test_cannot_step_backwards(self, ledger, keeper):
        ledger.advance_time(EXPIRY)
        with pytest.raises(ValueError):
            keeper.step(START)

    def test_unreadable_registry_entry_is_skipped(self, registry, keeper, active_option):
        _, broken = registry.create_option("UA", "SA", 100 * UNIT, EXPIRY, UNIT, caller=OTHER)
        _, unmatched = registry.create_option("UA", "SA", 100 * UNIT, EXPIRY, UNIT, caller=OTHER)
        del registry._agreements[registry.find_position(broken)]

        expired = keeper.step(AFTER_WINDOW)

        assert [e.reference for e in expired] == [active_option.reference, unmatched]
        assert keeper.pending_count() == 0


class TestRun:

    def test_run_collects_across_steps(self, registry, keeper, active_option):
        later = EXPIRY + timedelta(days=30)
        _, late_ref = registry.create_option("UA", "SA", 100 * UNIT, later, UNIT, caller=ISSUER)
        expired = keeper.run([
            EXPIRY,
            AFTER_WINDOW,
            later + EXERCISE_WINDOW,
            later + EXERCISE_WINDOW + timedelta(seconds=1),
        ])
        assert [e.reference for e in expired] == [active_option.reference, late_ref]
        assert [e.timestamp for e in expired] == [
            AFTER_WINDOW, later + EXERCISE_WINDOW + timedelta(seconds=1)]

    def test_pending_count(self, registry, keeper, active_option):
        registry.create_option("UA", "SA", 100 * UNIT, EXPIRY, UNIT, caller=OTHER)
        assert keeper.pending_count() == 2
        keeper.step(AFTER_WINDOW)
        assert keeper.pending_count() == 0


class TestWatch:

    def test_standalone_agreement(self, ledger):
        agreement = create_option_agreement(
            ledger, "UA", "SA", 100 * UNIT, EXPIRY, UNIT,
            issuer=ISSUER, registry="registry", holder=HOLDER,
        )
        keeper = ExpiryKeeper(ledger, caller="cron")
        keeper.watch(agreement)
        expired = keeper.step(AFTER_WINDOW)
        assert [(e.reference, e.caller) for e in expired] == [(agreement.reference, "cron")]

    def test_caller_must_be_non_empty(self, ledger):
        with pytest.raises(InvalidParameter):
            ExpiryKeeper(ledger, caller="")
