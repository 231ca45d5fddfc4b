"""
test_ledger.py - Unit tests for ledger.py

Tests:
- Ledger creation and configuration
- Wallet and token registration
- Balance queries and conservation
- transfer()/mint()/execute(): validation and rejection
- checkpoint() and revert()
- Time management
"""

import pytest
from datetime import datetime, timedelta

from option_settlement import (
    Ledger, Move, ExecuteResult, SYSTEM_WALLET, MAX_AMOUNT,
    LedgerError, TokenNotRegistered, WalletNotRegistered,
    token,
)
from .fake_ledger import funded_ledger, snapshot_balances, START, UNIT


class TestLedgerCreation:

    def test_defaults(self):
        ledger = Ledger("main")
        assert ledger.name == "main"
        assert ledger.current_time == datetime(1970, 1, 1)
        assert ledger.verbose is True
        assert ledger.transaction_log == []

    def test_system_wallet_is_preregistered(self):
        assert Ledger("main", verbose=False).is_registered(SYSTEM_WALLET)

    def test_initial_time(self):
        assert Ledger("main", START).current_time == START


class TestRegistration:

    def test_register_wallet(self):
        ledger = Ledger("main", verbose=False)
        assert ledger.register_wallet("alice") == "alice"
        assert "alice" in ledger.list_wallets()

    def test_register_wallet_twice_raises(self):
        ledger = Ledger("main", verbose=False)
        ledger.register_wallet("alice")
        with pytest.raises(ValueError, match="already registered"):
            ledger.register_wallet("alice")

    def test_register_token(self):
        ledger = Ledger("main", verbose=False)
        ledger.register_token(token("SA", "Strike Asset", decimals=6))
        assert ledger.list_tokens() == ["SA"]
        assert ledger.tokens["SA"].decimals == 6
        assert ledger.tokens["SA"].min_balance == 0
        assert ledger.tokens["SA"].max_balance == MAX_AMOUNT

    def test_register_token_twice_raises(self):
        ledger = Ledger("main", verbose=False)
        ledger.register_token(token("SA", "Strike Asset"))
        with pytest.raises(ValueError, match="already registered"):
            ledger.register_token(token("SA", "Strike Asset"))

    def test_empty_token_symbol_raises(self):
        with pytest.raises(ValueError):
            token("", "Nothing")


class TestBalances:

    def test_balance_of(self):
        ledger = funded_ledger()
        assert ledger.balance_of("SA", "bob") == 1000 * UNIT
        assert ledger.balance_of("UA", "bob") == 0

    def test_balance_of_unknown_token(self):
        with pytest.raises(TokenNotRegistered):
            funded_ledger().balance_of("XX", "bob")

    def test_balance_of_unknown_wallet(self):
        with pytest.raises(WalletNotRegistered):
            funded_ledger().balance_of("SA", "mallory")

    def test_positions_index(self):
        ledger = funded_ledger()
        assert ledger.get_positions("SA") == {
            SYSTEM_WALLET: -2000 * UNIT, "bob": 1000 * UNIT, "carol": 1000 * UNIT,
        }

    def test_minting_conserves_supply(self):
        ledger = funded_ledger()
        assert ledger.total_supply("SA") == 0
        assert ledger.verify_double_entry({"SA": 0, "UA": 0})['valid']

    def test_verify_double_entry_reports_discrepancy(self):
        ledger = funded_ledger()
        ledger.set_balance("bob", "SA", 1)
        result = ledger.verify_double_entry({"SA": 0})
        assert not result['valid']
        assert result['discrepancies'][0]['token'] == "SA"

    def test_set_balance_requires_test_mode(self):
        ledger = Ledger("main", verbose=False)
        ledger.register_token(token("SA", "Strike Asset"))
        ledger.register_wallet("alice")
        with pytest.raises(LedgerError, match="test_mode"):
            ledger.set_balance("alice", "SA", 1)


class TestTransfer:

    def test_transfer_applies(self):
        ledger = funded_ledger()
        assert ledger.transfer("SA", "bob", "alice", 10 * UNIT) is True
        assert ledger.balance_of("SA", "bob") == 990 * UNIT
        assert ledger.balance_of("SA", "alice") == 10 * UNIT

    def test_insufficient_balance_returns_false(self):
        ledger = funded_ledger()
        before = snapshot_balances(ledger)
        log_length = len(ledger.transaction_log)
        assert ledger.transfer("SA", "bob", "alice", 1001 * UNIT) is False
        assert snapshot_balances(ledger) == before
        assert len(ledger.transaction_log) == log_length

    def test_unregistered_wallet_returns_false(self):
        assert funded_ledger().transfer("SA", "bob", "mallory", UNIT) is False

    def test_unregistered_token_returns_false(self):
        assert funded_ledger().transfer("XX", "bob", "alice", UNIT) is False

    def test_self_transfer_moves_nothing(self):
        ledger = funded_ledger()
        assert ledger.transfer("SA", "bob", "bob", UNIT) is True
        assert ledger.balance_of("SA", "bob") == 1000 * UNIT

    def test_self_transfer_beyond_balance_fails(self):
        assert funded_ledger().transfer("SA", "alice", "alice", UNIT) is False

    def test_execute_is_atomic(self):
        ledger = funded_ledger()
        before = snapshot_balances(ledger)
        result = ledger.execute([
            Move(10 * UNIT, "SA", "bob", "alice", "strike"),
            Move(11 * UNIT, "UA", "alice", "bob", "delivery"),
        ])
        assert result == ExecuteResult.REJECTED
        assert snapshot_balances(ledger) == before

    def test_transactions_are_logged_in_sequence(self):
        ledger = funded_ledger()
        first = len(ledger.transaction_log)
        ledger.transfer("SA", "bob", "alice", UNIT)
        ledger.transfer("SA", "bob", "carol", UNIT)
        new = ledger.transaction_log[first:]
        assert [tx.sequence_number for tx in new] == [first, first + 1]
        assert all(tx.ledger_name == "test" for tx in new)
        assert new[0].exec_id.startswith(f"exec:test:{first:012d}:")


class TestCheckpoint:

    def test_revert_restores_balances_and_log(self):
        ledger = funded_ledger()
        before = snapshot_balances(ledger)
        log_length = len(ledger.transaction_log)
        cp = ledger.checkpoint()

        ledger.transfer("SA", "bob", "alice", 5 * UNIT)
        ledger.transfer("UA", "alice", "bob", UNIT)
        ledger.revert(cp)

        assert snapshot_balances(ledger) == before
        assert len(ledger.transaction_log) == log_length
        assert ledger.get_positions("UA") == {SYSTEM_WALLET: -10 * UNIT, "alice": 10 * UNIT}

    def test_sequence_resumes_after_revert(self):
        ledger = funded_ledger()
        cp = ledger.checkpoint()
        ledger.transfer("SA", "bob", "alice", UNIT)
        ledger.revert(cp)
        ledger.transfer("SA", "bob", "carol", UNIT)
        assert ledger.transaction_log[-1].sequence_number == cp.next_sequence

    def test_revert_ahead_of_log_raises(self):
        ledger = funded_ledger()
        early = ledger.checkpoint()
        ledger.transfer("SA", "bob", "alice", UNIT)
        late = ledger.checkpoint()
        ledger.revert(early)
        with pytest.raises(LedgerError):
            ledger.revert(late)


class TestTime:

    def test_advance_time(self):
        ledger = funded_ledger()
        ledger.advance_time(START + timedelta(days=1))
        assert ledger.current_time == START + timedelta(days=1)

    def test_time_cannot_go_backwards(self):
        ledger = funded_ledger()
        with pytest.raises(ValueError, match="backwards"):
            ledger.advance_time(START - timedelta(seconds=1))
