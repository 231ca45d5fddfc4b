"""
ledger.py - In-Memory Token Ledger

The Ledger class is the reference implementation of the TokenLedger protocol
the option engine settles against. It plays the role of the shared execution
platform: it owns token balances, the clock and the commit primitives.

Key responsibilities:
    - Maintains wallet balances per token account (integer base units)
    - Executes moves atomically (all moves succeed or all fail)
    - Reports single-leg transfer failures as False, never partially applied
    - Tracks logical time, which only moves forward
    - Provides checkpoint()/revert() so callers can abort whole operations
    - Always validates and always logs
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Set, Tuple

from .core import (
    Move, ExecuteResult,
    MAX_AMOUNT, DEFAULT_DECIMALS, SYSTEM_WALLET,
    LedgerError, TokenNotRegistered, WalletNotRegistered,
)


@dataclass(frozen=True, slots=True)
class Token:
    """
    Definition of a token account on the ledger.

    Attributes:
        symbol: Account identifier (e.g. "SA", "UA").
        name: Human-readable name.
        decimals: Fixed-point decimals of the base unit.
        min_balance: Minimum balance any non-system wallet may hold.
        max_balance: Maximum balance any wallet may hold.
    """
    symbol: str
    name: str
    decimals: int = DEFAULT_DECIMALS
    min_balance: int = 0
    max_balance: int = MAX_AMOUNT


def token(symbol: str, name: str, decimals: int = DEFAULT_DECIMALS) -> Token:
    """
    Create a fungible token account with no overdraft.

    Args:
        symbol: Account identifier (e.g. "SA").
        name: Full name (e.g. "Strike Asset").
        decimals: Number of fixed-point decimals (default: 18).
    """
    if not symbol or not symbol.strip():
        raise ValueError("token symbol cannot be empty")
    return Token(symbol=symbol, name=name, decimals=decimals)


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of applied moves.

    Attributes:
        moves: Moves applied together
        memo: Caller-supplied description of the operation
        exec_id: Unique execution identifier (ledger + sequence + time)
        ledger_name: Name of the ledger that executed this
        execution_time: Ledger time at execution
        sequence_number: Monotonic sequence within the ledger
    """
    moves: Tuple[Move, ...]
    memo: str
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int

    def __repr__(self) -> str:
        legs = ", ".join(repr(m) for m in self.moves)
        return f"Transaction({self.exec_id}, {self.memo}: {legs})"


@dataclass(frozen=True, slots=True)
class LedgerCheckpoint:
    """Snapshot of mutable ledger state taken by Ledger.checkpoint()."""
    balances: Tuple[Tuple[str, Tuple[Tuple[str, int], ...]], ...]
    log_length: int
    next_sequence: int


class Ledger:
    """
    Token ledger with full validation and audit trail.

    Implements the TokenLedger protocol consumed by option agreements.

    Design Principles:
        - Always validates: every move is checked against registration and
          balance constraints before anything is applied.
        - Always logs: every applied execution is recorded in the transaction log.

    Thread Safety:
        Not thread-safe. Operations are sequenced by the caller.

    Example:
        ledger = Ledger("main", datetime(2025, 1, 1))
        ledger.register_token(token("SA", "Strike Asset"))
        ledger.register_wallet("alice")
        ledger.mint("SA", "alice", 10**21)
        ledger.transfer("SA", "alice", "bob", 10**18)
    """

    def __init__(
        self,
        name: str,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
        test_mode: bool = False
    ):
        """
        Create a ledger.

        Args:
            name: Ledger identifier
            initial_time: Starting time for the ledger (default: 1970-01-01)
            verbose: Print applied and rejected executions (default: True)
            test_mode: Allow set_balance() calls (default: False)
        """
        self.name = name
        self.balances: Dict[str, Dict[str, int]] = {}
        self.tokens: Dict[str, Token] = {}
        self.registered_wallets: Set[str] = set()
        self.transaction_log: List[Transaction] = []
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self.verbose = verbose
        self._test_mode = test_mode
        self._next_sequence: int = 0
        # Inverted index token -> {wallet -> quantity} for holder lookups
        self._positions_by_token: Dict[str, Dict[str, int]] = defaultdict(dict)

        self.registered_wallets.add(SYSTEM_WALLET)
        self.balances[SYSTEM_WALLET] = defaultdict(int)

    # ========================================================================
    # TokenLedger PROTOCOL (read side)
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the ledger."""
        return self._current_time

    def balance_of(self, account: str, wallet: str) -> int:
        """
        Balance of a token account held by a wallet.

        Raises:
            TokenNotRegistered: If the token account is not registered
            WalletNotRegistered: If the wallet is not registered
        """
        if account not in self.tokens:
            raise TokenNotRegistered(f"Token {account} not registered")
        if wallet not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet} not registered")
        return self.balances[wallet].get(account, 0)

    def get_positions(self, account: str) -> Dict[str, int]:
        """All non-zero holdings of a token account, by wallet."""
        return dict(self._positions_by_token.get(account, {}))

    def get_wallet_balances(self, wallet: str) -> Dict[str, int]:
        """All balances held by a wallet."""
        if wallet not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet} not registered")
        return dict(self.balances[wallet])

    def list_wallets(self) -> Set[str]:
        """List all registered wallet IDs."""
        return self.registered_wallets.copy()

    def list_tokens(self) -> List[str]:
        """List all registered token symbols."""
        return sorted(self.tokens.keys())

    def is_registered(self, wallet: str) -> bool:
        return wallet in self.registered_wallets

    def total_supply(self, account: str) -> int:
        """
        Sum of a token account across all wallets.

        Tokens are issued out of SYSTEM_WALLET, so for a ledger whose balances
        only change through moves the total is always zero.
        """
        if account not in self.tokens:
            raise TokenNotRegistered(f"Token {account} not registered")
        return sum(self.balances[w].get(account, 0) for w in sorted(self.registered_wallets))

    def verify_double_entry(self, expected_supplies: Optional[Dict[str, int]] = None) -> Dict[str, Any]:
        """
        Verify that conservation holds for every token account.

        Args:
            expected_supplies: Optional map of token -> expected total. Tokens
                               not listed are not checked.

        Returns:
            Dict with keys 'valid', 'supplies' and 'discrepancies'.
        """
        supplies = {symbol: self.total_supply(symbol) for symbol in self.tokens}
        discrepancies = []
        for symbol, expected in (expected_supplies or {}).items():
            actual = supplies.get(symbol)
            if actual is None:
                discrepancies.append({'token': symbol, 'expected': expected,
                                      'actual': 0, 'error': 'token not registered'})
            elif actual != expected:
                discrepancies.append({'token': symbol, 'expected': expected,
                                      'actual': actual, 'difference': actual - expected})
        return {
            'valid': not discrepancies,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the ledger's logical clock.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    # ========================================================================
    # REGISTRATION (Mutating)
    # ========================================================================

    def register_wallet(self, wallet: str) -> str:
        """
        Register a new wallet.

        Raises:
            ValueError: If the wallet is already registered
        """
        if wallet in self.registered_wallets:
            raise ValueError(f"Wallet {wallet} already registered")
        self.registered_wallets.add(wallet)
        self.balances[wallet] = defaultdict(int)
        return wallet

    def register_token(self, tok: Token) -> None:
        """
        Register a new token account.

        Raises:
            ValueError: If the symbol is already registered
        """
        if tok.symbol in self.tokens:
            raise ValueError(f"Token {tok.symbol} already registered")
        self.tokens[tok.symbol] = tok
        if self.verbose:
            print(f"📝 Registered: {tok.symbol} ({tok.name}) [{tok.decimals} decimals]")

    def set_balance(self, wallet: str, account: str, quantity: int) -> None:
        """
        Overwrite a balance directly. Only available in test mode.

        Raises:
            LedgerError: If called when test_mode is False
        """
        if not self._test_mode:
            raise LedgerError(
                "set_balance() is disabled in production mode. "
                "Use mint() or transfer() to modify balances. "
                "Set test_mode=True when creating Ledger for testing."
            )
        if wallet not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet} not registered")
        if account not in self.tokens:
            raise TokenNotRegistered(f"Token {account} not registered")
        self.balances[wallet][account] = quantity
        self._update_position_index(wallet, account, quantity)

    # ========================================================================
    # EXECUTION (Mutating)
    # ========================================================================

    def transfer(self, account: str, source: str, dest: str, amount: int) -> bool:
        """
        Move amount units of a token account from source to dest.

        Returns:
            True if applied, False if rejected (nothing applied).

        A transfer from a wallet to itself moves nothing and succeeds if the
        wallet could cover the amount.

        Raises:
            ValueError: If the move itself is malformed (see Move)
        """
        if source == dest:
            return (account in self.tokens and self.is_registered(source)
                    and 0 < amount <= self.balances[source].get(account, 0))
        move = Move(amount, account, source, dest, f"transfer:{account}")
        return self.execute([move], memo=f"transfer {account}") == ExecuteResult.APPLIED

    def mint(self, account: str, wallet: str, amount: int) -> bool:
        """Issue amount units of a token account to a wallet from SYSTEM_WALLET."""
        move = Move(amount, account, SYSTEM_WALLET, wallet, f"mint:{account}")
        return self.execute([move], memo=f"mint {account}") == ExecuteResult.APPLIED

    def execute(self, moves: List[Move], memo: str = "execute") -> ExecuteResult:
        """
        Validate and apply moves atomically.

        Returns:
            ExecuteResult.APPLIED if every move was applied,
            ExecuteResult.REJECTED if validation failed (nothing applied)
        """
        if not moves:
            return ExecuteResult.APPLIED

        valid, reason = self._validate_moves(moves)
        if not valid:
            if self.verbose:
                print(f"✗ REJECTED [{memo}]: {reason}")
            return ExecuteResult.REJECTED

        sequence = self._next_sequence
        self._next_sequence += 1
        tx = Transaction(
            moves=tuple(moves),
            memo=memo,
            exec_id=self._generate_exec_id(sequence),
            ledger_name=self.name,
            execution_time=self._current_time,
            sequence_number=sequence,
        )
        self._execute_moves(tx.moves)
        self.transaction_log.append(tx)

        if self.verbose:
            print(f"✓ APPLIED {tx!r}")
        return ExecuteResult.APPLIED

    def _generate_exec_id(self, sequence: int) -> str:
        """Format: exec:{ledger_name}:{sequence:012d}:{timestamp_micros}"""
        micros = int(self._current_time.timestamp() * 1_000_000)
        return f"exec:{self.name}:{sequence:012d}:{micros}"

    def _validate_moves(self, moves: List[Move]) -> Tuple[bool, str]:
        """
        Check registration and balance limits for the net effect of moves.

        SYSTEM_WALLET is exempt from balance limits.
        """
        for move in moves:
            if move.account not in self.tokens:
                return False, f"token not registered: {move.account}"
            if not self.is_registered(move.source):
                return False, f"wallet not registered: {move.source}"
            if not self.is_registered(move.dest):
                return False, f"wallet not registered: {move.dest}"

        net: Dict[Tuple[str, str], int] = {}
        for move in moves:
            key_src = (move.source, move.account)
            key_dst = (move.dest, move.account)
            net[key_src] = net.get(key_src, 0) - move.quantity
            net[key_dst] = net.get(key_dst, 0) + move.quantity

        for (wallet, account), delta in net.items():
            if wallet == SYSTEM_WALLET:
                continue
            tok = self.tokens[account]
            proposed = self.balances[wallet][account] + delta
            if proposed < tok.min_balance:
                return False, f"{wallet} {account}: {proposed} < min {tok.min_balance}"
            if proposed > tok.max_balance:
                return False, f"{wallet} {account}: {proposed} > max {tok.max_balance}"

        return True, ""

    def _update_position_index(self, wallet: str, account: str, quantity: int) -> None:
        if quantity != 0:
            self._positions_by_token[account][wallet] = quantity
        else:
            self._positions_by_token[account].pop(wallet, None)

    def _execute_moves(self, moves) -> None:
        for move in moves:
            new_src = self.balances[move.source][move.account] - move.quantity
            self.balances[move.source][move.account] = new_src
            self._update_position_index(move.source, move.account, new_src)
            new_dst = self.balances[move.dest][move.account] + move.quantity
            self.balances[move.dest][move.account] = new_dst
            self._update_position_index(move.dest, move.account, new_dst)

    # ========================================================================
    # COMMIT PRIMITIVES
    # ========================================================================

    def checkpoint(self) -> LedgerCheckpoint:
        """
        Capture balances and log position.

        Registrations and the clock are not part of a checkpoint; revert()
        only undoes executions applied after the checkpoint was taken.
        """
        return LedgerCheckpoint(
            balances=tuple(
                (wallet, tuple(bals.items())) for wallet, bals in self.balances.items()
            ),
            log_length=len(self.transaction_log),
            next_sequence=self._next_sequence,
        )

    def revert(self, checkpoint: LedgerCheckpoint) -> None:
        """
        Restore the state captured by checkpoint().

        Raises:
            LedgerError: If the transaction log is already shorter than the
                         checkpoint (the checkpoint belongs to another timeline)
        """
        if checkpoint.log_length > len(self.transaction_log):
            raise LedgerError("Cannot revert to a checkpoint ahead of the transaction log")
        undone = self.transaction_log[checkpoint.log_length:]
        saved = dict(checkpoint.balances)
        for wallet in self.registered_wallets:
            self.balances[wallet] = defaultdict(int, saved.get(wallet, ()))
        self._positions_by_token = defaultdict(dict)
        for wallet, bals in self.balances.items():
            for account, quantity in bals.items():
                self._update_position_index(wallet, account, quantity)
        del self.transaction_log[checkpoint.log_length:]
        self._next_sequence = checkpoint.next_sequence
        if self.verbose and undone:
            print(f"↺ REVERTED {len(undone)} transaction(s) on {self.name}")
