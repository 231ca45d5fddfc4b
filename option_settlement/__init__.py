"""
option_settlement - Call Option Settlement Engine

Physically settled European call options between an issuer and a holder,
settled against an external token ledger, plus a registry that lists and
matches them.

Usage:
    from datetime import datetime, timedelta
    from option_settlement import (
        Ledger, token, OptionRegistry, to_base_units, EXERCISE_WINDOW,
    )

    ledger = Ledger("main", datetime(2025, 1, 1), verbose=False)
    ledger.register_token(token("SA", "Strike Asset"))
    ledger.register_token(token("UA", "Underlying Asset"))
    for wallet in ("alice", "bob"):
        ledger.register_wallet(wallet)
    ledger.mint("UA", "alice", to_base_units("1"))
    ledger.mint("SA", "bob", to_base_units("200"))

    registry = OptionRegistry(ledger, verbose=False)
    expiry = datetime(2025, 2, 1)
    option_id, ref = registry.create_option(
        "UA", "SA", to_base_units("100"), expiry, to_base_units("1"), caller="alice")
    registry.match_option(ref, caller="bob")

    agreement = registry.get_agreement(ref)
    agreement.pay_premium(to_base_units("10"), caller="bob")
    ledger.advance_time(expiry)
    agreement.exercise(caller="bob")
"""

# Core types
from .core import (
    TokenLedger,
    OptionState,
    ExecuteResult,
    Move,
    ALLOWED_TRANSITIONS,
    FIXED_POINT_SCALE,
    DEFAULT_DECIMALS,
    MAX_AMOUNT,
    EXERCISE_WINDOW,
    SYSTEM_WALLET,
    OptionError,
    InvalidParameter,
    Unauthorized,
    InvalidState,
    AlreadyAssigned,
    NotYetExercisable,
    ExerciseWindowExpired,
    TransferFailed,
    ReentrantCall,
    NotFound,
    ArithmeticOverflow,
    LedgerError,
    TokenNotRegistered,
    WalletNotRegistered,
    require_identity,
    require_amount,
    to_base_units,
    from_base_units,
    compute_strike_amount,
)

# Token ledger
from .ledger import Ledger, Token, Transaction, LedgerCheckpoint, token

# Events
from .events import (
    EventLog,
    OptionEvent,
    OptionCreated,
    OptionRegistered,
    HolderAssigned,
    OptionMatched,
    PremiumPaid,
    OptionExercised,
    OptionExpired,
)

# Agreements
from .atomic import guarded_operation
from .agreement import (
    OptionAgreement,
    OptionDetails,
    create_option_agreement,
    derive_reference,
    mark_expired,
    validate_option_terms,
)

# Registry
from .registry import OptionRegistry, RegistryRecord

# Expiry keeper
from .keeper import ExpiryKeeper


__all__ = [
    # Core
    'TokenLedger', 'OptionState', 'ExecuteResult', 'Move', 'ALLOWED_TRANSITIONS',
    'FIXED_POINT_SCALE', 'DEFAULT_DECIMALS', 'MAX_AMOUNT', 'EXERCISE_WINDOW', 'SYSTEM_WALLET',
    'require_identity', 'require_amount', 'to_base_units', 'from_base_units',
    'compute_strike_amount',
    # Exceptions
    'OptionError', 'InvalidParameter', 'Unauthorized', 'InvalidState', 'AlreadyAssigned',
    'NotYetExercisable', 'ExerciseWindowExpired', 'TransferFailed', 'ReentrantCall',
    'NotFound', 'ArithmeticOverflow',
    'LedgerError', 'TokenNotRegistered', 'WalletNotRegistered',
    # Ledger
    'Ledger', 'Token', 'Transaction', 'LedgerCheckpoint', 'token',
    # Events
    'EventLog', 'OptionEvent', 'OptionCreated', 'OptionRegistered', 'HolderAssigned',
    'OptionMatched', 'PremiumPaid', 'OptionExercised', 'OptionExpired',
    # Agreements
    'guarded_operation', 'OptionAgreement', 'OptionDetails', 'create_option_agreement',
    'derive_reference', 'mark_expired', 'validate_option_terms',
    # Registry
    'OptionRegistry', 'RegistryRecord',
    # Keeper
    'ExpiryKeeper',
]

__version__ = '1.0.0'
