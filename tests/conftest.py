"""
conftest.py - Shared pytest fixtures for option settlement tests

Provides common fixtures used across unit and conformance tests:
- A funded token ledger (SA strike asset, UA underlying asset)
- A shared event log and a registry publishing to it
- Options at each lifecycle stage (listed, matched, active)
"""

import pytest

from option_settlement import EventLog, OptionRegistry

from tests.fake_ledger import funded_ledger, EXPIRY, UNIT, ISSUER, HOLDER


# =============================================================================
# LEDGER AND REGISTRY
# =============================================================================

@pytest.fixture
def ledger():
    """Funded ledger at 2025-01-01 (see fake_ledger.funded_ledger)."""
    return funded_ledger()


@pytest.fixture
def events():
    return EventLog()


@pytest.fixture
def registry(ledger, events):
    return OptionRegistry(ledger, address="registry", events=events, verbose=False)


# =============================================================================
# OPTIONS
# =============================================================================

@pytest.fixture
def listed_option(registry):
    """Reference of an unmatched option: strike 100 SA per UA, 1 UA, expiring 2025-02-01."""
    _, reference = registry.create_option(
        "UA", "SA", 100 * UNIT, EXPIRY, UNIT, caller=ISSUER
    )
    return reference


@pytest.fixture
def matched_option(registry, listed_option):
    """Agreement matched to bob, premium not yet paid."""
    registry.match_option(listed_option, caller=HOLDER)
    return registry.get_agreement(listed_option)


@pytest.fixture
def active_option(matched_option):
    """Agreement with a 10 SA premium paid."""
    matched_option.pay_premium(10 * UNIT, caller=HOLDER)
    return matched_option
