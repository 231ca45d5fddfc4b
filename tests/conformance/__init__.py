"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the settlement engine.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. atomicity.py - All-or-nothing operations
2. reentrancy.py - No operation runs inside another on the same agreement
3. temporal.py - The exercise window
4. state_machine.py - Monotone lifecycle, write-once holder
5. conservation.py - Settlement moves tokens, never creates them

These tests use hypothesis for property-based testing.
"""
