"""
Conformance Test Suite

Properties every engine state must satisfy, whatever sequence of calls
produced it.

The tests are organized by property:
1. conservation.py - Double entry, custody, zero-sum cash, pool accounting
2. atomicity.py - Failed calls leave no trace
3. determinism.py - Identical call sequences give identical logs
4. settlement_invariants.py - Matured maturities settle to zero

These tests use hypothesis for property-based testing.
"""
