"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the outcome engine.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. resolution_invariants.py - Basket resolution identities and tie-breaking
2. schedule_invariants.py - Coupon schedule shape and forward-only status
3. breach_invariants.py - Monotonic breach state and threshold boundaries
4. payout_invariants.py - Payout bounds, curve agreement, closed dispatch

These tests use hypothesis for property-based testing.
"""
