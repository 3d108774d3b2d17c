# backend/slotwise/__init__.py
"""
Slotwise availability and booking lifecycle engine.

Derives bookable time slots from recurring provider availability and governs
the deposit-backed booking lifecycle (create, confirm, cancel, no-show,
complete, dispute) under a policy snapshot captured at booking time.
"""

__version__ = "0.4.0"
