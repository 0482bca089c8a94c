"""
Finance Tracker - Source Package

A personal finance tracker: users record income and expense transactions
against their own categories, review monthly totals and inspect how their
expenses are distributed across categories.

DESIGN PRINCIPLES:
1. The remote document store is the source of truth
2. Every cached view is keyed, so a write knows exactly what it made stale
3. Invalidation only follows a confirmed write
4. Fail visibly: every failed action produces a notification
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Finance Tracker Team"
