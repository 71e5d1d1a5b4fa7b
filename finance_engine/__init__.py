"""
Finance Engine - Source Package

The background decision layer of a personal finance application:
recurring obligations become ledger entries when due, budgets are
checked against their thresholds, and goals track their progress.

DESIGN PRINCIPLES:
1. The ledger is the only source of truth for money that moved
2. Derived values are recomputed, never patched
3. Every state change is auditable
4. `now` is always passed in; nothing reads the clock on its own
5. Storage and alert delivery are swappable
"""

__version__ = "0.1.0"
__author__ = "Finance Engine Team"
