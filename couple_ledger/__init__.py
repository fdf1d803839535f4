"""
Couple Ledger - Core Package

The rules engine behind a couples/household finance app: card statement
cycles, workspace billing and access, and the behavioral "financial city".

DESIGN PRINCIPLES:
1. Resolvers are pure: storage, configuration and "now" are passed in
2. Missing data degrades to safe defaults (a fresh trial, an empty city)
3. Admin checks fail closed
4. State changes only when read or acted on (no background jobs in the core)
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Couple Ledger Team"
