"""
Home Ledger - Source Package

A shared household finance ledger on a managed document store:
transactions, recurring bills, budgets, savings and trips, shared by the
members of one household.

DESIGN PRINCIPLES:
1. Every record belongs to exactly one household
2. Every read is scoped by the secure query builder
3. Multi-document writes are atomic
4. Fail early, fail visibly
5. Every write must be auditable
6. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Home Ledger Team"
