"""
Billing Kernel

The persistence and policy core of the care billing ledger:
- Typed rate rules and visits
- Invoice aggregate with wholesale ledger regeneration
- Explicit lock / unlock gate with an audit trail
- Decimal-only money with explicit line-level rounding
"""

__version__ = "0.1.0"
