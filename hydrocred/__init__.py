"""
HydroCred ledger reconciliation engine.

Reads hydrogen-credit issuance, transfer and retirement events from the
HydroCred token contract and merges them into one ordered credit ledger.
"""

__version__ = "0.1.0"
