"""
Hotspot Ledger - Trader credit ledger and hotspot session reconciliation.
"""

__version__ = "0.1.0"
