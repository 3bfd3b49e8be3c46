"""
Core Ledger

A ledger backend where every balance change is atomic, ownership-checked and
paired with an append-only transaction record. All money is handled as Decimal.
"""

__version__ = "1.0.0"
