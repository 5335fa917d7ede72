"""Chain Ledger Tracker - append-only transaction ledger and categorized statistics."""

__version__ = "0.1.0"
