"""Ledger update protocol for tips, article purchases and subscriptions."""

__version__ = "0.1.0"
