"""Perfumery inventory and manufacturing costing ledger."""

__version__ = "0.1.0"
