"""Custody Ledger - chain-of-custody evidence records with a Merkle integrity ledger."""

__version__ = "1.0.0"
