"""TRON deposit address issuance and on-chain deposit reconciliation."""

__version__ = "0.1.0"
