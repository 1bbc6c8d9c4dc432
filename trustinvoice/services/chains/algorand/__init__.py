"""Algorand settlement: wire encoding, transactions, algod client and adapter."""
