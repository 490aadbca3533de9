"""
Core utilities — expiry clock, error taxonomy, addresses, per-key locks.

Pure, dependency-free building blocks used by the store, the reconciliation
engine, the query surface and the API server.
"""
