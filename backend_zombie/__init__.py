"""
Backend for the zombie wallet inactivity index.

Mirrors confirmed ledger events (beneficiary added, check-in, claim, transfer
executed) into an off-chain index and answers owner / beneficiary expiry queries.
"""

__version__ = "0.1.0"
