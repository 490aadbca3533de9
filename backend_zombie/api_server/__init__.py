"""
API server package — HTTP/REST interface over the beneficiary index.

Serves owner and beneficiary views and routes mutations through the ledger
before mirroring them into the index.
"""
