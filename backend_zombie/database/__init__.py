"""
Beneficiary index persistence — records, closure tombstones, applied ledger events.

SQLite by default via get_store(); swappable for PostgreSQL with a URL.
"""

from backend_zombie.database.models import BeneficiaryRecord, EventId, NewBeneficiary
from backend_zombie.database.store import (
    BeneficiaryStore,
    SQLAlchemyBeneficiaryStore,
    get_store,
)

__all__ = [
    "BeneficiaryRecord",
    "BeneficiaryStore",
    "EventId",
    "NewBeneficiary",
    "SQLAlchemyBeneficiaryStore",
    "get_store",
]
