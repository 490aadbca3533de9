"""Services — confirm-then-mirror orchestration over the ledger gateway and index."""

from backend_zombie.services.custody import CustodyService

__all__ = ["CustodyService"]
