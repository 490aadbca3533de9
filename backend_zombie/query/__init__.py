"""Query surface — owner and beneficiary views with expiry evaluated at read time."""

from backend_zombie.query.surface import ClaimView, RecordView, beneficiary_claim_view, owner_view

__all__ = ["ClaimView", "RecordView", "beneficiary_claim_view", "owner_view"]
