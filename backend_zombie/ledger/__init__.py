"""
Ledger boundary — gateway contract, Sui JSON-RPC gateway, in-memory ledger and
the tagged event decoder.
"""

from backend_zombie.ledger.gateway import LedgerGateway, MoveArg, MoveCall, SignedTransaction, TransactionSigner
from backend_zombie.ledger.memory import InMemoryLedger
from backend_zombie.ledger.models import (
    AllocationClaimed,
    BeneficiaryAdded,
    BeneficiaryRemoved,
    CheckedIn,
    Confirmation,
    LedgerBeneficiary,
    LedgerEvent,
    LedgerWallet,
    TransferExecuted,
    Withdrawn,
)
from backend_zombie.ledger.sui_gateway import SuiLedgerGateway

__all__ = [
    "LedgerGateway",
    "MoveArg",
    "MoveCall",
    "SignedTransaction",
    "TransactionSigner",
    "InMemoryLedger",
    "SuiLedgerGateway",
    "AllocationClaimed",
    "BeneficiaryAdded",
    "BeneficiaryRemoved",
    "CheckedIn",
    "Confirmation",
    "LedgerBeneficiary",
    "LedgerEvent",
    "LedgerWallet",
    "TransferExecuted",
    "Withdrawn",
]
