"""Application services: use case orchestration."""

from marketplace_escrow.services.dispute_engine import DisputeEngine
from marketplace_escrow.services.escrow_ledger import EscrowLedger
from marketplace_escrow.services.production_tracker import ProductionTracker
from marketplace_escrow.services.reconciler import PaymentReconciler
from marketplace_escrow.services.strike_service import StrikeService

__all__ = [
    "DisputeEngine",
    "EscrowLedger",
    "PaymentReconciler",
    "ProductionTracker",
    "StrikeService",
]
