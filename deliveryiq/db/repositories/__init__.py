"""Async repositories over the Delivery IQ tables."""

from deliveryiq.db.repositories.claim import ClaimRepository, claim_repo
from deliveryiq.db.repositories.curve import CurveRepository, curve_repo
from deliveryiq.db.repositories.outcome import OutcomeRepository, outcome_repo
from deliveryiq.db.repositories.shipment import ShipmentRepository, shipment_repo

__all__ = [
    "ClaimRepository",
    "CurveRepository",
    "OutcomeRepository",
    "ShipmentRepository",
    "claim_repo",
    "curve_repo",
    "outcome_repo",
    "shipment_repo",
]
