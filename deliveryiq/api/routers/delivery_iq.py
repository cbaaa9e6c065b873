"""
Delivery IQ API Endpoints.

GET  /api/v1/delivery-iq/shipments/{shipment_id}/probability — one shipment
POST /api/v1/delivery-iq/probabilities                       — batch of shipments
GET  /api/v1/delivery-iq/stats                               — dashboard aggregates
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from deliveryiq.api.deps import get_db
from deliveryiq.schemas.delivery import (
    BatchProbabilityRequest,
    BatchProbabilityResponse,
    DeliveryProbabilityResponse,
    DeliveryStatsResponse,
)
from deliveryiq.services.probability_service import ProbabilityService
from deliveryiq.services.stats import get_delivery_stats

router = APIRouter(prefix="/api/v1/delivery-iq", tags=["delivery-iq"])

_probability = ProbabilityService()


@router.get("/shipments/{shipment_id}/probability", response_model=DeliveryProbabilityResponse)
async def shipment_probability(
    shipment_id: str,
    db: AsyncSession = Depends(get_db),
):
    """Probability that an in-transit shipment eventually delivers."""
    found, result = await _probability.for_shipment(db, shipment_id)
    if not found:
        raise HTTPException(status_code=404, detail="Shipment not found")
    if result is None:
        raise HTTPException(status_code=404, detail="Shipment has not entered transit yet")
    return DeliveryProbabilityResponse.from_result(result)


@router.post("/probabilities", response_model=BatchProbabilityResponse)
async def batch_probabilities(
    body: BatchProbabilityRequest,
    db: AsyncSession = Depends(get_db),
):
    requested = list(dict.fromkeys(body.shipment_ids))
    results = await _probability.for_shipments(db, requested)
    return BatchProbabilityResponse(
        results={sid: DeliveryProbabilityResponse.from_result(r) for sid, r in results.items()},
        requested=len(requested),
        estimated=len(results),
        missing=[sid for sid in requested if sid not in results],
    )


@router.get("/stats", response_model=DeliveryStatsResponse)
async def delivery_stats(db: AsyncSession = Depends(get_db)):
    """Training data and curve coverage for the dashboard."""
    return DeliveryStatsResponse.from_stats(await get_delivery_stats(db))
