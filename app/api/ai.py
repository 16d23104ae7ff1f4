"""
AI-backed endpoints. Every response comes back with `generated` telling the
caller whether the live provider or the deterministic fallback produced it;
provider outages never surface as errors here.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from app.api import deps
from app.core.errors import PersistenceFailure
from app.core.typing import utc_now
from app.db import get_session
from app.models.vehicle import Vehicle
from app.schemas import (
    DescriptionOut,
    DescriptionRequest,
    SentimentOut,
    SentimentRequest,
    ValuationOut,
    ValuationRequest,
)
from app.services.ai_features import AIFeatureService, analyze_and_store_sentiment
from app.services.events import EventSink

router = APIRouter()


@router.post("/valuation", response_model=ValuationOut)
def estimate_valuation(
    body: ValuationRequest,
    features: AIFeatureService = Depends(deps.get_ai_features),
):
    return features.estimate_valuation(**body.model_dump())


@router.post("/description", response_model=DescriptionOut)
def generate_description(
    body: DescriptionRequest,
    session: Session = Depends(get_session),
    features: AIFeatureService = Depends(deps.get_ai_features),
    events: EventSink = Depends(deps.get_event_sink),
):
    vehicle = None
    fields = body.model_dump(exclude={"vehicle_id"})
    if body.vehicle_id is not None:
        try:
            vehicle = session.get(Vehicle, body.vehicle_id)
        except SQLAlchemyError as e:
            raise PersistenceFailure("Failed to load vehicle") from e
        if vehicle is None:
            raise HTTPException(status_code=404, detail="Vehicle not found")
        fields = {**vehicle.model_dump(), "features": body.features}

    result = features.write_description(fields)

    # Only live copy replaces the stored description
    persisted = False
    if vehicle is not None and result["generated"]:
        try:
            vehicle.description = result["description"]
            vehicle.updated_at = utc_now()
            session.add(vehicle)
            session.commit()
            persisted = True
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceFailure("Failed to store description") from e

    events.emit(
        "DESCRIPTION_GENERATED",
        "Vehicle",
        body.vehicle_id if body.vehicle_id is not None else "inline",
        dealer_profile_id=vehicle.dealer_profile_id if vehicle else None,
        metadata={"generated": result["generated"], "persisted": persisted},
    )
    return result


@router.post("/sentiment", response_model=SentimentOut)
def analyze_sentiment(
    body: SentimentRequest,
    session: Session = Depends(get_session),
    features: AIFeatureService = Depends(deps.get_ai_features),
    events: EventSink = Depends(deps.get_event_sink),
):
    result = analyze_and_store_sentiment(session, features, events, body.lead_id)
    if result is None:
        raise HTTPException(status_code=404, detail="Lead not found")
    return result
