from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session

from app.db import get_session
from app.schemas import IntentReportOut
from app.services.ai_features import load_lead_conversation
from app.services.intent_signals import extract_intent_signals

router = APIRouter()


@router.get("/{lead_id}/intent-signals", response_model=IntentReportOut)
def get_intent_signals(lead_id: int, session: Session = Depends(get_session)):
    """Buyer-readiness signals mined from the lead's conversation."""
    lead, messages = load_lead_conversation(session, lead_id)
    if lead is None:
        raise HTTPException(status_code=404, detail="Lead not found")

    report = extract_intent_signals(messages)
    return {"lead_id": lead_id, **report.to_dict()}
