"""
Scheduler trigger for the nightly reconciliation.

Called by the external cron (daily, 02:00 IST) with
`Authorization: Bearer <CRON_SECRET>`. Requests without the secret are
rejected before any work starts.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlmodel import Session

from app.api import deps
from app.core.errors import capture_exception
from app.db import get_session
from app.schemas import ReconciliationOut
from app.services.events import EventSink
from app.services.reconciliation import ReconciliationPolicy, run_reconciliation

router = APIRouter()


@router.api_route(
    "/nightly-scoring",
    methods=["GET", "POST"],
    response_model=ReconciliationOut,
    dependencies=[Depends(deps.verify_cron_secret)],
)
def nightly_scoring(
    session: Session = Depends(get_session),
    events: EventSink = Depends(deps.get_event_sink),
    policy: ReconciliationPolicy = Depends(deps.get_reconciliation_policy),
):
    """Re-score stale vehicles and re-label cooled-off leads."""
    try:
        outcome = run_reconciliation(session, events, policy)
    except Exception as e:
        capture_exception(e, context={"job": "nightly-scoring"})
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Cron job failed"},
        )

    return ReconciliationOut(success=True, **outcome.to_dict())
