"""Admin endpoints for learner risk candidates and interventions."""

from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from sqlmodel import Session

from learning_engine.database import get_session
from learning_engine.interventions import InvalidTransitionError, new_candidates
from learning_engine.services import NotFoundError
from learning_engine.services.intervention_service import (
    InterventionUpsert,
    InterventionValidationError,
    intervention_to_dict,
    list_risk_candidates,
    save_intervention,
)

router = APIRouter()


@router.get("/interventions")
def api_list_interventions(
    include_low: bool = Query(False),
    new_only: bool = Query(False),
    session: Session = Depends(get_session),
):
    data = list_risk_candidates(session, include_low=include_low)
    candidates = new_candidates(data["candidates"]) if new_only else data["candidates"]
    return {
        "success": True,
        "candidates": [
            {**candidate.signal.model_dump(), "intervention": candidate.intervention}
            for candidate in candidates
        ],
        "interventions": [intervention_to_dict(i) for i in data["interventions"]],
    }


@router.post("/interventions")
def api_save_intervention(
    payload: InterventionUpsert = Body(...),
    actor_id: Optional[int] = Query(None),
    session: Session = Depends(get_session),
):
    try:
        intervention = save_intervention(session, payload, actor_id=actor_id)
    except InterventionValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return {"success": True, "intervention": intervention_to_dict(intervention)}
