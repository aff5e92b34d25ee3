"""
Remote worker endpoints: claim a work unit, submit its results
"""

from typing import Any, Dict
from fastapi import APIRouter, Body, Depends, HTTPException, Query
from pydantic import TypeAdapter, ValidationError
from api.dependencies import get_coordinator, verify_api_key
from core.config import settings
from core.exceptions import JobNotFoundError, SubmissionError
from engine.coordinator import JobCoordinator
from engine.store import TRANSIENT_ERRORS
from models.base import JobKind
from schemas.work import ClaimResponse, Submission, SubmitSummary
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/work", tags=["Work"], dependencies=[Depends(verify_api_key)])

_submission_adapter = TypeAdapter(Submission)


@router.post("/claim", response_model=ClaimResponse)
async def claim_work(
    worker_id: str = Query(settings.WORKER_ID, min_length=1, max_length=64),
    coordinator: JobCoordinator = Depends(get_coordinator)
):
    try:
        return await coordinator.claim_work(worker_id)
    except TRANSIENT_ERRORS as e:
        raise HTTPException(status_code=503, detail=getattr(e, "message", None) or "Store unavailable")


@router.post("/{kind}/submit", response_model=SubmitSummary)
async def submit_work(
    kind: JobKind,
    payload: Dict[str, Any] = Body(...),
    coordinator: JobCoordinator = Depends(get_coordinator)
):
    """Apply one worker submission for a job of `kind`."""
    payload = {**payload, "kind": kind.value}
    try:
        submission = _submission_adapter.validate_python(payload)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False, include_input=False))

    try:
        return await coordinator.submit_work(kind, submission)
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except SubmissionError as e:
        raise HTTPException(status_code=409, detail=e.message)
    except TRANSIENT_ERRORS as e:
        raise HTTPException(status_code=503, detail=getattr(e, "message", None) or "Store unavailable")
