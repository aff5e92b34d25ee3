"""
Trigger endpoint: advance one job
"""

from fastapi import APIRouter, Depends, Query, Request
from api.dependencies import get_coordinator, verify_api_key
from engine.coordinator import JobCoordinator
from schemas.api import TickSummary
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Tick"], dependencies=[Depends(verify_api_key)])


@router.api_route("/tick", methods=["GET", "POST"], response_model=TickSummary)
async def tick(
    request: Request,
    dry_run: bool = Query(False, description="Report the job that would be advanced without touching it"),
    coordinator: JobCoordinator = Depends(get_coordinator)
):
    """
    Advance exactly one eligible job by one budgeted slice.

    Safe to call on any schedule: concurrent calls never advance the same
    job twice, and errors are reported in the summary rather than raised.
    """
    request_id = getattr(request.state, "request_id", "-")
    summary = await coordinator.advance(dry_run=dry_run)
    logger.info(f"[{request_id}] tick: {summary.status} {summary.kind or ''} {summary.job_id or ''}".rstrip())
    return summary
