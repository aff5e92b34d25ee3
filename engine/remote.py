"""
Remote worker loop: claims work over HTTP, runs it, submits the results.
"""

import asyncio
from typing import Any, Dict, Optional
import httpx
from pydantic import TypeAdapter
from core.config import settings
from engine.worker import Worker
from schemas.work import ClaimResponse, SubmitSummary
import logging

logger = logging.getLogger(__name__)


class RemoteWorker:
    def __init__(
        self,
        worker: Worker,
        engine_url: Optional[str] = None,
        worker_id: Optional[str] = None,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        poll_seconds: Optional[float] = None
    ):
        self.worker = worker
        self.worker_id = worker_id or settings.WORKER_ID
        self.worker.worker_id = self.worker_id
        self.poll_seconds = settings.WORKER_POLL_SECONDS if poll_seconds is None else poll_seconds

        headers = {"X-API-Key": api_key or settings.API_KEY} if (api_key or settings.API_KEY) else {}
        self.client = client or httpx.AsyncClient(
            base_url=engine_url or settings.ENGINE_URL,
            headers=headers,
            timeout=settings.HTTP_TIMEOUT_SECONDS
        )
        self._claim_adapter = TypeAdapter(ClaimResponse)

    async def claim(self) -> ClaimResponse:
        response = await self.client.post("/work/claim", params={"worker_id": self.worker_id})
        response.raise_for_status()
        return self._claim_adapter.validate_python(response.json())

    async def submit(self, submission: Any) -> SubmitSummary:
        payload: Dict[str, Any] = submission.model_dump(mode="json")
        response = await self.client.post(f"/work/{submission.kind}/submit", json=payload)
        response.raise_for_status()
        return SubmitSummary.model_validate(response.json())

    async def run_once(self) -> Optional[SubmitSummary]:
        """Claim one work unit and run it; None when there was nothing to do."""
        claim = await self.claim()
        if claim.work is None:
            logger.info(f"Worker {self.worker_id}: {claim.status} ({claim.message})")
            return None

        work = claim.work
        submission = await self.worker.execute(work, on_partial=self.submit)
        summary = await self.submit(submission)
        logger.info(
            f"Worker {self.worker_id}: {work.kind} job {work.job_id} -> {summary.status} "
            f"counts={summary.counts} remaining={summary.remaining}"
        )
        return summary

    async def run_forever(self) -> None:
        while True:
            try:
                summary = await self.run_once()
            except httpx.HTTPError as e:
                logger.error(f"Worker {self.worker_id}: engine request failed - {e}")
                summary = None
            if summary is None:
                await asyncio.sleep(self.poll_seconds)

    async def close(self) -> None:
        await self.client.aclose()
