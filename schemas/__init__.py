"""
Pydantic schemas shared by the engine, the workers and the API.

Schemas:
    items: records produced by drivers (discovered items, categories,
        vocabulary entries, media, scraped item payloads)
    work: work units handed to workers and the submissions they return
    api: request/response models for the HTTP endpoints

Work units and submissions are discriminated on their ``kind`` field, so a
single ``TypeAdapter(WorkUnit)`` or ``TypeAdapter(Submission)`` can parse any
of them:

    from pydantic import TypeAdapter
    from schemas.work import WorkUnit

    work = TypeAdapter(WorkUnit).validate_python(payload)
"""

__all__ = [
    "DiscoveredItem",
    "ScrapedItem",
    "WorkUnit",
    "Submission",
    "SubmitSummary",
    "ClaimResponse",
    "TickSummary",
    "HealthCheckResponse",
]
