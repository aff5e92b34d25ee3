"""
Job engine: coordinator, per-kind handlers, worker and persistence helpers.

Modules:
    coordinator: Candidate selection, claims and one-job-per-tick advance
    handlers: Per-kind work builders and submission handlers
    worker: Runs work units against drivers (in-process or remote)
    upsert: Idempotent create-or-merge of records
    store: Narrow record store over the async session
    events: Per-job event log
    budget: Page and item caps per tick
    urls: URL canonicalisation and host matching
    aggregation: Cross-source merge of source items
    media: External media processor seam
    scheduler: APScheduler interval trigger

Usage:
    from engine.coordinator import JobCoordinator

    async with async_session_maker() as session:
        summary = await JobCoordinator(session, registry).advance()
"""
