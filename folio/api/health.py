"""Health and lightweight operational stats endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request

router = APIRouter(prefix="/api/v1/health", tags=["health"])


def _get_scheduler_status(request: Request) -> tuple[str, dict[str, str | None]]:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        return "not_initialized", {}
    status = "running" if scheduler.running else "stopped"

    jobs: dict[str, str | None] = {}
    for job in scheduler.get_jobs():
        next_run = getattr(job, "next_run_time", None)
        jobs[job.id] = next_run.isoformat() if next_run else None
    return status, jobs


@router.get("")
async def health_check(request: Request) -> dict[str, Any]:
    """Report core dependency health."""
    mongodb_status = "disconnected"
    scheduler_status, scheduler_jobs = _get_scheduler_status(request)

    db = getattr(request.app.state, "mongo_db", None)
    if db is not None:
        try:
            await db.command("ping")
            mongodb_status = "connected"
        except Exception:  # noqa: BLE001
            try:
                await db.list_collection_names()
                mongodb_status = "connected"
            except Exception:  # noqa: BLE001
                mongodb_status = "disconnected"

    orchestrator = getattr(request.app.state, "parsing_orchestrator", None)
    pipeline = getattr(request.app.state, "embedding_pipeline", None)

    overall = "healthy" if mongodb_status == "connected" else "unhealthy"
    return {
        "status": overall,
        "mongodb": mongodb_status,
        "parsers": orchestrator.available_parsers if orchestrator is not None else [],
        "embedding_provider": "configured" if pipeline is not None else "not_configured",
        "scheduler": scheduler_status,
        "scheduler_jobs": scheduler_jobs,
    }


@router.get("/stats")
async def health_stats(request: Request) -> dict[str, Any]:
    """Return document counts by parsing and embedding status plus live background work."""
    db = getattr(request.app.state, "mongo_db", None)
    task_runner = getattr(request.app.state, "task_runner", None)
    pipeline = getattr(request.app.state, "embedding_pipeline", None)
    stats: dict[str, Any] = {
        "parsing_status_counts": {},
        "embedding_status_counts": {},
        "vector_records": 0,
        "background_tasks": task_runner.active if task_runner is not None else 0,
        "embeddings_in_flight": len(pipeline.registry) if pipeline is not None else 0,
    }
    if db is None:
        return stats

    for field, key in (("parsing_status", "parsing_status_counts"), ("embedding_status", "embedding_status_counts")):
        counts: dict[str, int] = {}
        async for row in db["documents"].aggregate([{"$group": {"_id": f"${field}", "count": {"$sum": 1}}}]):
            counts[str(row["_id"])] = int(row["count"])
        stats[key] = counts

    stats["vector_records"] = int(await db["embeddings"].count_documents({}))
    return stats
