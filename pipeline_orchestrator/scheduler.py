import asyncio
import logging
from pathlib import Path

from apscheduler.schedulers.blocking import BlockingScheduler
from sqlalchemy.orm import Session, sessionmaker

from pipeline_orchestrator.config import Settings
from pipeline_orchestrator.errors import PipelineError
from pipeline_orchestrator.jobs import load_job, run_job
from pipeline_orchestrator.pipeline import build_orchestrator


logger = logging.getLogger(__name__)


def _run_scheduled_job(settings: Settings, session_factory: sessionmaker[Session], job_path: Path) -> None:
    orchestrator = build_orchestrator(settings, session_factory)
    try:
        job = load_job(job_path)
        results = asyncio.run(run_job(orchestrator, job))
    except (PipelineError, OSError) as exc:
        logger.error("scheduled pipeline run failed", extra={"job": str(job_path), "error": str(exc)})
        return

    status = results.deployment_status
    if status is None or not status.deployed:
        logger.error(
            "scheduled pipeline deployment failed",
            extra={"job": str(job_path), "error": str(status.error) if status else None},
        )
        return
    logger.info(
        "scheduled pipeline run completed",
        extra={
            "job": str(job_path),
            "dataset_id": results.dataset.id,
            "records_deployed": status.records_deployed,
        },
    )


def start_scheduler(
    settings: Settings,
    session_factory: sessionmaker[Session],
    job_path: Path,
    *,
    run_now: bool = False,
) -> None:
    scheduler = BlockingScheduler(timezone="UTC")
    scheduler.add_job(
        _run_scheduled_job,
        "cron",
        args=[settings, session_factory, job_path],
        hour=settings.schedule_hour_utc,
        minute=settings.schedule_minute_utc,
        id="daily_pipeline",
        replace_existing=True,
    )

    logger.info(
        "scheduler started",
        extra={
            "job": str(job_path),
            "schedule_hour_utc": settings.schedule_hour_utc,
            "schedule_minute_utc": settings.schedule_minute_utc,
        },
    )

    if run_now:
        _run_scheduled_job(settings, session_factory, job_path)

    scheduler.start()
