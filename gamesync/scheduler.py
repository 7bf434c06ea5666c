"""
Daily library sync scheduler using APScheduler.

Runs SyncService.bulk_sync once a day (03:00 server time by default).

Features:
- Prevents job pile-up (max_instances=1, coalesce=True)
- Missed runs are skipped, never caught up
- Job errors are contained; the job always re-arms
- Job execution history
- Graceful shutdown
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from apscheduler.events import EVENT_JOB_MISSED, JobExecutionEvent
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from gamesync.config import SchedulerConfig, config
from gamesync.observability import Timer, correlation_context, get_logger

logger = get_logger(__name__)

DAILY_SYNC_JOB_ID = "daily_library_sync"

ServiceProvider = Callable[[], Awaitable[Any]]


class JobStatus(Enum):
    """Job execution status."""
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    MISSED = "missed"


@dataclass
class JobExecution:
    """Record of a job execution."""
    job_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    status: JobStatus = JobStatus.RUNNING
    duration_ms: Optional[float] = None
    error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None


@dataclass
class JobInfo:
    """Information about a scheduled job."""
    id: str
    name: str
    description: str
    last_run: Optional[datetime] = None
    last_status: Optional[JobStatus] = None
    last_duration_ms: Optional[float] = None
    run_count: int = 0
    error_count: int = 0
    last_error: Optional[str] = None


async def _default_service_provider():
    from gamesync.sync_service import get_sync_service
    return await get_sync_service()


class SyncScheduler:
    """
    Daily bulk sync scheduler with monitoring.

    Usage:
        scheduler = SyncScheduler()
        await scheduler.start()

        # Later...
        scheduler.shutdown()
    """

    def __init__(
        self,
        service_provider: Optional[ServiceProvider] = None,
        scheduler_config: Optional[SchedulerConfig] = None,
    ):
        self._service_provider = service_provider or _default_service_provider
        self._config = scheduler_config or config.scheduler
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._job_history: Dict[str, List[JobExecution]] = {}
        self._job_info: Dict[str, JobInfo] = {}
        self._max_history = 50
        self._started = False

    def _timezone(self) -> Optional[ZoneInfo]:
        name = self._config.timezone_name
        return ZoneInfo(name) if name else None

    def _now(self) -> datetime:
        return datetime.now(self._timezone())

    async def start(self) -> None:
        """Start the scheduler and register the daily job."""
        if self._started:
            logger.warning("Scheduler already started")
            return

        tz = self._timezone()
        # Without a configured zone APScheduler uses the server's local one
        self._scheduler = AsyncIOScheduler(timezone=tz) if tz else AsyncIOScheduler()
        self._scheduler.add_listener(self._on_job_missed, EVENT_JOB_MISSED)

        hour, minute = self._config.hour_minute
        self._add_job(
            job_id=DAILY_SYNC_JOB_ID,
            name="Daily Library Sync",
            description="Refresh every linked account's game library",
            func=self._run_daily_sync,
            trigger=CronTrigger(hour=hour, minute=minute, timezone=tz) if tz
            else CronTrigger(hour=hour, minute=minute),
        )

        self._scheduler.start()
        self._started = True
        logger.info(f"Scheduler started, daily sync at {hour:02d}:{minute:02d}")

    def _add_job(
        self,
        job_id: str,
        name: str,
        description: str,
        func: Callable,
        trigger,
    ) -> None:
        self._scheduler.add_job(
            func,
            trigger=trigger,
            id=job_id,
            name=name,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=self._config.misfire_grace_seconds,
            replace_existing=True,
        )
        self._job_info[job_id] = JobInfo(id=job_id, name=name, description=description)
        self._job_history.setdefault(job_id, [])

    # ═══════════════════════════════════════════════════════════════════════════
    # JOB IMPLEMENTATIONS
    # ═══════════════════════════════════════════════════════════════════════════

    async def _run_daily_sync(self) -> Optional[Dict[str, Any]]:
        """Run bulk sync; never lets an exception escape the job."""
        execution = JobExecution(job_id=DAILY_SYNC_JOB_ID, started_at=self._now())

        with correlation_context(), Timer("daily_sync", logger) as timer:
            logger.info("Starting daily library sync job")
            try:
                service = await self._service_provider()
                report = await service.bulk_sync()
                execution.result = report.to_dict()
                execution.status = JobStatus.SUCCESS
                logger.info(
                    "Daily library sync job complete",
                    extra={"succeeded": len(report.succeeded), "failed": len(report.failed)}
                )
            except Exception as e:
                execution.status = JobStatus.FAILED
                execution.error = f"{type(e).__name__}: {e}"
                logger.exception(f"Daily library sync job failed: {e}")

        execution.finished_at = self._now()
        execution.duration_ms = timer.elapsed_ms
        self._record(execution)
        return execution.result

    # ═══════════════════════════════════════════════════════════════════════════
    # EVENT HANDLERS
    # ═══════════════════════════════════════════════════════════════════════════

    def _record(self, execution: JobExecution) -> None:
        info = self._job_info.get(execution.job_id)
        if info is not None:
            info.last_run = execution.started_at
            info.last_status = execution.status
            info.last_duration_ms = execution.duration_ms
            info.run_count += 1
            if execution.status == JobStatus.FAILED:
                info.error_count += 1
                info.last_error = execution.error

        self._append_history(execution)

    def _append_history(self, execution: JobExecution) -> None:
        history = self._job_history.setdefault(execution.job_id, [])
        history.append(execution)
        if len(history) > self._max_history:
            self._job_history[execution.job_id] = history[-self._max_history:]

    def _on_job_missed(self, event: JobExecutionEvent) -> None:
        """Handle a run skipped because the process was not up in time."""
        job_id = event.job_id
        if job_id not in self._job_info:
            return

        self._job_info[job_id].last_status = JobStatus.MISSED
        now = self._now()
        self._append_history(JobExecution(
            job_id=job_id,
            started_at=now,
            finished_at=now,
            status=JobStatus.MISSED,
        ))

        logger.warning(
            f"Job {job_id} missed its scheduled run; waiting for the next one",
            extra={"job_id": job_id}
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # PUBLIC API
    # ═══════════════════════════════════════════════════════════════════════════

    def get_jobs(self) -> List[Dict[str, Any]]:
        """Get list of all jobs with their status."""
        jobs = []
        for job_id, info in self._job_info.items():
            job = self._scheduler.get_job(job_id) if self._scheduler else None
            next_run = getattr(job, "next_run_time", None) if job else None

            jobs.append({
                "id": info.id,
                "name": info.name,
                "description": info.description,
                "trigger": str(job.trigger) if job else "",
                "next_run": next_run.isoformat() if next_run else None,
                "last_run": info.last_run.isoformat() if info.last_run else None,
                "last_status": info.last_status.value if info.last_status else None,
                "last_duration_ms": info.last_duration_ms,
                "run_count": info.run_count,
                "error_count": info.error_count,
                "last_error": info.last_error,
            })
        return jobs

    def get_job_history(self, job_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        """Get execution history for a job, newest first."""
        history = self._job_history.get(job_id, [])[-limit:]
        return [{
            "started_at": e.started_at.isoformat() if e.started_at else None,
            "finished_at": e.finished_at.isoformat() if e.finished_at else None,
            "status": e.status.value,
            "duration_ms": e.duration_ms,
            "error": e.error,
        } for e in reversed(history)]

    async def run_job_now(self, job_id: str = DAILY_SYNC_JOB_ID) -> Dict[str, Any]:
        """Manually trigger a job to run immediately."""
        if job_id not in self._job_info:
            raise ValueError(f"Unknown job: {job_id}")

        job = self._scheduler.get_job(job_id)
        if not job:
            raise ValueError(f"Job not found: {job_id}")

        logger.info(f"Manually triggering job: {job_id}")
        job.modify(next_run_time=self._now())

        return {"status": "triggered", "job_id": job_id}

    def shutdown(self, wait: bool = True) -> None:
        """Shutdown the scheduler."""
        if self._scheduler and self._started:
            self._scheduler.shutdown(wait=wait)
            self._started = False
            logger.info("Scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._started and self._scheduler is not None


# ═══════════════════════════════════════════════════════════════════════════════
# SINGLETON INSTANCE
# ═══════════════════════════════════════════════════════════════════════════════

_scheduler: Optional[SyncScheduler] = None


def get_scheduler() -> SyncScheduler:
    """Get the singleton scheduler instance."""
    global _scheduler
    if _scheduler is None:
        _scheduler = SyncScheduler()
    return _scheduler


async def start_scheduler() -> SyncScheduler:
    """Start the daily sync scheduler."""
    scheduler = get_scheduler()
    await scheduler.start()
    return scheduler


def stop_scheduler() -> None:
    """Stop the daily sync scheduler."""
    global _scheduler
    if _scheduler:
        _scheduler.shutdown()
        _scheduler = None
