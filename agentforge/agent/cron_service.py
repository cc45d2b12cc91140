"""
Cron Service — Scheduled tasks for AgentForge agents.

Supports:
- "at" jobs: one-shot at a specific datetime (disabled after firing)
- "every" jobs: recurring at a fixed interval
- "cron" jobs: recurring via 5-field cron expression

Jobs live in the cron_jobs table. A tick (the in-process APScheduler loop or
the /api/cron/tick endpoint) evaluates every enabled job of every active agent
and runs the due ones through the agent pipeline:

    "[SCHEDULED TASK: <job id>] <prompt>"   (empty history, full wallet authority)

All datetimes are naive UTC, matching the database columns.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select, update, or_

from agentforge.config import settings
from agentforge.db import ActivityType, Agent, AgentStatus, CronJob, ScheduleKind, async_session_maker
from agentforge.services.activity_service import log_activity, record_activity

logger = logging.getLogger(__name__)

# Interval parsing: "30s", "5m", "2h", "1d"
INTERVAL_UNITS = {
    "s": "seconds",
    "m": "minutes",
    "h": "hours",
    "d": "days",
}

DATETIME_FORMATS = ("%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M", "%Y-%m-%d %H:%M")

LAST_RESULT_MAX_CHARS = 200


class InvalidSchedule(ValueError):
    pass


class CronJobNotFound(LookupError):
    pass


def parse_interval(spec: str) -> Optional[Dict[str, int]]:
    """Parse an interval like '30m', '2h', '1d' into timedelta kwargs."""
    spec = spec.strip().lower()
    for suffix, unit in INTERVAL_UNITS.items():
        if spec.endswith(suffix):
            try:
                value = int(spec[: -len(suffix)])
            except ValueError:
                return None
            return {unit: value} if value > 0 else None
    return None


def cron_trigger(expr: str) -> CronTrigger:
    """Build a UTC CronTrigger from a 5-part expression. Raises ValueError."""
    parts = expr.split()
    if len(parts) != 5:
        raise ValueError(f"Expected 5 cron fields, got {len(parts)}")
    return CronTrigger(
        minute=parts[0],
        hour=parts[1],
        day=parts[2],
        month=parts[3],
        day_of_week=parts[4],
        timezone=timezone.utc,
    )


def _parse_datetime(value: str) -> Optional[datetime]:
    for fmt in DATETIME_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


@dataclass
class ParsedSchedule:
    kind: ScheduleKind
    spec: str
    at: Optional[datetime] = None
    interval_seconds: Optional[int] = None
    cron_expr: Optional[str] = None


def parse_schedule(schedule: str, now: Optional[datetime] = None) -> ParsedSchedule:
    """
    Parse a schedule string.

    Accepts:
    - ISO datetime → "at" job
    - Relative time like "in 5m" → "at" job
    - Interval like "30m", "2h" → "every" job
    - Cron expression like "*/30 * * * *" → "cron" job

    Raises InvalidSchedule when nothing matches.
    """
    schedule = (schedule or "").strip()
    now = now or datetime.utcnow()

    # Try ISO datetime first
    dt = _parse_datetime(schedule)
    if dt is not None:
        return ParsedSchedule(ScheduleKind.AT, schedule, at=dt)

    # Try relative time: "in 5m", "in 2h", "in 30s"
    if schedule.lower().startswith("in "):
        interval_kwargs = parse_interval(schedule[3:])
        if interval_kwargs:
            return ParsedSchedule(ScheduleKind.AT, schedule, at=now + timedelta(**interval_kwargs))

    # Try interval: "30m", "2h", "1d"
    interval_kwargs = parse_interval(schedule)
    if interval_kwargs:
        seconds = int(timedelta(**interval_kwargs).total_seconds())
        return ParsedSchedule(ScheduleKind.EVERY, schedule, interval_seconds=seconds)

    # Try cron expression (5-part: min hour day month weekday)
    try:
        cron_trigger(schedule)
    except ValueError:
        pass
    else:
        return ParsedSchedule(ScheduleKind.CRON, schedule, cron_expr=" ".join(schedule.split()))

    raise InvalidSchedule(f"Unrecognized schedule: {schedule!r}")


def is_due(job: CronJob, now: datetime) -> bool:
    """Whether an enabled job should fire in the minute containing `now`."""
    minute_start = now.replace(second=0, microsecond=0)
    # Already ran this minute
    if job.last_run_at is not None and job.last_run_at >= minute_start:
        return False

    kind = job.schedule_kind
    if kind == ScheduleKind.AT.value:
        return job.schedule_at is not None and job.schedule_at <= now

    if kind == ScheduleKind.EVERY.value:
        if not job.schedule_interval_seconds:
            return False
        if job.last_run_at is None:
            return True
        return now - job.last_run_at >= timedelta(seconds=job.schedule_interval_seconds)

    if kind == ScheduleKind.CRON.value:
        try:
            trigger = cron_trigger(job.schedule_cron_expr or job.schedule_spec or "")
        except ValueError as e:
            logger.warning(f"[CRON] Job {job.id} has an invalid cron expression: {e}")
            return False
        aware_start = minute_start.replace(tzinfo=timezone.utc)
        next_fire = trigger.get_next_fire_time(None, aware_start)
        return next_fire is not None and next_fire == aware_start

    logger.warning(f"[CRON] Job {job.id} has unknown schedule kind: {kind}")
    return False


@dataclass
class JobRun:
    job_id: str
    agent_id: str
    name: str
    success: bool
    result: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "agent_id": self.agent_id,
            "name": self.name,
            "success": self.success,
            "result": self.result,
            "error": self.error,
        }


@dataclass
class TickResult:
    checked: int = 0
    executed: int = 0
    errors: int = 0
    results: List[JobRun] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "checked": self.checked,
            "executed": self.executed,
            "errors": self.errors,
            "results": [r.to_dict() for r in self.results],
        }


# Suggested jobs seeded when an agent is created from a template
DEFAULT_JOBS: Dict[str, List[Dict[str, Any]]] = {
    "forex": [
        {
            "name": "Rate Monitor",
            "schedule": "*/5 * * * *",
            "prompt": "Check all current CELO exchange rates. If any rate has moved more than 2% from the last "
                      "check, report it as a significant movement.",
            "enabled": True,
        },
        {
            "name": "Portfolio Report",
            "schedule": "0 * * * *",
            "prompt": "Generate a portfolio status report showing current holdings and their USD values.",
            "enabled": True,
        },
        {
            "name": "Daily Market Summary",
            "schedule": "0 9 * * *",
            "prompt": "Generate a comprehensive daily market analysis for all Mento stablecoin pairs. Include "
                      "rate trends, oracle health, and trading recommendations.",
            "enabled": False,
        },
    ],
    "trading": [
        {
            "name": "Price Check",
            "schedule": "*/10 * * * *",
            "prompt": "Check current exchange rates for all configured trading pairs.",
            "enabled": True,
        },
        {
            "name": "Portfolio Rebalance Check",
            "schedule": "0 */4 * * *",
            "prompt": "Analyze current portfolio allocation and suggest any rebalancing needed based on "
                      "configured targets.",
            "enabled": False,
        },
    ],
    "payment": [
        {
            "name": "Balance Check",
            "schedule": "0 */6 * * *",
            "prompt": "Check the agent wallet balance and report if any token is running low.",
            "enabled": False,
        },
    ],
    "social": [
        {
            "name": "Community Update",
            "schedule": "0 12 * * *",
            "prompt": "Generate a brief community update message about the latest Celo network stats.",
            "enabled": False,
        },
    ],
}


def job_to_dict(job: CronJob) -> Dict[str, Any]:
    return {
        "id": job.id,
        "agent_id": job.agent_id,
        "name": job.name,
        "schedule": job.schedule_spec,
        "kind": job.schedule_kind,
        "prompt": job.skill_prompt,
        "enabled": job.enabled,
        "last_run_at": job.last_run_at.isoformat() if job.last_run_at else None,
        "last_result": job.last_result,
        "run_count": job.run_count or 0,
    }


class CronService:
    """
    Evaluates and runs scheduled jobs.

    The runtime is resolved lazily so the scheduler can be constructed at
    import time without touching the chain or LLM layers.
    """

    def __init__(self, session_maker=None, runtime=None):
        self._session_maker = session_maker or async_session_maker
        self._runtime = runtime
        self.scheduler: Optional[AsyncIOScheduler] = None

    @property
    def runtime(self):
        if self._runtime is None:
            from agentforge.agent.runtime import get_agent_runtime
            self._runtime = get_agent_runtime()
        return self._runtime

    # ------------------------------------------------------------------
    # In-process loop
    # ------------------------------------------------------------------

    def start(self):
        """Start the APScheduler loop calling tick() every scheduler_tick_seconds."""
        if self.scheduler is not None and self.scheduler.running:
            return
        self.scheduler = AsyncIOScheduler(timezone=timezone.utc)
        self.scheduler.add_job(
            self.run_maintenance,
            trigger=IntervalTrigger(seconds=settings.scheduler_tick_seconds),
            id="agentforge-cron-tick",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info(f"⏰ [CRON] Scheduler started (tick every {settings.scheduler_tick_seconds}s)")

    def stop(self):
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("⏰ [CRON] Scheduler stopped")
        self.scheduler = None

    async def run_maintenance(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """One scheduler tick followed by the session retention prune."""
        from agentforge.agent.session_store import get_session_store

        tick = await self.tick(now)
        pruned = await get_session_store().prune_expired(now)
        return {**tick.to_dict(), "pruned_messages": pruned}

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def tick(self, now: Optional[datetime] = None) -> TickResult:
        """
        Run every due job once.

        Jobs run one after another; each is claimed with a conditional update
        so overlapping ticks (multiple workers) never run the same job twice
        in one minute.
        """
        now = now or datetime.utcnow()
        async with self._session_maker() as db:
            result = await db.execute(
                select(CronJob)
                .join(Agent, Agent.id == CronJob.agent_id)
                .where(CronJob.enabled == True, Agent.status == AgentStatus.ACTIVE.value)  # noqa: E712
                .order_by(CronJob.created_at, CronJob.id)
            )
            jobs = list(result.scalars().all())

        tick = TickResult(checked=len(jobs))
        for job in jobs:
            if not is_due(job, now):
                continue
            if not await self._claim(job, now):
                logger.info(f"[CRON] Job {job.id} already claimed for this minute")
                continue

            run = await self._execute_job(job)
            tick.results.append(run)
            if run.success:
                tick.executed += 1
            else:
                tick.errors += 1

        if tick.results:
            logger.info(f"⏰ [CRON] Tick: {tick.checked} checked, {tick.executed} executed, {tick.errors} failed")
        return tick

    async def _claim(self, job: CronJob, now: datetime) -> bool:
        minute_start = now.replace(second=0, microsecond=0)
        values: Dict[str, Any] = {"last_run_at": now}
        if job.schedule_kind == ScheduleKind.AT.value:
            values["enabled"] = False

        async with self._session_maker() as db:
            result = await db.execute(
                update(CronJob)
                .where(
                    CronJob.id == job.id,
                    CronJob.enabled == True,  # noqa: E712
                    or_(CronJob.last_run_at.is_(None), CronJob.last_run_at < minute_start),
                )
                .values(**values)
            )
            await db.commit()
        return result.rowcount == 1

    async def _execute_job(self, job: CronJob) -> JobRun:
        """Run a claimed job through the agent pipeline and record the outcome."""
        logger.info(f"⏰ [CRON] Executing job: {job.name} (id={job.id[:8]}, agent={job.agent_id[:8]})")
        message = f"[SCHEDULED TASK: {job.id}] {job.skill_prompt}"

        try:
            pipeline = await self.runtime.process_message(job.agent_id, message, [], can_use_wallet=True)
        except Exception as e:
            logger.exception(f"⏰ [CRON] Job failed: {job.name}")
            error = str(e)[:LAST_RESULT_MAX_CHARS]
            await log_activity(
                job.agent_id,
                f'Cron job "{job.name}" failed: {error}',
                type=ActivityType.ERROR,
                metadata={"job_id": job.id},
                session_maker=self._session_maker,
            )
            return JobRun(job.id, job.agent_id, job.name, success=False, error=error)

        summary = pipeline.text[:LAST_RESULT_MAX_CHARS]
        async with self._session_maker() as db:
            await db.execute(
                update(CronJob)
                .where(CronJob.id == job.id)
                .values(last_result=summary, run_count=CronJob.run_count + 1)
            )
            record_activity(
                db,
                job.agent_id,
                f'Cron job "{job.name}" executed',
                type=ActivityType.ACTION,
                metadata={
                    "job_id": job.id,
                    "prompt": job.skill_prompt[:100],
                    "response_length": len(pipeline.text),
                },
            )
            await db.commit()

        logger.info(f"⏰ [CRON] Job completed: {job.name}")
        return JobRun(job.id, job.agent_id, job.name, success=True, result=summary)

    # ------------------------------------------------------------------
    # Job management
    # ------------------------------------------------------------------

    async def add_job(
        self,
        agent_id: str,
        name: str,
        schedule: str,
        prompt: str,
        enabled: bool = True,
    ) -> Dict[str, Any]:
        """Persist a new job. Raises InvalidSchedule."""
        parsed = parse_schedule(schedule)
        async with self._session_maker() as db:
            job = CronJob(
                agent_id=agent_id,
                name=name,
                schedule_kind=parsed.kind.value,
                schedule_spec=parsed.spec,
                schedule_at=parsed.at,
                schedule_interval_seconds=parsed.interval_seconds,
                schedule_cron_expr=parsed.cron_expr,
                skill_prompt=prompt,
                enabled=enabled,
                run_count=0,
            )
            db.add(job)
            await db.commit()
            await db.refresh(job)

        logger.info(f"⏰ [CRON] Job added: {name} ({parsed.kind.value}: {parsed.spec}) for agent {agent_id}")
        return job_to_dict(job)

    async def _get_job(self, db, agent_id: str, job_id: str) -> CronJob:
        result = await db.execute(
            select(CronJob).where(CronJob.id == job_id, CronJob.agent_id == agent_id)
        )
        job = result.scalar_one_or_none()
        if job is None:
            raise CronJobNotFound(f"Job not found: {job_id}")
        return job

    async def remove_job(self, agent_id: str, job_id: str) -> Dict[str, Any]:
        async with self._session_maker() as db:
            job = await self._get_job(db, agent_id, job_id)
            name = job.name
            await db.delete(job)
            await db.commit()
        logger.info(f"⏰ [CRON] Job removed: {name}")
        return {"id": job_id, "name": name, "status": "removed"}

    async def toggle_job(self, agent_id: str, job_id: str, enabled: Optional[bool] = None) -> Dict[str, Any]:
        """Set `enabled`, or flip it when not given."""
        async with self._session_maker() as db:
            job = await self._get_job(db, agent_id, job_id)
            job.enabled = (not job.enabled) if enabled is None else enabled
            await db.commit()
            await db.refresh(job)
        logger.info(f"⏰ [CRON] Job {job.name} {'enabled' if job.enabled else 'disabled'}")
        return job_to_dict(job)

    async def list_jobs(self, agent_id: str) -> List[Dict[str, Any]]:
        async with self._session_maker() as db:
            result = await db.execute(
                select(CronJob).where(CronJob.agent_id == agent_id).order_by(CronJob.created_at, CronJob.id)
            )
            return [job_to_dict(j) for j in result.scalars().all()]

    async def seed_default_jobs(self, agent_id: str, template: str) -> List[Dict[str, Any]]:
        """Create the template's suggested jobs. Templates without defaults get none."""
        created = []
        for entry in DEFAULT_JOBS.get(template, []):
            created.append(await self.add_job(
                agent_id, entry["name"], entry["schedule"], entry["prompt"], enabled=entry["enabled"]
            ))
        return created


# ── Singleton ──
_cron_service: Optional[CronService] = None


def get_cron_service() -> CronService:
    global _cron_service
    if _cron_service is None:
        _cron_service = CronService()
    return _cron_service
