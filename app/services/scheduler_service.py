"""
Construction Collaboration Platform
Scheduler Service.

Registry for the background work that runs outside the request path:
side-effect drain, reminder dispatch and award reconciliation.

Nothing here sleeps or spawns threads.  An external trigger (cron, a worker
loop, the ``POST /api/v1/jobs/<name>/run`` endpoint or a test) calls
``SchedulerService.run_job``; each run is recorded on its ``ScheduledJob`` row.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from flask import Flask

from app.models import db
from app.models.scheduling import ScheduledJob

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobSpec:
    name: str
    fn: Callable
    every_seconds: int

    @property
    def description(self) -> str:
        return (self.fn.__doc__ or f"Scheduled job: {self.name}").strip()[:500]

    @property
    def schedule_config(self) -> dict:
        return {"seconds": self.every_seconds}


_job_registry: dict[str, JobSpec] = {}


def register_job(name: str, *, every_seconds: int = 86400):
    """Decorator registering *fn(app)* as the job *name*.

    Usage:
        @register_job("side_effect_drain", every_seconds=30)
        def drain_side_effects(app):
            ...
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = JobSpec(name, fn, every_seconds)
        return fn
    return decorator


def get_registered_jobs() -> dict[str, JobSpec]:
    return dict(_job_registry)


def _job_row(spec: JobSpec) -> ScheduledJob:
    row = ScheduledJob.query.filter_by(job_name=spec.name).first()
    if row is None:
        row = ScheduledJob(
            job_name=spec.name,
            description=spec.description,
            schedule_type="interval",
            schedule_config=spec.schedule_config,
            status="active",
            is_enabled=True,
        )
        db.session.add(row)
    return row


class SchedulerService:
    """Runs registered jobs inside the bound application's context."""

    _app: Flask | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("SchedulerService bound with jobs: %s", ", ".join(sorted(_job_registry)))

    @classmethod
    def run_job(cls, job_name: str) -> dict:
        """
        Execute one registered job and record the outcome.

        A failing job is reported as ``status="failed"`` and logged; it does
        not raise to the trigger.
        """
        spec = _job_registry.get(job_name)
        if spec is None:
            return {"job_name": job_name, "status": "error", "error": f"Unknown job: {job_name}"}
        if cls._app is None:
            return {"job_name": job_name, "status": "error", "error": "Scheduler not initialized"}

        started = time.monotonic()
        status, result, error = "success", None, None
        try:
            with cls._app.app_context():
                result = spec.fn(cls._app)
        except Exception as exc:
            # job boundary: recorded on the job row below
            status, error = "failed", str(exc)
            logger.exception("Job %s failed", job_name)
        duration_ms = int((time.monotonic() - started) * 1000)

        with cls._app.app_context():
            _job_row(spec).record_run(
                status=status,
                duration_ms=duration_ms,
                result=result if isinstance(result, dict) else {"output": str(result)},
                error=error,
            )
            db.session.commit()

        log = logger.warning if status == "failed" else logger.info
        log("Job %s finished: %s in %dms", job_name, status, duration_ms,
            extra={"duration_ms": duration_ms})
        return {
            "job_name": job_name,
            "status": status,
            "duration_ms": duration_ms,
            "result": result,
            "error": error,
        }

    @classmethod
    def list_jobs(cls) -> list[dict]:
        """Registered jobs with their interval and the last recorded run, if any."""
        rows = {r.job_name: r for r in ScheduledJob.query.filter(
            ScheduledJob.job_name.in_(list(_job_registry))
        )}
        return [
            {
                "job_name": spec.name,
                "every_seconds": spec.every_seconds,
                "description": spec.description,
                "db_record": rows[spec.name].to_dict() if spec.name in rows else None,
            }
            for spec in sorted(_job_registry.values(), key=lambda s: s.name)
        ]
