from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Union

from src.backend.fs.archive_zip import ArchiveContainer
from src.shared.job_status import JobStatus
from src.shared.timestamps import format_utc_z, utc_now

from .conflicts import ConflictChannel, ConflictDetected
from .models import ArchiveManifest, ImportSummary, Resolution
from .service import ArchiveService


logger = logging.getLogger(__name__)


class ImportConflictError(RuntimeError):
    pass


@dataclass
class ImportJob:
    job_id: str
    owner_id: str
    archive_name: str
    total: int
    status: JobStatus
    created_at: datetime
    updated_at: datetime
    summary: Optional[ImportSummary] = None
    error: Optional[str] = None
    pending: Optional[ConflictDetected] = None

    def to_public_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "owner_id": self.owner_id,
            "archive_name": self.archive_name,
            "total": self.total,
            "status": self.status.value,
            "created_at": format_utc_z(self.created_at),
            "updated_at": format_utc_z(self.updated_at),
            "summary": self.summary.to_dict() if self.summary is not None else None,
            "error": self.error,
            "pending_conflict": self.pending.filename if self.pending is not None else None,
        }


class ImportJobRegistry:
    """
    Background archive imports with interactive conflict decisions.

    - One active job per owner (Running/AwaitingDecision)
    - A job waiting on a conflict is AwaitingDecision until respond()/dismiss()
    - cancel() cancels the import task; the job ends Cancelled
    """

    def __init__(self, *, service: ArchiveService, jobs_dir: Optional[Path] = None) -> None:
        self._service = service
        self._jobs_dir = Path(jobs_dir) if jobs_dir is not None else None

        self._lock = asyncio.Lock()
        self._jobs: dict[str, ImportJob] = {}
        self._channels: dict[str, ConflictChannel] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._active_job_by_owner: dict[str, str] = {}

    # ---------------------------------------------------------------------
    # Public API
    # ---------------------------------------------------------------------

    async def start(self, *, owner_id: str, source: Union[bytes, Path], archive_name: str = "") -> ImportJob:
        """
        Validate the archive and start importing it in the background.

        Raises:
            ValueError: If owner_id is empty.
            MalformedArchiveError: If the archive or its manifest is unreadable.
            ImportConflictError: If the owner already has an active import.
        """
        if not owner_id or not owner_id.strip():
            raise ValueError("owner_id must not be empty")

        container = ArchiveContainer.open(source)
        try:
            manifest = ArchiveManifest.from_json(container.read_metadata())
        except Exception:
            container.close()
            raise

        async with self._lock:
            if owner_id in self._active_job_by_owner:
                container.close()
                raise ImportConflictError(f"{owner_id} already has an active import")

            job_id = str(uuid.uuid4())
            now = utc_now()
            job = ImportJob(
                job_id=job_id,
                owner_id=owner_id,
                archive_name=archive_name,
                total=len(manifest.entries),
                status=JobStatus.RUNNING,
                created_at=now,
                updated_at=now,
            )
            channel = ConflictChannel(on_change=lambda event: self._on_conflict(job_id, event))

            self._jobs[job_id] = job
            self._channels[job_id] = channel
            self._active_job_by_owner[owner_id] = job_id
            self._persist_job(job)

            task = asyncio.create_task(self._run_wrapper(job_id, container), name=f"pv-import-{owner_id}-{job_id}")
            self._tasks[job_id] = task
            task.add_done_callback(lambda t: self._on_task_done(job_id, container, t))

        logger.info("Import job %s started for %s (%d entries)", job_id, owner_id, job.total)
        return job

    def get(self, job_id: str) -> Optional[ImportJob]:
        return self._jobs.get(job_id)

    def active_for(self, owner_id: str) -> Optional[ImportJob]:
        job_id = self._active_job_by_owner.get(owner_id)
        return self._jobs.get(job_id) if job_id else None

    def pending_conflict(self, job_id: str) -> Optional[ConflictDetected]:
        channel = self._channels.get(job_id)
        return channel.pending if channel is not None else None

    def respond(self, job_id: str, resolution: Union[Resolution, str]) -> bool:
        """
        Raises:
            ValueError: If `resolution` is not a Resolution value.
        """
        channel = self._channels.get(job_id)
        if channel is None:
            return False
        return channel.respond(resolution)

    def dismiss(self, job_id: str) -> bool:
        channel = self._channels.get(job_id)
        if channel is None:
            return False
        return channel.dismiss()

    async def cancel(self, job_id: str) -> Optional[JobStatus]:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            task = self._tasks.get(job_id)
            if task is not None and not task.done():
                task.cancel()
            # Final status is settled by the run wrapper.
            return job.status

    async def wait(self, job_id: str) -> Optional[ImportJob]:
        """Wait for a job's task to finish and return the job."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self._jobs.get(job_id)

    async def shutdown(self) -> None:
        async with self._lock:
            tasks = [t for t in self._tasks.values() if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ---------------------------------------------------------------------
    # Internals
    # ---------------------------------------------------------------------

    def _on_conflict(self, job_id: str, event: Optional[ConflictDetected]) -> None:
        job = self._jobs.get(job_id)
        if job is None or not job.status.is_active():
            return
        job.pending = event
        job.status = JobStatus.AWAITING_DECISION if event is not None else JobStatus.RUNNING
        job.updated_at = utc_now()
        self._persist_job(job)

    def _on_task_done(self, job_id: str, container: ArchiveContainer, task: asyncio.Task[None]) -> None:
        # A task cancelled before its first step never enters the run wrapper.
        job = self._jobs.get(job_id)
        if job is None or not job.status.is_active():
            return
        container.close()
        self._tasks.pop(job_id, None)
        self._channels.pop(job_id, None)
        job.status = JobStatus.CANCELLED if task.cancelled() else JobStatus.FAILED
        job.pending = None
        job.updated_at = utc_now()
        self._persist_job(job)
        if self._active_job_by_owner.get(job.owner_id) == job_id:
            self._active_job_by_owner.pop(job.owner_id, None)

    def _persist_job(self, job: ImportJob) -> None:
        if self._jobs_dir is None:
            return
        try:
            self._jobs_dir.mkdir(parents=True, exist_ok=True)
            path = self._jobs_dir / f"{job.job_id}.json"
            path.write_text(json.dumps(job.to_public_dict(), ensure_ascii=False, indent=2), encoding="utf-8")
        except OSError as exc:
            # In-memory state stays authoritative.
            logger.warning("Failed to persist import job %s: %s", job.job_id, exc)

    async def _run_wrapper(self, job_id: str, container: ArchiveContainer) -> None:
        job = self._jobs.get(job_id)
        channel = self._channels.get(job_id)
        if job is None or channel is None:
            container.close()
            return

        summary: Optional[ImportSummary] = None
        error: Optional[str] = None
        try:
            summary = await self._service.import_archive(container, job.owner_id, channel)
            final_status = JobStatus.DONE
        except asyncio.CancelledError:
            final_status = JobStatus.CANCELLED
        except Exception as exc:  # noqa: BLE001 - surfaced to the client as a string
            logger.exception("Import job %s failed", job_id)
            final_status = JobStatus.FAILED
            error = str(exc)
        finally:
            container.close()

        await self._finish_job(job_id, final_status=final_status, summary=summary, error=error)

    async def _finish_job(
        self,
        job_id: str,
        *,
        final_status: JobStatus,
        summary: Optional[ImportSummary],
        error: Optional[str],
    ) -> None:
        async with self._lock:
            job = self._jobs.get(job_id)
            self._tasks.pop(job_id, None)
            self._channels.pop(job_id, None)
            if job is None:
                return

            job.status = final_status
            job.summary = summary
            job.error = error
            job.pending = None
            job.updated_at = utc_now()
            self._persist_job(job)

            if self._active_job_by_owner.get(job.owner_id) == job_id:
                self._active_job_by_owner.pop(job.owner_id, None)

        logger.info("Import job %s finished: %s", job_id, final_status.value)
