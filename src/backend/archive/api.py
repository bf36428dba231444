from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel, Field

from src.backend.accounts.api import Actor, ActorDependency
from src.backend.fs.archive_zip import generate_archive_name
from src.backend.fs.naming import choose_extension, get_mime_for_extension
from src.backend.media import MediaStore
from src.shared.errors import PromptVaultError
from src.shared.job_status import JobStatus

from .backup import BackupService
from .jobs import ImportConflictError, ImportJob, ImportJobRegistry
from .models import Backup, BackupKind, Resolution
from .service import ArchiveService


# ---------------------------------------------------------------------------
# Export / import
# ---------------------------------------------------------------------------


class ExportIn(BaseModel):
    ids: Optional[List[str]] = None


class ImportSummaryOut(BaseModel):
    restored: int
    skipped: int
    total: int


class ImportJobOut(BaseModel):
    job_id: str
    status: JobStatus
    archive_name: str
    total: int
    created_at: str
    updated_at: str
    summary: Optional[ImportSummaryOut] = None
    error: Optional[str] = None
    pending_conflict: Optional[str] = None


class ConflictOut(BaseModel):
    sequence: int
    filename: str
    has_preview: bool


class ResolutionIn(BaseModel):
    resolution: Resolution


def _job_out(job: ImportJob) -> ImportJobOut:
    data = job.to_public_dict()
    return ImportJobOut(
        job_id=data["job_id"],
        status=job.status,
        archive_name=data["archive_name"],
        total=data["total"],
        created_at=data["created_at"],
        updated_at=data["updated_at"],
        summary=ImportSummaryOut(**data["summary"]) if data["summary"] is not None else None,
        error=data["error"],
        pending_conflict=data["pending_conflict"],
    )


def create_archive_router(
    *,
    service: ArchiveService,
    jobs: ImportJobRegistry,
    media: MediaStore,
    actor: ActorDependency,
) -> APIRouter:
    router = APIRouter(prefix="/api/archive", tags=["archive"])

    def _own_job(job_id: str, current: Actor) -> ImportJob:
        job = jobs.get(job_id)
        if job is None or (job.owner_id != current.user_id and not current.is_admin):
            raise HTTPException(status_code=404, detail="Import job not found")
        return job

    @router.post("/export")
    async def export_archive(body: ExportIn, current: Actor = Depends(actor)) -> Response:
        records = media.list_for_owner(current.user_id)
        if body.ids is not None:
            wanted = set(body.ids)
            records = [r for r in records if r.id in wanted]
        content = await service.export(records)
        filename = generate_archive_name(current.user_id)
        return Response(
            content=content,
            media_type="application/zip",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    @router.post("/import", response_model=ImportJobOut)
    async def start_import(file: UploadFile = File(...), current: Actor = Depends(actor)) -> ImportJobOut:
        data = await file.read()
        try:
            job = await jobs.start(owner_id=current.user_id, source=data, archive_name=file.filename or "")
        except ImportConflictError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except (PromptVaultError, ValueError) as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return _job_out(job)

    @router.get("/jobs/{job_id}", response_model=ImportJobOut)
    def get_job(job_id: str, current: Actor = Depends(actor)) -> ImportJobOut:
        return _job_out(_own_job(job_id, current))

    @router.get("/jobs/{job_id}/conflict", response_model=Optional[ConflictOut])
    def get_conflict(job_id: str, current: Actor = Depends(actor)) -> Optional[ConflictOut]:
        _own_job(job_id, current)
        event = jobs.pending_conflict(job_id)
        if event is None:
            return None
        return ConflictOut(sequence=event.sequence, filename=event.filename, has_preview=event.preview is not None)

    @router.get("/jobs/{job_id}/conflict/preview")
    def get_conflict_preview(job_id: str, current: Actor = Depends(actor)) -> Response:
        _own_job(job_id, current)
        event = jobs.pending_conflict(job_id)
        if event is None or event.preview is None:
            raise HTTPException(status_code=404, detail="No preview available")
        ext = choose_extension(event.preview, event.filename)
        return Response(content=event.preview, media_type=get_mime_for_extension(ext))

    @router.post("/jobs/{job_id}/conflict", response_model=ImportJobOut)
    def respond_conflict(job_id: str, body: ResolutionIn, current: Actor = Depends(actor)) -> ImportJobOut:
        job = _own_job(job_id, current)
        if not jobs.respond(job_id, body.resolution):
            raise HTTPException(status_code=409, detail="No conflict is waiting for a decision")
        return _job_out(job)

    @router.delete("/jobs/{job_id}/conflict", response_model=ImportJobOut)
    def dismiss_conflict(job_id: str, current: Actor = Depends(actor)) -> ImportJobOut:
        job = _own_job(job_id, current)
        if not jobs.dismiss(job_id):
            raise HTTPException(status_code=409, detail="No conflict is waiting for a decision")
        return _job_out(job)

    @router.post("/jobs/{job_id}/cancel", response_model=ImportJobOut)
    async def cancel_job(job_id: str, current: Actor = Depends(actor)) -> ImportJobOut:
        job = _own_job(job_id, current)
        await jobs.cancel(job_id)
        return _job_out(job)

    return router


# ---------------------------------------------------------------------------
# JSON backups
# ---------------------------------------------------------------------------


class BackupIn(BaseModel):
    kind: BackupKind = BackupKind.ALL
    include_all: bool = False


class BackupOut(BaseModel):
    id: str
    owner_id: str
    kind: BackupKind
    file_name: str
    size: int
    created_at: str


class RestoreIn(BaseModel):
    payload: str = Field(min_length=1)


class RestoreOut(BaseModel):
    restored_prompt_sets: int
    restored_media: int


def _backup_out(backup: Backup) -> BackupOut:
    return BackupOut(
        id=backup.id,
        owner_id=backup.owner_id,
        kind=backup.kind,
        file_name=backup.file_name,
        size=len(backup.payload.encode("utf-8")),
        created_at=backup.created_at,
    )


def create_backups_router(*, backups: BackupService, actor: ActorDependency) -> APIRouter:
    router = APIRouter(prefix="/api/backups", tags=["backups"])

    def _restore(payload: str, current: Actor) -> RestoreOut:
        try:
            summary = backups.restore(payload, restrict_to_owner=None if current.is_admin else current.user_id)
        except PromptVaultError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return RestoreOut(
            restored_prompt_sets=summary.restored_prompt_sets,
            restored_media=summary.restored_media,
        )

    @router.get("", response_model=List[BackupOut])
    def list_backups(current: Actor = Depends(actor)) -> List[BackupOut]:
        return [_backup_out(b) for b in backups.list_backups(current.user_id, is_admin=current.is_admin)]

    @router.post("", response_model=BackupOut)
    def create_backup(body: BackupIn, current: Actor = Depends(actor)) -> BackupOut:
        if body.include_all and not current.is_admin:
            raise HTTPException(status_code=403, detail="Only admins can back up every account")
        return _backup_out(backups.create_backup(current.user_id, body.kind, include_all=body.include_all))

    @router.get("/{backup_id}/download")
    def download_backup(backup_id: str, current: Actor = Depends(actor)) -> Response:
        backup = backups.get_backup(backup_id, current.user_id, is_admin=current.is_admin)
        if backup is None:
            raise HTTPException(status_code=404, detail="Backup not found")
        return Response(
            content=backup.payload.encode("utf-8"),
            media_type="application/json",
            headers={"Content-Disposition": f'attachment; filename="{backup.file_name}"'},
        )

    @router.delete("/{backup_id}")
    def delete_backup(backup_id: str, current: Actor = Depends(actor)) -> dict[str, bool]:
        if not backups.delete_backup(backup_id, current.user_id, is_admin=current.is_admin):
            raise HTTPException(status_code=404, detail="Backup not found")
        return {"deleted": True}

    @router.post("/restore", response_model=RestoreOut)
    def restore_payload(body: RestoreIn, current: Actor = Depends(actor)) -> RestoreOut:
        return _restore(body.payload, current)

    @router.post("/{backup_id}/restore", response_model=RestoreOut)
    def restore_backup(backup_id: str, current: Actor = Depends(actor)) -> RestoreOut:
        backup = backups.get_backup(backup_id, current.user_id, is_admin=current.is_admin)
        if backup is None:
            raise HTTPException(status_code=404, detail="Backup not found")
        return _restore(backup.payload, current)

    return router
