from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from src.backend.accounts.api import Actor, ActorDependency
from src.backend.prompts import PromptSetRepository
from src.shared.errors import ErrorKind

from .models import MediaMetadata, MediaRecord
from .store import MediaStore
from .sync import collect_version_images


class MediaOut(BaseModel):
    id: str
    owner_id: str
    url: str
    created_at: str
    prompt_set_id: Optional[str] = None
    version_id: Optional[str] = None


class PutIn(BaseModel):
    url: str = Field(min_length=1)
    prompt_set_id: Optional[str] = None
    version_id: Optional[str] = None
    overwrite: bool = False


class PutOut(BaseModel):
    record: MediaOut
    created: bool


class DeleteManyIn(BaseModel):
    ids: List[str] = Field(min_length=1)


class DeleteManyOut(BaseModel):
    deleted: int


class SyncOut(BaseModel):
    added: int
    cleaned: int


class ExistsOut(BaseModel):
    id: str
    exists: bool


def _media_out(record: MediaRecord) -> MediaOut:
    return MediaOut(
        id=record.id,
        owner_id=record.owner_id,
        url=record.url,
        created_at=record.created_at,
        prompt_set_id=record.source_prompt_set_id,
        version_id=record.source_version_id,
    )


def create_media_router(*, media: MediaStore, prompt_sets: PromptSetRepository, actor: ActorDependency) -> APIRouter:
    router = APIRouter(prefix="/api/media", tags=["media"])

    @router.get("", response_model=List[MediaOut])
    def list_media(all: bool = False, current: Actor = Depends(actor)) -> List[MediaOut]:
        if all and not current.is_admin:
            raise HTTPException(status_code=403, detail="Only admins can list every library")
        return [_media_out(r) for r in media.list_for_owner(current.user_id, include_all=all)]

    @router.get("/exists", response_model=ExistsOut)
    def media_exists(url: str, current: Actor = Depends(actor)) -> ExistsOut:
        return ExistsOut(id=media.record_id(current.user_id, url), exists=media.exists(current.user_id, url))

    @router.get("/{record_id}", response_model=MediaOut)
    def get_media(record_id: str, current: Actor = Depends(actor)) -> MediaOut:
        record = media.get(record_id)
        if record is None or (record.owner_id != current.user_id and not current.is_admin):
            raise HTTPException(status_code=404, detail="Media not found")
        return _media_out(record)

    @router.post("", response_model=PutOut)
    def put_media(body: PutIn, current: Actor = Depends(actor)) -> PutOut:
        result = media.put(
            body.url,
            MediaMetadata(owner_id=current.user_id, prompt_set_id=body.prompt_set_id, version_id=body.version_id),
            overwrite=body.overwrite,
        )
        if result.error == ErrorKind.TOO_LARGE:
            raise HTTPException(status_code=413, detail="Image url is too large to store inline")
        if not result.ok or result.record is None:
            raise HTTPException(status_code=400, detail=f"Media not stored: {result.error}")
        return PutOut(record=_media_out(result.record), created=result.created)

    @router.delete("/{record_id}")
    def delete_media(record_id: str, current: Actor = Depends(actor)) -> dict[str, bool]:
        if not media.delete(record_id, current.user_id, is_admin=current.is_admin):
            raise HTTPException(status_code=404, detail="Media not found")
        return {"deleted": True}

    @router.post("/delete", response_model=DeleteManyOut)
    def delete_many(body: DeleteManyIn, current: Actor = Depends(actor)) -> DeleteManyOut:
        return DeleteManyOut(deleted=media.delete_many(body.ids, current.user_id, is_admin=current.is_admin))

    @router.post("/sync", response_model=SyncOut)
    def sync_media(all: bool = False, current: Actor = Depends(actor)) -> SyncOut:
        if all and not current.is_admin:
            raise HTTPException(status_code=403, detail="Only admins can sync every library")
        sets = prompt_sets.list_all() if all else prompt_sets.list_by_owner(current.user_id)
        result = media.sync_from_source(collect_version_images(sets))
        return SyncOut(added=result.added, cleaned=result.cleaned)

    return router
