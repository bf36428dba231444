from __future__ import annotations

from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from src.backend.accounts.api import Actor, ActorDependency

from .models import PromptSet
from .repository import PromptSetRepository


class PromptSetSummaryOut(BaseModel):
    id: str
    owner_id: str
    title: str
    version_count: int
    image_count: int
    created_at: str
    updated_at: str
    category_id: Optional[str] = None


def _summary_out(prompt_set: PromptSet) -> PromptSetSummaryOut:
    return PromptSetSummaryOut(
        id=prompt_set.id,
        owner_id=prompt_set.owner_id,
        title=prompt_set.title,
        version_count=len(prompt_set.versions),
        image_count=sum(1 for v in prompt_set.versions if v.image_url),
        created_at=prompt_set.created_at,
        updated_at=prompt_set.updated_at,
        category_id=prompt_set.category_id,
    )


def create_prompt_sets_router(*, prompt_sets: PromptSetRepository, actor: ActorDependency) -> APIRouter:
    router = APIRouter(prefix="/api/prompt-sets", tags=["prompt-sets"])

    @router.get("", response_model=List[PromptSetSummaryOut])
    def list_prompt_sets(all: bool = False, current: Actor = Depends(actor)) -> List[PromptSetSummaryOut]:
        if all and not current.is_admin:
            raise HTTPException(status_code=403, detail="Only admins can list every prompt set")
        sets = prompt_sets.list_all() if all else prompt_sets.list_by_owner(current.user_id)
        return [_summary_out(s) for s in sets]

    @router.get("/{prompt_set_id}")
    def get_prompt_set(prompt_set_id: str, current: Actor = Depends(actor)) -> dict[str, Any]:
        prompt_set = prompt_sets.get_by_id(prompt_set_id)
        if prompt_set is None or (prompt_set.owner_id != current.user_id and not current.is_admin):
            raise HTTPException(status_code=404, detail="Prompt set not found")
        return prompt_set.to_persist_dict()

    return router
