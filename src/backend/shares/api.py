from __future__ import annotations

from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from src.backend.accounts.api import Actor, ActorDependency

from .broker import ShareBroker
from .models import ShareOffer, ShareState


class OfferIn(BaseModel):
    prompt_set_id: str = Field(min_length=1)
    recipient_id: str = Field(min_length=1)


class ShareOut(BaseModel):
    id: str
    prompt_set_id: str
    title: str
    version_count: int
    sender_id: str
    recipient_id: str
    state: ShareState
    created_at: str
    responded_at: Optional[str] = None


class ShareDetailOut(ShareOut):
    snapshot: dict[str, Any]


class AcceptOut(BaseModel):
    share_id: str
    prompt_set_id: str
    version_count: int


def _share_out(share: ShareOffer) -> ShareOut:
    return ShareOut(
        id=share.id,
        prompt_set_id=share.prompt_set_id,
        title=share.prompt_set_snapshot.title,
        version_count=len(share.prompt_set_snapshot.versions),
        sender_id=share.sender_id,
        recipient_id=share.recipient_id,
        state=share.state,
        created_at=share.created_at,
        responded_at=share.responded_at,
    )


def _refusal(broker: ShareBroker, share_id: str, current: Actor) -> HTTPException:
    """Turn a refused transition into the closest HTTP error."""
    share = broker.get_offer(share_id, current.user_id, is_admin=current.is_admin)
    if share is None:
        return HTTPException(status_code=404, detail="Share not found")
    if share.state.is_terminal():
        return HTTPException(status_code=409, detail=f"Share is already {share.state.value}")
    return HTTPException(status_code=403, detail="Only the recipient can respond to a share")


def create_shares_router(*, broker: ShareBroker, actor: ActorDependency) -> APIRouter:
    router = APIRouter(prefix="/api/shares", tags=["shares"])

    @router.get("/incoming", response_model=List[ShareOut])
    def list_incoming(state: Optional[ShareState] = None, current: Actor = Depends(actor)) -> List[ShareOut]:
        return [_share_out(s) for s in broker.list_incoming(current.user_id, state)]

    @router.get("/outgoing", response_model=List[ShareOut])
    def list_outgoing(state: Optional[ShareState] = None, current: Actor = Depends(actor)) -> List[ShareOut]:
        return [_share_out(s) for s in broker.list_outgoing(current.user_id, state)]

    @router.get("/{share_id}", response_model=ShareDetailOut)
    def get_share(share_id: str, current: Actor = Depends(actor)) -> ShareDetailOut:
        share = broker.get_offer(share_id, current.user_id, is_admin=current.is_admin)
        if share is None:
            raise HTTPException(status_code=404, detail="Share not found")
        return ShareDetailOut(**_share_out(share).model_dump(), snapshot=share.prompt_set_snapshot.to_persist_dict())

    @router.post("", response_model=ShareOut)
    async def offer_share(body: OfferIn, current: Actor = Depends(actor)) -> ShareOut:
        share = await broker.offer(current.user_id, body.prompt_set_id, body.recipient_id)
        if share is None:
            raise HTTPException(
                status_code=400,
                detail="Cannot share: prompt set missing or not yours, or recipient unknown",
            )
        return _share_out(share)

    @router.post("/{share_id}/accept", response_model=AcceptOut)
    async def accept_share(share_id: str, current: Actor = Depends(actor)) -> AcceptOut:
        created = await broker.accept(share_id, current.user_id)
        if created is None:
            raise _refusal(broker, share_id, current)
        return AcceptOut(share_id=share_id, prompt_set_id=created.id, version_count=len(created.versions))

    @router.post("/{share_id}/reject", response_model=ShareOut)
    async def reject_share(share_id: str, current: Actor = Depends(actor)) -> ShareOut:
        if not await broker.reject(share_id, current.user_id):
            raise _refusal(broker, share_id, current)
        share = broker.get_offer(share_id, current.user_id, is_admin=current.is_admin)
        if share is None:
            raise HTTPException(status_code=404, detail="Share not found")
        return _share_out(share)

    @router.delete("/{share_id}")
    async def remove_share(share_id: str, current: Actor = Depends(actor)) -> dict[str, bool]:
        if not await broker.remove(share_id, current.user_id, is_admin=current.is_admin):
            raise HTTPException(status_code=404, detail="Share not found")
        return {"deleted": True}

    return router
