from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel, Field

from .directory import AccountDirectory
from .models import Account, Role


@dataclass(frozen=True)
class Actor:
    """The account a request acts as (taken from the X-User-Id header)."""
    user_id: str
    is_admin: bool = False


ActorDependency = Callable[..., Actor]


def create_actor_dependency(*, accounts: AccountDirectory) -> ActorDependency:
    def current_actor(x_user_id: str = Header(min_length=1)) -> Actor:
        user_id = x_user_id.strip()
        if not user_id:
            raise HTTPException(status_code=401, detail="X-User-Id header is required")
        return Actor(user_id=user_id, is_admin=accounts.is_admin(user_id))

    return current_actor


class AccountIn(BaseModel):
    id: str = Field(min_length=1)
    display_name: str = Field(min_length=1)
    role: Role = Role.MEMBER


class AccountOut(BaseModel):
    id: str
    display_name: str
    role: Role
    created_at: str


def _account_out(account: Account) -> AccountOut:
    return AccountOut(
        id=account.id,
        display_name=account.display_name,
        role=account.role,
        created_at=account.created_at,
    )


def create_accounts_router(*, accounts: AccountDirectory, actor: ActorDependency) -> APIRouter:
    router = APIRouter(prefix="/api/accounts", tags=["accounts"])

    @router.get("", response_model=List[AccountOut])
    def list_accounts() -> List[AccountOut]:
        return [_account_out(a) for a in accounts.list_all()]

    @router.get("/me", response_model=AccountOut)
    def get_me(current: Actor = Depends(actor)) -> AccountOut:
        account = accounts.get(current.user_id)
        if account is None:
            raise HTTPException(status_code=404, detail="Account not found")
        return _account_out(account)

    @router.post("", response_model=AccountOut)
    def register_account(body: AccountIn) -> AccountOut:
        account_id = body.id.strip()
        if accounts.exists(account_id):
            raise HTTPException(status_code=409, detail=f"Account {account_id} already exists")
        # Only the very first account may be an admin; later admins are provisioned out of band.
        if body.role == Role.ADMIN and accounts.list_all():
            raise HTTPException(status_code=403, detail="Only the first account may register as admin")
        account = accounts.register(account_id, body.display_name.strip(), role=body.role)
        return _account_out(account)

    return router
