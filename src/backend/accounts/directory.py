"""
Account lookup.

Sign-up and sessions are handled elsewhere; this directory only answers
"does this account exist", "what is it called" and "is it an admin".
"""

from __future__ import annotations

from typing import Optional

from src.backend.store import DocumentStore
from src.shared.timestamps import utc_timestamp

from .models import Account, Role


COLLECTION_NAME = "users"


class AccountDirectory:
    def __init__(self, *, store: DocumentStore) -> None:
        self._docs = store.collection(COLLECTION_NAME)

    def get(self, account_id: str) -> Optional[Account]:
        if not account_id:
            return None
        raw = self._docs.get(account_id)
        return Account.from_persist_dict(raw) if raw is not None else None

    def exists(self, account_id: str) -> bool:
        return bool(account_id) and self._docs.contains(account_id)

    def is_admin(self, account_id: str) -> bool:
        account = self.get(account_id)
        return account is not None and account.is_admin

    def display_name(self, account_id: str) -> str:
        account = self.get(account_id)
        return account.display_name if account is not None else account_id

    def register(self, account_id: str, display_name: str, *, role: Role = Role.MEMBER) -> Account:
        account = Account(
            id=account_id,
            display_name=display_name,
            role=role,
            created_at=utc_timestamp(),
        )
        self._docs.set(account_id, account.to_persist_dict())
        return account

    def list_all(self) -> list[Account]:
        return sorted(
            (Account.from_persist_dict(d) for d in self._docs.all()),
            key=lambda a: a.display_name.lower(),
        )
