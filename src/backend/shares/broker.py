"""
Share broker: offer a prompt set to another account, copy on accept.

An offer freezes a value snapshot of the prompt set. Accepting it gives the
recipient an independently owned set: fresh ids, and every version image
duplicated into the recipient's blob space before it is registered in their
media library.

Failures of single-offer operations are reported as None / False and logged
with their ErrorKind; nothing here raises for a bad offer id or actor.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from src.backend.accounts import AccountDirectory
from src.backend.fs.blob_store import BlobStore
from src.backend.fs.naming import choose_extension, get_mime_for_extension, shared_copy_blob_path
from src.backend.media import MediaMetadata, MediaStore
from src.backend.notifications import NotificationKind, NotificationSink
from src.backend.prompts import PromptSet, PromptSetRepository, PromptVersion
from src.backend.store import DocumentStore
from src.shared.errors import ErrorKind
from src.shared.timestamps import utc_timestamp

from .models import ShareOffer, ShareState


COLLECTION_NAME = "shares"
DEFAULT_MAX_CONCURRENT_COPIES = 4

logger = logging.getLogger(__name__)


@dataclass
class _LockEntry:
    lock: asyncio.Lock
    users: int = 0


class ShareBroker:
    """
    Usage:
        broker = ShareBroker(
            store=store,
            prompt_sets=PromptSetRepository(store=store),
            accounts=AccountDirectory(store=store),
            media=MediaStore(store=store),
            blobs=LocalBlobStore(root),
            notifications=StoredNotificationSink(store=store),
        )

        offer = await broker.offer("alice", "set-1", "bob")
        new_set = await broker.accept(offer.id, "bob")
    """

    def __init__(
        self,
        *,
        store: DocumentStore,
        prompt_sets: PromptSetRepository,
        accounts: AccountDirectory,
        media: MediaStore,
        blobs: BlobStore,
        notifications: NotificationSink,
        max_concurrent_copies: int = DEFAULT_MAX_CONCURRENT_COPIES,
    ) -> None:
        self._offers = store.collection(COLLECTION_NAME)
        self._prompt_sets = prompt_sets
        self._accounts = accounts
        self._media = media
        self._blobs = blobs
        self._notifications = notifications
        self._max_concurrent_copies = max(1, int(max_concurrent_copies))

        self._offer_locks: dict[str, _LockEntry] = {}
        self._pending_notifications: set[asyncio.Task[None]] = set()

    def set_max_concurrent_copies(self, value: int) -> None:
        if value < 1:
            raise ValueError("max_concurrent_copies must be >= 1")
        self._max_concurrent_copies = value

    # ---------------------------------------------------------------------
    # State machine
    # ---------------------------------------------------------------------

    async def offer(self, sender_id: str, prompt_set_id: str, recipient_id: str) -> Optional[ShareOffer]:
        """Offer a snapshot of `prompt_set_id` to `recipient_id`."""
        if not sender_id or sender_id == recipient_id:
            logger.info("Share offer refused: sender %r cannot share with %r", sender_id, recipient_id)
            return None

        prompt_set = self._prompt_sets.get_by_id(prompt_set_id)
        if prompt_set is None:
            self._log_refusal("offer", prompt_set_id, ErrorKind.NOT_FOUND)
            return None
        if prompt_set.owner_id != sender_id:
            self._log_refusal("offer", prompt_set_id, ErrorKind.UNAUTHORIZED)
            return None
        if not self._accounts.exists(recipient_id):
            logger.info("Share offer refused: unknown recipient %r", recipient_id)
            return None

        share = ShareOffer(
            id=str(uuid.uuid4()),
            prompt_set_id=prompt_set.id,
            prompt_set_snapshot=prompt_set.deep_copy(),
            sender_id=sender_id,
            recipient_id=recipient_id,
            state=ShareState.IN_TRANSIT,
            created_at=utc_timestamp(),
        )
        self._offers.set(share.id, share.to_persist_dict())

        self._notify_later(
            recipient_id,
            NotificationKind.SHARE_RECEIVED,
            f'{self._accounts.display_name(sender_id)} shared "{prompt_set.title}" with you',
            share.id,
        )
        return share

    async def accept(self, offer_id: str, acting_user_id: str) -> Optional[PromptSet]:
        """
        Accept an offer as its recipient.

        Returns:
            The recipient's new prompt set, or None if the offer is missing,
            the actor is not the recipient, or the offer is no longer in transit.
        """
        async with self._offer_lock(offer_id):
            share = self._load(offer_id)
            refusal = self._check_response(share, acting_user_id)
            if refusal is not None or share is None:
                self._log_refusal("accept", offer_id, refusal or ErrorKind.NOT_FOUND)
                return None

            new_set = await self._materialize_copy(share, acting_user_id)
            created = self._prompt_sets.create(acting_user_id, new_set)
            logger.info("Share %s: created prompt set %s with %d versions", offer_id, created.id, len(created.versions))

            registered = 0
            for version in created.versions:
                if not version.image_url:
                    continue
                result = self._media.put(
                    version.image_url,
                    MediaMetadata(owner_id=acting_user_id, prompt_set_id=created.id, version_id=version.id),
                )
                if result.ok:
                    registered += 1
                else:
                    logger.warning(
                        "Share %s: image of version %s not added to media library (%s)",
                        offer_id,
                        version.id,
                        result.error.value if result.error else "unknown",
                    )
            logger.info("Share %s: added %d images to media library of %s", offer_id, registered, acting_user_id)

            if not self._transition(offer_id, ShareState.ACCEPTED):
                logger.warning("Share %s: state changed underneath accept; offer left as is", offer_id)
                return None

        self._notify_later(
            share.sender_id,
            NotificationKind.SHARE_ACCEPTED,
            f'{self._accounts.display_name(acting_user_id)} accepted your share of "{share.prompt_set_snapshot.title}"',
            offer_id,
        )
        return created

    async def reject(self, offer_id: str, acting_user_id: str) -> bool:
        async with self._offer_lock(offer_id):
            share = self._load(offer_id)
            refusal = self._check_response(share, acting_user_id)
            if refusal is not None or share is None:
                self._log_refusal("reject", offer_id, refusal or ErrorKind.NOT_FOUND)
                return False

            if not self._transition(offer_id, ShareState.REJECTED):
                return False

        self._notify_later(
            share.sender_id,
            NotificationKind.SHARE_REJECTED,
            f'{self._accounts.display_name(acting_user_id)} declined your share of "{share.prompt_set_snapshot.title}"',
            offer_id,
        )
        return True

    # ---------------------------------------------------------------------
    # Views
    # ---------------------------------------------------------------------

    def list_incoming(self, user_id: str, state: Optional[ShareState] = None) -> list[ShareOffer]:
        return self._list(recipientId=user_id, state=state)

    def list_outgoing(self, user_id: str, state: Optional[ShareState] = None) -> list[ShareOffer]:
        return self._list(senderId=user_id, state=state)

    def get_offer(self, offer_id: str, acting_user_id: str, *, is_admin: bool = False) -> Optional[ShareOffer]:
        """Fetch an offer; only its sender or recipient (or an admin) may read it."""
        share = self._load(offer_id)
        if share is None:
            return None
        if not is_admin and not share.involves(acting_user_id):
            self._log_refusal("read", offer_id, ErrorKind.UNAUTHORIZED)
            return None
        return share

    async def remove(self, offer_id: str, acting_user_id: str, *, is_admin: bool = False) -> bool:
        """
        Delete an offer in any state (sender, recipient or admin).

        Waits for an accept or reject in progress on the same offer, so an
        offer never disappears halfway through a copy.
        """
        async with self._offer_lock(offer_id):
            share = self._load(offer_id)
            if share is None:
                return False
            if not is_admin and not share.involves(acting_user_id):
                self._log_refusal("remove", offer_id, ErrorKind.UNAUTHORIZED)
                return False
            return self._offers.delete(offer_id)

    async def drain_notifications(self) -> None:
        """Wait for notifications scheduled so far (used on shutdown and in tests)."""
        while self._pending_notifications:
            await asyncio.gather(*list(self._pending_notifications), return_exceptions=True)

    # ---------------------------------------------------------------------
    # Internals
    # ---------------------------------------------------------------------

    def _load(self, offer_id: str) -> Optional[ShareOffer]:
        raw = self._offers.get(offer_id)
        return ShareOffer.from_persist_dict(raw) if raw is not None else None

    def _list(self, *, state: Optional[ShareState], **equals: str) -> list[ShareOffer]:
        docs = self._offers.where(**equals)
        if state is not None:
            docs = [d for d in docs if d.get("state") == state.value]
        docs.sort(key=lambda d: str(d.get("createdAt", "")), reverse=True)
        return [ShareOffer.from_persist_dict(d) for d in docs]

    @staticmethod
    def _check_response(share: Optional[ShareOffer], acting_user_id: str) -> Optional[ErrorKind]:
        if share is None:
            return ErrorKind.NOT_FOUND
        if share.recipient_id != acting_user_id:
            return ErrorKind.UNAUTHORIZED
        if share.state != ShareState.IN_TRANSIT:
            return ErrorKind.INVALID_STATE
        return None

    def _transition(self, offer_id: str, target: ShareState) -> bool:
        updated = self._offers.compare_and_update(
            offer_id,
            expected={"state": ShareState.IN_TRANSIT.value},
            fields={"state": target.value, "respondedAt": utc_timestamp()},
        )
        return updated is not None

    async def _materialize_copy(self, share: ShareOffer, owner_id: str) -> PromptSet:
        """Build the recipient's prompt set; version images are copied concurrently."""
        snapshot = share.prompt_set_snapshot.deep_copy()
        now = utc_timestamp()
        new_set_id = str(uuid.uuid4())
        new_version_ids = [str(uuid.uuid4()) for _ in snapshot.versions]

        gate = asyncio.Semaphore(self._max_concurrent_copies)
        image_urls = await asyncio.gather(
            *(
                self._copy_image(gate, share.id, owner_id, new_set_id, vid, version.image_url)
                for vid, version in zip(new_version_ids, snapshot.versions)
            )
        )

        versions: list[PromptVersion] = []
        for vid, version, image_url in zip(new_version_ids, snapshot.versions, image_urls):
            version.id = vid
            version.prompt_set_id = new_set_id
            version.image_url = image_url
            version.created_at = now
            version.updated_at = now
            versions.append(version)

        snapshot.id = new_set_id
        snapshot.owner_id = owner_id
        snapshot.versions = versions
        snapshot.created_at = now
        snapshot.updated_at = now
        return snapshot

    async def _copy_image(
        self,
        gate: asyncio.Semaphore,
        offer_id: str,
        owner_id: str,
        prompt_set_id: str,
        version_id: str,
        source_url: Optional[str],
    ) -> Optional[str]:
        if not source_url:
            return source_url

        async with gate:
            try:
                data = await asyncio.to_thread(self._blobs.get, source_url)
                ext = choose_extension(data, source_url)
                path = shared_copy_blob_path(owner_id, prompt_set_id, version_id, ext)
                return await asyncio.to_thread(self._blobs.put, path, data, get_mime_for_extension(ext))
            except Exception as exc:  # noqa: BLE001 - partial failure: keep the original url
                # TODO: mark the version as needing a re-copy instead of pointing at sender storage
                logger.warning(
                    "Share %s: %s copying image of version %s (%s); keeping original url",
                    offer_id,
                    ErrorKind.PARTIAL_FAILURE.value,
                    version_id,
                    exc,
                )
                return source_url

    @asynccontextmanager
    async def _offer_lock(self, offer_id: str) -> AsyncIterator[None]:
        entry = self._offer_locks.get(offer_id)
        if entry is None:
            entry = _LockEntry(lock=asyncio.Lock())
            self._offer_locks[offer_id] = entry
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                self._offer_locks.pop(offer_id, None)

    def _notify_later(self, user_id: str, kind: NotificationKind, message: str, related_id: str) -> None:
        task = asyncio.create_task(self._deliver(user_id, kind, message, related_id))
        self._pending_notifications.add(task)
        task.add_done_callback(self._pending_notifications.discard)

    async def _deliver(self, user_id: str, kind: NotificationKind, message: str, related_id: str) -> None:
        try:
            await self._notifications.notify(user_id, kind, message, related_id)
        except Exception as exc:  # noqa: BLE001 - delivery never affects the transition
            logger.warning("Notification %s for %s failed: %s", kind.value, user_id, exc)

    @staticmethod
    def _log_refusal(action: str, target_id: str, kind: ErrorKind) -> None:
        logger.info("Share %s refused for %s: %s", action, target_id, kind.value)
