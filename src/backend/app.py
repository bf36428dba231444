from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from .accounts import AccountDirectory
from .accounts.api import create_accounts_router, create_actor_dependency
from .archive import ArchiveService, BackupService, ImportJobRegistry
from .archive.api import create_archive_router, create_backups_router
from .fs import LocalBlobStore
from .fs.api import create_blobs_router
from .media import MediaStore
from .media.api import create_media_router
from .net import fetch_url_bytes
from .notifications import StoredNotificationSink
from .notifications.api import create_notifications_router
from .prompts import PromptSetRepository
from .prompts.api import create_prompt_sets_router
from .settings.api import create_settings_router
from .settings.models import AppSettings
from .settings.store import SettingsStore
from .shares import ShareBroker
from .shares.api import create_shares_router
from .store import DocumentStore


logger = logging.getLogger(__name__)


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _configure_logging() -> None:
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


def _resolve_data_root(data_root: str, *, repo_root: Path) -> Path:
    p = Path(data_root).expanduser()
    if not p.is_absolute():
        p = (repo_root / p).resolve()
    return p


def create_app(*, repo_root: Optional[Path] = None) -> FastAPI:
    _configure_logging()

    repo_root = repo_root or _repo_root()
    config_path = repo_root / "data" / "config.json"

    settings_store = SettingsStore(path=config_path)
    settings = settings_store.load()
    data_root = _resolve_data_root(settings.data_root, repo_root=repo_root)

    store = DocumentStore(root=data_root / "db")
    blobs = LocalBlobStore(
        data_root / "blobs",
        host=settings.blob_host,
        bucket=settings.blob_bucket,
        remote_fetch=lambda url: fetch_url_bytes(url, retry=settings_store.load().get_retry()),
    )

    accounts = AccountDirectory(store=store)
    prompt_sets = PromptSetRepository(store=store)
    notifications = StoredNotificationSink(store=store)
    media = MediaStore(
        store=store,
        recognized_hosts=settings.blob_hosts(),
        max_inline_url_length=settings.max_inline_url_length,
    )
    broker = ShareBroker(
        store=store,
        prompt_sets=prompt_sets,
        accounts=accounts,
        media=media,
        blobs=blobs,
        notifications=notifications,
        max_concurrent_copies=settings.max_concurrent_copies,
    )
    archive = ArchiveService(
        media=media,
        blobs=blobs,
        max_concurrent_fetches=settings.max_concurrent_copies,
        conflict_timeout_s=settings.conflict_timeout_s,
    )
    jobs = ImportJobRegistry(service=archive, jobs_dir=data_root / "jobs")
    backups = BackupService(store=store, prompt_sets=prompt_sets, media=media)

    def apply_limits(updated: AppSettings) -> None:
        media.set_max_inline_url_length(updated.max_inline_url_length)
        broker.set_max_concurrent_copies(updated.max_concurrent_copies)
        archive.set_limits(
            max_concurrent_fetches=updated.max_concurrent_copies,
            conflict_timeout_s=updated.conflict_timeout_s,
        )
        logger.info(
            "Limits updated: copies=%d inline_url=%d conflict_timeout=%s",
            updated.max_concurrent_copies,
            updated.max_inline_url_length,
            updated.conflict_timeout_s,
        )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        logger.info("Data root: %s", data_root)
        yield
        await jobs.shutdown()
        await broker.drain_notifications()

    actor = create_actor_dependency(accounts=accounts)

    app = FastAPI(title="prompt-vault-local", lifespan=lifespan)
    app.include_router(create_settings_router(store=settings_store, on_limits_changed=apply_limits))
    app.include_router(create_accounts_router(accounts=accounts, actor=actor))
    app.include_router(create_prompt_sets_router(prompt_sets=prompt_sets, actor=actor))
    app.include_router(create_media_router(media=media, prompt_sets=prompt_sets, actor=actor))
    app.include_router(create_shares_router(broker=broker, actor=actor))
    app.include_router(create_archive_router(service=archive, jobs=jobs, media=media, actor=actor))
    app.include_router(create_backups_router(backups=backups, actor=actor))
    app.include_router(create_notifications_router(sink=notifications, actor=actor))
    app.include_router(create_blobs_router(blobs=blobs))

    app.state.settings_store = settings_store
    app.state.store = store
    app.state.blobs = blobs
    app.state.accounts = accounts
    app.state.prompt_sets = prompt_sets
    app.state.media = media
    app.state.broker = broker
    app.state.archive = archive
    app.state.jobs = jobs
    app.state.backups = backups
    app.state.repo_root = repo_root
    return app


app = create_app()
