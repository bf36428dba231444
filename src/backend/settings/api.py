from __future__ import annotations

from typing import Callable, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from ..net.retry import RetryConfig
from .models import AppSettings
from .store import SettingsStore


# Pushes new limits into the running services; may raise ValueError.
LimitsListener = Callable[[AppSettings], None]


class LimitsIn(BaseModel):
    max_concurrent_copies: int = Field(ge=1, le=64)
    max_inline_url_length: int = Field(ge=1024, le=10_000_000)
    conflict_timeout_s: Optional[float] = Field(default=None, ge=1.0, le=86_400.0)


class LimitsOut(LimitsIn):
    pass


class RetryIn(BaseModel):
    enabled: bool = True
    max_retries: int = Field(ge=0, le=10, default=2)
    base_delay_s: float = Field(ge=0.1, le=60.0, default=1.5)
    max_delay_s: float = Field(ge=1.0, le=300.0, default=30.0)


class RetryOut(RetryIn):
    pass


class StorageOut(BaseModel):
    data_root: str
    blob_host: str
    blob_bucket: str
    recognized_blob_hosts: List[str]


class SettingsOut(BaseModel):
    storage: StorageOut
    limits: LimitsOut
    retry: RetryOut


def _settings_out(settings: AppSettings) -> SettingsOut:
    retry = settings.get_retry()
    return SettingsOut(
        storage=StorageOut(
            data_root=settings.data_root,
            blob_host=settings.blob_host,
            blob_bucket=settings.blob_bucket,
            recognized_blob_hosts=sorted(settings.blob_hosts()),
        ),
        limits=LimitsOut(
            max_concurrent_copies=settings.max_concurrent_copies,
            max_inline_url_length=settings.max_inline_url_length,
            conflict_timeout_s=settings.conflict_timeout_s,
        ),
        retry=RetryOut(
            enabled=retry.enabled,
            max_retries=retry.max_retries,
            base_delay_s=retry.base_delay_s,
            max_delay_s=retry.max_delay_s,
        ),
    )


def create_settings_router(*, store: SettingsStore, on_limits_changed: Optional[LimitsListener] = None) -> APIRouter:
    router = APIRouter(prefix="/api/settings", tags=["settings"])

    @router.get("", response_model=SettingsOut)
    def get_settings() -> SettingsOut:
        return _settings_out(store.load())

    @router.post("/limits", response_model=SettingsOut)
    def update_limits(body: LimitsIn) -> SettingsOut:
        updated = store.set_limits(
            max_concurrent_copies=body.max_concurrent_copies,
            max_inline_url_length=body.max_inline_url_length,
            conflict_timeout_s=body.conflict_timeout_s,
        )
        if on_limits_changed is not None:
            try:
                on_limits_changed(updated)
            except ValueError as exc:
                raise HTTPException(status_code=400, detail=str(exc)) from exc
        return _settings_out(updated)

    @router.post("/retry", response_model=SettingsOut)
    def update_retry(body: RetryIn) -> SettingsOut:
        # Status codes and jitter keep their defaults; they are not exposed.
        retry = RetryConfig(
            max_retries=body.max_retries,
            base_delay_s=body.base_delay_s,
            max_delay_s=body.max_delay_s,
            enabled=body.enabled,
        )
        return _settings_out(store.set_retry(retry))

    return router
