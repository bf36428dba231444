from __future__ import annotations

from fastapi import APIRouter, HTTPException
from fastapi.responses import Response

from .blob_store import BlobNotFoundError, LocalBlobStore


def create_blobs_router(*, blobs: LocalBlobStore) -> APIRouter:
    router = APIRouter(prefix="/blobs", tags=["blobs"])

    @router.get("/{path:path}")
    def get_blob(path: str) -> Response:
        try:
            blob = blobs.read(path)
        except (BlobNotFoundError, ValueError) as exc:
            raise HTTPException(status_code=404, detail="Blob not found") from exc
        return Response(content=blob.data, media_type=blob.content_type)

    return router
