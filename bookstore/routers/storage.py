"""
Public file serving for the local bucket store.
GET /storage/{bucket}/{path}   - cover images only

Book files are streamed by /api/books/{id}/download and reading links;
receipts by /api/payments/{id}/receipts/{index}.
"""

import asyncio

from fastapi import APIRouter, HTTPException
from fastapi.responses import Response

from bookstore.core.constants import BUCKETS, PUBLIC_BUCKETS
from bookstore.services import storage

router = APIRouter(prefix="/storage", tags=["storage"])


@router.get("/{bucket}/{path:path}")
async def serve_object(bucket: str, path: str):
    if bucket not in BUCKETS:
        raise HTTPException(status_code=400, detail=f"Unknown bucket: {bucket}")
    if bucket not in PUBLIC_BUCKETS:
        raise HTTPException(status_code=404, detail="File not found")
    try:
        data = await asyncio.to_thread(storage.read_bytes, bucket, path)
    except storage.StorageError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail="File not found")
    return Response(content=data, media_type=storage.media_type_for(path))
