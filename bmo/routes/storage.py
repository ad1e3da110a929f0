"""Direct access to the Appwrite documents bucket."""
from __future__ import annotations

from fastapi import APIRouter, Depends, File, Response, UploadFile, status

from bmo.appwrite import get_appwrite_client
from bmo.auth import require_company, require_permission

router = APIRouter(prefix="/storage", tags=["Storage"], dependencies=[Depends(require_company)])


@router.get("/files")
async def list_files():
    files = await get_appwrite_client().list_files()
    return [
        {"file_id": f.file_id, "name": f.name, "mime_type": f.mime_type, "size": f.size}
        for f in files
    ]


@router.post("/files", status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_permission("write"))])
async def upload_file(file: UploadFile = File(...)):
    try:
        content = await file.read()
        stored = await get_appwrite_client().upload_file(content, file.filename or "upload", file.content_type)
    finally:
        await file.close()
    return {"file_id": stored.file_id, "name": stored.name, "mime_type": stored.mime_type, "size": stored.size}


@router.get("/files/{file_id}")
async def download_file(file_id: str):
    content = await get_appwrite_client().download_file(file_id)
    return Response(
        content=content,
        media_type="application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{file_id}"'},
    )


@router.delete("/files/{file_id}", status_code=status.HTTP_204_NO_CONTENT, dependencies=[Depends(require_permission("write"))])
async def delete_file(file_id: str):
    await get_appwrite_client().delete_file(file_id)
