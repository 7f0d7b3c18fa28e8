from fastapi import APIRouter, Depends, File, Form, UploadFile, status

from app.auth import login_required
from app.exceptions import LimitExceeded, NotFound
from app.utils.file_manager import delete_upload, save_upload
from applications.user.models import User

router = APIRouter(tags=["Upload"])

MAX_FILES = 10


@router.post("/", status_code=status.HTTP_201_CREATED)
async def upload_file(
    file: UploadFile = File(...),
    folder: str = Form("uploads", pattern="^[a-z0-9_-]+$"),
    user: User = Depends(login_required),
):
    return await save_upload(file, folder=f"{folder}/{user.id}")


@router.post("/multiple/", status_code=status.HTTP_201_CREATED)
async def upload_files(
    files: list[UploadFile] = File(...),
    folder: str = Form("uploads", pattern="^[a-z0-9_-]+$"),
    user: User = Depends(login_required),
):
    if len(files) > MAX_FILES:
        raise LimitExceeded(f"At most {MAX_FILES} files per upload")
    return {"files": [await save_upload(f, folder=f"{folder}/{user.id}") for f in files]}


@router.delete("/{public_id:path}")
async def delete_file(public_id: str, user: User = Depends(login_required)):
    # uploads live under <folder>/<user id>/
    parts = public_id.split("/")
    if len(parts) < 3 or parts[-2] != user.id or not await delete_upload(public_id):
        raise NotFound("File not found")
    return {"message": "File deleted"}
