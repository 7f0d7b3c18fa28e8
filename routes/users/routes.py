from typing import Optional

from fastapi import APIRouter, Depends, Form, UploadFile, File

from app.auth import login_required
from app.utils.file_manager import save_upload, delete_upload, public_id_from_url
from app.utils.services import get_or_404
from applications.user.models import User

router = APIRouter(tags=["Users"])


def _split(value: Optional[str]) -> Optional[list[str]]:
    if value is None:
        return None
    return [item.strip() for item in value.split(",") if item.strip()]


@router.get("/me/")
async def my_profile(user: User = Depends(login_required)):
    return user.to_dict()


@router.patch("/me/")
async def update_profile(
    full_name: Optional[str] = Form(None, min_length=1, max_length=100),
    description: Optional[str] = Form(None, max_length=600),
    country: Optional[str] = Form(None, max_length=64),
    skills: Optional[str] = Form(None, description="comma separated"),
    languages: Optional[str] = Form(None, description="comma separated"),
    avatar: Optional[UploadFile] = File(None),
    user: User = Depends(login_required),
):
    updates = {
        "full_name": full_name,
        "description": description,
        "country": country,
        "skills": _split(skills),
        "languages": _split(languages),
    }
    for field, value in updates.items():
        if value is not None:
            setattr(user, field, value)

    if avatar is not None and avatar.filename:
        stored = await save_upload(avatar, folder="avatars")
        old_public_id = public_id_from_url(user.avatar)
        if old_public_id:
            await delete_upload(old_public_id)
        user.avatar = stored["url"]

    await user.save()
    return user.to_dict()


@router.get("/{user_id}/")
async def public_profile(user_id: str):
    user = await get_or_404(User, id=user_id)
    return user.to_public_dict()
