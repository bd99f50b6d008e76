from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile
from pydantic import BaseModel
from sqlalchemy.orm import Session

from database import get_db
from models import User
from routers.auth import get_current_user, user_out, validate_full_name, validate_phone
from utils.uploads import delete_upload, save_image

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/profile")
def get_profile(current_user: User = Depends(get_current_user)):
    return {"ok": True, "user": user_out(current_user)}


class UpdateProfileIn(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None


@router.put("/profile")
def update_profile(
    payload: UpdateProfileIn,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    changed = False
    if payload.full_name is not None:
        current_user.full_name = validate_full_name(payload.full_name)
        changed = True
    if payload.phone is not None:
        current_user.phone = validate_phone(payload.phone)
        changed = True

    if changed:
        db.add(current_user)
        db.commit()
        db.refresh(current_user)
    return {"ok": True, "message": "Profile updated successfully", "user": user_out(current_user)}


@router.post("/profile/image")
async def upload_profile_image(
    file: UploadFile = File(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Upload a profile picture and store its served path.

    Saves to: {UPLOAD_DIR}/profile/user_<id>_<ts>_<rand>.<ext>
    Served at: /uploads/profile/<...>
    """
    url = await save_image(file, subdir="profile", prefix=f"user_{current_user.id}")

    previous = current_user.profile_picture
    current_user.profile_picture = url
    db.add(current_user)
    db.commit()
    db.refresh(current_user)
    delete_upload(previous)
    return {"ok": True, "user": user_out(current_user)}
