from __future__ import annotations

import logging
import secrets
import time
from pathlib import Path

from fastapi import UploadFile

import config

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_TYPES = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}

# Served under this URL prefix by the StaticFiles mount in main.py.
URL_PREFIX = "/uploads"


class UploadRejected(ValueError):
    """The uploaded file is not an acceptable image."""


async def save_image(file: UploadFile, *, subdir: str, prefix: str) -> str:
    """
    Store an uploaded image under {UPLOAD_DIR}/{subdir}/ and return its served URL.

    Saves to: {UPLOAD_DIR}/<subdir>/<prefix>_<ts>_<rand>.<ext>
    Served at: /uploads/<subdir>/<...>
    """
    content_type = (file.content_type or "").lower().strip()
    if content_type not in ALLOWED_IMAGE_TYPES:
        raise UploadRejected("Unsupported image type. Use JPG/PNG/GIF/WEBP.")

    data = await file.read()
    if not data:
        raise UploadRejected("Empty file.")
    if len(data) > config.UPLOAD_MAX_BYTES:
        raise UploadRejected(f"Image too large (max {config.UPLOAD_MAX_BYTES} bytes).")

    target_dir = Path(config.UPLOAD_DIR) / subdir
    target_dir.mkdir(parents=True, exist_ok=True)

    fname = f"{prefix}_{int(time.time())}_{secrets.token_hex(4)}.{ALLOWED_IMAGE_TYPES[content_type]}"
    (target_dir / fname).write_bytes(data)
    return f"{URL_PREFIX}/{subdir}/{fname}"


async def save_images(files: list[UploadFile], *, subdir: str, prefix: str, limit: int = 5) -> list[str]:
    """Save several images; already written files are removed if one is rejected."""
    if len(files) > limit:
        raise UploadRejected(f"At most {limit} photos per request.")
    saved: list[str] = []
    try:
        for f in files:
            saved.append(await save_image(f, subdir=subdir, prefix=prefix))
    except UploadRejected:
        delete_uploads(saved)
        raise
    return saved


def delete_upload(url: str) -> None:
    if not url or not url.startswith(URL_PREFIX + "/"):
        return
    relative = url[len(URL_PREFIX) + 1 :]
    root = Path(config.UPLOAD_DIR).resolve()
    path = (root / relative).resolve()
    if root not in path.parents:
        logger.warning("Refusing to delete %s outside upload dir", url)
        return
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Could not delete upload %s: %s", url, exc)


def delete_uploads(urls) -> None:
    for url in urls or []:
        delete_upload(url)
