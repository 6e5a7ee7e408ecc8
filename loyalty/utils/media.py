# loyalty/utils/media.py
# -----------------------------------------------------------------------------
# Uploaded media: storage root, image sniffing by magic bytes, streamed writes
# with a size cap, and removal of files that live under the media root.
# Stored files are served from /media/<subdir>/YYYY/MM/<random>.<ext>.
# -----------------------------------------------------------------------------

from __future__ import annotations

import os
import secrets
from pathlib import Path
from typing import Optional

from fastapi import UploadFile

from loyalty.errors import PayloadTooLargeError, UnsupportedMediaError
from loyalty.utils.dates import utc_now

MAX_UPLOAD_MB = int(os.getenv("MAX_UPLOAD_MB", "5"))
CHUNK_SIZE = 1024 * 1024
MEDIA_URL_PREFIX = "/media/"

_IMAGE_EXTS = {
    "jpeg": ".jpg",
    "png": ".png",
    "gif": ".gif",
    "webp": ".webp",
}


def media_root() -> Path:
    """MEDIA_ROOT from the environment, created on first use."""
    return ensure_dir(Path(os.getenv("MEDIA_ROOT") or "./var/media"))


def ensure_dir(p: Path) -> Path:
    p.mkdir(parents=True, exist_ok=True)
    return p


def sniff_image_format(head: bytes) -> Optional[str]:
    if head[:3] == b"\xFF\xD8\xFF":
        return "jpeg"
    if head[:8] == b"\x89PNG\r\n\x1a\n":
        return "png"
    if head[:6] in (b"GIF87a", b"GIF89a"):
        return "gif"
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "webp"
    return None


async def save_image(file: UploadFile, subdir: str) -> str:
    """
    Streams an uploaded image to <MEDIA_ROOT>/<subdir>/YYYY/MM/ and returns its
    public path. Non-images get UnsupportedMediaError, anything over
    MAX_UPLOAD_MB gets PayloadTooLargeError and leaves no file behind.
    """
    limit = MAX_UPLOAD_MB * 1024 * 1024
    try:
        head = await file.read(64 * 1024)
        fmt = sniff_image_format(head)
        if fmt is None:
            raise UnsupportedMediaError("avatar must be a JPEG, PNG, GIF or WebP image")

        now = utc_now()
        rel = Path(subdir) / f"{now:%Y}" / f"{now:%m}" / f"{secrets.token_hex(16)}{_IMAGE_EXTS[fmt]}"
        dst = ensure_dir(media_root() / rel.parent) / rel.name

        total = len(head)
        try:
            with dst.open("wb") as f:
                f.write(head)
                while total <= limit:
                    chunk = await file.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    total += len(chunk)
                    f.write(chunk)
            if total > limit:
                raise PayloadTooLargeError(f"file too large (>{MAX_UPLOAD_MB} MB)")
        except PayloadTooLargeError:
            dst.unlink(missing_ok=True)
            raise
    finally:
        await file.close()

    return MEDIA_URL_PREFIX + rel.as_posix()


def local_path(url: Optional[str]) -> Optional[Path]:
    """Maps a /media/... path back to a file inside MEDIA_ROOT, or None."""
    if not url or not url.startswith(MEDIA_URL_PREFIX):
        return None
    root = media_root().resolve()
    local = (root / url[len(MEDIA_URL_PREFIX):]).resolve()
    if root not in local.parents:
        return None
    return local


def delete_if_local(url: Optional[str]) -> bool:
    p = local_path(url)
    if p is None or not p.exists():
        return False
    p.unlink()
    return True
