"""Image processing and local storage for game covers and gallery uploads."""

from __future__ import annotations

import io
import logging
import os
import re
import shutil
import time
from pathlib import Path
from typing import Any

from PIL import ExifTags, Image, ImageOps, UnidentifiedImageError

from helpers import normalize_game_slug

logger = logging.getLogger(__name__)

COVER_WIDTH = 1200
COVER_HEIGHT = 675
MAX_COVER_SIZE_BYTES = 100 * 1024
COVER_QUALITIES = (90, 80, 70, 60, 55, 50, 45, 40, 35, 30, 25, 20, 15, 10)
GALLERY_QUALITY = 90

_RESAMPLE_LANCZOS = Image.Resampling.LANCZOS
_ORIENTATION_TAG = next(k for k, v in ExifTags.TAGS.items() if v == "Orientation")
_UNSAFE_SLUG_CHARS = re.compile(r"[^a-z0-9-]+")
_UNSAFE_NAME_CHARS = re.compile(r"[^a-z0-9._-]+")


class MediaError(RuntimeError):
    """Raised when an upload cannot be processed or stored."""


def open_image_auto_rotate(source: Any) -> Image.Image:
    """Open image from path, bytes or file-like and auto-rotate using EXIF."""

    if isinstance(source, (bytes, bytearray)):
        source = io.BytesIO(source)
    try:
        img = Image.open(source) if not isinstance(source, Image.Image) else source
        img.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise MediaError("Uploaded file is not a supported image.") from exc

    orientation = img.getexif().get(_ORIENTATION_TAG)
    if orientation == 3:
        img = img.rotate(180, expand=True)
    elif orientation == 6:
        img = img.rotate(270, expand=True)
    elif orientation == 8:
        img = img.rotate(90, expand=True)
    return img.convert("RGB")


def fit_cover(img: Image.Image, *, size: tuple[int, int] = (COVER_WIDTH, COVER_HEIGHT)) -> Image.Image:
    """Scale and center-crop ``img`` so it fills ``size`` exactly."""

    return ImageOps.fit(img.convert("RGB"), size, method=_RESAMPLE_LANCZOS, centering=(0.5, 0.5))


def encode_webp(img: Image.Image, *, quality: int, method: int = 6) -> bytes:
    buffer = io.BytesIO()
    img.save(buffer, format="WEBP", quality=quality, method=method)
    return buffer.getvalue()


def optimize_cover(img: Image.Image, *, max_bytes: int = MAX_COVER_SIZE_BYTES) -> bytes:
    """Return a WebP cover no larger than ``max_bytes``.

    Qualities are tried from best to worst; the first one that fits wins.
    """

    cover = fit_cover(img)
    for quality in COVER_QUALITIES:
        candidate = encode_webp(cover, quality=quality)
        if len(candidate) <= max_bytes:
            logger.debug("Cover encoded at quality %d (%d bytes)", quality, len(candidate))
            return candidate
    raise MediaError(
        "Cover image could not be optimized under 100KB. Please choose a different image."
    )


def safe_media_slug(slug: Any) -> str:
    text = slug.strip().lower() if isinstance(slug, str) else ""
    return _UNSAFE_SLUG_CHARS.sub("-", text) or "uploads"


def sanitize_upload_basename(filename: str | None, *, timestamp: int) -> str:
    """Return a filesystem-safe base name (no extension) for ``filename``."""

    original = filename.strip() if filename and filename.strip() else f"image-{timestamp}"
    sanitized = _UNSAFE_NAME_CHARS.sub("-", original.lower())
    sanitized = re.sub(r"-+", "-", sanitized).strip("-")
    return re.sub(r"\.[^.]+$", "", sanitized) or f"image-{timestamp}"


def build_upload_path(
    slug: Any,
    upload_type: str,
    *,
    filename: str | None = None,
    game_name: str | None = None,
    timestamp: int | None = None,
) -> str:
    """Return the storage path of an upload, relative to the media root."""

    stamp = timestamp if timestamp is not None else int(time.time() * 1000)
    folder = f"games/{safe_media_slug(slug)}"
    if upload_type == "cover":
        title = f"{game_name.strip()} Codes" if game_name and game_name.strip() else ""
        base = normalize_game_slug(title) if title else ""
        return f"{folder}/{base or f'cover-{stamp}'}-{stamp}.webp"
    base = sanitize_upload_basename(filename, timestamp=stamp)
    return f"{folder}/gallery/{base}-{stamp}.webp"


class MediaStorage:
    """Stores uploaded media below a root directory served at ``url_prefix``."""

    def __init__(self, root: str | os.PathLike[str], *, url_prefix: str = "/media") -> None:
        self.root = Path(root)
        self.url_prefix = url_prefix.rstrip("/")

    def resolve(self, relative_path: str) -> Path:
        root = self.root.resolve()
        candidate = (root / relative_path).resolve()
        if candidate != root and root not in candidate.parents:
            raise MediaError(f"Invalid media path: {relative_path}")
        return candidate

    def url_for(self, relative_path: str) -> str:
        return f"{self.url_prefix}/{relative_path}"

    def save(self, relative_path: str, data: bytes) -> str:
        target = self.resolve(relative_path)
        if target.exists():
            raise MediaError(f"Media file already exists: {relative_path}")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        logger.info("Stored media %s (%d bytes)", relative_path, len(data))
        return self.url_for(relative_path)

    def remove_tree(self, prefix: str) -> bool:
        """Delete the folder at ``prefix``; returns ``False`` when absent."""

        target = self.resolve(prefix)
        if target == self.root.resolve() or not target.exists():
            return False
        if target.is_dir():
            shutil.rmtree(target)
        else:
            target.unlink()
        logger.info("Removed media folder %s", prefix)
        return True


def process_upload(
    storage: MediaStorage,
    data: bytes,
    *,
    slug: Any,
    upload_type: str = "generic",
    filename: str | None = None,
    game_name: str | None = None,
    max_bytes: int = 10 * 1024 * 1024,
    timestamp: int | None = None,
) -> dict[str, Any]:
    """Convert an uploaded image to WebP, store it, and return its URL."""

    if not data:
        raise MediaError("No file provided")
    if len(data) > max_bytes:
        raise MediaError(
            f"File is too large. Maximum size is {max_bytes // (1024 * 1024)}MB."
        )

    img = open_image_auto_rotate(data)
    try:
        if upload_type == "cover":
            encoded = optimize_cover(img)
        else:
            encoded = encode_webp(img, quality=GALLERY_QUALITY, method=4)
    except OSError as exc:
        raise MediaError(str(exc) or "Image processing failed") from exc

    path = build_upload_path(
        slug, upload_type, filename=filename, game_name=game_name, timestamp=timestamp
    )
    url = storage.save(path, encoded)
    return {"success": True, "url": url, "path": path}


__all__ = [
    "COVER_HEIGHT",
    "COVER_QUALITIES",
    "COVER_WIDTH",
    "MAX_COVER_SIZE_BYTES",
    "MediaError",
    "MediaStorage",
    "build_upload_path",
    "encode_webp",
    "fit_cover",
    "open_image_auto_rotate",
    "optimize_cover",
    "process_upload",
    "safe_media_slug",
    "sanitize_upload_basename",
]
