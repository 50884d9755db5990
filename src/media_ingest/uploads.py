"""Checks and housekeeping for upload temp files saved by the web layer."""

from media_ingest.errors import UnsupportedMediaType
from media_ingest.errors import UploadTooLarge

import contextlib
import logging
import os
import time


logger = logging.getLogger(__name__)

IMAGE_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/webp", "image/gif")
VIDEO_TYPES = ("video/mp4", "video/webm", "video/quicktime")

IMAGE_SIZE_LIMIT = 10 * 1024 * 1024
VIDEO_SIZE_LIMIT = 100 * 1024 * 1024

VIDEO_CONTENT_TYPES = {
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".mov": "video/quicktime",
}


def media_kind(mimetype):
    """Return "image", "video" or None for a declared MIME type."""
    mimetype = (mimetype or "").split(";")[0].strip().lower()
    if mimetype in IMAGE_TYPES:
        return "image"
    if mimetype in VIDEO_TYPES:
        return "video"
    return None


def check_upload(path, mimetype):
    """Validate a saved upload and return its kind."""
    kind = media_kind(mimetype)
    if kind is None:
        raise UnsupportedMediaType(
            f"File type not allowed: {mimetype!r}. "
            f"Allowed types: {', '.join(IMAGE_TYPES + VIDEO_TYPES)}"
        )
    limit = VIDEO_SIZE_LIMIT if kind == "video" else IMAGE_SIZE_LIMIT
    size = os.path.getsize(path)
    if size > limit:
        raise UploadTooLarge(
            f"{kind} file exceeds {limit // (1024 * 1024)}MB limit ({size} bytes)"
        )
    return kind


def video_extension(filename, content_type=None):
    """Key extension of a video. A declared content type wins over the name."""
    if content_type:
        content_type = content_type.split(";")[0].strip().lower()
        for ext, known in VIDEO_CONTENT_TYPES.items():
            if known == content_type:
                return ext[1:]
    ext = os.path.splitext(filename)[1].lower()
    if ext in VIDEO_CONTENT_TYPES:
        return ext[1:]
    return "mp4"


def video_content_type(filename):
    ext = os.path.splitext(filename)[1].lower()
    return VIDEO_CONTENT_TYPES.get(ext, "video/mp4")


def discard(path):
    """Remove a temp file. Failures are logged, never raised."""
    if not path:
        return
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError:
        logger.warning("Failed to remove temp file %s", path, exc_info=True)


def cleanup_stale_uploads(upload_dir, max_age=3600, now=None):
    """Remove upload temp files older than max_age seconds.

    Uploads abandoned by crashed or cancelled requests accumulate here.
    Returns the number of files removed.
    """
    if not os.path.isdir(upload_dir):
        return 0
    now = time.time() if now is None else now
    removed = 0
    for entry in os.scandir(upload_dir):
        if entry.name == ".gitkeep" or not entry.is_file():
            continue
        with contextlib.suppress(OSError):
            if now - entry.stat().st_mtime > max_age:
                os.remove(entry.path)
                removed += 1
    if removed:
        logger.info("Removed %d stale upload(s) from %s", removed, upload_dir)
    return removed
