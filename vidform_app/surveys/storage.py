"""Video storage for survey questions.

Files go through Django's ``default_storage`` so deployments can swap the
backend in settings. Paths follow
``surveys/<survey id>/questions/<question id>/video_<ms>.<ext>``.
"""

from __future__ import annotations

import logging
import time

from django.conf import settings
from django.core.files.storage import default_storage

logger = logging.getLogger(__name__)

SUPPORTED_VIDEO_TYPES = ("video/mp4", "video/webm", "video/ogg", "video/quicktime")
# Used when the uploaded file name carries no extension
DEFAULT_EXTENSIONS = {
    "video/mp4": "mp4",
    "video/webm": "webm",
    "video/ogg": "ogg",
    "video/quicktime": "mov",
}


class VideoUploadError(Exception):
    """Raised when an uploaded video is rejected."""


def max_upload_bytes() -> int:
    return int(getattr(settings, "VIDEO_MAX_UPLOAD_MB", 100)) * 1024 * 1024


def validate_video(uploaded) -> None:
    content_type = (getattr(uploaded, "content_type", "") or "").split(";")[0].strip()
    if content_type not in SUPPORTED_VIDEO_TYPES:
        raise VideoUploadError("Please upload a video file (MP4, WebM, OGG, or MOV)")
    limit = max_upload_bytes()
    if uploaded.size > limit:
        raise VideoUploadError(
            f"File size must be less than {limit // (1024 * 1024)}MB"
        )


def video_path(survey_id: str, question_id: str, filename: str, content_type: str = "") -> str:
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    if not ext:
        ext = DEFAULT_EXTENSIONS.get(content_type, "mp4")
    stamp = int(time.time() * 1000)
    return f"surveys/{survey_id}/questions/{question_id}/video_{stamp}.{ext}"


def _name_from_url(url: str) -> str | None:
    media_url = settings.MEDIA_URL or "/"
    if url.startswith(media_url):
        return url[len(media_url):]
    return None


def delete_video(url: str) -> bool:
    """Delete a stored video by its public URL. Failures are logged, not raised."""
    if not url:
        return False
    name = _name_from_url(url)
    if not name:
        logger.warning("Video %s is not in local storage, leaving it alone", url)
        return False
    try:
        default_storage.delete(name)
    except OSError as exc:
        logger.warning("Could not delete old video %s: %s", name, exc)
        return False
    return True


def store_video(survey_id: str, question_id: str, uploaded, previous_url: str = "") -> str:
    """Validate and save ``uploaded``, returning its public URL.

    The previous video (if any) is removed after the new one is stored.
    """
    validate_video(uploaded)
    path = video_path(
        survey_id, question_id, uploaded.name or "", getattr(uploaded, "content_type", "")
    )
    saved_name = default_storage.save(path, uploaded)
    url = default_storage.url(saved_name)
    logger.info(
        "Stored video for survey %s question %s at %s", survey_id, question_id, saved_name
    )
    if previous_url:
        delete_video(previous_url)
    return url
