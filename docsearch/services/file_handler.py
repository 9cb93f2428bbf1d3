"""
File Handler Service
Validates uploads and routes them to a processing lane.
"""
import mimetypes
import os
from typing import Iterable, Optional
import structlog

from docsearch.config import get_settings
from docsearch.errors import ValidationError
from docsearch.models.schemas import FileLane, UploadedFile

logger = structlog.get_logger()

IMAGE_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp"}

WORD_MIME_TYPES = {
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}
WORD_EXTENSIONS = {"doc", "docx"}


def get_extension(filename: str) -> str:
    """Lower-cased extension without the dot, or '' if there is none."""
    return os.path.splitext(filename or "")[1].lstrip(".").lower()


def classify(filename: str, mime_type: str) -> FileLane:
    """
    Map a file name and declared MIME type to a processing lane.

    An image extension wins over any MIME type, so a browser that labels
    `scan.jpg` as application/pdf still gets the image lane.
    """
    extension = get_extension(filename)
    mime_type = (mime_type or "").lower()

    if mime_type.startswith("image/") or extension in IMAGE_EXTENSIONS:
        return FileLane.IMAGE

    if mime_type == "application/pdf" or extension == "pdf":
        return FileLane.PDF

    return FileLane.TEXT


def is_word_document(filename: str, mime_type: str) -> bool:
    """Word documents are converted to PDF before classification."""
    if classify(filename, mime_type) is FileLane.IMAGE:
        return False
    return (mime_type or "").lower() in WORD_MIME_TYPES or get_extension(filename) in WORD_EXTENSIONS


def image_mime_type(filename: str, mime_type: str) -> str:
    """MIME type to send alongside an image-lane upload."""
    mime_type = (mime_type or "").lower()
    if mime_type.startswith("image/"):
        return mime_type
    guessed, _ = mimetypes.guess_type(f"file.{get_extension(filename)}")
    if guessed and guessed.startswith("image/"):
        return guessed
    return "image/png"


class FileHandler:
    """Applies the upload policy: size limit and MIME allow-list."""

    def __init__(self, max_upload_size: int, allowed_types: Iterable[str]):
        self.max_upload_size = max_upload_size
        self.allowed_types = set(allowed_types)

    def validate(self, upload: UploadedFile) -> None:
        """
        Check an upload against the policy.

        Raises:
            ValidationError: If the file is too large or its type is not allowed
        """
        if upload.size > self.max_upload_size:
            logger.warning("File too large", filename=upload.filename, size_bytes=upload.size)
            limit_mb = self.max_upload_size // (1024 * 1024)
            raise ValidationError(f"File size exceeds {limit_mb}MB limit")

        if upload.content_type not in self.allowed_types:
            logger.warning("File type not allowed", filename=upload.filename, mime_type=upload.content_type)
            raise ValidationError("File type not allowed")

        logger.info("File validation passed", filename=upload.filename, lane=self.lane_for(upload).value)

    def lane_for(self, upload: UploadedFile) -> FileLane:
        return classify(upload.filename, upload.content_type)


# Singleton instance
_file_handler: Optional[FileHandler] = None


def get_file_handler() -> FileHandler:
    """Get singleton file handler instance."""
    global _file_handler
    if _file_handler is None:
        settings = get_settings()
        _file_handler = FileHandler(settings.max_upload_size, settings.allowed_upload_types)
    return _file_handler
