"""
File validation service for image uploads.

Provides security checks including:
- Image count limits
- File size limits
- Binary signature check (JPEG / PNG only)
- Content-based MIME type detection
- Filename sanitization
"""

import logging
import re
from pathlib import Path
from typing import List, Optional, Tuple

import magic
from fastapi import UploadFile

from exam_generator.errors import InputValidationError, SecurityError

logger = logging.getLogger(__name__)

# Constants
MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB in bytes
JPEG_SIGNATURE = b"\xff\xd8\xff"
PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"

IMAGE_SIGNATURES: Tuple[Tuple[bytes, str], ...] = (
    (JPEG_SIGNATURE, "image/jpeg"),
    (PNG_SIGNATURE, "image/png"),
)

EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
}


def detect_signature(content: bytes) -> Optional[str]:
    """Return the MIME type matching the leading bytes, or None."""
    for signature, mime_type in IMAGE_SIGNATURES:
        if content.startswith(signature):
            return mime_type
    return None


async def validate_image(file: UploadFile, max_bytes: int = MAX_FILE_SIZE) -> Tuple[bytes, str, str]:
    """
    Validate one uploaded image and return content, MIME type and sanitized filename.

    Args:
        file: FastAPI UploadFile instance from multipart/form-data
        max_bytes: Per-file size cap

    Returns:
        Tuple of (file_content, mime_type, sanitized_filename)

    Raises:
        InputValidationError: 400 for empty files, 413 for files above the cap
        SecurityError: 400 when the leading bytes are not a JPEG or PNG signature

    Security checks:
        - File not empty
        - File size <= cap
        - First bytes match JPEG (FF D8 FF) or PNG (89 50 4E 47 0D 0A 1A 0A)
        - MIME type detected from content, not taken from the client
        - Filename sanitized (no path traversal)
    """
    content = await file.read()
    original_filename = file.filename or "upload"

    if len(content) == 0:
        raise InputValidationError(f"Datei '{original_filename}' ist leer.")

    if len(content) > max_bytes:
        raise InputValidationError(
            f"Datei '{original_filename}' ist zu groß. Maximal {max_bytes // (1024 * 1024)}MB erlaubt.",
            status_code=413,
        )

    signature_type = detect_signature(content)
    if signature_type is None:
        logger.warning(
            f"Rejected upload {original_filename!r}: unknown signature {content[:8].hex()}"
        )
        raise SecurityError(
            f"Datei '{original_filename}' ist kein gültiges Bild (nur JPEG oder PNG erlaubt)."
        )

    # libmagic is the source of the MIME type sent upstream; the signature
    # check above is the gate.
    mime_type = magic.from_buffer(content, mime=True)
    if mime_type not in EXTENSIONS:
        mime_type = signature_type

    return content, mime_type, sanitize_filename(original_filename, EXTENSIONS[mime_type])


async def validate_images(
    files: Optional[List[UploadFile]],
    max_count: int,
    max_bytes: int = MAX_FILE_SIZE,
) -> List[Tuple[bytes, str, str]]:
    """Validate a whole upload batch; the first failing file aborts the batch."""
    uploads = [f for f in (files or []) if f is not None and f.filename]
    if not uploads:
        raise InputValidationError("Kein Bild hochgeladen.")
    if len(uploads) > max_count:
        raise InputValidationError(f"Zu viele Bilder. Maximal {max_count} erlaubt.")
    return [await validate_image(f, max_bytes) for f in uploads]


def sanitize_filename(filename: str, extension: str = ".jpg") -> str:
    """
    Sanitize filename to prevent path traversal attacks.

    Args:
        filename: Original filename from upload
        extension: Extension matching the detected content type

    Returns:
        Sanitized filename safe for storage

    Security:
        - Removes directory separators (/, \\)
        - Removes parent directory references (..)
        - Removes null bytes
        - Limits to alphanumeric, dash, underscore, dot
        - Forces the extension of the detected content type
    """
    # Get base filename (remove any path components)
    filename = Path(filename.replace("\\", "/")).name

    # Remove any path traversal attempts
    filename = filename.replace("..", "").replace("/", "")

    # Remove null bytes
    filename = filename.replace("\0", "")

    # Keep only safe characters: alphanumeric, dash, underscore, dot
    filename = re.sub(r'[^a-zA-Z0-9._-]', '_', filename)

    stem = Path(filename).stem.strip("._") or "upload"

    # Limit length (max 255 chars for most filesystems)
    return stem[:200] + extension
