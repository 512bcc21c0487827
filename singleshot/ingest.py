"""Media ingestion for SingleShot.

Turns raw files into encoded payloads ready for analysis. Each accepted file
becomes a :class:`~singleshot.models.MediaPayload` holding a data URL
(``data:<mime>;base64,<bytes>``) that serves both as the analysis payload and
as the preview reference.

Browsers and ``mimetypes`` do not know most camera RAW formats, so an empty
reported MIME type is resolved from the file extension.
"""

from __future__ import annotations

import base64
import logging
import mimetypes
from collections.abc import Iterable
from pathlib import Path

from singleshot.models import MediaFile, MediaKind, MediaPayload

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

FALLBACK_MIME_TYPE = "application/octet-stream"

# Extensions whose MIME type is commonly unreported by the source
EXTENSION_MIME_TYPES: dict[str, str] = {
    "cr2": "image/x-canon-cr2",
    "nef": "image/x-nikon-nef",
    "arw": "image/x-sony-arw",
    "dng": "image/x-adobe-dng",
    "orf": "image/x-olympus-orf",
    "rw2": "image/x-panasonic-rw2",
    "heic": "image/heic",
    "heif": "image/heif",
    "mkv": "video/x-matroska",
}

# Accepted regardless of reported MIME type
ALLOWED_EXTENSIONS: tuple[str, ...] = tuple(f".{ext}" for ext in EXTENSION_MIME_TYPES)

ACCEPTED_MIME_PREFIXES = ("image/", "video/")


# =============================================================================
# Resolution Helpers
# =============================================================================


def get_extension(filename: str) -> str:
    """Return the lower-cased extension without the dot, or an empty string."""
    _, dot, ext = filename.rpartition(".")
    return ext.lower() if dot else ""


def resolve_mime_type(filename: str, reported: str | None = None) -> str:
    """Resolve the MIME type of a file.

    A non-empty reported type is used verbatim. Otherwise the extension
    table decides, falling back to ``application/octet-stream``.

    Args:
        filename: Original file name.
        reported: MIME type reported by the source, possibly empty.

    Returns:
        The resolved MIME type.

    Example:
        >>> resolve_mime_type("shot.cr2", "")
        'image/x-canon-cr2'
        >>> resolve_mime_type("clip.mov", "video/quicktime")
        'video/quicktime'
    """
    if reported:
        return reported
    return EXTENSION_MIME_TYPES.get(get_extension(filename), FALLBACK_MIME_TYPE)


def classify_kind(mime_type: str) -> MediaKind:
    """Classify a MIME type as video or image."""
    return MediaKind.VIDEO if mime_type.startswith("video/") else MediaKind.IMAGE


def encode_data_url(data: bytes, mime_type: str) -> str:
    """Encode bytes as a self-describing data URL.

    Example:
        >>> encode_data_url(b"\\x00\\x00\\x00", "image/png")
        'data:image/png;base64,AAAA'
    """
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def is_accepted(file: MediaFile) -> bool:
    """Check if a file should be analyzed.

    A file is accepted when its reported MIME type is an image or video
    type, or when its name ends with a known RAW/video extension.
    """
    if file.mime_type.startswith(ACCEPTED_MIME_PREFIXES):
        return True
    return file.filename.lower().endswith(ALLOWED_EXTENSIONS)


# =============================================================================
# Batch Ingestion
# =============================================================================


def screen_batch(files: Iterable[MediaFile]) -> tuple[list[MediaFile], list[MediaFile]]:
    """Split a submission into accepted and rejected files, keeping order.

    Returns:
        Tuple of (accepted, rejected).
    """
    accepted: list[MediaFile] = []
    rejected: list[MediaFile] = []
    for file in files:
        (accepted if is_accepted(file) else rejected).append(file)
    return accepted, rejected


def ingest_file(file: MediaFile) -> MediaPayload:
    """Encode a single file without filtering it."""
    mime_type = resolve_mime_type(file.filename, file.mime_type)
    data_url = encode_data_url(file.data, mime_type)
    return MediaPayload(
        encoded_payload=data_url,
        preview_ref=data_url,
        kind=classify_kind(mime_type),
        mime_type=mime_type,
        filename=file.filename,
    )


def ingest_batch(files: Iterable[MediaFile], multiple: bool = False) -> list[MediaPayload]:
    """Ingest one submission.

    Unsupported files are dropped silently. In single-item mode
    (``multiple=False``) only the first accepted file is kept.

    Args:
        files: Files in submission order.
        multiple: Keep every accepted file instead of only the first.

    Returns:
        Encoded payloads in submission order; empty if nothing was accepted.
    """
    accepted, rejected = screen_batch(files)

    if rejected:
        logger.debug(f"Dropped {len(rejected)} unsupported file(s) from batch")

    if not accepted:
        return []

    if not multiple and len(accepted) > 1:
        accepted = accepted[:1]

    return [ingest_file(file) for file in accepted]


def guess_reported_mime_type(filename: str) -> str:
    """MIME type a client would report for ``filename``, empty if unknown.

    The platform MIME database leaves most RAW formats unreported, as a
    browser would.
    """
    reported, _ = mimetypes.guess_type(filename)
    return reported or ""


def read_media_file(path: Path) -> MediaFile:
    """Read a file from disk as a :class:`MediaFile`.

    Raises:
        OSError: If the file cannot be read.
    """
    return MediaFile(
        data=path.read_bytes(), mime_type=guess_reported_mime_type(path.name), filename=path.name
    )
