"""Magic-byte validation for uploaded invoice files.

Declared content types come from the client and cannot be trusted. Every
upload is checked against the signature of the type it claims to be before
anything is stored or sent to the extraction service. Files uploaded directly
to storage have no declared type; it is taken from the file name instead.
"""

import mimetypes

MIN_SIGNATURE_BYTES = 12

PDF = "application/pdf"
JPEG = "image/jpeg"
PNG = "image/png"
WEBP = "image/webp"

ALLOWED_MEDIA_TYPES: frozenset[str] = frozenset({PDF, JPEG, PNG, WEBP})

_PDF_MAGIC = b"%PDF"
_JPEG_MAGIC = b"\xff\xd8\xff"
_PNG_MAGIC = b"\x89PNG"
_RIFF_MAGIC = b"RIFF"
_WEBP_MAGIC = b"WEBP"

# Not registered by default on every supported interpreter
mimetypes.add_type(WEBP, ".webp")


def is_allowed_media_type(media_type: str | None) -> bool:
    """Check a declared media type against the upload allow-list."""
    return media_type in ALLOWED_MEDIA_TYPES


def guess_media_type(file_name: str) -> str | None:
    """Media type implied by the file extension, if it is on the allow-list."""
    media_type, _ = mimetypes.guess_type(file_name)
    return media_type if media_type in ALLOWED_MEDIA_TYPES else None


def validate_magic_bytes(data: bytes, media_type: str | None) -> bool:
    """Confirm that the leading bytes of ``data`` match ``media_type``.

    Args:
        data: Raw file content
        media_type: MIME type declared by the uploader

    Returns:
        True only if the content carries the signature of the declared type.
        Inputs shorter than 12 bytes and unsupported types are always rejected.
    """
    if len(data) < MIN_SIGNATURE_BYTES:
        return False

    if media_type == PDF:
        return data[:4] == _PDF_MAGIC
    if media_type == JPEG:
        return data[:3] == _JPEG_MAGIC
    if media_type == PNG:
        return data[:4] == _PNG_MAGIC
    if media_type == WEBP:
        return data[:4] == _RIFF_MAGIC and data[8:12] == _WEBP_MAGIC
    return False
