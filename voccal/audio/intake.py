"""
Validation and decoding of recorded or imported clips.
"""

from typing import Optional

from voccal.audio.buffer import AudioBuffer
from voccal.audio.wav import decode_audio
from voccal.core.config import settings
from voccal.core.exceptions import ValidationError
from voccal.core.logging import get_logger

logger = get_logger(__name__)


def validate_import(mime_type: Optional[str], size: int, max_bytes: Optional[int] = None) -> None:
    """
    Check an imported clip before decoding it.

    Args:
        mime_type: Declared content type, must be audio/*
        size: Size in bytes
        max_bytes: Size limit (settings.max_import_bytes if omitted)

    Raises:
        ValidationError: If the type is not audio or the size is out of range
    """
    limit = max_bytes if max_bytes is not None else settings.max_import_bytes
    if not mime_type or not mime_type.lower().startswith("audio/"):
        raise ValidationError(f"Not an audio file: {mime_type!r}")
    if size <= 0:
        raise ValidationError("Audio file is empty")
    if size > limit:
        raise ValidationError(
            f"Audio file too large: {size} bytes (limit {limit} bytes)"
        )


def load_import(data: bytes, mime_type: Optional[str]) -> AudioBuffer:
    """Validate and decode an imported clip."""
    validate_import(mime_type, len(data))
    buffer = decode_audio(data)
    logger.info(
        "import_decoded",
        mime_type=mime_type,
        bytes=len(data),
        channels=buffer.channels,
        sample_rate=buffer.sample_rate,
        duration=round(buffer.duration, 3)
    )
    return buffer
