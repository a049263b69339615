"""Media extraction: index -> bytes, classified and sanity-checked.

Only audio and image files are imported. Header checks are advisory: a file
that fails them is logged and stored anyway.
"""

from __future__ import annotations

import enum
import logging
from typing import TYPE_CHECKING

from apkg.archive import decompress_zstd, is_zstd_compressed
from apkg.errors import DecompressionError
from apkg.models import MediaStore

if TYPE_CHECKING:
    from collections.abc import Mapping

    from apkg.archive import ArchiveReader
    from apkg.models import CountCallback

logger = logging.getLogger("apkg.media")

MEDIA_BATCH_SIZE = 100

AUDIO_EXTENSIONS = frozenset({"mp3", "wav", "m4a", "ogg", "flac", "aac", "opus", "wma"})
IMAGE_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "gif", "webp", "bmp", "svg", "ico", "tiff"})

# Magic numbers
_JPEG = b"\xff\xd8"
_PNG = b"\x89PNG\r\n\x1a\n"
_GIF87 = b"GIF87a"
_GIF89 = b"GIF89a"
_RIFF = b"RIFF"
_ID3 = b"ID3"
_OGG = b"OggS"
_FLAC = b"fLaC"


class MediaType(enum.Enum):
    AUDIO = "audio"
    IMAGE = "image"
    UNKNOWN = "unknown"


def media_type_from_extension(filename: str) -> MediaType:
    ext = filename.rsplit(".", 1)[-1].lower()
    if ext in AUDIO_EXTENSIONS:
        return MediaType.AUDIO
    if ext in IMAGE_EXTENSIONS:
        return MediaType.IMAGE
    return MediaType.UNKNOWN


def is_valid_image(data: bytes) -> bool:
    if len(data) < 8:
        return False
    if data.startswith((_JPEG, _PNG, _GIF87, _GIF89)):
        return True
    if data.startswith(_RIFF) and data[8:12] == b"WEBP":
        return True
    if data.startswith(b"BM"):
        return True
    head = data.lstrip(b" \t\r\n")[:5]
    return head.startswith((b"<?xml", b"<svg"))


def is_valid_audio(data: bytes) -> bool:
    if len(data) < 4:
        return False
    if data.startswith((_ID3, _OGG, _FLAC)):
        return True
    # MPEG frame sync: 11 set bits
    if data[0] == 0xFF and data[1] & 0xE0 == 0xE0:
        return True
    if data.startswith(_RIFF) and data[8:12] == b"WAVE":
        return True
    # MP4 / M4A
    return data[4:8] == b"ftyp"


def looks_valid(media_type: MediaType, data: bytes) -> bool:
    if media_type is MediaType.IMAGE:
        return is_valid_image(data)
    if media_type is MediaType.AUDIO:
        return is_valid_audio(data)
    return False


def process_media(
    archive: ArchiveReader,
    mapping: Mapping[str, str] | None = None,
    progress_callback: CountCallback | None = None,
    batch_size: int = MEDIA_BATCH_SIZE,
    store: MediaStore | None = None,
) -> MediaStore:
    """Populate a MediaStore from the archive's media index.

    mapping defaults to archive.extract_media_mapping(). Passing an existing
    store lets a host read early files while later ones are still loading.
    """
    store = store if store is not None else MediaStore()
    if mapping is None:
        mapping = archive.extract_media_mapping()
    total = len(mapping)
    if total == 0:
        return store

    current = 0
    for index, filename in mapping.items():
        current += 1
        _import_one(archive, index, filename, store)
        if progress_callback and current % batch_size == 0:
            progress_callback(current, total)

    if progress_callback:
        progress_callback(current, total)
    return store


def _import_one(archive: ArchiveReader, index: str, filename: str, store: MediaStore) -> None:
    media_type = media_type_from_extension(filename)
    if media_type is MediaType.UNKNOWN:
        logger.debug("skipping %s: not audio or image", filename)
        return

    data = archive.extract_file_by_index(index)
    if data is None:
        logger.debug("skipping %s: entry %r missing", filename, index)
        return

    if is_zstd_compressed(data):
        try:
            data = decompress_zstd(data)
        except DecompressionError as exc:
            logger.warning("failed to decompress %s: %s", filename, exc)
            return

    if not looks_valid(media_type, data):
        logger.warning("media file %s may be invalid (header check failed)", filename)
    store.insert(filename, data)
