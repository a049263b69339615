"""Zip container access for .apkg / .colpkg files.

An export is a plain zip holding one collection database plus media:

    collection.anki21b    # zstd-framed SQLite (newest exports)
    collection.anki21     # SQLite
    collection.anki2      # SQLite, oldest layout
    media                 # JSON {"0": "cat.jpg", "1": "meow.mp3", ...}
    0, 1, 2, ...          # media payloads, named by their index key

Usage:
    with ArchiveReader.open("deck.apkg") as reader:
        db_bytes = reader.extract_database()
        mapping = reader.extract_media_mapping()
"""

from __future__ import annotations

import io
import json
import logging
import zipfile
import zlib
from pathlib import Path
from typing import TYPE_CHECKING

import zstandard

from apkg.errors import (
    ApkgIOError,
    DecompressionError,
    InvalidArchiveError,
    JsonError,
    SourceNotFoundError,
)
from apkg.models import ArchiveFormat

if TYPE_CHECKING:
    from types import TracebackType

logger = logging.getLogger("apkg.archive")

ZSTD_MAGIC = b"\x28\xb5\x2f\xfd"
MEDIA_INDEX_ENTRY = "media"

# Probe order: first match wins.
_FORMAT_PREFERENCE = (ArchiveFormat.COMPRESSED, ArchiveFormat.MODERN, ArchiveFormat.LEGACY)


# ---------------------------------------------------------------------------
# zstd frames
# ---------------------------------------------------------------------------

def is_zstd_compressed(data: bytes) -> bool:
    return data[:4] == ZSTD_MAGIC


def decompress_zstd(data: bytes) -> bytes:
    """Decompress a zstd payload. Raises DecompressionError on bad input."""
    dctx = zstandard.ZstdDecompressor()
    out = io.BytesIO()
    try:
        dctx.copy_stream(io.BytesIO(data), out)
    except zstandard.ZstdError as exc:
        raise DecompressionError(str(exc)) from exc
    return out.getvalue()


def maybe_decompress(data: bytes) -> bytes:
    """Decompress only if the zstd magic number is present."""
    if not is_zstd_compressed(data):
        return data
    return decompress_zstd(data)


# ---------------------------------------------------------------------------
# Reader
# ---------------------------------------------------------------------------

class ArchiveReader:
    """Read-only view of an export container with its detected format."""

    def __init__(self, zf: zipfile.ZipFile) -> None:
        self._zip = zf
        self._names = set(zf.namelist())
        self.format = self._detect_format()
        logger.info("detected %s (%s)", self.format.name.lower(), self.format.db_filename)

    @classmethod
    def open(cls, path: Path | str) -> ArchiveReader:
        path = Path(path)
        if not path.exists():
            msg = f"File not found: {path}"
            raise SourceNotFoundError(msg)
        try:
            zf = zipfile.ZipFile(path)
        except zipfile.BadZipFile as exc:
            msg = f"Not a zip archive: {path}"
            raise InvalidArchiveError(msg) from exc
        except FileNotFoundError as exc:
            raise SourceNotFoundError(str(exc)) from exc
        except OSError as exc:
            raise ApkgIOError(str(exc)) from exc
        return cls._wrap(zf)

    @classmethod
    def from_bytes(cls, data: bytes) -> ArchiveReader:
        try:
            zf = zipfile.ZipFile(io.BytesIO(data))
        except zipfile.BadZipFile as exc:
            msg = "Not a zip archive"
            raise InvalidArchiveError(msg) from exc
        return cls._wrap(zf)

    @classmethod
    def _wrap(cls, zf: zipfile.ZipFile) -> ArchiveReader:
        try:
            return cls(zf)
        except InvalidArchiveError:
            zf.close()
            raise

    def _detect_format(self) -> ArchiveFormat:
        for fmt in _FORMAT_PREFERENCE:
            if fmt.db_filename in self._names:
                return fmt
        msg = "Invalid archive format: no collection database found"
        raise InvalidArchiveError(msg)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        self._zip.close()

    def __enter__(self) -> ArchiveReader:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    def file_names(self) -> list[str]:
        return self._zip.namelist()

    def __len__(self) -> int:
        return len(self._names)

    def _read(self, name: str) -> bytes | None:
        """Read an entry fully; None if it does not exist."""
        if name not in self._names:
            return None
        try:
            return self._zip.read(name)
        except (zipfile.BadZipFile, zlib.error) as exc:
            msg = f"Corrupt archive entry {name!r}: {exc}"
            raise InvalidArchiveError(msg) from exc
        except (NotImplementedError, RuntimeError) as exc:
            # unsupported compression method or an encrypted entry
            msg = f"Cannot read archive entry {name!r}: {exc}"
            raise ApkgIOError(msg) from exc
        except OSError as exc:
            raise ApkgIOError(str(exc)) from exc

    def extract_database(self) -> bytes:
        """Return the SQLite bytes, decompressed for the compressed format."""
        data = self._read(self.format.db_filename)
        if data is None:
            msg = f"{self.format.db_filename} missing from archive"
            raise InvalidArchiveError(msg)
        if self.format.is_compressed:
            return maybe_decompress(data)
        return data

    def extract_media_mapping(self, *, strict: bool = False) -> dict[str, str]:
        """Index key -> original filename. Empty when absent or unreadable.

        With strict=True a malformed index raises JsonError instead.
        """
        data = self._read(MEDIA_INDEX_ENTRY)
        if not data:
            return {}
        content = data.decode("utf-8", errors="replace").strip()
        if not content:
            return {}
        try:
            mapping = json.loads(content)
        except json.JSONDecodeError as exc:
            if strict:
                raise JsonError(f"media index: {exc}") from exc
            # 2.1.50+ exports write this entry as protobuf, not JSON
            logger.warning("media index is not JSON; importing without media")
            return {}
        if not isinstance(mapping, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in mapping.items()
        ):
            if strict:
                msg = "media index is not a flat string map"
                raise JsonError(msg)
            logger.warning("media index is not a flat string map; importing without media")
            return {}
        return mapping

    def extract_file_by_index(self, index: str) -> bytes | None:
        """Raw bytes of an entry, or None if absent."""
        return self._read(index)

    def extract_media(self, index: str) -> bytes | None:
        """Like extract_file_by_index, but zstd payloads come back decompressed."""
        data = self._read(index)
        if data is None:
            return None
        return maybe_decompress(data)
