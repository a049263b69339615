"""Error taxonomy for the import pipeline.

Every failure the library raises is an ApkgError subclass. Callers that only
care about "did the import work" can catch ApkgError; hosts that want to
explain the failure match on the subclass.
"""

from __future__ import annotations


class ApkgError(Exception):
    """Base class for all import failures."""


class SourceNotFoundError(ApkgError):
    """The source path does not exist."""


class InvalidArchiveError(ApkgError):
    """Not a zip container, or no known collection database inside it."""


class DatabaseError(ApkgError):
    """The collection database could not be opened or queried."""


class DecompressionError(ApkgError):
    """A zstd frame failed to decompress."""


class MediaError(ApkgError):
    """Hard failure on a single media asset."""


class JsonError(ApkgError):
    """Malformed JSON in the media index or the legacy deck catalog."""


class ApkgIOError(ApkgError):
    """Any other I/O failure."""
