"""Anki export reader: .apkg / .colpkg -> decks, cards, media.

Container layouts (newest first, first match wins):
    collection.anki21b    zstd-framed SQLite
    collection.anki21     SQLite
    collection.anki2      SQLite, decks stored as JSON in col.decks

Host entry points:
    collection = parse_file("deck.apkg", on_progress)
    text = normalize("<b>Hi</b> [sound:hi.mp3]")

Deck names are "::"-separated paths; card fields are split on 0x1f.
Media bytes live in a thread-safe MediaStore shared with the caller.
"""

from apkg.config import ApkgConfig, load_config
from apkg.errors import ApkgError
from apkg.markup import normalize
from apkg.models import ArchiveFormat, Card, Collection, Deck, MediaStore, Progress
from apkg.pipeline import parse_file

__all__ = [
    "ApkgConfig",
    "ApkgError",
    "ArchiveFormat",
    "Card",
    "Collection",
    "Deck",
    "MediaStore",
    "Progress",
    "load_config",
    "normalize",
    "parse_file",
]
