"""Read decks and cards out of an extracted collection database.

Two deck layouts exist in the wild:

    modern  (2.1.50+)   decks(id, name, ...)     name is TEXT, or a protobuf blob
    legacy              col.decks                 one JSON object {"<id>": {"name": ...}}

The layout is resolved once when the database is opened. A modern database
whose decks table yields nothing usable still falls back to col.decks.

Cards always come from `cards JOIN notes`; note fields are one string split
on 0x1f.

Usage:
    with CollectionDatabase.open_from_bytes(db_bytes) as db:
        decks = db.parse_decks()
        cards_by_deck = db.parse_cards(lambda done, total: ...)
"""

from __future__ import annotations

import contextlib
import enum
import json
import logging
import os
import sqlite3
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Any

from apkg.errors import ApkgIOError, DatabaseError
from apkg.markup import extract_media_references
from apkg.models import Card, Deck, deck_sort_key

if TYPE_CHECKING:
    from types import TracebackType

    from apkg.models import CountCallback

logger = logging.getLogger("apkg.database")

FIELD_SEPARATOR = "\x1f"
CARD_BATCH_SIZE = 1000

# Protobuf tag for field 2, wire type 2 (length-delimited): (2 << 3) | 2
NAME_FIELD_TAG = 0x12


class DeckLayout(enum.Enum):
    MODERN = "decks"
    LEGACY = "col"


# ---------------------------------------------------------------------------
# Protobuf name field
# ---------------------------------------------------------------------------

def extract_length_delimited(data: bytes, tag: int = NAME_FIELD_TAG) -> str | None:
    """Pull one length-delimited UTF-8 field out of a serialized protobuf.

    Best-effort, minimal subset: lengths are a single byte, fields with other
    tags are skipped by wire type, and nothing is validated beyond that.
    Returns None when the tag is absent or its length runs past the end.
    """
    i = 0
    n = len(data)
    while i < n:
        current = data[i]
        i += 1
        if i >= n:
            break
        wire_type = current & 0x07

        if current == tag:
            length = data[i]
            i += 1
            if i + length > n:
                return None
            with contextlib.suppress(UnicodeDecodeError):
                return data[i : i + length].decode("utf-8")
            i += length
            continue

        if wire_type == 0:      # varint
            while i < n and data[i] & 0x80:
                i += 1
            i += 1
        elif wire_type == 1:    # fixed64
            i += 8
        elif wire_type == 2:    # length-delimited
            i += 1 + data[i]
        elif wire_type == 5:    # fixed32
            i += 4
        else:
            i += 1
    return None


def _decode_deck_id(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, bytes) and len(value) >= 8:
        return int.from_bytes(value[:8], "little", signed=True)
    return 0


def _decode_deck_name(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bytes):
        try:
            return value.decode("utf-8")
        except UnicodeDecodeError:
            return extract_length_delimited(value) or ""
    return ""


def _lossy_text(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace")


def split_fields(flds: str | bytes | None) -> list[str]:
    """Split a note's field string on the unit separator."""
    if flds is None:
        return [""]
    if isinstance(flds, bytes):
        flds = _lossy_text(flds)
    return flds.split(FIELD_SEPARATOR)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

class CollectionDatabase:
    """Read-only handle on a collection database materialized to a temp file."""

    def __init__(self, conn: sqlite3.Connection, temp_path: Path | None = None) -> None:
        self._conn = conn
        self._temp_path = temp_path
        # TEXT columns are decoded leniently; BLOB columns stay bytes.
        self._conn.text_factory = _lossy_text
        self.deck_layout = self._detect_deck_layout()

    @classmethod
    def open_from_bytes(cls, data: bytes, temp_dir: Path | str | None = None) -> CollectionDatabase:
        try:
            fd, name = tempfile.mkstemp(prefix="apkg_import_", suffix=".db", dir=temp_dir)
        except OSError as exc:
            raise ApkgIOError(f"Cannot create temp database: {exc}") from exc
        temp_path = Path(name)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            conn = sqlite3.connect(f"file:{temp_path}?mode=ro", uri=True)
        except OSError as exc:
            temp_path.unlink(missing_ok=True)
            raise ApkgIOError(str(exc)) from exc
        except sqlite3.Error as exc:
            temp_path.unlink(missing_ok=True)
            raise DatabaseError(str(exc)) from exc
        try:
            return cls(conn, temp_path)
        except BaseException:
            conn.close()
            temp_path.unlink(missing_ok=True)
            raise

    def _detect_deck_layout(self) -> DeckLayout:
        try:
            row = self._conn.execute(
                "SELECT COUNT(*) FROM sqlite_master WHERE type='table' AND name='decks'"
            ).fetchone()
        except sqlite3.Error as exc:
            raise DatabaseError(str(exc)) from exc
        return DeckLayout.MODERN if row and row[0] else DeckLayout.LEGACY

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        self._conn.close()
        if self._temp_path is not None:
            with contextlib.suppress(OSError):
                self._temp_path.unlink()
            self._temp_path = None

    def __enter__(self) -> CollectionDatabase:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Decks
    # ------------------------------------------------------------------

    def parse_decks(self) -> list[Deck]:
        """All decks, parents before children."""
        if self.deck_layout is DeckLayout.MODERN:
            try:
                decks = self._parse_decks_modern()
            except sqlite3.Error as exc:
                logger.warning("decks table unreadable, trying col.decks: %s", exc)
                decks = []
            if decks:
                return decks
        return self._parse_decks_legacy()

    def _parse_decks_modern(self) -> list[Deck]:
        decks: list[Deck] = []
        for raw_id, raw_name in self._conn.execute(
            # raw bytes so text-typed binary records still reach the fallback
            "SELECT id, CAST(name AS BLOB) FROM decks"
        ):
            deck_id = _decode_deck_id(raw_id)
            if deck_id == 0:
                continue
            name = _decode_deck_name(raw_name)
            if not name:
                logger.debug("dropping deck %d: no decodable name", deck_id)
                continue
            decks.append(Deck.from_name(deck_id, name))
        decks.sort(key=deck_sort_key)
        return decks

    def _parse_decks_legacy(self) -> list[Deck]:
        try:
            row = self._conn.execute("SELECT decks FROM col").fetchone()
        except sqlite3.Error:
            return []
        if row is None or row[0] is None:
            return []
        raw = row[0]
        if isinstance(raw, bytes):
            raw = _lossy_text(raw)
        if not raw.strip():
            return []
        try:
            catalog = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("col.decks is not valid JSON: %s", exc)
            return []
        if not isinstance(catalog, dict):
            return []

        decks: list[Deck] = []
        for id_str, entry in catalog.items():
            try:
                deck_id = int(id_str)
            except ValueError:
                deck_id = 0
            name = entry.get("name") if isinstance(entry, dict) else None
            if not isinstance(name, str) or not name:
                continue
            decks.append(Deck.from_name(deck_id, name))
        decks.sort(key=deck_sort_key)
        return decks

    # ------------------------------------------------------------------
    # Cards
    # ------------------------------------------------------------------

    def card_count(self) -> int:
        try:
            row = self._conn.execute("SELECT COUNT(*) FROM cards").fetchone()
        except sqlite3.Error as exc:
            raise DatabaseError(str(exc)) from exc
        return int(row[0])

    def parse_cards(
        self,
        progress_callback: CountCallback | None = None,
        batch_size: int = CARD_BATCH_SIZE,
    ) -> dict[int, list[Card]]:
        """Cards grouped by deck id, in the database's scan order.

        progress_callback(done, total) fires every batch_size cards and once
        more at the end.
        """
        total = self.card_count()
        cards_by_deck: dict[int, list[Card]] = {}
        current = 0
        try:
            rows = self._conn.execute(
                "SELECT c.id, c.nid, c.did, n.flds FROM cards c JOIN notes n ON c.nid = n.id"
            )
            for card_id, note_id, deck_id, flds in rows:
                if deck_id is None:
                    msg = f"card {card_id} has no deck id"
                    raise DatabaseError(msg)
                fields = split_fields(flds)
                card = Card(
                    id=card_id,
                    note_id=note_id,
                    deck_id=deck_id,
                    fields=fields,
                    media_references=extract_media_references(fields),
                )
                cards_by_deck.setdefault(deck_id, []).append(card)
                current += 1
                if progress_callback and current % batch_size == 0:
                    progress_callback(current, total)
        except sqlite3.Error as exc:
            raise DatabaseError(str(exc)) from exc

        if progress_callback:
            progress_callback(current, total)
        return cards_by_deck
