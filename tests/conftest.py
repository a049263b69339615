"""Builders for real .apkg containers: SQLite + zip, optionally zstd-framed."""

from __future__ import annotations

import json
import sqlite3
import zipfile
from pathlib import Path
from typing import Any

import pytest
import zstandard

ID3_MP3 = b"ID3\x04\x00\x00\x00\x00\x00\x00" + b"\x00" * 16
PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


def build_db(
    path: Path,
    *,
    decks: list[tuple[Any, Any]] | None = None,
    legacy_decks: str | dict | None = None,
    notes: list[tuple[int, Any]] | None = None,
    cards: list[tuple[int, int, int]] | None = None,
) -> bytes:
    """Write a minimal collection database and return its bytes.

    decks        -> modern `decks(id, name)` table (omitted when None)
    legacy_decks -> `col.decks` JSON (dicts are dumped)
    """
    conn = sqlite3.connect(str(path))
    conn.execute("CREATE TABLE col (id INTEGER PRIMARY KEY, decks TEXT)")
    conn.execute("CREATE TABLE notes (id INTEGER PRIMARY KEY, flds)")
    conn.execute("CREATE TABLE cards (id INTEGER PRIMARY KEY, nid INTEGER, did INTEGER)")
    if decks is not None:
        conn.execute("CREATE TABLE decks (id, name)")
        conn.executemany("INSERT INTO decks VALUES (?, ?)", decks)
    if legacy_decks is not None:
        raw = legacy_decks if isinstance(legacy_decks, str) else json.dumps(legacy_decks)
        conn.execute("INSERT INTO col VALUES (1, ?)", (raw,))
    conn.executemany("INSERT INTO notes VALUES (?, ?)", notes or [])
    conn.executemany("INSERT INTO cards VALUES (?, ?, ?)", cards or [])
    conn.commit()
    conn.close()
    return path.read_bytes()


def build_apkg(
    path: Path,
    db_bytes: bytes | None,
    *,
    db_name: str = "collection.anki21",
    media_index: dict[str, str] | str | bytes | None = None,
    entries: dict[str, bytes] | None = None,
) -> Path:
    """Zip a database (compressed if db_name is collection.anki21b) plus media."""
    with zipfile.ZipFile(path, "w", zipfile.ZIP_DEFLATED) as zf:
        if db_bytes is not None:
            payload = db_bytes
            if db_name == "collection.anki21b":
                payload = zstandard.ZstdCompressor().compress(db_bytes)
            zf.writestr(db_name, payload)
        if media_index is not None:
            if isinstance(media_index, dict):
                zf.writestr("media", json.dumps(media_index))
            else:
                zf.writestr("media", media_index)
        for name, data in (entries or {}).items():
            zf.writestr(name, data)
    return path


@pytest.fixture
def simple_db(tmp_path: Path) -> bytes:
    """One modern deck "Deck::Sub" (id 1) and one two-field card in it."""
    return build_db(
        tmp_path / "simple.db",
        decks=[(1, "Deck::Sub")],
        notes=[(10, "Q\x1fA")],
        cards=[(100, 10, 1)],
    )


@pytest.fixture
def simple_apkg(tmp_path: Path, simple_db: bytes) -> Path:
    return build_apkg(
        tmp_path / "simple.apkg",
        simple_db,
        media_index={"0": "x.mp3"},
        entries={"0": ID3_MP3},
    )
