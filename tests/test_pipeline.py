"""End-to-end imports through parse_file()."""

from __future__ import annotations

import pytest
from conftest import ID3_MP3, PNG, build_apkg, build_db

from apkg import normalize, parse_file
from apkg.errors import DatabaseError, InvalidArchiveError, SourceNotFoundError
from apkg.models import ArchiveFormat, Deck, MediaStore, Progress
from apkg.pipeline import add_orphan_decks


def test_end_to_end(simple_apkg):
    phases = []
    collection = parse_file(simple_apkg, phases.append)

    assert phases == [
        Progress.EXTRACTING,
        Progress.READING_DECKS,
        Progress.READING_CARDS,
        Progress.PROCESSING_MEDIA,
        Progress.COMPLETE,
    ]
    assert collection.format is ArchiveFormat.MODERN
    assert [(d.id, d.name, d.short_name) for d in collection.decks] == [(1, "Deck::Sub", "Sub")]
    assert collection.root_decks == []
    assert len(collection.cards_by_deck[1]) == 1
    assert collection.cards_by_deck[1][0].fields == ["Q", "A"]
    assert "x.mp3" in collection.media
    assert collection.media.data_for("x.mp3") == ID3_MP3


def test_progress_callback_is_optional(simple_apkg):
    assert parse_file(simple_apkg).card_count == 1


def test_count_callbacks(simple_apkg):
    cards, media = [], []
    parse_file(simple_apkg, on_cards=lambda d, t: cards.append((d, t)), on_media=lambda d, t: media.append((d, t)))
    assert cards == [(1, 1)]
    assert media == [(1, 1)]


def test_orphan_cards_get_placeholder_deck(tmp_path):
    db = build_db(
        tmp_path / "c.db",
        decks=[(1, "Known")],
        notes=[(10, "q\x1fa")],
        cards=[(100, 10, 1), (101, 10, 77), (102, 10, 77)],
    )
    collection = parse_file(build_apkg(tmp_path / "o.apkg", db))

    placeholders = [d for d in collection.decks if d.id == 77]
    assert len(placeholders) == 1
    assert placeholders[0].name == "Deck 77"
    assert placeholders[0].is_root
    assert collection.decks[0].name == "Known"
    assert [c.id for c in collection.cards_for(77)] == [101, 102]
    for deck_id in collection.cards_by_deck:
        assert collection.deck_by_id(deck_id) is not None


def test_add_orphan_decks_only_once():
    decks = [Deck.from_name(1, "A")]
    result = add_orphan_decks(decks, {1: [], 5: [], 6: []})
    assert [d.id for d in result] == [1, 5, 6]


def test_legacy_container(tmp_path):
    db = build_db(
        tmp_path / "c.db",
        legacy_decks={"1": {"name": "Default"}, "2": {"name": "Default::Child"}},
        notes=[(10, "<b>front</b>\x1f[sound:hi.mp3]")],
        cards=[(100, 10, 2)],
    )
    path = build_apkg(
        tmp_path / "l.apkg",
        db,
        db_name="collection.anki2",
        media_index={"0": "hi.mp3", "1": "unused.png"},
        entries={"0": ID3_MP3, "1": PNG},
    )
    collection = parse_file(path)

    assert collection.format is ArchiveFormat.LEGACY
    assert [d.name for d in collection.decks] == ["Default", "Default::Child"]
    assert [d.name for d in collection.root_decks] == ["Default"]
    card = collection.cards_for(2)[0]
    assert card.media_references == ["hi.mp3"]
    assert [normalize(f) for f in card.fields] == ["front", "[🔊 hi.mp3](media:hi.mp3)"]
    assert collection.media.filenames() == ["hi.mp3", "unused.png"]


def test_compressed_container(tmp_path, simple_db):
    path = build_apkg(tmp_path / "c.colpkg", simple_db, db_name="collection.anki21b")
    collection = parse_file(path)
    assert collection.format is ArchiveFormat.COMPRESSED
    assert collection.cards_for(1)[0].fields == ["Q", "A"]
    assert collection.media.count() == 0


def test_shared_media_store(simple_apkg):
    store = MediaStore()
    collection = parse_file(simple_apkg, media_store=store)
    assert collection.media is store
    assert store.filenames() == ["x.mp3"]


def test_temp_dir_is_cleaned(tmp_path, simple_apkg):
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    parse_file(simple_apkg, temp_dir=scratch)
    assert list(scratch.iterdir()) == []


def test_missing_source(tmp_path):
    phases = []
    with pytest.raises(SourceNotFoundError):
        parse_file(tmp_path / "missing.apkg", phases.append)
    assert phases == [Progress.EXTRACTING]


def test_no_database_in_container(tmp_path):
    path = build_apkg(tmp_path / "x.apkg", None, media_index={"0": "a.mp3"})
    with pytest.raises(InvalidArchiveError):
        parse_file(path)


def test_corrupt_database_aborts(tmp_path):
    path = build_apkg(tmp_path / "x.apkg", b"garbage" * 200)
    with pytest.raises(DatabaseError):
        parse_file(path)


def test_card_without_deck_id_aborts(tmp_path):
    db = build_db(tmp_path / "c.db", decks=[(1, "A")], notes=[(10, "q")], cards=[(100, 10, None)])
    with pytest.raises(DatabaseError):
        parse_file(build_apkg(tmp_path / "n.apkg", db))
