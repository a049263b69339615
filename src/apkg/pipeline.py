"""End-to-end import: container -> decks, cards, media -> Collection.

Phases are reported to the caller in a fixed order, once each:
    EXTRACTING -> READING_DECKS -> READING_CARDS -> PROCESSING_MEDIA -> COMPLETE

Any ApkgError aborts the run; per-file media problems do not.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from apkg.archive import ArchiveReader
from apkg.database import CARD_BATCH_SIZE, CollectionDatabase
from apkg.media import MEDIA_BATCH_SIZE, process_media
from apkg.models import Collection, Deck, MediaStore, Progress

if TYPE_CHECKING:
    from pathlib import Path

    from apkg.models import Card, CountCallback, ProgressCallback

logger = logging.getLogger("apkg.pipeline")


def placeholder_deck_name(deck_id: int) -> str:
    return f"Deck {deck_id}"


def add_orphan_decks(decks: list[Deck], cards_by_deck: dict[int, list[Card]]) -> list[Deck]:
    """Append a placeholder deck for every card deck id with no parsed deck."""
    known = {d.id for d in decks}
    for deck_id in cards_by_deck:
        if deck_id not in known:
            logger.info("cards reference unknown deck %s; adding placeholder", deck_id)
            decks.append(Deck.from_name(deck_id, placeholder_deck_name(deck_id)))
            known.add(deck_id)
    return decks


def parse_file(
    path: Path | str,
    on_progress: ProgressCallback | None = None,
    *,
    on_cards: CountCallback | None = None,
    on_media: CountCallback | None = None,
    temp_dir: Path | str | None = None,
    card_batch_size: int = CARD_BATCH_SIZE,
    media_batch_size: int = MEDIA_BATCH_SIZE,
    media_store: MediaStore | None = None,
) -> Collection:
    """Import an .apkg / .colpkg file.

    on_progress receives each Progress phase; on_cards / on_media receive
    (done, total) counts within the card and media phases.
    """

    def report(phase: Progress) -> None:
        logger.info("phase: %s", phase.value)
        if on_progress:
            on_progress(phase)

    report(Progress.EXTRACTING)
    with ArchiveReader.open(path) as archive:
        db_bytes = archive.extract_database()

        report(Progress.READING_DECKS)
        with CollectionDatabase.open_from_bytes(db_bytes, temp_dir=temp_dir) as db:
            decks = db.parse_decks()

            report(Progress.READING_CARDS)
            cards_by_deck = db.parse_cards(on_cards, batch_size=card_batch_size)

        decks = add_orphan_decks(decks, cards_by_deck)

        report(Progress.PROCESSING_MEDIA)
        media = process_media(
            archive,
            progress_callback=on_media,
            batch_size=media_batch_size,
            store=media_store,
        )
        fmt = archive.format

    report(Progress.COMPLETE)
    return Collection(decks=decks, cards_by_deck=cards_by_deck, media=media, format=fmt)
