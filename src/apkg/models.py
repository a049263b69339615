"""Data models for an imported Anki collection."""

from __future__ import annotations

import enum
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

# Deck hierarchy separator: "Parent::Child::Grandchild"
DECK_SEPARATOR = "::"


class ArchiveFormat(enum.Enum):
    """Which collection database the container holds.

    Probed newest first; the first entry present wins.
    """

    COMPRESSED = "collection.anki21b"   # zstd-framed SQLite (2.1.50+)
    MODERN = "collection.anki21"        # plain SQLite
    LEGACY = "collection.anki2"         # plain SQLite, decks as JSON in col

    @property
    def db_filename(self) -> str:
        return self.value

    @property
    def is_compressed(self) -> bool:
        return self is ArchiveFormat.COMPRESSED


class Progress(enum.Enum):
    """Import phases, reported once each and in this order."""

    EXTRACTING = "extracting"
    READING_DECKS = "reading_decks"
    READING_CARDS = "reading_cards"
    PROCESSING_MEDIA = "processing_media"
    COMPLETE = "complete"


ProgressCallback = Callable[[Progress], None]
CountCallback = Callable[[int, int], None]


@dataclass(frozen=True)
class Deck:
    """A deck with its full "::"-separated path."""

    id: int
    name: str                 # full path, e.g. "Korean::Vocab::Food"
    short_name: str           # last segment, e.g. "Food"

    @classmethod
    def from_name(cls, id: int, name: str) -> Deck:  # noqa: A002
        short = name.rsplit(DECK_SEPARATOR, 1)[-1]
        return cls(id=id, name=name, short_name=short or name)

    @property
    def is_root(self) -> bool:
        return DECK_SEPARATOR not in self.name

    @property
    def depth(self) -> int:
        return self.name.count(DECK_SEPARATOR)

    @property
    def parent_path(self) -> str | None:
        """"A::B" for "A::B::C", None for a root deck."""
        if self.is_root:
            return None
        return self.name.rsplit(DECK_SEPARATOR, 1)[0]


def deck_sort_key(deck: Deck) -> tuple[int, str]:
    """Parents before children, then alphabetical."""
    return (deck.depth, deck.name)


@dataclass
class Card:
    """A card joined with the fields of its note."""

    id: int
    note_id: int
    deck_id: int
    fields: list[str] = field(default_factory=list)
    media_references: list[str] = field(default_factory=list)


class _RWLock:
    """Many readers or one writer."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writing = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writing:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writing or self._readers:
                self._cond.wait()
            self._writing = True
        try:
            yield
        finally:
            with self._cond:
                self._writing = False
                self._cond.notify_all()


class MediaStore:
    """Thread-safe filename -> bytes store.

    Filenames keep their first-seen order. A filename registered with
    add_filename() is a placeholder until insert() supplies its bytes;
    the upgrade does not move it. Entries are never removed.
    """

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}
        self._order: list[str] = []
        self._known: set[str] = set()
        self._lock = _RWLock()

    def insert(self, filename: str, data: bytes) -> None:
        with self._lock.write():
            if filename not in self._known:
                self._known.add(filename)
                self._order.append(filename)
            self._data[filename] = data

    def add_filename(self, filename: str) -> None:
        """Register a filename without data (lazy reference)."""
        with self._lock.write():
            if filename not in self._known:
                self._known.add(filename)
                self._order.append(filename)

    def filenames(self) -> list[str]:
        with self._lock.read():
            return list(self._order)

    def data_for(self, filename: str) -> bytes | None:
        with self._lock.read():
            return self._data.get(filename)

    def count(self) -> int:
        with self._lock.read():
            return len(self._order)

    def __len__(self) -> int:
        return self.count()

    def __contains__(self, filename: object) -> bool:
        with self._lock.read():
            return filename in self._data

    def __repr__(self) -> str:
        return f"MediaStore({self.count()} files)"


@dataclass
class Collection:
    """Everything one import run produced."""

    decks: list[Deck]
    cards_by_deck: dict[int, list[Card]]
    media: MediaStore
    format: ArchiveFormat | None = None

    @property
    def root_decks(self) -> list[Deck]:
        """Decks without a parent."""
        return [d for d in self.decks if d.is_root]

    @property
    def card_count(self) -> int:
        return sum(len(cards) for cards in self.cards_by_deck.values())

    def deck_by_id(self, deck_id: int) -> Deck | None:
        for deck in self.decks:
            if deck.id == deck_id:
                return deck
        return None

    def cards_for(self, deck_id: int) -> list[Card]:
        return self.cards_by_deck.get(deck_id, [])
