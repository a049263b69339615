"""apkg CLI — inspect Anki exports from the terminal.

Commands:
    apkg init                  write a default apkg.toml
    apkg inspect FILE          import FILE and summarize decks, cards, media
    apkg cards FILE            print cards (normalized front/back)
    apkg normalize [TEXT]      convert field HTML to plain text
    apkg media FILE --out DIR  write imported media files to DIR
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click

from apkg.config import ApkgConfig, init_config, load_config
from apkg.errors import ApkgError
from apkg.markup import front_back, normalize
from apkg.models import Progress
from apkg.pipeline import parse_file

if TYPE_CHECKING:
    from apkg.models import Collection

_PHASE_LABELS = {
    Progress.EXTRACTING: "Extracting archive",
    Progress.READING_DECKS: "Reading decks",
    Progress.READING_CARDS: "Reading cards",
    Progress.PROCESSING_MEDIA: "Processing media",
    Progress.COMPLETE: "Done",
}

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_cfg() -> ApkgConfig:
    try:
        return load_config()
    except Exception as exc:
        raise click.ClickException(str(exc)) from exc


def _import(path: str, cfg: ApkgConfig, *, show_progress: bool = False) -> Collection:
    """Run the pipeline, optionally with a rich progress display on stderr."""
    kwargs = {
        "temp_dir": cfg.import_.temp_dir,
        "card_batch_size": cfg.import_.card_batch_size,
        "media_batch_size": cfg.import_.media_batch_size,
    }
    try:
        if not show_progress:
            return parse_file(path, **kwargs)

        from rich.console import Console
        from rich.progress import BarColumn, MofNCompleteColumn, TextColumn
        from rich.progress import Progress as RichProgress

        console = Console(stderr=True)
        with RichProgress(
            TextColumn("{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            console=console,
            transient=True,
        ) as bar:
            task = bar.add_task(_PHASE_LABELS[Progress.EXTRACTING], total=None)

            def on_phase(phase: Progress) -> None:
                bar.update(task, description=_PHASE_LABELS[phase], completed=0, total=None)

            def on_count(done: int, total: int) -> None:
                bar.update(task, completed=done, total=total)

            return parse_file(path, on_phase, on_cards=on_count, on_media=on_count, **kwargs)
    except ApkgError as exc:
        raise click.ClickException(f"{type(exc).__name__}: {exc}") from exc


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="apkg")
@click.option("-v", "--verbose", count=True, help="-v for info, -vv for debug logging")
def cli(verbose: int) -> None:
    """apkg — read Anki .apkg / .colpkg exports."""
    if verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.getLevelName(_load_cfg().logging.level)
        if not isinstance(level, int):
            level = logging.WARNING
    logging.basicConfig(level=level, format="%(asctime)s %(name)s %(message)s")


# ---------------------------------------------------------------------------
# apkg init
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--dir", "root", default=".", show_default=True, help="Directory for apkg.toml")
def init(root: str) -> None:
    """Write a default apkg.toml."""
    try:
        config_path = init_config(Path(root))
    except FileExistsError:
        click.echo("apkg.toml already exists — skipping init")
        return
    click.echo(f"Created {config_path}")


# ---------------------------------------------------------------------------
# apkg inspect
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("file", type=click.Path(dir_okay=False))
@click.option("--no-progress", is_flag=True, help="Don't show the progress bar")
def inspect(file: str, no_progress: bool) -> None:
    """Import FILE and summarize its decks, cards and media."""
    from rich.console import Console
    from rich.table import Table

    cfg = _load_cfg()
    collection = _import(file, cfg, show_progress=not no_progress)
    console = Console()

    fmt = collection.format.db_filename if collection.format else "unknown"
    table = Table(title=f"{Path(file).name}  [dim]({fmt})[/dim]", show_header=True, header_style="bold")
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Deck")
    table.add_column("Cards", justify="right")

    for deck in collection.decks:
        indent = "  " * deck.depth
        table.add_row(str(deck.id), f"{indent}{deck.short_name}", str(len(collection.cards_for(deck.id))))

    console.print(table)
    console.print(
        f"{len(collection.decks)} decks "
        f"({len(collection.root_decks)} root), "
        f"{collection.card_count} cards, "
        f"{collection.media.count()} media files"
    )


# ---------------------------------------------------------------------------
# apkg cards
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("file", type=click.Path(dir_okay=False))
@click.option("--deck", "deck_id", type=int, default=None, help="Only cards in this deck id")
@click.option("--limit", "-n", type=int, default=None, help="Stop after N cards")
@click.option("--raw", is_flag=True, help="Print stored fields without normalizing")
def cards(file: str, deck_id: int | None, limit: int | None, raw: bool) -> None:
    """Print the cards in FILE."""
    cfg = _load_cfg()
    collection = _import(file, cfg)
    prefix = cfg.markup.media_prefix

    deck_ids = [deck_id] if deck_id is not None else [d.id for d in collection.decks]
    shown = 0
    for did in deck_ids:
        deck = collection.deck_by_id(did)
        for card in collection.cards_for(did):
            if limit is not None and shown >= limit:
                return
            click.echo(f"── card {card.id}  [{deck.name if deck else did}]")
            if raw:
                for i, text in enumerate(card.fields):
                    click.echo(f"  [{i}] {text}")
            else:
                front, back = front_back(card.fields, prefix)
                click.echo(f"  front: {front}")
                click.echo(f"  back:  {back}")
            if card.media_references:
                click.echo(f"  media: {', '.join(card.media_references)}")
            shown += 1


# ---------------------------------------------------------------------------
# apkg normalize
# ---------------------------------------------------------------------------


@cli.command("normalize")
@click.argument("text", required=False)
def normalize_cmd(text: str | None) -> None:
    """Convert field HTML to plain text (reads stdin if TEXT is omitted)."""
    cfg = _load_cfg()
    if text is None:
        text = sys.stdin.read()
    click.echo(normalize(text, cfg.markup.media_prefix))


# ---------------------------------------------------------------------------
# apkg media
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("file", type=click.Path(dir_okay=False))
@click.option("--out", "out_dir", required=True, type=click.Path(file_okay=False), help="Output directory")
def media(file: str, out_dir: str) -> None:
    """Write every imported media file into --out under its original name."""
    cfg = _load_cfg()
    collection = _import(file, cfg)
    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)

    written = 0
    for filename in collection.media.filenames():
        data = collection.media.data_for(filename)
        if data is None:
            continue
        # Names come from the archive; keep only the basename.
        safe = Path(filename).name
        if not safe or safe in {".", ".."}:
            click.echo(f"  skipping unsafe name: {filename!r}", err=True)
            continue
        (out / safe).write_bytes(data)
        written += 1
    click.echo(f"Wrote {written} media files to {out}")
