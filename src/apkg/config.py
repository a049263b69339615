"""ApkgConfig: optional project-local settings for the apkg CLI.

Looked up as apkg.toml in the given directory or any parent of it.
Every key is optional:

    [import]
    card_batch_size = 1000    # cards between progress updates
    media_batch_size = 100    # media files between progress updates
    temp_dir = ""             # where the database is unpacked; "" = system temp

    [markup]
    media_prefix = "media:"   # locator prefix in normalized text

    [logging]
    level = "WARNING"
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from apkg.database import CARD_BATCH_SIZE
from apkg.markup import DEFAULT_MEDIA_PREFIX
from apkg.media import MEDIA_BATCH_SIZE

_CONFIG_FILENAME = "apkg.toml"


@dataclass
class ImportConfig:
    card_batch_size: int = CARD_BATCH_SIZE
    media_batch_size: int = MEDIA_BATCH_SIZE
    temp_dir: Path | None = None


@dataclass
class MarkupConfig:
    media_prefix: str = DEFAULT_MEDIA_PREFIX


@dataclass
class LoggingConfig:
    level: str = "WARNING"


@dataclass
class ApkgConfig:
    """Resolved configuration."""

    root: Path                      # directory that contains apkg.toml (or the search start)
    path: Path | None = None        # the apkg.toml that was loaded, if any
    import_: ImportConfig = field(default_factory=ImportConfig)
    markup: MarkupConfig = field(default_factory=MarkupConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_config(root: Path | str | None = None) -> ApkgConfig:
    """Load apkg.toml from root (or search upward from cwd if root is None)."""
    root_path = _find_root(Path(root) if root else Path.cwd())
    config_path = root_path / _CONFIG_FILENAME

    raw: dict[str, Any] = {}
    if config_path.exists():
        with config_path.open("rb") as f:
            raw = tomllib.load(f)

    imp = raw.get("import", {})
    mk = raw.get("markup", {})
    lg = raw.get("logging", {})

    temp_dir = str(imp.get("temp_dir", ""))

    return ApkgConfig(
        root=root_path,
        path=config_path if config_path.exists() else None,
        import_=ImportConfig(
            card_batch_size=max(1, int(imp.get("card_batch_size", CARD_BATCH_SIZE))),
            media_batch_size=max(1, int(imp.get("media_batch_size", MEDIA_BATCH_SIZE))),
            temp_dir=(root_path / temp_dir) if temp_dir else None,
        ),
        markup=MarkupConfig(
            media_prefix=str(mk.get("media_prefix", DEFAULT_MEDIA_PREFIX)),
        ),
        logging=LoggingConfig(
            level=str(lg.get("level", "WARNING")).upper(),
        ),
    )


def _find_root(start: Path) -> Path:
    """Walk upward from start looking for apkg.toml."""
    for directory in (start, *start.parents):
        if (directory / _CONFIG_FILENAME).exists():
            return directory
    return start


def init_config(root: Path) -> Path:
    """Write a default apkg.toml at root. Raises if already exists."""
    config_path = root / _CONFIG_FILENAME
    if config_path.exists():
        msg = f"apkg.toml already exists at {config_path}"
        raise FileExistsError(msg)

    content = f"""\
[import]
# card_batch_size = {CARD_BATCH_SIZE}    # cards between progress updates
# media_batch_size = {MEDIA_BATCH_SIZE}    # media files between progress updates
# temp_dir = ""             # where the database is unpacked; "" = system temp

[markup]
# media_prefix = "{DEFAULT_MEDIA_PREFIX}"

[logging]
# level = "WARNING"
"""
    config_path.write_text(content)
    return config_path
