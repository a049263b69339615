"""Anki field HTML -> Markdown-ish plain text.

normalize() handles:
    [sound:x.mp3]        -> [🔊 x.mp3](media:x.mp3)
    <img src="x.jpg">    -> ![x.jpg](media:x.jpg)
    <br>, <br/>          -> newline
    <div>..</div>, <p>   -> open tag dropped, close tag -> newline
    <b>, <span>, ...     -> dropped
    &amp;, &#65;, &#x41; -> decoded

"media:" is a placeholder locator; the host swaps it for a real address
with resolve_media_locators() once media has been stored.
"""

from __future__ import annotations

import re
import unicodedata
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

DEFAULT_MEDIA_PREFIX = "media:"

# Media reference patterns, shared with the card reader.
SOUND_RE = re.compile(r"\[sound:([^\]]+)\]")
IMG_SRC_RE = re.compile(r"""<img[^>]+src=["']?([^"'\s>]+)["']?""")

_IMG_TAG_RE = re.compile(r"""<img[^>]+src=["']?([^"'\s>]+)["']?[^>]*>""")
_BR_RE = re.compile(r"<br\s*/?>")
_DIV_OPEN_RE = re.compile(r"<div[^>]*>")
_DIV_CLOSE_RE = re.compile(r"</div>")
_P_OPEN_RE = re.compile(r"<p[^>]*>")
_P_CLOSE_RE = re.compile(r"</p>")
_SPAN_RE = re.compile(r"</?span[^>]*>")
_INLINE_RE = re.compile(r"</?(?:b|i|u|strong|em|font|a)[^>]*>")
_ANY_TAG_RE = re.compile(r"<[^>]+>")
_DECIMAL_REF_RE = re.compile(r"&#(\d+);")
_HEX_REF_RE = re.compile(r"&#[xX]([0-9a-fA-F]+);")
_MULTI_NEWLINE_RE = re.compile(r"\n{3,}")

# Applied in order; "&amp;" runs early, so "&amp;lt;" ends up as "<".
_ENTITIES = (
    ("&nbsp;", " "),
    ("&amp;", "&"),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&apos;", "'"),
    ("&#39;", "'"),
    ("&mdash;", "—"),
    ("&ndash;", "–"),
    ("&hellip;", "…"),
    ("&copy;", "©"),
    ("&reg;", "®"),
    ("&trade;", "™"),
    ("&laquo;", "«"),
    ("&raquo;", "»"),
    ("&bull;", "•"),
    ("&middot;", "·"),
    ("&times;", "×"),
    ("&divide;", "÷"),
    ("&plusmn;", "±"),
    ("&deg;", "°"),
    ("&prime;", "′"),
    ("&Prime;", "″"),
)


def _codepoint(value: int) -> str:
    # Surrogates and out-of-range references decode to nothing.
    if value > 0x10FFFF or 0xD800 <= value <= 0xDFFF:
        return ""
    return chr(value)


def decode_entities(text: str) -> str:
    """Decode the named entity table, then numeric references."""
    for entity, replacement in _ENTITIES:
        text = text.replace(entity, replacement)
    text = _DECIMAL_REF_RE.sub(lambda m: _codepoint(int(m.group(1))), text)
    return _HEX_REF_RE.sub(lambda m: _codepoint(int(m.group(1), 16)), text)


def normalize(html: str, media_prefix: str = DEFAULT_MEDIA_PREFIX) -> str:
    """Convert one field's HTML to plain text with media placeholders."""
    text = SOUND_RE.sub(lambda m: f"[🔊 {m.group(1)}]({media_prefix}{m.group(1)})", html)
    text = _IMG_TAG_RE.sub(lambda m: f"![{m.group(1)}]({media_prefix}{m.group(1)})", text)

    text = _BR_RE.sub("\n", text)
    text = _DIV_OPEN_RE.sub("", text)
    text = _DIV_CLOSE_RE.sub("\n", text)
    text = _P_OPEN_RE.sub("", text)
    text = _P_CLOSE_RE.sub("\n", text)

    text = _SPAN_RE.sub("", text)
    text = _INLINE_RE.sub("", text)
    text = _ANY_TAG_RE.sub("", text)

    text = decode_entities(text)
    text = text.strip()
    return _MULTI_NEWLINE_RE.sub("\n\n", text)


def normalize_fields(fields: Iterable[str], media_prefix: str = DEFAULT_MEDIA_PREFIX) -> list[str]:
    return [normalize(f, media_prefix) for f in fields]


def extract_media_references(fields: Iterable[str]) -> list[str]:
    """Filenames referenced by a card's fields.

    Per field: every [sound:] match first, then every <img src> match.
    """
    refs: list[str] = []
    for text in fields:
        refs.extend(m.group(1) for m in SOUND_RE.finditer(text))
        refs.extend(m.group(1) for m in IMG_SRC_RE.finditer(text))
    return refs


def resolve_media_locators(
    text: str,
    mapping: Mapping[str, str],
    media_prefix: str = DEFAULT_MEDIA_PREFIX,
) -> str:
    """Replace "media:<name>" with mapping[name].

    Lookup also tries the NFC and NFD forms of the name, since exports from
    macOS often store decomposed filenames. Unmapped locators stay as-is.
    """
    if media_prefix not in text:
        return text
    locator_re = re.compile(re.escape(media_prefix) + r"([^\s\)\]]+)")

    def _sub(m: re.Match[str]) -> str:
        name = m.group(1)
        url = (
            mapping.get(name)
            or mapping.get(unicodedata.normalize("NFC", name))
            or mapping.get(unicodedata.normalize("NFD", name))
        )
        return url if url is not None else m.group(0)

    return locator_re.sub(_sub, text)


def front_back(fields: list[str], media_prefix: str = DEFAULT_MEDIA_PREFIX) -> tuple[str, str]:
    """Normalized (front, back): first field, then the rest joined by newlines."""
    cleaned = normalize_fields(fields, media_prefix)
    return (cleaned[0] if cleaned else "", "\n".join(cleaned[1:]))
