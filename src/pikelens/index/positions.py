"""Symbol position index: name -> every occurrence in a document.

Sources, most to least authoritative:
1. tokens returned by ``analyze`` (no extra round trip)
2. the worker's ``find_occurrences``
3. a local scan that masks comments and literals first
"""

from __future__ import annotations

import re
from collections.abc import Collection, Iterable, Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING

import structlog

from pikelens.core.errors import BridgeError
from pikelens.index.models import Position

if TYPE_CHECKING:
    from pikelens.bridge.client import Bridge
    from pikelens.bridge.protocol import TokenOccurrence, WireToken

logger = structlog.get_logger()

PositionIndex = Mapping[str, tuple[Position, ...]]

_IDENTIFIER = re.compile(r"[A-Za-z_]\w*")
_WORD_CHAR = re.compile(r"\w")


def _freeze(index: dict[str, list[Position]]) -> PositionIndex:
    return MappingProxyType({name: tuple(found) for name, found in index.items()})


def _is_word(ch: str) -> bool:
    return bool(ch) and _WORD_CHAR.match(ch) is not None


def positions_from_tokens(text: str, names: Collection[str], tokens: Iterable[WireToken]) -> PositionIndex:
    """Use worker tokens. Tokens without a column are skipped."""
    lines = text.split("\n")
    index: dict[str, list[Position]] = {}
    for token in tokens:
        if token.text not in names or token.character < 0:
            continue
        line_idx = token.line - 1
        if not 0 <= line_idx < len(lines):
            continue
        line = lines[line_idx]
        end = token.character + len(token.text)
        if line[token.character : end] != token.text:
            continue
        before = line[token.character - 1] if token.character > 0 else ""
        after = line[end] if end < len(line) else ""
        if _is_word(before) or _is_word(after):
            continue
        index.setdefault(token.text, []).append(Position(line_idx, token.character))
    return _freeze(index)


def positions_from_occurrences(names: Collection[str], occurrences: Iterable[TokenOccurrence]) -> PositionIndex:
    index: dict[str, list[Position]] = {}
    for occ in occurrences:
        if occ.text in names:
            index.setdefault(occ.text, []).append(Position(max(0, occ.line - 1), occ.character))
    return _freeze(index)


def mask_non_code(text: str) -> str:
    """Blank out comments, string and character literals.

    Output has the same length and line structure as the input, so
    offsets found in the masked text are valid in the original.
    """
    out = list(text)
    n = len(text)
    i = 0

    def blank(start: int, stop: int) -> None:
        for k in range(start, min(stop, n)):
            if out[k] != "\n":
                out[k] = " "

    while i < n:
        ch = text[i]
        nxt = text[i + 1] if i + 1 < n else ""
        if (ch == "/" and nxt == "/") or (ch == "#" and nxt == "!"):
            end = text.find("\n", i)
            end = n if end < 0 else end
            blank(i, end)
            i = end
        elif ch == "/" and nxt == "*":
            end = text.find("*/", i + 2)
            end = n if end < 0 else end + 2
            blank(i, end)
            i = end
        elif ch == "#" and nxt == '"':
            # Multi-line string literal.
            end = _literal_end(text, i + 2, '"', multiline=True)
            blank(i, end)
            i = end
        elif ch in "\"'":
            end = _literal_end(text, i + 1, ch, multiline=False)
            blank(i, end)
            i = end
        else:
            i += 1
    return "".join(out)


def _literal_end(text: str, i: int, quote: str, *, multiline: bool) -> int:
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == quote:
            return i + 1
        if ch == "\n" and not multiline:
            return i
        i += 1
    return n


def positions_from_text(text: str, names: Collection[str]) -> PositionIndex:
    """Local fallback scan with whole-identifier matching."""
    index: dict[str, list[Position]] = {}
    for line_idx, line in enumerate(mask_non_code(text).split("\n")):
        for match in _IDENTIFIER.finditer(line):
            name = match.group()
            if name in names:
                index.setdefault(name, []).append(Position(line_idx, match.start()))
    return _freeze(index)


async def build_position_index(
    text: str,
    names: Collection[str],
    *,
    tokens: list[WireToken] | None = None,
    bridge: Bridge | None = None,
) -> PositionIndex:
    """Build the index from the best available source."""
    names = set(names)
    if not names:
        return MappingProxyType({})

    if tokens:
        index = positions_from_tokens(text, names, tokens)
        if index:
            return index

    if bridge is not None and bridge.running:
        try:
            result = await bridge.find_occurrences(text)
        except BridgeError as e:
            logger.debug("position_occurrences_failed", error=str(e))
        else:
            index = positions_from_occurrences(names, result.occurrences)
            if len(index) == len(names):
                return index

    return positions_from_text(text, names)
