"""Completion-context classification.

Decides what kind of completion or hover request the cursor is in:

    foo->ba|     member_access  object="foo"  prefix="ba"
    Foo::|       scope_access   object="Foo"  prefix=""
    ret|         identifier                   prefix="ret"
    |            global (cursor before every token)

The token-driven classifier is authoritative. The text classifier is a
regex fallback for when the worker is unavailable and can misread
expressions that chain several operators.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, NamedTuple

import structlog

from pikelens.core.errors import BridgeError
from pikelens.index.models import CompletionContext, ContextKind

if TYPE_CHECKING:
    from pikelens.bridge.client import Bridge
    from pikelens.bridge.protocol import WireToken

logger = structlog.get_logger()

_IDENTIFIER = re.compile(r"[A-Za-z_]\w*")
_MEMBER_ACCESS = re.compile(r"(\w+(?:\.\w+)*)\s*(->|\.)\s*(\w*)$")
_SCOPED_ACCESS = re.compile(r"([\w.]*)::(\w*)$")
_BARE_IDENTIFIER = re.compile(r"(\w+)$")

_ACCESS_OPERATORS = {
    "->": ContextKind.MEMBER_ACCESS,
    ".": ContextKind.MEMBER_ACCESS,
    "::": ContextKind.SCOPE_ACCESS,
}
_CLOSERS = {")": "(", "]": "["}


class _Tok(NamedTuple):
    text: str
    line: int
    character: int


def _is_identifier(text: str) -> bool:
    return _IDENTIFIER.fullmatch(text) is not None


def _is_trivia(text: str) -> bool:
    return not text.strip() or text.startswith(("//", "/*", "#!"))


def classify_tokens(tokens: Sequence[WireToken], line: int, character: int) -> CompletionContext:
    """Classify from worker tokens. ``line`` and ``character`` are 0-based."""
    significant = [
        _Tok(t.text, t.line - 1, t.character)
        for t in tokens
        if not _is_trivia(t.text) and t.character >= 0
    ]
    before = [t for t in significant if (t.line, t.character) < (line, character)]
    if not before:
        return CompletionContext(ContextKind.GLOBAL)

    idx = len(before) - 1
    last = before[idx]
    prefix = ""
    if _is_identifier(last.text) and last.line == line and character <= last.character + len(last.text):
        prefix = last.text[: character - last.character]
        idx -= 1

    if idx < 0:
        return CompletionContext(ContextKind.IDENTIFIER, prefix=prefix)

    operator = before[idx].text
    kind = _ACCESS_OPERATORS.get(operator)
    if kind is None:
        return CompletionContext(ContextKind.IDENTIFIER, prefix=prefix)
    return CompletionContext(kind, object_name=_object_before(before, idx - 1), prefix=prefix, operator=operator)


def _object_before(tokens: list[_Tok], j: int) -> str:
    """Rebuild the object expression ending at ``tokens[j]``."""
    parts: list[str] = []
    expect_operand = True
    while j >= 0:
        text = tokens[j].text
        if expect_operand and text in _CLOSERS:
            start = _matching_open(tokens, j)
            if start is None:
                break
            parts.insert(0, _join(tokens[start : j + 1]))
            j = start - 1
            # a call or index may follow a name directly: foo(x), a[0]
            expect_operand = True
            continue
        if expect_operand and _is_identifier(text):
            parts.insert(0, text)
            j -= 1
            if j >= 0 and tokens[j].text == ".":
                parts.insert(0, ".")
                j -= 1
                continue
            break
        break
    return "".join(parts).lstrip(".")


def _matching_open(tokens: list[_Tok], j: int) -> int | None:
    closer = tokens[j].text
    opener = _CLOSERS[closer]
    depth = 0
    for k in range(j, -1, -1):
        text = tokens[k].text
        if text == closer:
            depth += 1
        elif text == opener:
            depth -= 1
            if depth == 0:
                return k
    return None


def _join(tokens: Sequence[_Tok]) -> str:
    out = ""
    for tok in tokens:
        if out and _is_identifier(tok.text) and (out[-1].isalnum() or out[-1] == "_"):
            out += " "
        out += tok.text
    return out


def classify_text(text: str, line: int, character: int) -> CompletionContext:
    """Regex fallback over the current line."""
    lines = text.split("\n")
    if not 0 <= line < len(lines):
        return CompletionContext(ContextKind.GLOBAL)
    before_cursor = lines[line][:character]
    if not "\n".join([*lines[:line], before_cursor]).strip():
        return CompletionContext(ContextKind.GLOBAL)

    if m := _SCOPED_ACCESS.search(before_cursor):
        return CompletionContext(ContextKind.SCOPE_ACCESS, object_name=m.group(1), prefix=m.group(2), operator="::")
    if m := _MEMBER_ACCESS.search(before_cursor):
        return CompletionContext(
            ContextKind.MEMBER_ACCESS,
            object_name=m.group(1),
            prefix=m.group(3),
            operator=m.group(2),
        )
    if m := _BARE_IDENTIFIER.search(before_cursor):
        return CompletionContext(ContextKind.IDENTIFIER, prefix=m.group(1))
    return CompletionContext(ContextKind.IDENTIFIER)


@dataclass
class CompletionContextClassifier:
    """Token-driven when the worker is reachable, regex otherwise."""

    bridge: Bridge | None = None

    async def classify(self, text: str, line: int, character: int) -> CompletionContext:
        if self.bridge is not None and self.bridge.available:
            try:
                tokens = await self.bridge.tokenize(text)
            except BridgeError as e:
                logger.debug("completion_context_fallback", error=str(e))
            else:
                if all(t.character >= 0 for t in tokens):
                    return classify_tokens(tokens, line, character)
        return classify_text(text, line, character)
