"""Symbol tree and its derived flat index.

The tree is canonical. The flat index is rebuilt wholesale whenever a
table is constructed, so the two views cannot drift apart.
"""

from __future__ import annotations

import dataclasses
import re
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from pikelens.index.models import Symbol, SymbolKind

_CLASS_NAME = re.compile(r"^[A-Z][A-Za-z0-9._]*$")


def flatten_symbols(roots: Iterable[Symbol], parent: str = "") -> list[Symbol]:
    """Pre-order flattening. Every symbol gets a dotted ``qualified_name``."""
    flat: list[Symbol] = []
    for sym in roots:
        qualified = f"{parent}.{sym.name}" if parent else sym.name
        if sym.qualified_name != qualified:
            sym = dataclasses.replace(sym, qualified_name=qualified)
        flat.append(sym)
        if sym.children:
            flat.extend(flatten_symbols(sym.children, qualified))
    return flat


@dataclass(frozen=True, slots=True)
class SymbolTable:
    """Symbols of one document: tree plus flat name index."""

    roots: tuple[Symbol, ...] = ()

    _flat: tuple[Symbol, ...] = field(init=False, repr=False, compare=False)
    _by_name: Mapping[str, Symbol] = field(init=False, repr=False, compare=False)
    _by_qualified: Mapping[str, Symbol] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        flat = tuple(flatten_symbols(self.roots))
        by_name: dict[str, Symbol] = {}
        by_qualified: dict[str, Symbol] = {}
        for sym in flat:
            by_name.setdefault(sym.name, sym)
            if sym.qualified_name:
                by_qualified.setdefault(sym.qualified_name, sym)
        object.__setattr__(self, "_flat", flat)
        object.__setattr__(self, "_by_name", MappingProxyType(by_name))
        object.__setattr__(self, "_by_qualified", MappingProxyType(by_qualified))

    @property
    def flat(self) -> tuple[Symbol, ...]:
        return self._flat

    def get(self, name: str) -> Symbol | None:
        """First symbol in tree order with this plain name, else by qualified name."""
        return self._by_name.get(name) or self._by_qualified.get(name)

    def get_qualified(self, qualified_name: str) -> Symbol | None:
        return self._by_qualified.get(qualified_name)

    def names(self) -> list[str]:
        return list(self._by_name)

    def top_level(self) -> dict[str, Symbol]:
        """Name map of root symbols only, first wins."""
        result: dict[str, Symbol] = {}
        for sym in self.roots:
            result.setdefault(sym.name, sym)
        return result

    def find_class(self, name: str) -> Symbol | None:
        for sym in self._flat:
            if sym.kind is SymbolKind.CLASS and (sym.name == name or sym.qualified_name == name):
                return sym
        return None

    def directives(self, kind: SymbolKind) -> list[Symbol]:
        """Top-level inherit or import directives, in source order."""
        return [s for s in self.roots if s.kind is kind]

    def includes(self) -> list[Symbol]:
        return [s for s in self.roots if s.is_include]

    def imports(self) -> list[Symbol]:
        return [s for s in self.roots if s.kind is SymbolKind.IMPORT and not s.is_include]

    def inherits(self) -> list[Symbol]:
        return self.directives(SymbolKind.INHERIT)

    def __len__(self) -> int:
        return len(self._flat)

    def __iter__(self) -> Iterator[Symbol]:
        return iter(self._flat)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name or name in self._by_qualified


def merge_symbols(parsed: Sequence[Symbol], introspected: Sequence[Symbol]) -> tuple[Symbol, ...]:
    """Combine parse and introspection results.

    Position comes from parse, type and modifiers from introspection.
    Introspection-only symbols are appended without a position.
    """
    by_name: dict[str, Symbol] = {}
    for sym in introspected:
        by_name.setdefault(sym.name, sym)

    merged: list[Symbol] = []
    for sym in parsed:
        match = by_name.get(sym.name)
        if match is not None and sym.kind not in (SymbolKind.INHERIT, SymbolKind.IMPORT):
            sym = dataclasses.replace(
                sym,
                type=match.type if match.type is not None else sym.type,
                modifiers=match.modifiers or sym.modifiers,
                documentation=sym.documentation or match.documentation,
            )
        merged.append(sym)

    parsed_names = {s.name for s in flatten_symbols(parsed)}
    for name, sym in by_name.items():
        if name not in parsed_names:
            merged.append(sym)
    return tuple(merged)


def extract_type_name(type_info: Any) -> str | None:
    """Class or module name a declared type refers to, if any.

    Handles ``object`` and ``program`` types, function return types, ``or``
    types (first resolvable alternative) and bare capitalized names.
    """
    if not isinstance(type_info, dict):
        return None
    kind = type_info.get("kind")
    name = type_info.get("name")
    class_name = type_info.get("className")

    if isinstance(class_name, str) and class_name and (kind in ("object", "program") or name == "object"):
        return class_name
    if kind == "function" and type_info.get("returnType"):
        return extract_type_name(type_info["returnType"])
    if kind == "or":
        for alternative in type_info.get("types") or ():
            if found := extract_type_name(alternative):
                return found
        return None
    if isinstance(name, str) and _CLASS_NAME.match(name):
        return name
    return None
