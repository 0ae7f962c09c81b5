"""Waterfall symbol resolution.

A name is looked up in an ordered list of sources, first match wins:

1. current file (document cache, then type database)
2. ``#include`` files
3. ``import`` modules (stdlib, then workspace documents by file stem)
4. inherited classes, depth-first, nearest ancestor first
5. stdlib modules by qualified path

The list is rebuilt for every request from the document's directives.
Nothing here raises on a failed lookup; callers get None and, where
relevant, ResolutionWarnings.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Protocol

import structlog

from pikelens.core.errors import ModuleResolutionFailure
from pikelens.index.documents import DocumentCache, module_stem
from pikelens.index.includes import IncludeResolver, ResolvedInclude
from pikelens.index.models import (
    CompiledProgramInfo,
    DocumentCacheEntry,
    ResolutionTier,
    ResolutionWarning,
    ResolvedSymbol,
    StdlibModule,
    Symbol,
    SymbolKind,
)
from pikelens.index.stdlib import StdlibIndex
from pikelens.index.symbols import SymbolTable, extract_type_name
from pikelens.index.typedb import TypeDatabase

logger = structlog.get_logger()

_DIRECTIVES = (SymbolKind.INHERIT, SymbolKind.IMPORT)
_ACCESS_SPLIT = re.compile(r"\s*(->|::|\.)\s*")


@dataclass(frozen=True, slots=True)
class Resolution:
    symbols: Mapping[str, ResolvedSymbol]
    warnings: tuple[ResolutionWarning, ...] = ()


@dataclass(frozen=True, slots=True)
class Lookup:
    symbol: ResolvedSymbol | None
    warnings: tuple[ResolutionWarning, ...] = ()


@dataclass(frozen=True, slots=True)
class Scope:
    """A named set of members reachable from some origin."""

    key: str
    label: str
    members: Mapping[str, Symbol]
    origin: str | None
    tier: ResolutionTier
    directives: tuple[Symbol, ...] = ()


def _declarations(symbols: Iterable[Symbol]) -> dict[str, Symbol]:
    result: dict[str, Symbol] = {}
    for sym in symbols:
        if sym.kind not in _DIRECTIVES:
            result.setdefault(sym.name, sym)
    return result


def _clean_target(target: str) -> str:
    target = target.strip().strip('"').lstrip(":.").strip()
    return target[:-5] if target.endswith(".pike") else target


@dataclass
class ModuleContext:
    """Per-request view of one document: its directives plus lazy lookups."""

    uri: str
    entry: DocumentCacheEntry | None
    program: CompiledProgramInfo | None
    warnings: list[ResolutionWarning] = field(default_factory=list)

    _includes: list[ResolvedInclude] | None = field(default=None, init=False)
    _inherit_scopes: list[Scope] | None = field(default=None, init=False)

    @property
    def table(self) -> SymbolTable:
        return self.entry.table if self.entry is not None else SymbolTable()

    def warn(self, kind: str, message: str, chain: tuple[str, ...] = ()) -> None:
        warning = ResolutionWarning(kind=kind, message=message, chain=chain)
        if warning not in self.warnings:
            self.warnings.append(warning)
            logger.debug("resolution_warning", uri=self.uri, kind=kind, chain=list(chain))


class SymbolSource(Protocol):
    """One tier of the waterfall."""

    tier: ResolutionTier

    async def try_resolve(self, name: str) -> ResolvedSymbol | None: ...

    async def visible(self) -> dict[str, ResolvedSymbol]: ...


@dataclass
class CurrentFileSource:
    """Top-level declarations of the document itself."""

    ctx: ModuleContext
    tier: ResolutionTier = ResolutionTier.CURRENT

    async def try_resolve(self, name: str) -> ResolvedSymbol | None:
        sym = _declarations(self.ctx.table.roots).get(name)
        if sym is not None:
            return ResolvedSymbol(sym, self.ctx.uri, self.tier)
        if self.ctx.program is not None and name in self.ctx.program.symbols:
            return ResolvedSymbol(self.ctx.program.symbols[name], self.ctx.uri, self.tier)
        return None

    async def visible(self) -> dict[str, ResolvedSymbol]:
        result = {
            name: ResolvedSymbol(sym, self.ctx.uri, self.tier)
            for name, sym in _declarations(self.ctx.table.roots).items()
        }
        if self.ctx.program is not None:
            for name, sym in self.ctx.program.symbols.items():
                result.setdefault(name, ResolvedSymbol(sym, self.ctx.uri, self.tier))
        return result


@dataclass
class IncludeSource:
    ctx: ModuleContext
    resolver: IncludeResolver
    tier: ResolutionTier = ResolutionTier.INCLUDE

    async def _resolved(self) -> list[ResolvedInclude]:
        if self.ctx._includes is None:
            found = []
            for directive in self.ctx.table.includes():
                resolved = await self.resolver.resolve(directive, self.ctx.uri)
                if resolved is None:
                    self.ctx.warn("unresolved_include", f"Cannot resolve include {directive.directive_target}")
                else:
                    found.append(resolved)
            self.ctx._includes = found
        return self.ctx._includes

    async def try_resolve(self, name: str) -> ResolvedSymbol | None:
        for inc in await self._resolved():
            sym = inc.table.get(name)
            if sym is not None and sym.kind not in _DIRECTIVES:
                return ResolvedSymbol(sym, inc.resolved_path, self.tier)
        return None

    async def visible(self) -> dict[str, ResolvedSymbol]:
        result: dict[str, ResolvedSymbol] = {}
        for inc in await self._resolved():
            for name, sym in _declarations(inc.table).items():
                result.setdefault(name, ResolvedSymbol(sym, inc.resolved_path, self.tier))
        return result


@dataclass
class ImportSource:
    ctx: ModuleContext
    stdlib: StdlibIndex
    documents: DocumentCache
    tier: ResolutionTier = ResolutionTier.IMPORT

    async def _scopes(self) -> list[tuple[str | None, Mapping[str, Symbol]]]:
        scopes: list[tuple[str | None, Mapping[str, Symbol]]] = []
        for directive in self.ctx.table.imports():
            target = _clean_target(directive.directive_target)
            if not target:
                continue
            module = await self.stdlib.get_module(target)
            if module is not None:
                scopes.append((module.resolved_path or module.path, module.symbols))
                continue
            stem = target.rsplit(".", 1)[-1]
            matches = [e for e in self.documents.entries() if e.uri != self.ctx.uri and module_stem(e.uri) == stem]
            if not matches:
                self.ctx.warn("unresolved_import", f"Cannot resolve import {target}")
            for entry in matches:
                scopes.append((entry.uri, _declarations(entry.table.roots)))
        return scopes

    async def try_resolve(self, name: str) -> ResolvedSymbol | None:
        for origin, members in await self._scopes():
            if name in members:
                return ResolvedSymbol(members[name], origin, self.tier)
        return None

    async def visible(self) -> dict[str, ResolvedSymbol]:
        result: dict[str, ResolvedSymbol] = {}
        for origin, members in await self._scopes():
            for name, sym in members.items():
                result.setdefault(name, ResolvedSymbol(sym, origin, self.tier))
        return result


@dataclass
class InheritSource:
    ctx: ModuleContext
    resolver: WaterfallResolver
    tier: ResolutionTier = ResolutionTier.INHERIT

    async def _scopes(self) -> list[Scope]:
        if self.ctx._inherit_scopes is None:
            self.ctx._inherit_scopes = await self.resolver.inherit_scopes(
                self.ctx, self.ctx.table.inherits(), root_key=self.ctx.uri
            )
        return self.ctx._inherit_scopes

    async def try_resolve(self, name: str) -> ResolvedSymbol | None:
        for scope in await self._scopes():
            if name in scope.members:
                return ResolvedSymbol(scope.members[name], scope.origin, self.tier)
        return None

    async def visible(self) -> dict[str, ResolvedSymbol]:
        result: dict[str, ResolvedSymbol] = {}
        for scope in await self._scopes():
            for name, sym in scope.members.items():
                result.setdefault(name, ResolvedSymbol(sym, scope.origin, self.tier))
        return result


@dataclass
class StdlibSource:
    """Qualified-path stdlib lookup. Not enumerable."""

    stdlib: StdlibIndex
    tier: ResolutionTier = ResolutionTier.STDLIB

    async def try_resolve(self, name: str) -> ResolvedSymbol | None:
        if "." in name:
            path, member = name.rsplit(".", 1)
            module = await self.stdlib.get_module(path)
            if module is not None and member in module.symbols:
                return ResolvedSymbol(module.symbols[member], module.resolved_path or path, self.tier)
        module = await self.stdlib.get_module(name)
        if module is not None:
            return ResolvedSymbol(module_symbol(module), module.resolved_path or module.path, self.tier)
        return None

    async def visible(self) -> dict[str, ResolvedSymbol]:
        return {}


def module_symbol(module: StdlibModule) -> Symbol:
    """Stand-in symbol for a whole stdlib module."""
    return Symbol(
        name=module.path.rsplit(".", 1)[-1],
        kind=SymbolKind.MODULE,
        qualified_name=module.path,
        file=module.resolved_path,
    )


@dataclass
class WaterfallResolver:
    """Answers "what does this name mean here" across all symbol sources."""

    documents: DocumentCache
    typedb: TypeDatabase
    stdlib: StdlibIndex
    includes: IncludeResolver
    max_inherit_depth: int = 32

    def context(self, uri: str) -> ModuleContext:
        return ModuleContext(uri=uri, entry=self.documents.get(uri), program=self.typedb.get_program(uri))

    def sources(self, ctx: ModuleContext) -> list[SymbolSource]:
        return [
            CurrentFileSource(ctx),
            IncludeSource(ctx, self.includes),
            ImportSource(ctx, self.stdlib, self.documents),
            InheritSource(ctx, self),
            StdlibSource(self.stdlib),
        ]

    async def visible_symbols(self, uri: str) -> Resolution:
        """Flat name -> symbol map of everything visible in ``uri``. First source wins."""
        ctx = self.context(uri)
        merged: dict[str, ResolvedSymbol] = {}
        for source in self.sources(ctx):
            for name, resolved in (await source.visible()).items():
                merged.setdefault(name, resolved)
        return Resolution(symbols=merged, warnings=tuple(ctx.warnings))

    async def lookup(self, name: str, uri: str) -> Lookup:
        """Resolve a plain or qualified name from the point of view of ``uri``."""
        ctx = self.context(uri)
        if _ACCESS_SPLIT.search(name):
            found = await self._resolve_qualified(name, ctx)
        else:
            found = await self._waterfall(name, ctx)
            if found is None:
                # Members of classes declared in this file, e.g. hover inside a class body.
                nested = ctx.table.get(name)
                if nested is not None and nested.kind not in _DIRECTIVES:
                    found = ResolvedSymbol(nested, uri, ResolutionTier.CURRENT)
        if found is None:
            err = ModuleResolutionFailure.not_found(name)
            logger.debug("symbol_unresolved", uri=uri, error=err.message)
        return Lookup(symbol=found, warnings=tuple(ctx.warnings))

    async def _waterfall(self, name: str, ctx: ModuleContext) -> ResolvedSymbol | None:
        for source in self.sources(ctx):
            found = await source.try_resolve(name)
            if found is not None:
                return found
        return None

    # ------------------------------------------------------------------
    # Qualified names: A.B, A->b, A::b
    # ------------------------------------------------------------------

    async def _resolve_qualified(self, name: str, ctx: ModuleContext) -> ResolvedSymbol | None:
        pieces = _ACCESS_SPLIT.split(name.strip())
        parts = pieces[0::2]
        operators = pieces[1::2]
        if any(not p for p in parts):
            return None
        object_parts, member = parts[:-1], parts[-1]

        # 1. Literal stdlib module path.
        if all(op == "." for op in operators[:-1]):
            path = ".".join(object_parts)
            module = await self.stdlib.get_module(path)
            if module is not None and member in module.symbols:
                return ResolvedSymbol(module.symbols[member], module.resolved_path or path, ResolutionTier.STDLIB)
            if operators[-1] == ".":
                nested = await self.stdlib.get_module(f"{path}.{member}")
                if nested is not None:
                    return ResolvedSymbol(module_symbol(nested), nested.resolved_path or nested.path, ResolutionTier.STDLIB)

        # 2. Object through the waterfall, then its members.
        scope = await self._object_scope(object_parts, ctx)
        if scope is not None:
            found = await self._member(scope, member, ctx)
            if found is not None:
                return found

        # 3. Any same-named class in the workspace.
        class_name = object_parts[-1]
        for entry in self.documents.entries():
            cls = entry.table.find_class(class_name)
            if cls is None:
                continue
            for child in cls.children:
                if child.name == member and child.kind not in _DIRECTIVES:
                    return ResolvedSymbol(child, entry.uri, ResolutionTier.WORKSPACE)
        return None

    async def _object_scope(self, object_parts: list[str], ctx: ModuleContext) -> Scope | None:
        head = await self._waterfall(object_parts[0], ctx)
        if head is None:
            return None
        scope = await self.scope_of(head, ctx)
        for part in object_parts[1:]:
            if scope is None:
                return None
            inner = await self._member(scope, part, ctx)
            if inner is None:
                return None
            scope = await self.scope_of(inner, ctx)
        return scope

    async def _member(self, scope: Scope, name: str, ctx: ModuleContext) -> ResolvedSymbol | None:
        if name in scope.members:
            return ResolvedSymbol(scope.members[name], scope.origin, scope.tier)
        parents = await self.inherit_scopes(ctx, scope.directives, root_key=scope.key)
        for parent in parents:
            if name in parent.members:
                return ResolvedSymbol(parent.members[name], parent.origin, parent.tier)
        return None

    async def scope_of(self, resolved: ResolvedSymbol, ctx: ModuleContext) -> Scope | None:
        """Members reachable through a symbol: a class body, a module, or its declared type."""
        sym = resolved.symbol
        if sym.kind is SymbolKind.MODULE:
            module = await self.stdlib.get_module(sym.qualified_name or sym.name)
            return self._module_scope(module) if module is not None else None
        if sym.kind is SymbolKind.CLASS and sym.children:
            return Scope(
                key=f"{resolved.origin}#{sym.qualified_name or sym.name}",
                label=sym.name,
                members=_declarations(sym.children),
                origin=resolved.origin,
                tier=resolved.tier,
                directives=tuple(c for c in sym.children if c.kind is SymbolKind.INHERIT),
            )
        type_name = extract_type_name(sym.type)
        if type_name is None and sym.kind is SymbolKind.CLASS:
            type_name = sym.name
        if type_name is None:
            return None
        return await self.find_class_scope(type_name, ctx)

    def _module_scope(self, module: StdlibModule) -> Scope:
        return Scope(
            key=f"stdlib:{module.path}",
            label=module.path,
            members=module.symbols,
            origin=module.resolved_path or module.path,
            tier=ResolutionTier.STDLIB,
            directives=tuple(Symbol(name=p, kind=SymbolKind.INHERIT, classname=p) for p in module.inherits),
        )

    async def find_class_scope(self, name: str, ctx: ModuleContext, *, tier: ResolutionTier | None = None) -> Scope | None:
        """Locate a class or module by name: workspace classes first, then stdlib."""
        target = _clean_target(name)
        if not target:
            return None

        entries = [ctx.entry] if ctx.entry is not None else []
        entries += [e for e in self.documents.entries() if e.uri != ctx.uri]
        for entry in entries:
            cls = entry.table.find_class(target)
            if cls is not None:
                return Scope(
                    key=f"{entry.uri}#{cls.qualified_name or cls.name}",
                    label=cls.name,
                    members=_declarations(cls.children),
                    origin=entry.uri,
                    tier=tier or (ResolutionTier.CURRENT if entry.uri == ctx.uri else ResolutionTier.WORKSPACE),
                    directives=tuple(c for c in cls.children if c.kind is SymbolKind.INHERIT),
                )

        stem = target.rsplit(".", 1)[-1]
        for entry in entries:
            if entry.uri != ctx.uri and module_stem(entry.uri) == stem:
                return Scope(
                    key=entry.uri,
                    label=stem,
                    members=_declarations(entry.table.roots),
                    origin=entry.uri,
                    tier=tier or ResolutionTier.WORKSPACE,
                    directives=tuple(entry.table.inherits()),
                )

        module = await self.stdlib.get_module(target)
        if module is not None:
            scope = self._module_scope(module)
            if tier is not None:
                scope = Scope(scope.key, scope.label, scope.members, scope.origin, tier, scope.directives)
            return scope
        return None

    async def inherit_scopes(
        self,
        ctx: ModuleContext,
        directives: Iterable[Symbol],
        *,
        root_key: str,
    ) -> list[Scope]:
        """Depth-first ancestor scopes, nearest first.

        A class already on the current path is a cycle: reported as a
        warning and not followed. A class reached twice by different
        paths is visited once.
        """
        visited: set[str] = {root_key}
        scopes: list[Scope] = []
        await self._walk_inherits(ctx, list(directives), (root_key,), (), visited, scopes)
        return scopes

    async def _walk_inherits(
        self,
        ctx: ModuleContext,
        directives: list[Symbol],
        path_keys: tuple[str, ...],
        chain: tuple[str, ...],
        visited: set[str],
        scopes: list[Scope],
    ) -> None:
        for directive in directives:
            target = _clean_target(directive.directive_target)
            if not target:
                continue
            if len(chain) >= self.max_inherit_depth:
                ctx.warn(
                    "inherit_depth_exceeded",
                    f"Inheritance deeper than {self.max_inherit_depth} levels",
                    chain + (target,),
                )
                return
            parent = await self.find_class_scope(target, ctx, tier=ResolutionTier.INHERIT)
            if parent is None:
                ctx.warn("unresolved_inherit", f"Cannot resolve inherited class {target}", chain + (target,))
                continue
            if parent.key in path_keys:
                ctx.warn("cyclic_inherit", f"Cyclic inheritance through {target}", chain + (target,))
                continue
            if parent.key in visited:
                continue
            visited.add(parent.key)
            scopes.append(parent)
            await self._walk_inherits(
                ctx,
                list(parent.directives),
                path_keys + (parent.key,),
                chain + (target,),
                visited,
                scopes,
            )
