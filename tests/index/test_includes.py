"""Tests for #include resolution."""

from __future__ import annotations

from pathlib import Path

import pytest

from fakes import FakeBridge, analysis, sym, wire_symbol
from pikelens.index.includes import IncludeResolver, strip_include_target
from pikelens.index.models import Symbol, SymbolKind

MAIN_URI = "file:///project/main.pike"


class Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def include_directive(target: str = '"defs.h"') -> Symbol:
    return sym("#include", SymbolKind.IMPORT, classname=target)


@pytest.fixture
def defs_file(tmp_path: Path, fake_bridge: FakeBridge) -> Path:
    path = tmp_path / "defs.h"
    path.write_text("constant MAX_SIZE = 10;\n")
    fake_bridge.include_paths["defs.h"] = str(path)
    fake_bridge.parses[str(path)] = analysis(parse=[wire_symbol("MAX_SIZE", "constant")])
    return path


class TestStripIncludeTarget:
    @pytest.mark.parametrize(
        ("target", "expected"),
        [
            ('"defs.h"', "defs.h"),
            ("<sys/types.h>", "sys/types.h"),
            ('#include "local.h"', "local.h"),
            ("plain.h", "plain.h"),
            ('""', ""),
        ],
    )
    def test_given_directive_text_when_stripped_then_bare_path(self, target: str, expected: str) -> None:
        assert strip_include_target(target) == expected


class TestIncludeResolver:
    @pytest.mark.asyncio
    async def test_given_existing_include_when_resolved_then_parsed_symbols(
        self, fake_bridge: FakeBridge, defs_file: Path
    ) -> None:
        resolver = IncludeResolver(fake_bridge)  # type: ignore[arg-type]

        resolved = await resolver.resolve(include_directive(), MAIN_URI)

        assert resolved is not None
        assert resolved.resolved_path == str(defs_file)
        assert resolved.original_path == "defs.h"
        assert "MAX_SIZE" in resolved.table
        assert fake_bridge.method_calls("resolve_include") == [("defs.h", "/project/main.pike")]

    @pytest.mark.asyncio
    async def test_given_cached_include_when_within_ttl_then_not_reparsed(
        self, fake_bridge: FakeBridge, defs_file: Path
    ) -> None:
        clock = Clock()
        resolver = IncludeResolver(fake_bridge, ttl_sec=30.0, clock=clock)  # type: ignore[arg-type]

        await resolver.resolve(include_directive(), MAIN_URI)
        clock.now = 10.0
        await resolver.resolve(include_directive(), MAIN_URI)

        assert len(fake_bridge.method_calls("analyze")) == 1

    @pytest.mark.asyncio
    async def test_given_cached_include_when_ttl_expires_then_reparsed(
        self, fake_bridge: FakeBridge, defs_file: Path
    ) -> None:
        clock = Clock()
        resolver = IncludeResolver(fake_bridge, ttl_sec=30.0, clock=clock)  # type: ignore[arg-type]

        await resolver.resolve(include_directive(), MAIN_URI)
        clock.now = 31.0
        await resolver.resolve(include_directive(), MAIN_URI)

        assert len(fake_bridge.method_calls("analyze")) == 2

    @pytest.mark.asyncio
    async def test_given_invalidated_cache_when_resolved_then_reparsed(
        self, fake_bridge: FakeBridge, defs_file: Path
    ) -> None:
        resolver = IncludeResolver(fake_bridge)  # type: ignore[arg-type]
        await resolver.resolve(include_directive(), MAIN_URI)

        resolver.invalidate(str(defs_file))
        await resolver.resolve(include_directive(), MAIN_URI)

        assert len(fake_bridge.method_calls("analyze")) == 2

    @pytest.mark.asyncio
    async def test_given_unknown_include_when_resolved_then_none(self, fake_bridge: FakeBridge) -> None:
        resolver = IncludeResolver(fake_bridge)  # type: ignore[arg-type]
        assert await resolver.resolve(include_directive('"missing.h"'), MAIN_URI) is None
        assert fake_bridge.method_calls("analyze") == []

    @pytest.mark.asyncio
    async def test_given_unreadable_file_when_resolved_then_none(self, fake_bridge: FakeBridge, tmp_path: Path) -> None:
        fake_bridge.include_paths["gone.h"] = str(tmp_path / "gone.h")
        resolver = IncludeResolver(fake_bridge)  # type: ignore[arg-type]

        assert await resolver.resolve(include_directive('"gone.h"'), MAIN_URI) is None
