"""Tests for the lazy stdlib module index."""

from __future__ import annotations

import asyncio

import pytest

from fakes import FakeBridge, stdlib_result
from pikelens.core.errors import BridgeCrashed, BridgeRequestError
from pikelens.index.stdlib import StdlibIndex


class Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def make_index(bridge: FakeBridge, **kwargs: object) -> StdlibIndex:
    return StdlibIndex(bridge=bridge, **kwargs)  # type: ignore[arg-type]


class TestLazyLoading:
    """Modules load on first request and are then served from cache."""

    @pytest.mark.asyncio
    async def test_given_module_when_requested_twice_then_one_worker_call(self, fake_bridge: FakeBridge) -> None:
        fake_bridge.stdlib_modules["Stdio"] = stdlib_result("Stdio", "write", "werror")
        index = make_index(fake_bridge)

        first = await index.get_module("Stdio")
        second = await index.get_module("Stdio")

        assert first is not None
        assert first is second
        assert sorted(first.symbols) == ["werror", "write"]
        assert fake_bridge.method_calls("resolve_stdlib") == ["Stdio"]
        assert index.stats().hits == 1
        assert index.stats().misses == 1

    @pytest.mark.asyncio
    async def test_given_concurrent_misses_when_requested_then_share_one_load(self, fake_bridge: FakeBridge) -> None:
        fake_bridge.stdlib_modules["Stdio"] = stdlib_result("Stdio", "write")
        fake_bridge.stdlib_gate = asyncio.Event()
        index = make_index(fake_bridge)

        tasks = [asyncio.create_task(index.get_module("Stdio")) for _ in range(5)]
        await asyncio.sleep(0)
        fake_bridge.stdlib_gate.set()
        results = await asyncio.gather(*tasks)

        assert all(r is results[0] for r in results)
        assert results[0] is not None
        assert len(fake_bridge.method_calls("resolve_stdlib")) == 1

    @pytest.mark.asyncio
    async def test_given_nested_path_when_requested_then_independent_entry(self, fake_bridge: FakeBridge) -> None:
        fake_bridge.stdlib_modules["Stdio"] = stdlib_result("Stdio", "write")
        fake_bridge.stdlib_modules["Stdio.File"] = stdlib_result("Stdio.File", "read", "close")
        index = make_index(fake_bridge)

        await index.get_module("Stdio")
        file_module = await index.get_module("Stdio.File")

        assert file_module is not None
        assert "read" in file_module.symbols
        assert fake_bridge.method_calls("resolve_stdlib") == ["Stdio", "Stdio.File"]

    @pytest.mark.asyncio
    async def test_given_blank_path_when_requested_then_none_without_call(self, fake_bridge: FakeBridge) -> None:
        index = make_index(fake_bridge)
        assert await index.get_module(" . ") is None
        assert fake_bridge.method_calls("resolve_stdlib") == []

    @pytest.mark.asyncio
    async def test_given_inherits_when_loaded_then_recorded(self, fake_bridge: FakeBridge) -> None:
        fake_bridge.stdlib_modules["Stdio.FILE"] = stdlib_result("Stdio.FILE", "gets", inherits=["Stdio.File"])
        module = await make_index(fake_bridge).get_module("Stdio.FILE")
        assert module is not None
        assert module.inherits == ("Stdio.File",)
        assert module.resolved_path is not None


class TestNegativeCache:
    @pytest.mark.asyncio
    async def test_given_missing_module_when_within_ttl_then_not_retried(self, fake_bridge: FakeBridge) -> None:
        clock = Clock()
        index = make_index(fake_bridge, negative_ttl_sec=300.0, clock=clock)

        assert await index.get_module("Nope") is None
        clock.now += 299
        assert await index.get_module("Nope") is None

        assert fake_bridge.method_calls("resolve_stdlib") == ["Nope"]
        assert index.stats().negative_hits == 1

    @pytest.mark.asyncio
    async def test_given_missing_module_when_ttl_expires_then_retried(self, fake_bridge: FakeBridge) -> None:
        clock = Clock()
        index = make_index(fake_bridge, negative_ttl_sec=300.0, clock=clock)
        await index.get_module("Late")

        clock.now += 301
        fake_bridge.stdlib_modules["Late"] = stdlib_result("Late", "f")

        assert await index.get_module("Late") is not None
        assert len(fake_bridge.method_calls("resolve_stdlib")) == 2

    @pytest.mark.asyncio
    async def test_given_worker_replaced_when_requested_then_failure_forgotten(self, fake_bridge: FakeBridge) -> None:
        index = make_index(fake_bridge)
        await index.get_module("Nope")

        fake_bridge.generation += 1
        await index.get_module("Nope")

        assert len(fake_bridge.method_calls("resolve_stdlib")) == 2

    @pytest.mark.asyncio
    async def test_given_worker_error_when_requested_then_cached_as_failure(self, fake_bridge: FakeBridge) -> None:
        fake_bridge.stdlib_error = BridgeRequestError.from_worker("resolve_stdlib", "compilation failed")
        index = make_index(fake_bridge)

        await index.get_module("Broken")
        await index.get_module("Broken")

        assert len(fake_bridge.method_calls("resolve_stdlib")) == 1
        assert index.stats().negative_count == 1

    @pytest.mark.asyncio
    async def test_given_crash_when_requested_then_not_cached(self, fake_bridge: FakeBridge) -> None:
        fake_bridge.stdlib_error = BridgeCrashed.exited(-9, "resolve_stdlib")
        index = make_index(fake_bridge)
        assert await index.get_module("Stdio") is None

        fake_bridge.stdlib_error = None
        fake_bridge.stdlib_modules["Stdio"] = stdlib_result("Stdio", "write")

        assert await index.get_module("Stdio") is not None
        assert index.stats().negative_count == 0


class TestBounds:
    @pytest.mark.asyncio
    async def test_given_module_limit_when_exceeded_then_least_recently_used_evicted(
        self, fake_bridge: FakeBridge
    ) -> None:
        for name in ("A", "B", "C"):
            fake_bridge.stdlib_modules[name] = stdlib_result(name, "f")
        index = make_index(fake_bridge, max_modules=2)

        await index.get_module("A")
        await index.get_module("B")
        await index.get_module("A")
        await index.get_module("C")

        assert index.is_cached("A")
        assert not index.is_cached("B")
        assert index.is_cached("C")
        assert index.stats().evictions == 1

    @pytest.mark.asyncio
    async def test_given_byte_budget_when_exceeded_then_evicted(self, fake_bridge: FakeBridge) -> None:
        fake_bridge.stdlib_modules["A"] = stdlib_result("A", *[f"a{i}" for i in range(10)])
        fake_bridge.stdlib_modules["B"] = stdlib_result("B", *[f"b{i}" for i in range(10)])
        index = make_index(fake_bridge)
        module_a = await index.get_module("A")
        assert module_a is not None

        index.budget_bytes = module_a.size_bytes + module_a.size_bytes // 2
        await index.get_module("B")

        assert not index.is_cached("A")
        assert index.is_cached("B")
        assert index.stats().memory_bytes <= index.budget_bytes


class TestPreload:
    @pytest.mark.asyncio
    async def test_given_some_modules_missing_when_preloaded_then_counts_successes(
        self, fake_bridge: FakeBridge
    ) -> None:
        fake_bridge.stdlib_modules["Stdio"] = stdlib_result("Stdio", "write")
        fake_bridge.stdlib_modules["Array"] = stdlib_result("Array", "sum")

        loaded = await make_index(fake_bridge).preload_common()

        assert loaded == 2
