"""Tests for the document cache and URI helpers."""

from __future__ import annotations

from pathlib import Path

from fakes import entry, sym
from pikelens.index.documents import DocumentCache, module_stem, path_to_uri, uri_to_path


class TestDocumentCache:
    """Version-checked writes."""

    def test_given_newer_version_when_set_then_replaced(self) -> None:
        cache = DocumentCache()
        cache.set(entry("file:///a.pike", sym("x"), version=1))

        assert cache.set(entry("file:///a.pike", sym("y"), version=2)) is True

        current = cache.get("file:///a.pike")
        assert current is not None
        assert current.version == 2
        assert "y" in current.table

    def test_given_stale_version_when_set_then_contents_unchanged(self) -> None:
        cache = DocumentCache()
        cache.set(entry("file:///a.pike", sym("fresh"), version=5))

        written = cache.set(entry("file:///a.pike", sym("stale"), version=3))

        current = cache.get("file:///a.pike")
        assert written is False
        assert current is not None
        assert current.version == 5
        assert "fresh" in current.table
        assert "stale" not in current.table

    def test_given_same_version_when_set_then_replaced(self) -> None:
        cache = DocumentCache()
        cache.set(entry("file:///a.pike", sym("first"), version=2))
        assert cache.set(entry("file:///a.pike", sym("second"), version=2)) is True

    def test_given_entries_when_deleted_then_gone(self) -> None:
        cache = DocumentCache()
        cache.set(entry("file:///a.pike"))
        cache.set(entry("file:///b.pike"))

        assert cache.delete("file:///a.pike") is True
        assert cache.delete("file:///a.pike") is False
        assert cache.uris() == ["file:///b.pike"]
        assert len(cache) == 1
        assert cache.has("file:///b.pike")

    def test_given_entries_when_cleared_then_empty(self) -> None:
        cache = DocumentCache()
        cache.set(entry("file:///a.pike"))
        cache.clear()
        assert cache.entries() == []


class TestUriHelpers:
    def test_given_path_when_round_tripped_then_same_path(self, tmp_path: Path) -> None:
        target = tmp_path / "main.pike"
        uri = path_to_uri(target)

        assert uri.startswith("file://")
        assert Path(uri_to_path(uri)) == target.resolve()

    def test_given_non_file_uri_when_converted_then_unchanged(self) -> None:
        assert uri_to_path("untitled:Untitled-1") == "untitled:Untitled-1"

    def test_given_uri_when_stem_then_file_stem(self) -> None:
        assert module_stem("file:///src/Logger.pmod") == "Logger"
