"""Per-document cache of the latest analyzed snapshot."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse
from urllib.request import url2pathname

import structlog

from pikelens.core.errors import StaleVersionWrite
from pikelens.index.models import DocumentCacheEntry

logger = structlog.get_logger()


def uri_to_path(uri: str) -> str:
    """``file://`` URI to a filesystem path. Other strings pass through."""
    parsed = urlparse(uri)
    if parsed.scheme != "file":
        return uri
    return url2pathname(parsed.path)


def path_to_uri(path: str | Path) -> str:
    return Path(path).resolve().as_uri()


def module_stem(uri: str) -> str:
    """File stem of a document, used to match ``import Name;`` against workspace files."""
    return Path(uri_to_path(uri)).stem


@dataclass
class DocumentCache:
    """URI -> DocumentCacheEntry. Entries are swapped whole, never mutated."""

    _entries: dict[str, DocumentCacheEntry] = field(default_factory=dict, init=False)

    def get(self, uri: str) -> DocumentCacheEntry | None:
        return self._entries.get(uri)

    def set(self, entry: DocumentCacheEntry) -> bool:
        """Store ``entry`` unless an entry with a higher version exists.

        Returns:
            True if written. Stale writes are dropped and logged at debug.
        """
        current = self._entries.get(entry.uri)
        if current is not None and entry.version < current.version:
            err = StaleVersionWrite.rejected(entry.uri, entry.version, current.version)
            logger.debug("document_cache_stale_write", error=err.message, **err.details)
            return False
        self._entries[entry.uri] = entry
        return True

    def delete(self, uri: str) -> bool:
        return self._entries.pop(uri, None) is not None

    def has(self, uri: str) -> bool:
        return uri in self._entries

    def entries(self) -> list[DocumentCacheEntry]:
        """Snapshot of all entries."""
        return list(self._entries.values())

    def uris(self) -> list[str]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, uri: object) -> bool:
        return uri in self._entries
