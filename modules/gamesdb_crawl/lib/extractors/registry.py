from __future__ import annotations

from .base import DetailExtractor, PageExtractor

# Global in-process registries: kind -> extractor class
_PAGE: dict[str, type[PageExtractor]] = {}
_DETAIL: dict[str, type[DetailExtractor]] = {}


def _key(cls: type) -> str:
    kind = getattr(cls, "kind", "") or ""
    if not isinstance(kind, str) or not kind.strip():
        raise ValueError(f"Cannot register extractor {cls!r}: missing/empty 'kind'.")
    return kind.strip().lower()


def register(cls):
    """
    Class decorator registering a PageExtractor or DetailExtractor subclass
    under its `kind`. Re-registering the same class is a no-op.
    """
    key = _key(cls)
    if issubclass(cls, PageExtractor):
        table = _PAGE
    elif issubclass(cls, DetailExtractor):
        table = _DETAIL
    else:
        raise TypeError(f"{cls!r} is neither a PageExtractor nor a DetailExtractor.")
    if key in table and table[key] is not cls:
        raise ValueError(f"Extractor kind {key!r} already registered to {table[key]!r}.")
    table[key] = cls
    return cls


def get_page_extractor(kind: str) -> type[PageExtractor]:
    """Look up a page extractor class by kind (case-insensitive). KeyError if unknown."""
    key = (kind or "").strip().lower()
    if key not in _PAGE:
        raise KeyError(f"No page extractor registered for kind {kind!r}.")
    return _PAGE[key]


def get_detail_extractor(kind: str) -> type[DetailExtractor]:
    key = (kind or "").strip().lower()
    if key not in _DETAIL:
        raise KeyError(f"No detail extractor registered for kind {kind!r}.")
    return _DETAIL[key]


def all_kinds() -> dict[str, list[str]]:
    """Registered kinds per role (useful for debugging/tests)."""
    return {"page": sorted(_PAGE), "detail": sorted(_DETAIL)}
