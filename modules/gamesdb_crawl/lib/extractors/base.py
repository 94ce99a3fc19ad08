from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from ..models import PageResult, Payload


class ExtractionError(Exception):
    """Raised when a page does not look like what the extractor expects."""


class PageExtractor(ABC):
    """
    Listing-page parser: raw page -> PageResult(items, has_next).

    Concrete subclasses MUST set `kind`; they are built from the target's
    `page_extractor.params` mapping.
    """

    kind: str = ""

    def __init__(self, params: Mapping[str, Any] | None = None):
        self.params: dict[str, Any] = dict(params or {})

    @abstractmethod
    def __call__(self, payload: Payload) -> PageResult:
        raise NotImplementedError

    def meta_names(self) -> list[str]:
        """Meta keys items may carry, when known up front."""
        return []


class DetailExtractor(ABC):
    """
    Detail-page parser: raw page -> flat field mapping.

    Values may be anything stringable; the engine turns the mapping into a
    Record (None -> "", identifier/source_url added).
    """

    kind: str = ""

    def __init__(self, params: Mapping[str, Any] | None = None):
        self.params: dict[str, Any] = dict(params or {})

    @abstractmethod
    def __call__(self, payload: Payload) -> dict[str, Any]:
        raise NotImplementedError

    def field_names(self) -> list[str]:
        """Field names this extractor declares; [] when they depend on the page."""
        return []
