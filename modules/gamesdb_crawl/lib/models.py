from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, field
from typing import Any, Union

# A finished, flat output row. Always carries "identifier" and "source_url".
Record = dict[str, str]


@dataclass(frozen=True)
class WorkItem:
    """
    One unit of crawl work discovered on a listing page.

    Identity is the identifier alone: two items with the same identifier are
    the same item, whatever their url/meta say.
    """

    identifier: str
    url: str = field(default="", compare=False)
    meta: dict[str, str] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "identifier", str(self.identifier).strip())
        object.__setattr__(self, "url", str(self.url or "").strip())


@dataclass
class PageResult:
    """Parsed listing page: items in page order plus the 'more pages' signal."""

    items: list[WorkItem] = field(default_factory=list)
    has_next: bool = False


@dataclass(frozen=True)
class Payload:
    url: str
    effective_url: str
    status_code: int
    text: str
    attempts: int = 1
    elapsed_ms: int = 0

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class FetchError:
    """Terminal fetch failure after retries; returned, never raised."""

    url: str
    cause: str
    attempts: int = 0
    status_code: int | None = None

    @property
    def ok(self) -> bool:
        return False


FetchOutcome = Union[Payload, FetchError]


@dataclass
class ItemOutcome:
    """
    Result of one per-item task.
    - record: set on success
    - error/stage: set on failure ("fetch" or "extract")
    """

    item: WorkItem
    record: Record | None = None
    error: str | None = None
    stage: str | None = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def identifier(self) -> str:
        return self.item.identifier


@dataclass
class CrawlState:
    """Identifiers already completed for one target."""

    target: str
    completed: set[str] = field(default_factory=set)

    def __contains__(self, identifier: object) -> bool:
        return str(identifier) in self.completed

    def __len__(self) -> int:
        return len(self.completed)


@dataclass
class ListingReport:
    pages_fetched: int = 0
    items_seen: int = 0
    complete: bool = False
    error: str | None = None
    last_url: str | None = None


@dataclass
class CrawlSummary:
    """
    Aggregated counts for one target run. Returned by the engine rather than
    kept in any module-level counter.
    """

    target: str
    enumerated: int = 0
    duplicates: int = 0
    skipped: int = 0
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    failed_ids: list[str] = field(default_factory=list)
    pages_fetched: int = 0
    enumeration_complete: bool = False
    enumeration_error: str | None = None
    interrupted: bool = False
    duration_us: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def make_record(
    identifier: str,
    source_url: str,
    *layers: Mapping[str, Any] | None,
) -> Record:
    """
    Merge field layers into a flat string record.

    Later layers win on key conflicts; identifier and source_url are always
    set last. None values become "" so nothing null reaches a sink.
    """
    out: Record = {}
    for layer in layers:
        for k, v in (layer or {}).items():
            out[str(k)] = "" if v is None else str(v)
    out["identifier"] = str(identifier)
    out["source_url"] = str(source_url or "")
    return out


def unique_items(items: Iterable[WorkItem]) -> tuple[list[WorkItem], int]:
    """Drop repeated identifiers (first occurrence wins). Returns (items, dropped)."""
    seen: set[str] = set()
    out: list[WorkItem] = []
    dropped = 0
    for it in items:
        if it.identifier in seen:
            dropped += 1
            continue
        seen.add(it.identifier)
        out.append(it)
    return out, dropped
