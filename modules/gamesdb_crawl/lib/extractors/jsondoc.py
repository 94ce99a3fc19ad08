from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any
from urllib.parse import urljoin

from ..models import PageResult, Payload, WorkItem
from .base import DetailExtractor, ExtractionError, PageExtractor
from .registry import register


def _load(payload: Payload) -> Any:
    try:
        return json.loads(payload.text or "")
    except ValueError as e:
        preview = (payload.text or "")[:200].replace("\n", " ")
        raise ExtractionError(f"JSON decode failed for {payload.url!r}; body starts: {preview!r}") from e


def _dig(obj: Any, path: str) -> Any:
    """Follow a dotted key path ('data.games') through nested mappings."""
    cur = obj
    for part in [p for p in path.split(".") if p]:
        if not isinstance(cur, Mapping):
            return None
        cur = cur.get(part)
    return cur


@register
class JsonPageExtractor(PageExtractor):
    """
    Listing pages served as JSON.

    params:
      items_key: str      # dotted path to the item list (default "items")
      id_key: str         # default "id"
      url_key: str        # default "url"; relative values resolve against the page URL
      has_next_key: str   # default "has_next"; missing -> True while items keep coming
      meta_keys: list[str]  # item keys copied into WorkItem.meta (default ["title"])
    """

    kind = "json"

    def __call__(self, payload: Payload) -> PageResult:
        doc = _load(payload)
        items_key = str(self.params.get("items_key") or "items")
        id_key = str(self.params.get("id_key") or "id")
        url_key = str(self.params.get("url_key") or "url")
        has_next_key = str(self.params.get("has_next_key") or "has_next")
        meta_keys = self.meta_names()

        raw_items = _dig(doc, items_key) if isinstance(doc, Mapping) else doc
        if raw_items is None:
            raw_items = []
        if not isinstance(raw_items, list):
            raise ExtractionError(f"{items_key!r} is not a list in {payload.url!r}")

        base = payload.effective_url or payload.url
        items: list[WorkItem] = []
        for raw in raw_items:
            if not isinstance(raw, Mapping):
                continue
            ident = raw.get(id_key)
            if ident is None or str(ident).strip() == "":
                continue
            url = str(raw.get(url_key) or "").strip()
            meta = {k: "" if raw.get(k) is None else str(raw.get(k)) for k in meta_keys if k in raw}
            items.append(WorkItem(identifier=str(ident), url=urljoin(base, url) if url else "", meta=meta))

        flag = _dig(doc, has_next_key) if isinstance(doc, Mapping) else None
        has_next = bool(items) if flag is None else bool(flag)
        return PageResult(items=items, has_next=has_next)

    def meta_names(self) -> list[str]:
        return [str(k) for k in (self.params.get("meta_keys") or ["title"])]


@register
class JsonDetailExtractor(DetailExtractor):
    """
    Detail pages served as JSON.

    params:
      fields: {name: dotted.key.path}   # omit to take every top-level scalar
      required: list[str]
    """

    kind = "json"

    def field_names(self) -> list[str]:
        return [str(k) for k in (self.params.get("fields") or {})]

    def __call__(self, payload: Payload) -> dict[str, Any]:
        doc = _load(payload)
        if not isinstance(doc, Mapping):
            raise ExtractionError(f"expected a JSON object in {payload.url!r}")

        fields: Mapping[str, Any] = self.params.get("fields") or {}
        out: dict[str, Any] = {}
        if fields:
            for name, path in fields.items():
                out[str(name)] = _flatten(_dig(doc, str(path)))
        else:
            for k, v in doc.items():
                if not isinstance(v, (Mapping, list)):
                    out[str(k)] = _flatten(v)

        missing = [f for f in (self.params.get("required") or []) if not out.get(str(f))]
        if missing:
            raise ExtractionError(f"required fields empty: {', '.join(map(str, missing))} ({payload.url})")
        return out


def _flatten(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        return ", ".join(_flatten(v) for v in value if v is not None)
    if isinstance(value, Mapping):
        return json.dumps(value, ensure_ascii=False, sort_keys=True)
    return str(value)
