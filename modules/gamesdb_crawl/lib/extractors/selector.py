# gamesdb_crawl/extractors/selector.py
"""
Config-driven CSS selector extractors (BeautifulSoup).

Nothing here knows about a particular site: every selector comes from the
target's params. Example target entry:

{
  "name": "nes",
  "start_url": "https://example.org/list_games.php?platform_id=7",
  "page_extractor": {
    "kind": "selector",
    "params": {
      "item_selector": ".list_item",
      "link_selector": ".game_title a",
      "id_pattern": "id=(\\d+)",
      "next_disabled_selector": ".pagination .disabled:-soup-contains('Next')"
    }
  },
  "detail_extractor": {
    "kind": "selector",
    "params": {
      "fields": {
        "Title": "h1",
        "Genre": {"selector": ".genre a", "all": true, "join": ", "},
        "Players": {"selector": ".players", "strip_prefix": "Players:"}
      },
      "required": ["Title"]
    }
  }
}
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any
from urllib.parse import parse_qs, urljoin, urlparse

from bs4 import BeautifulSoup  # pip install beautifulsoup4 html5lib

from ..models import PageResult, Payload, WorkItem
from .base import DetailExtractor, ExtractionError, PageExtractor
from .registry import register

_DEFAULT_PARSER = "html5lib"


def _soup(payload: Payload, parser: str) -> BeautifulSoup:
    return BeautifulSoup(payload.text or "", parser)


def _text(el) -> str:
    if el is None:
        return ""
    return " ".join(el.get_text(" ", strip=True).split())


def _default_identifier(url: str) -> str:
    """`id` query value if present, else the last non-empty path segment."""
    parsed = urlparse(url)
    ids = parse_qs(parsed.query).get("id")
    if ids and ids[0].strip():
        return ids[0].strip()
    segments = [s for s in parsed.path.split("/") if s]
    return segments[-1] if segments else ""


@register
class SelectorPageExtractor(PageExtractor):
    """
    params:
      item_selector: str              # one element per listed item (REQUIRED)
      link_selector: str              # element inside the item holding href (REQUIRED)
      title_selector: str | None      # defaults to the link text
      id_pattern: str | None          # regex, group 1 taken from the absolute link
      meta: {name: selector}          # extra listing fields carried to the record
      next_selector: str | None       # present -> more pages
      next_disabled_selector: str | None  # present -> last page
      base_url: str | None            # resolve links against this instead of the page URL
      parser: str                     # BeautifulSoup parser, default html5lib

    Without next/next_disabled selectors, any non-empty page counts as
    having a next page; the walk then ends at the first empty page.
    """

    kind = "selector"

    def __init__(self, params: Mapping[str, Any] | None = None):
        super().__init__(params)
        self.item_selector = str(self.params.get("item_selector") or "").strip()
        self.link_selector = str(self.params.get("link_selector") or "").strip()
        if not self.item_selector or not self.link_selector:
            raise ValueError("selector page extractor requires 'item_selector' and 'link_selector'.")
        self.title_selector = str(self.params.get("title_selector") or "").strip() or None
        pattern = self.params.get("id_pattern")
        self.id_re = re.compile(str(pattern)) if pattern else None
        self.meta_selectors: dict[str, str] = {str(k): str(v) for k, v in (self.params.get("meta") or {}).items()}
        self.next_selector = str(self.params.get("next_selector") or "").strip() or None
        self.next_disabled_selector = str(self.params.get("next_disabled_selector") or "").strip() or None
        self.base_url = str(self.params.get("base_url") or "").strip() or None
        self.parser = str(self.params.get("parser") or _DEFAULT_PARSER)

    def __call__(self, payload: Payload) -> PageResult:
        soup = _soup(payload, self.parser)
        base = self.base_url or payload.effective_url or payload.url
        items: list[WorkItem] = []

        for node in soup.select(self.item_selector):
            link = node.select_one(self.link_selector)
            href = (link.get("href") or "").strip() if link is not None else ""
            if not href:
                continue
            url = urljoin(base, href)

            identifier = self._identifier(url)
            if not identifier:
                continue

            meta: dict[str, str] = {}
            title_el = node.select_one(self.title_selector) if self.title_selector else link
            title = _text(title_el)
            if title:
                meta["title"] = title
            for name, sel in self.meta_selectors.items():
                meta[name] = _text(node.select_one(sel))

            items.append(WorkItem(identifier=identifier, url=url, meta=meta))

        return PageResult(items=items, has_next=self._has_next(soup, bool(items)))

    def meta_names(self) -> list[str]:
        return ["title", *self.meta_selectors]

    def _identifier(self, url: str) -> str:
        if self.id_re is None:
            return _default_identifier(url)
        m = self.id_re.search(url)
        if not m:
            return ""
        return (m.group(1) if m.groups() else m.group(0)).strip()

    def _has_next(self, soup: BeautifulSoup, any_items: bool) -> bool:
        if self.next_disabled_selector and soup.select_one(self.next_disabled_selector) is not None:
            return False
        if self.next_selector:
            return soup.select_one(self.next_selector) is not None
        return any_items


@register
class SelectorDetailExtractor(DetailExtractor):
    """
    params:
      fields: {name: selector | {selector, attr, all, join, strip_prefix, default}}
      required: list[str]   # fields that must come out non-empty
      parser: str           # default html5lib

    Field spec keys:
      attr          read this attribute instead of the text
      all           join every match instead of taking the first
      join          separator for `all` (default ", ")
      strip_prefix  drop a leading label such as "Players:"
      default       value when nothing matched (default "")
    """

    kind = "selector"

    def __init__(self, params: Mapping[str, Any] | None = None):
        super().__init__(params)
        raw_fields = self.params.get("fields") or {}
        if not isinstance(raw_fields, Mapping) or not raw_fields:
            raise ValueError("selector detail extractor requires a non-empty 'fields' mapping.")
        self.fields: dict[str, dict[str, Any]] = {}
        for name, spec in raw_fields.items():
            if isinstance(spec, str):
                spec = {"selector": spec}
            if not isinstance(spec, Mapping) or not str(spec.get("selector") or "").strip():
                raise ValueError(f"field {name!r} needs a 'selector'.")
            self.fields[str(name)] = dict(spec)
        self.required = [str(x) for x in (self.params.get("required") or [])]
        self.parser = str(self.params.get("parser") or _DEFAULT_PARSER)

    def __call__(self, payload: Payload) -> dict[str, Any]:
        soup = _soup(payload, self.parser)
        out: dict[str, Any] = {}
        for name, spec in self.fields.items():
            out[name] = self._field(soup, spec)

        missing = [f for f in self.required if not out.get(f)]
        if missing:
            raise ExtractionError(f"required fields empty: {', '.join(missing)} ({payload.effective_url})")
        return out

    def field_names(self) -> list[str]:
        return list(self.fields)

    def _field(self, soup: BeautifulSoup, spec: Mapping[str, Any]) -> str:
        selector = str(spec["selector"])
        attr = spec.get("attr")
        prefix = str(spec.get("strip_prefix") or "")

        def value_of(el) -> str:
            if attr:
                v = el.get(str(attr))
                v = " ".join(v) if isinstance(v, list) else (v or "")
                return str(v).strip()
            s = _text(el)
            if prefix and s.startswith(prefix):
                s = s[len(prefix):].strip()
            return s

        if spec.get("all"):
            values = [value_of(el) for el in soup.select(selector)]
            value = str(spec.get("join", ", ")).join(v for v in values if v)
        else:
            el = soup.select_one(selector)
            value = value_of(el) if el is not None else ""
        return value or str(spec.get("default") or "")
