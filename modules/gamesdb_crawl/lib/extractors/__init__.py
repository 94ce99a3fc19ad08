# gamesdb_crawl/extractors/__init__.py
from __future__ import annotations

from .base import DetailExtractor, ExtractionError, PageExtractor
from .jsondoc import JsonDetailExtractor, JsonPageExtractor
from .registry import all_kinds, get_detail_extractor, get_page_extractor, register
from .selector import SelectorDetailExtractor, SelectorPageExtractor

__all__ = [
    "DetailExtractor",
    "ExtractionError",
    "JsonDetailExtractor",
    "JsonPageExtractor",
    "PageExtractor",
    "SelectorDetailExtractor",
    "SelectorPageExtractor",
    "all_kinds",
    "get_detail_extractor",
    "get_page_extractor",
    "register",
]
