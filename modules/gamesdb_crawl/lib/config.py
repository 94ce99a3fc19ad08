from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .utils import getenv_str, slugify, truthy

DEFAULT_STATE_DIR = "/app/local/state/crawl"
DEFAULT_OUTPUT_DIR = "/app/local/data/crawl"

_BACKENDS = ("sqlite", "jsonl")
_FORMATS = ("csv", "jsonl")


# -----------------------------
# Exceptions
# -----------------------------
class ConfigError(ValueError):
    """Raised when provided kwargs/env/targets file cannot form valid Settings."""


# -----------------------------
# Models
# -----------------------------
@dataclass(frozen=True)
class ExtractorSpec:
    """Which registered extractor to build, and the params to build it with."""

    kind: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TargetConfig:
    """
    One crawl target: a paginated listing plus how to fetch and parse it.
    - name: checkpoint scope and output file label (e.g., "nes")
    - start_url: listing URL; the page number is set via `page_param`
    - concurrency/retry_limit/backoff_base/jitter/timeout: fetch budget
    - page_delay/item_delay/min_interval: politeness pauses (seconds)
    """

    name: str
    start_url: str
    page_extractor: ExtractorSpec
    detail_extractor: ExtractorSpec
    concurrency: int = 10
    retry_limit: int = 3
    backoff_base: float = 0.5
    jitter: float = 0.25
    timeout: float = 15.0
    page_param: str = "page"
    first_page: int = 1
    page_delay: float = 1.0
    item_delay: float = 0.3
    min_interval: float = 0.0
    max_pages: int | None = None
    detail_url_template: str | None = None
    user_agent: str | None = None
    fieldnames: tuple[str, ...] | None = None


@dataclass
class Settings:
    """
    Canonical configuration for a crawl run.

    Targets come either inline (`targets`) or from a JSON file holding the
    same list (`targets_path`).
    """

    targets: list[TargetConfig] = field(default_factory=list)
    targets_path: str | None = None

    state_dir: str = DEFAULT_STATE_DIR
    output_dir: str = DEFAULT_OUTPUT_DIR
    checkpoint_backend: str = "sqlite"
    output_format: str = "csv"

    emit_failure_rows: bool = False
    skip_network: bool = False

    def target(self, name: str) -> TargetConfig:
        for t in self.targets:
            if t.name == name:
                return t
        raise KeyError(f"No target named {name!r}.")

    # ------------- constructors -------------
    @classmethod
    def from_env_and_kwargs(cls, kwargs: Mapping[str, Any] | None) -> Settings:
        """
        Build Settings from kwargs with validation.

        Expected kwargs (all optional unless stated otherwise):

            targets: list[dict]          # inline targets, or
            targets_path: str            # JSON file with the same list
            only: list[str] | str        # restrict to these target names

            state_dir: str = $CRAWL_STATE_DIR or /app/local/state/crawl
            output_dir: str = $CRAWL_OUTPUT_DIR or /app/local/data/crawl
            checkpoint_backend: "sqlite" | "jsonl" = "sqlite"
            output_format: "csv" | "jsonl" = "csv"
            emit_failure_rows: bool = false
            skip_network: bool = false
        """
        kw = dict(kwargs or {})

        targets_path = kw.get("targets_path")
        if targets_path is not None:
            targets_path = str(targets_path).strip() or None

        raw_targets = kw.get("targets")
        if raw_targets is None and targets_path:
            raw_targets = _read_targets_file(targets_path)
        if raw_targets is None:
            raise ConfigError("Missing targets. Provide 'targets' (list) or 'targets_path' (JSON file).")

        targets = _parse_targets_list(raw_targets)

        only = kw.get("only")
        if only:
            wanted = {s.strip() for s in (only.split(",") if isinstance(only, str) else only) if str(s).strip()}
            unknown = wanted - {t.name for t in targets}
            if unknown:
                raise ConfigError(f"Unknown target(s) in 'only': {sorted(unknown)}")
            targets = [t for t in targets if t.name in wanted]

        settings = cls(
            targets=targets,
            targets_path=targets_path,
            state_dir=str(kw.get("state_dir") or getenv_str("CRAWL_STATE_DIR", DEFAULT_STATE_DIR)),
            output_dir=str(kw.get("output_dir") or getenv_str("CRAWL_OUTPUT_DIR", DEFAULT_OUTPUT_DIR)),
            checkpoint_backend=str(kw.get("checkpoint_backend") or "sqlite").strip().lower(),
            output_format=str(kw.get("output_format") or "csv").strip().lower(),
            emit_failure_rows=truthy(kw.get("emit_failure_rows")),
            skip_network=truthy(kw.get("skip_network")),
        )
        _validate_settings(settings)
        return settings


# -----------------------------
# Helpers
# -----------------------------
def _read_targets_file(path: str) -> Any:
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"targets file not found: {path}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"targets file is invalid JSON: {path}") from e


def _parse_extractor(value: Any, where: str) -> ExtractorSpec:
    """Accept "kind" or {"kind": "...", "params": {...}}."""
    if isinstance(value, str) and value.strip():
        return ExtractorSpec(kind=value.strip().lower())
    if not isinstance(value, Mapping):
        raise ConfigError(f"{where} must be a kind string or an object with 'kind'.")
    kind = str(value.get("kind") or "").strip().lower()
    params = value.get("params") or {}
    if not kind:
        raise ConfigError(f"{where}.kind is required.")
    if not isinstance(params, Mapping):
        raise ConfigError(f"{where}.params must be an object.")
    return ExtractorSpec(kind=kind, params=dict(params))


def _as_int(item: Mapping[str, Any], key: str, default: int | None, where: str) -> int | None:
    raw = item.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{where}.{key} must be an integer.") from e


def _as_float(item: Mapping[str, Any], key: str, default: float, where: str) -> float:
    raw = item.get(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{where}.{key} must be a number.") from e


def _parse_target(item: Any, i: int) -> TargetConfig:
    where = f"Target[{i}]"
    if not isinstance(item, Mapping):
        raise ConfigError(f"{where} must be an object.")
    name = str(item.get("name") or "").strip()
    start_url = str(item.get("start_url") or "").strip()
    if not name or not start_url:
        raise ConfigError(f"{where} requires 'name' and 'start_url'.")
    if "page_extractor" not in item or "detail_extractor" not in item:
        raise ConfigError(f"{where} requires 'page_extractor' and 'detail_extractor'.")

    fieldnames = item.get("fieldnames")
    if fieldnames is not None and not isinstance(fieldnames, list):
        raise ConfigError(f"{where}.fieldnames must be a list.")

    return TargetConfig(
        name=name,
        start_url=start_url,
        page_extractor=_parse_extractor(item.get("page_extractor"), f"{where}.page_extractor"),
        detail_extractor=_parse_extractor(item.get("detail_extractor"), f"{where}.detail_extractor"),
        concurrency=_as_int(item, "concurrency", 10, where),
        retry_limit=_as_int(item, "retry_limit", 3, where),
        backoff_base=_as_float(item, "backoff_base", 0.5, where),
        jitter=_as_float(item, "jitter", 0.25, where),
        timeout=_as_float(item, "timeout", 15.0, where),
        page_param=str(item.get("page_param") or "page"),
        first_page=_as_int(item, "first_page", 1, where),
        page_delay=_as_float(item, "page_delay", 1.0, where),
        item_delay=_as_float(item, "item_delay", 0.3, where),
        min_interval=_as_float(item, "min_interval", 0.0, where),
        max_pages=_as_int(item, "max_pages", None, where),
        detail_url_template=str(item.get("detail_url_template") or "").strip() or None,
        user_agent=str(item.get("user_agent") or "").strip() or None,
        fieldnames=tuple(str(x) for x in fieldnames) if fieldnames else None,
    )


def _parse_targets_list(value: Any) -> list[TargetConfig]:
    """
    Parse a flat list into TargetConfig objects.
    Accepts: [{"name": "...", "start_url": "...", "page_extractor": {...}, ...}, ...]
    """
    if not isinstance(value, list):
        raise ConfigError("Expected a list of target objects.")
    return [_parse_target(item, i) for i, item in enumerate(value)]


def _validate_target(t: TargetConfig) -> None:
    where = f"Target {t.name!r}"
    if not t.start_url.lower().startswith(("http://", "https://")):
        raise ConfigError(f"{where}: start_url must be http(s).")
    if t.concurrency < 1:
        raise ConfigError(f"{where}: 'concurrency' must be >= 1.")
    if t.retry_limit < 1:
        raise ConfigError(f"{where}: 'retry_limit' must be >= 1.")
    if t.timeout <= 0:
        raise ConfigError(f"{where}: 'timeout' must be > 0.")
    for key in ("backoff_base", "jitter", "page_delay", "item_delay", "min_interval"):
        if getattr(t, key) < 0:
            raise ConfigError(f"{where}: '{key}' cannot be negative.")
    if t.max_pages is not None and t.max_pages < 1:
        raise ConfigError(f"{where}: 'max_pages' must be >= 1 when set.")
    if t.detail_url_template and "{id}" not in t.detail_url_template:
        raise ConfigError(f"{where}: 'detail_url_template' must contain '{{id}}'.")


def _validate_settings(s: Settings) -> None:
    if not s.targets:
        raise ConfigError("No targets to crawl.")
    names = [t.name for t in s.targets]
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        raise ConfigError(f"Duplicate target names: {dupes}")
    by_slug: dict[str, list[str]] = {}
    for n in names:
        by_slug.setdefault(slugify(n) or "default", []).append(n)
    clashes = sorted(group for group in by_slug.values() if len(group) > 1)
    if clashes:
        raise ConfigError(f"Target names map to the same output and checkpoint files: {clashes}")
    for t in s.targets:
        _validate_target(t)

    if s.checkpoint_backend not in _BACKENDS:
        raise ConfigError(f"'checkpoint_backend' must be one of {_BACKENDS}.")
    if s.output_format not in _FORMATS:
        raise ConfigError(f"'output_format' must be one of {_FORMATS}.")
    if not s.state_dir.strip():
        raise ConfigError("'state_dir' cannot be empty.")
    if not s.output_dir.strip():
        raise ConfigError("'output_dir' cannot be empty.")
