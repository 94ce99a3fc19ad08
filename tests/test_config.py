# tests/test_config.py
import json

import pytest

from conftest import target_dict
from modules.gamesdb_crawl.lib.config import (
    DEFAULT_OUTPUT_DIR,
    ConfigError,
    ExtractorSpec,
    Settings,
)


def test_defaults_and_env_fallbacks(tmp_path):
    s = Settings.from_env_and_kwargs({"targets": [{
        "name": "nes",
        "start_url": "https://games.example.test/list",
        "page_extractor": "json",
        "detail_extractor": {"kind": "Selector", "params": {"fields": {"Title": "h1"}}},
    }]})

    t = s.target("nes")
    assert t.concurrency == 10
    assert t.retry_limit == 3
    assert t.page_delay == 1.0 and t.item_delay == 0.3
    assert t.page_param == "page" and t.first_page == 1
    assert t.page_extractor == ExtractorSpec(kind="json")
    assert t.detail_extractor.kind == "selector"
    assert t.detail_extractor.params == {"fields": {"Title": "h1"}}

    assert s.state_dir == str(tmp_path / "state")  # from CRAWL_STATE_DIR
    assert s.output_dir == str(tmp_path / "out")
    assert s.checkpoint_backend == "sqlite"
    assert s.output_format == "csv"
    assert s.emit_failure_rows is False


def test_builtin_output_dir_when_env_unset(monkeypatch):
    monkeypatch.delenv("CRAWL_OUTPUT_DIR")
    s = Settings.from_env_and_kwargs({"targets": [target_dict()]})
    assert s.output_dir == DEFAULT_OUTPUT_DIR


def test_targets_path_file(tmp_path):
    path = tmp_path / "targets.json"
    path.write_text(json.dumps([target_dict(name="nes"), target_dict(name="snes", fieldnames=["identifier", "Title"])]))

    s = Settings.from_env_and_kwargs({"targets_path": str(path), "emit_failure_rows": "yes"})

    assert [t.name for t in s.targets] == ["nes", "snes"]
    assert s.target("snes").fieldnames == ("identifier", "Title")
    assert s.targets_path == str(path)
    assert s.emit_failure_rows is True


def test_only_filters_targets():
    raw = [target_dict(name="nes"), target_dict(name="snes"), target_dict(name="gb")]
    assert [t.name for t in Settings.from_env_and_kwargs({"targets": raw, "only": "gb, nes"}).targets] == ["nes", "gb"]
    assert [t.name for t in Settings.from_env_and_kwargs({"targets": raw, "only": ["snes"]}).targets] == ["snes"]
    with pytest.raises(ConfigError, match="psx"):
        Settings.from_env_and_kwargs({"targets": raw, "only": ["psx"]})


def test_unknown_target_lookup_raises_keyerror():
    s = Settings.from_env_and_kwargs({"targets": [target_dict()]})
    with pytest.raises(KeyError):
        s.target("nope")


@pytest.mark.parametrize(
    "kwargs",
    [
        {},
        {"targets": []},
        {"targets": "nes"},
        {"targets_path": "/definitely/missing/targets.json"},
        {"targets": [target_dict(), target_dict()]},
        {"targets": [target_dict()], "checkpoint_backend": "redis"},
        {"targets": [target_dict()], "output_format": "xml"},
    ],
)
def test_invalid_settings(kwargs):
    with pytest.raises(ConfigError):
        Settings.from_env_and_kwargs(kwargs)


def test_target_names_with_same_slug_are_rejected():
    targets = [target_dict(name="NES Games"), target_dict(name="nes-games")]
    with pytest.raises(ConfigError, match="same output"):
        Settings.from_env_and_kwargs({"targets": targets})


@pytest.mark.parametrize(
    "overrides",
    [
        {"name": ""},
        {"start_url": "ftp://games.example.test/list"},
        {"page_extractor": None},
        {"page_extractor": {"params": {}}},
        {"detail_extractor": {"kind": "json", "params": "fields"}},
        {"concurrency": 0},
        {"concurrency": "many"},
        {"retry_limit": 0},
        {"timeout": 0},
        {"backoff_base": -1},
        {"jitter": -0.1},
        {"page_delay": -1},
        {"item_delay": -1},
        {"max_pages": 0},
        {"detail_url_template": "https://games.example.test/game"},
        {"fieldnames": "identifier,title"},
    ],
)
def test_invalid_target(overrides):
    with pytest.raises(ConfigError):
        Settings.from_env_and_kwargs({"targets": [target_dict(**overrides)]})


def test_bad_targets_file_json(tmp_path):
    path = tmp_path / "targets.json"
    path.write_text("[{not json")
    with pytest.raises(ConfigError, match="invalid JSON"):
        Settings.from_env_and_kwargs({"targets_path": str(path)})
