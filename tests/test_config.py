"""Tests for settings loading and per-run configuration."""

import pytest
import yaml
from pydantic import ValidationError

from flashfungi.core.config import (
    EXCLUDED_TAXA,
    RunConfig,
    Settings,
    load_settings,
    parse_operator_tokens,
)


# ── RunConfig ────────────────────────────────────────────────────────


def test_run_config_defaults():
    config = RunConfig()
    assert config.limit == 50
    assert config.min_photos == 3
    assert config.require_dna is False
    assert config.auto_approve is False
    assert config.excluded_taxa == list(EXCLUDED_TAXA.values())


def test_run_config_accepts_camel_case_body():
    config = RunConfig.model_validate(
        {"limit": 10, "minPhotos": 2, "requireDNA": True, "excludedTaxa": [152028]}
    )
    assert config.min_photos == 2
    assert config.require_dna is True
    assert config.excluded_taxa == [152028]


def test_run_config_rejects_bad_values():
    with pytest.raises(ValidationError):
        RunConfig(limit=0)
    with pytest.raises(ValidationError):
        RunConfig.model_validate({"limit": "lots"})


def test_env_round_trip():
    config = RunConfig(limit=7, min_photos=4, require_dna=True, excluded_taxa=[1, 2])
    env = config.to_env()
    assert env == {
        "LIMIT": "7",
        "MIN_PHOTOS": "4",
        "REQUIRE_DNA": "true",
        "AUTO_APPROVE": "false",
        "EXCLUDED_TAXA": "1,2",
    }
    assert RunConfig.from_env(env) == config


def test_from_env_defaults_and_empty_exclusions():
    assert RunConfig.from_env({}) == RunConfig()
    assert RunConfig.from_env({"EXCLUDED_TAXA": ""}).excluded_taxa == []
    assert RunConfig.from_env({"REQUIRE_DNA": "1"}).require_dna is True


# ── Settings ─────────────────────────────────────────────────────────


def test_parse_operator_tokens():
    assert parse_operator_tokens("abc:alice, def:bob,ghi") == {
        "abc": "alice",
        "def": "bob",
        "ghi": "operator",
    }


def test_load_settings_defaults(monkeypatch):
    monkeypatch.delenv("FLASHFUNGI_SETTINGS", raising=False)
    monkeypatch.delenv("FLASHFUNGI_OPERATOR_TOKENS", raising=False)
    settings = load_settings()
    assert settings == Settings()
    assert settings.inaturalist.place_id == 40
    assert settings.inaturalist.taxon_id == 47170


def test_load_settings_from_yaml(tmp_path, monkeypatch):
    monkeypatch.setenv("FLASHFUNGI_OPERATOR_TOKENS", "tok2:bob")
    path = tmp_path / "settings.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "inaturalist": {"per_page": 20, "request_delay": 2.0},
                "database": {"path": str(tmp_path / "x.db")},
                "api": {"operator_tokens": {"tok1": "alice"}},
            }
        )
    )
    settings = load_settings(path)
    assert settings.inaturalist.per_page == 20
    assert settings.inaturalist.request_delay == 2.0
    assert settings.api.operator_tokens == {"tok1": "alice", "tok2": "bob"}


def test_sample_settings_file_is_valid(monkeypatch):
    from pathlib import Path

    monkeypatch.delenv("FLASHFUNGI_OPERATOR_TOKENS", raising=False)
    sample = Path(__file__).resolve().parent.parent / "config" / "settings.yaml"
    settings = load_settings(sample)
    assert settings.inaturalist.excluded_taxa == EXCLUDED_TAXA
