"""Tests for the pipeline CLI entry point (fetcher and model client mocked)."""

from unittest.mock import MagicMock, patch

import yaml

from conftest import make_observation
from flashfungi.agents.hints import template_hint_set
from flashfungi.core.database import SpecimenDatabase
from flashfungi.pipeline import PROGRESS_PREFIX, ProgressEvent
from flashfungi.run import main


def _settings_file(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.safe_dump({"database": {"path": str(tmp_path / "ff.db")}}))
    return str(path)


def _mocks(observations):
    client = MagicMock()
    client.iter_observations.return_value = iter(observations)
    generator = MagicMock()
    generator.generate.side_effect = template_hint_set
    return client, generator


def test_main_runs_with_env_config_and_prints_progress(tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("LIMIT", "2")
    monkeypatch.setenv("EXCLUDED_TAXA", "152028")
    client, generator = _mocks([make_observation(obs_id=1), make_observation(obs_id=2, photos=1)])

    with patch("flashfungi.run.INaturalistClient", return_value=client), patch(
        "flashfungi.run.HintGenerator.from_settings", return_value=generator
    ):
        code = main(["--settings", _settings_file(tmp_path), "--progress"])

    assert code == 0
    client.iter_observations.assert_called_once_with(2, [152028])

    lines = [l for l in capsys.readouterr().out.splitlines() if l.startswith(PROGRESS_PREFIX)]
    events = [ProgressEvent.from_line(l) for l in lines]
    assert [e.outcome for e in events] == ["saved", "filtered"]

    db = SpecimenDatabase(tmp_path / "ff.db")
    assert db.get_specimen_by_source("1") is not None
    db.close()


def test_cli_flags_override_env(tmp_path, monkeypatch):
    monkeypatch.setenv("LIMIT", "50")
    monkeypatch.delenv("REQUIRE_DNA", raising=False)
    client, generator = _mocks([make_observation(obs_id=1)])

    with patch("flashfungi.run.INaturalistClient", return_value=client), patch(
        "flashfungi.run.HintGenerator.from_settings", return_value=generator
    ):
        code = main(
            [
                "--settings",
                _settings_file(tmp_path),
                "--limit",
                "5",
                "--require-dna",
                "--exclude-taxa",
                "",
            ]
        )

    assert code == 0
    client.iter_observations.assert_called_once_with(5, [])
    # no DNA evidence, so the only observation is filtered
    generator.generate.assert_not_called()


def test_search_failure_exits_nonzero(tmp_path):
    client = MagicMock()
    client.iter_observations.side_effect = RuntimeError("iNaturalist API error 503")

    with patch("flashfungi.run.INaturalistClient", return_value=client), patch(
        "flashfungi.run.HintGenerator.from_settings", return_value=MagicMock()
    ):
        code = main(["--settings", _settings_file(tmp_path)])

    assert code == 1


def test_export_dir_writes_review_queue(tmp_path):
    client, generator = _mocks([make_observation(obs_id=1)])
    out = tmp_path / "exports"

    with patch("flashfungi.run.INaturalistClient", return_value=client), patch(
        "flashfungi.run.HintGenerator.from_settings", return_value=generator
    ):
        code = main(["--settings", _settings_file(tmp_path), "--export-dir", str(out)])

    assert code == 0
    assert (out / "review_queue.csv").exists()
    assert (out / "review_queue.xlsx").exists()
