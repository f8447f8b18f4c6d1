from __future__ import annotations

import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from codstats import settings as settings_module
from codstats.settings import Settings, load_env


def test_load_env_reads_repo_root_dotenv(tmp_path, monkeypatch) -> None:
    backend = tmp_path / "backend"
    backend.mkdir()
    dotenv = tmp_path / ".env"
    dotenv.write_text("CODSTATS_MATCH_LIMIT=42\n", encoding="utf-8")
    monkeypatch.setattr(settings_module, "BACKEND_DIR", backend)
    # Register the variable so teardown removes what load_env sets.
    monkeypatch.setenv("CODSTATS_MATCH_LIMIT", "unset")
    monkeypatch.delenv("CODSTATS_MATCH_LIMIT")

    assert load_env() == dotenv
    assert Settings.from_env().match_limit == 42


def test_backend_dotenv_wins_over_repo_root(tmp_path, monkeypatch) -> None:
    backend = tmp_path / "backend"
    backend.mkdir()
    (backend / ".env").write_text("CODSTATS_MATCH_LIMIT=7\n", encoding="utf-8")
    (tmp_path / ".env").write_text("CODSTATS_MATCH_LIMIT=42\n", encoding="utf-8")
    monkeypatch.setattr(settings_module, "BACKEND_DIR", backend)
    monkeypatch.setenv("CODSTATS_MATCH_LIMIT", "unset")
    monkeypatch.delenv("CODSTATS_MATCH_LIMIT")

    assert load_env() == backend / ".env"
    assert Settings.from_env().match_limit == 7


def test_defaults_come_from_settings(monkeypatch) -> None:
    for name in (
        "CODSTATS_API_BASE_URL",
        "CODSTATS_USE_API",
        "CODSTATS_MATCH_LIMIT",
        "CODSTATS_CSV_PATH",
    ):
        monkeypatch.setenv(name, "unset")
        monkeypatch.delenv(name)

    config = Settings.from_env()
    assert config.api_base_url is None
    assert config.use_api is True
    assert config.match_limit == 10000
    assert config.csv_path == settings_module.DEFAULT_CSV_PATH


def test_api_base_url_trailing_slash_is_trimmed(monkeypatch) -> None:
    monkeypatch.setenv("CODSTATS_API_BASE_URL", " https://stats.example/v1/ ")
    assert Settings.from_env().api_base_url == "https://stats.example/v1"

    monkeypatch.setenv("CODSTATS_API_BASE_URL", "   ")
    assert Settings.from_env().api_base_url is None
