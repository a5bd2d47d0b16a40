from __future__ import annotations

import types
from pathlib import Path

import pytest
from alembic.config import Config
from sqlalchemy import inspect

from feedcache.config import Settings
from feedcache.db.session import build_engine
from scripts import run_migrations as runner

BACKEND_ROOT = Path(__file__).resolve().parent.parent


def _config(url: str = runner.URL_PLACEHOLDER) -> Config:
    config = Config()
    config.set_main_option("script_location", str(BACKEND_ROOT / "alembic"))
    config.set_main_option("sqlalchemy.url", url.replace("%", "%%"))
    return config


def test_resolve_database_url_prefers_env(monkeypatch) -> None:
    monkeypatch.setenv("FEEDCACHE_DATABASE_URL", "sqlite://")
    config = _config()

    assert runner.resolve_database_url(config) == "sqlite://"
    assert config.get_main_option("sqlalchemy.url") == "sqlite://"


def test_resolve_database_url_requires_configuration(monkeypatch) -> None:
    monkeypatch.delenv("FEEDCACHE_DATABASE_URL", raising=False)

    with pytest.raises(RuntimeError):
        runner.resolve_database_url(_config())


def test_explicit_url_is_kept(monkeypatch) -> None:
    monkeypatch.setenv("FEEDCACHE_DATABASE_URL", "sqlite:///ignored.sqlite")

    assert runner.resolve_database_url(_config("sqlite:///explicit.sqlite")) == "sqlite:///explicit.sqlite"


def test_wait_for_database_succeeds_with_sqlite(tmp_path) -> None:
    runner.wait_for_database(f"sqlite:///{tmp_path / 'ready.sqlite'}", timeout=2, poll_interval=0.1)


def test_wait_for_database_times_out(monkeypatch) -> None:
    class DummyEngine:
        def connect(self) -> types.SimpleNamespace:
            raise runner.OperationalError("SELECT 1", {}, Exception("connection refused"))

        def dispose(self) -> None:
            pass

    monkeypatch.setattr(runner, "create_engine", lambda *_, **__: DummyEngine())
    with pytest.raises(RuntimeError):
        runner.wait_for_database("postgresql://feedcache.invalid/feeds", timeout=0, poll_interval=0)


def test_run_migrations_waits_then_upgrades(monkeypatch) -> None:
    monkeypatch.setenv("FEEDCACHE_DATABASE_URL", "sqlite://")
    recorded: dict[str, object] = {}

    def fake_wait(url: str, *, timeout: int, poll_interval: float) -> None:
        recorded["wait"] = (url, timeout, poll_interval)

    def fake_upgrade(cfg: Config, revision: str) -> None:
        recorded["revision"] = revision
        recorded["script_location"] = cfg.get_main_option("script_location")

    monkeypatch.setattr(runner, "wait_for_database", fake_wait)
    monkeypatch.setattr(runner.command, "upgrade", fake_upgrade)

    runner.run_migrations("head", timeout=5, poll_interval=0.1, config=_config())

    assert recorded["wait"] == ("sqlite://", 5, 0.1)
    assert recorded["revision"] == "head"
    assert str(recorded["script_location"]).endswith("alembic")


def test_migration_creates_feed_cache_tables(tmp_path, monkeypatch) -> None:
    url = f"sqlite:///{tmp_path / 'migrated.sqlite'}"
    monkeypatch.setenv("FEEDCACHE_DATABASE_URL", url)

    runner.run_migrations("head", timeout=2, poll_interval=0.1, config=_config())

    engine = build_engine(Settings(FEEDCACHE_DATABASE_URL=url))
    try:
        tables = set(inspect(engine).get_table_names())
    finally:
        engine.dispose()
    assert {"feed_users", "learning_sessions", "content_items", "behavior_profiles", "feed_entries"} <= tables
