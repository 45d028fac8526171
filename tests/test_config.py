"""Tests for guildbell.core.config."""

import pydantic
import pytest
import yaml

from guildbell.core.config import Config, load_config
from guildbell.core.cron.errors import ValidationError


@pytest.fixture(autouse=True)
def _isolated(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "no-home"))
    monkeypatch.delenv("GUILDBELL_CONFIG", raising=False)


def test_defaults():
    cfg = Config()
    assert cfg.scheduler.default_timezone == "America/Los_Angeles"
    assert cfg.scheduler.misfire_grace_s == 300
    assert cfg.database.path == "data/guildbell.db"
    assert cfg.events.provider == "mock"
    assert cfg.events.cache_ttl_s == 3600
    assert cfg.events.max_results == 10
    assert cfg.discord.api_base == "https://discord.com/api/v10"
    assert not cfg.discord_enabled


def test_from_dict():
    cfg = Config(discord={"token": "abc"}, scheduler={"default_timezone": "Europe/Istanbul"})
    assert cfg.discord_enabled
    assert cfg.scheduler.default_timezone == "Europe/Istanbul"


def test_invalid_default_timezone():
    with pytest.raises(pydantic.ValidationError):
        Config(scheduler={"default_timezone": "Mars/Olympus_Mons"})


def test_load_yaml(tmp_path):
    f = tmp_path / "custom.yaml"
    f.write_text(yaml.dump({"database": {"path": "data/yaml.db"}, "events": {"max_results": 5}}))
    cfg = load_config(f)
    assert cfg.database.path == "data/yaml.db"
    assert cfg.events.max_results == 5


def test_load_missing(tmp_path):
    cfg = load_config(tmp_path / "nope.yaml")
    assert cfg.database.path == "data/guildbell.db"


def test_load_default_config_yaml_in_cwd(tmp_path):
    (tmp_path / "config.yaml").write_text(yaml.dump({"logging": {"level": "DEBUG"}}))
    assert load_config().logging.level == "DEBUG"


def test_config_env_points_to_file(tmp_path, monkeypatch):
    f = tmp_path / "elsewhere.yaml"
    f.write_text(yaml.dump({"events": {"provider": "http", "api_url": "https://feed.test/events"}}))
    monkeypatch.setenv("GUILDBELL_CONFIG", str(f))
    cfg = load_config()
    assert cfg.events.provider == "http"


def test_env_overrides_yaml(tmp_path, monkeypatch):
    f = tmp_path / "config.yaml"
    f.write_text(yaml.dump({"database": {"path": "data/yaml.db"}, "scheduler": {"misfire_grace_s": 10}}))
    monkeypatch.setenv("GUILDBELL_DATABASE__PATH", "data/env.db")
    cfg = load_config(f)
    assert cfg.database.path == "data/env.db"
    assert cfg.scheduler.misfire_grace_s == 10


def test_load_expands_home(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    (tmp_path / "home.yaml").write_text(yaml.dump({"events": {"max_results": 3}}))
    assert load_config("~/home.yaml").events.max_results == 3


def test_load_user_config_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    user_dir = tmp_path / ".config" / "guildbell"
    user_dir.mkdir(parents=True)
    (user_dir / "config.yaml").write_text(yaml.dump({"logging": {"level": "WARNING"}}))
    assert load_config().logging.level == "WARNING"


def test_cwd_config_wins_over_user_config(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    user_dir = tmp_path / "home" / ".config" / "guildbell"
    user_dir.mkdir(parents=True)
    (user_dir / "config.yaml").write_text(yaml.dump({"logging": {"level": "WARNING"}}))
    (tmp_path / "config.yaml").write_text(yaml.dump({"logging": {"level": "DEBUG"}}))
    assert load_config().logging.level == "DEBUG"


def test_empty_file_uses_defaults(tmp_path):
    f = tmp_path / "empty.yaml"
    f.write_text("")
    assert load_config(f).database.path == "data/guildbell.db"


@pytest.mark.parametrize("text", ["- just\n- a list\n", "events: [unclosed\n"])
def test_malformed_file_raises(tmp_path, text):
    f = tmp_path / "bad.yaml"
    f.write_text(text)
    with pytest.raises(ValidationError):
        load_config(f)


def test_sync_interval_setting():
    assert Config().scheduler.sync_interval_s == 60
    assert Config(scheduler={"sync_interval_s": 0}).scheduler.sync_interval_s == 0
    with pytest.raises(pydantic.ValidationError):
        Config(scheduler={"sync_interval_s": -1})
