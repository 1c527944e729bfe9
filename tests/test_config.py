import json

import pytest

from magazine import config


@pytest.fixture
def home(tmp_path, monkeypatch):
    """Point the default data folder at a temp dir."""
    default = tmp_path / "default"
    monkeypatch.setattr(config, "_default_data_dir", lambda: default)
    return default


def test_defaults(home):
    s = config.load_settings(session={}, environ={})

    assert s.data_dir == home.resolve()
    assert s.db_path == home.resolve() / "magazine.db"
    assert s.admin_emails == ()
    assert s.audit_limit == 100
    assert s.low_stock_threshold == 10
    assert s.expiry_window_days == 7
    assert home.exists()


def test_environment_overrides(home, tmp_path):
    env = {
        config.ENV_DATA_DIR: str(tmp_path / "env"),
        config.ENV_ADMIN_EMAILS: " Boss@Shop.com, ops@shop.com ,",
        config.ENV_CURRENCY: "EUR",
    }
    s = config.load_settings(session={}, environ=env)

    assert s.data_dir == (tmp_path / "env").resolve()
    assert s.admin_emails == ("boss@shop.com", "ops@shop.com")
    assert s.currency == "EUR"


def test_session_beats_environment(home, tmp_path):
    session = {config.SESSION_DATA_DIR: str(tmp_path / "session")}
    env = {config.ENV_DATA_DIR: str(tmp_path / "env")}
    assert config.load_settings(session=session, environ=env).data_dir == (tmp_path / "session").resolve()


def test_persisted_settings(home, tmp_path):
    home.mkdir(parents=True)
    (home / config.CONFIG_FILE_NAME).write_text(
        json.dumps({"data_dir": str(tmp_path / "saved"), "admin_emails": ["a@b.co"], "currency": "GBP"}),
        encoding="utf-8",
    )
    s = config.load_settings(session={}, environ={})

    assert s.data_dir == (tmp_path / "saved").resolve()
    assert s.admin_emails == ("a@b.co",)
    assert s.currency == "GBP"


def test_unreadable_settings_file_is_ignored(home):
    home.mkdir(parents=True)
    (home / config.CONFIG_FILE_NAME).write_text("{not json", encoding="utf-8")
    assert config.load_settings(session={}, environ={}).data_dir == home.resolve()


def test_persist_data_dir_survives_restart(home, tmp_path, monkeypatch):
    session = {}
    monkeypatch.setattr(config.st, "session_state", session)
    target = tmp_path / "chosen"

    config.persist_data_dir(str(target))

    assert session[config.SESSION_DATA_DIR] == str(target.resolve())
    assert config.load_settings(session={}, environ={}).data_dir == target.resolve()
