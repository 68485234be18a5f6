from pathlib import Path

import pytest

from couchdb_changes.config import load_settings

_ENV_KEYS = (
    "COUCHDB_HOST",
    "COUCHDB_PORT",
    "COUCHDB_DB",
    "COUCHDB_SECURE",
    "COUCHDB_CA_FILE",
    "COUCHDB_USERNAME",
    "COUCHDB_PASSWORD",
    "COUCHDB_HEARTBEAT_MS",
    "COUCHDB_TIMEOUT_MS",
    "COUCHDB_CONNECT_TIMEOUT_SECONDS",
    "COUCHDB_READ_TIMEOUT_SECONDS",
    "SEQUENCE_BACKEND",
    "SEQUENCE_PATH",
    "SEQUENCE_FSYNC",
    "INITIAL_SEQUENCE",
    "KEEP_REVISION",
    "ALWAYS_RECONNECT",
    "RECONNECT_DELAY_SECONDS",
    "WRITE_JSONL",
    "JSONL_PATH",
    "JSONL_FSYNC",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    monkeypatch.setattr(
        "couchdb_changes.config.load_dotenv", lambda *_args, **_kwargs: True
    )
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


@pytest.mark.unit
def test_defaults(monkeypatch, tmp_path):
    monkeypatch.setenv("HOME", str(tmp_path))

    settings = load_settings()

    assert settings.host == "localhost"
    assert settings.port == 5984
    assert settings.db == ""
    assert settings.secure is False
    assert settings.username is None
    assert settings.heartbeat_ms == 1000
    assert settings.timeout_ms is None
    assert settings.sequence_backend == "file"
    assert settings.sequence_path == tmp_path / ".couchdb_seq"
    assert settings.initial_sequence is None
    assert settings.keep_revision is False
    assert settings.always_reconnect is True
    assert settings.reconnect_delay_seconds == 10.0
    assert settings.write_jsonl is False
    assert settings.log_level == "INFO"


@pytest.mark.unit
def test_explicit_values(monkeypatch, tmp_path):
    monkeypatch.setenv("COUCHDB_HOST", "couch.internal")
    monkeypatch.setenv("COUCHDB_PORT", "6984")
    monkeypatch.setenv("COUCHDB_DB", " orders ")
    monkeypatch.setenv("COUCHDB_SECURE", "true")
    monkeypatch.setenv("COUCHDB_USERNAME", "reader")
    monkeypatch.setenv("COUCHDB_PASSWORD", "secret")
    monkeypatch.setenv("COUCHDB_TIMEOUT_MS", "30000")
    monkeypatch.setenv("SEQUENCE_BACKEND", "MEMORY")
    monkeypatch.setenv("SEQUENCE_PATH", str(tmp_path / "seq"))
    monkeypatch.setenv("INITIAL_SEQUENCE", "120")
    monkeypatch.setenv("KEEP_REVISION", "yes")
    monkeypatch.setenv("ALWAYS_RECONNECT", "false")
    monkeypatch.setenv("RECONNECT_DELAY_SECONDS", "2.5")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = load_settings()

    assert settings.host == "couch.internal"
    assert settings.port == 6984
    assert settings.db == "orders"
    assert settings.secure is True
    assert settings.username == "reader"
    assert settings.password == "secret"
    assert settings.timeout_ms == 30000
    assert settings.sequence_backend == "memory"
    assert settings.sequence_path == Path(tmp_path / "seq")
    assert settings.initial_sequence == "120"
    assert settings.keep_revision is True
    assert settings.always_reconnect is False
    assert settings.reconnect_delay_seconds == 2.5
    assert settings.log_level == "DEBUG"


@pytest.mark.unit
def test_unknown_sequence_backend_falls_back_to_file(monkeypatch, tmp_path):
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("SEQUENCE_BACKEND", "redis")

    assert load_settings().sequence_backend == "file"


@pytest.mark.unit
def test_missing_home_without_sequence_path_is_an_error(monkeypatch):
    monkeypatch.delenv("HOME", raising=False)

    with pytest.raises(ValueError, match="HOME"):
        load_settings()


@pytest.mark.unit
def test_sequence_path_does_not_need_home(monkeypatch, tmp_path):
    monkeypatch.delenv("HOME", raising=False)
    monkeypatch.setenv("SEQUENCE_PATH", str(tmp_path / "seq"))

    assert load_settings().sequence_path == tmp_path / "seq"


@pytest.mark.unit
def test_blank_timeout_is_treated_as_unset(monkeypatch, tmp_path):
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("COUCHDB_TIMEOUT_MS", "  ")

    assert load_settings().timeout_ms is None


@pytest.mark.unit
def test_jsonl_fsync_flag(monkeypatch, tmp_path):
    monkeypatch.setenv("HOME", str(tmp_path))
    assert load_settings().jsonl_fsync is False

    monkeypatch.setenv("JSONL_FSYNC", "1")
    assert load_settings().jsonl_fsync is True
