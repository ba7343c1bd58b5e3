import pytest

from roomrelay.backend.config import load_settings, parse_relay_paths


def test_load_settings_reads_expected_env(monkeypatch) -> None:
    monkeypatch.setenv("ROOMRELAY_HOST", "localhost")
    monkeypatch.setenv("ROOMRELAY_PORT", "9000")
    monkeypatch.setenv("ROOMRELAY_ROOM_IDLE_SECONDS", "120")
    monkeypatch.setenv("ROOMRELAY_MAX_MAILBOX_SIZE", "8")
    monkeypatch.setenv(
        "ROOMRELAY_RELAY_PATHS",
        '[{"urls": "turn:relay.example:3478", "username": "u", "credential": "c"}]',
    )

    settings = load_settings()

    assert settings.host == "localhost"
    assert settings.port == 9000
    assert settings.room_idle_seconds == 120.0
    assert settings.max_mailbox_size == 8
    assert settings.relay_paths[0].urls == ("turn:relay.example:3478",)
    assert settings.relay_paths[0].username == "u"


def test_load_settings_applies_defaults(monkeypatch) -> None:
    for name in (
        "ROOMRELAY_HOST",
        "ROOMRELAY_PORT",
        "ROOMRELAY_LOG_LEVEL",
        "ROOMRELAY_ROOM_IDLE_SECONDS",
        "ROOMRELAY_MAX_ROOMS",
        "ROOMRELAY_MAX_MAILBOX_SIZE",
        "ROOMRELAY_RELAY_PATHS",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = load_settings()

    assert settings.host == "127.0.0.1"
    assert settings.port == 8000
    assert settings.log_level == "INFO"
    assert settings.room_idle_seconds == 1800.0
    assert settings.max_rooms == 10000
    assert settings.relay_paths == ()


def test_parse_relay_paths_accepts_url_lists() -> None:
    paths = parse_relay_paths('[{"urls": ["turn:a:3478", "turn:a:443?transport=tcp"]}]')

    assert paths[0].urls == ("turn:a:3478", "turn:a:443?transport=tcp")
    assert paths[0].credential is None


def test_parse_relay_paths_rejects_non_list() -> None:
    with pytest.raises(ValueError):
        parse_relay_paths('{"urls": "turn:a"}')
