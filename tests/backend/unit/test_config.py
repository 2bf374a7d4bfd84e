import logging

from phasetracker.backend.config import configure_logging, load_settings


def test_load_settings_reads_expected_env(monkeypatch) -> None:
    monkeypatch.setenv("PHASETRACKER_SERVER_SALT", "salt-1")
    monkeypatch.setenv("PHASETRACKER_DATABASE_URL", "postgresql://local")
    monkeypatch.setenv("PHASETRACKER_HOST", "localhost")
    monkeypatch.setenv("PHASETRACKER_PORT", "9000")
    monkeypatch.setenv("PHASETRACKER_GM_ONLY", "true")
    monkeypatch.setenv("PHASETRACKER_CLEAR_ON_ROUND_ADVANCE", "1")
    monkeypatch.setenv("PHASETRACKER_LOG_LEVEL", "debug")

    settings = load_settings()

    assert settings.server_salt == "salt-1"
    assert settings.database_url == "postgresql://local"
    assert settings.host == "localhost"
    assert settings.port == 9000
    assert settings.gm_only is True
    assert settings.clear_on_round_advance is True
    assert settings.log_level == "DEBUG"


def test_load_settings_applies_defaults(monkeypatch) -> None:
    for name in (
        "PHASETRACKER_SERVER_SALT",
        "PHASETRACKER_DATABASE_URL",
        "PHASETRACKER_HOST",
        "PHASETRACKER_PORT",
        "PHASETRACKER_GM_ONLY",
        "PHASETRACKER_CLEAR_ON_ROUND_ADVANCE",
        "PHASETRACKER_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = load_settings()

    assert settings.server_salt == "dev-salt"
    assert settings.database_url is None
    assert settings.host == "127.0.0.1"
    assert settings.port == 8000
    assert settings.gm_only is False
    assert settings.clear_on_round_advance is False
    assert settings.log_level == "INFO"


def test_gm_only_flag_treats_unknown_values_as_false(monkeypatch) -> None:
    monkeypatch.setenv("PHASETRACKER_GM_ONLY", "maybe")

    assert load_settings().gm_only is False


def test_configure_logging_passes_level_to_basic_config(monkeypatch) -> None:
    calls: list[dict] = []
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))

    configure_logging("WARNING")
    configure_logging("NOT-A-LEVEL")

    assert calls[0]["level"] == logging.WARNING
    assert calls[1]["level"] == logging.INFO
