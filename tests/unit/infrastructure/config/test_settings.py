from pathlib import Path

import pytest

from ecountgate.domain.errors import ValidationError
from ecountgate.infrastructure.config import settings
from ecountgate.infrastructure.config.settings import (
    DEFAULT_CACHE_TTL_MS,
    get_bool_config,
    get_config,
    get_int_config,
    get_str_config,
    load_configuration,
    load_gate_settings,
    set_config_for_testing,
)

CREDENTIALS = {
    "ECOUNT_COM_CODE": "012345",
    "ECOUNT_USER_ID": "API_USER",
    "ECOUNT_API_CERT_KEY": "cert-key",
}


@pytest.fixture
def fresh_config(monkeypatch):
    """Forgets any configuration loaded by a previous test."""
    monkeypatch.setattr(settings, "_loaded", False)
    monkeypatch.setattr(settings, "_config", {})


@pytest.fixture
def loaded_config(monkeypatch):
    """Marks configuration as loaded so only test overrides and env apply."""
    monkeypatch.setattr(settings, "_loaded", True)
    monkeypatch.setattr(settings, "_config", {})


def test_yaml_keys_are_uppercased_and_env_wins(fresh_config, tmp_path, monkeypatch):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("ecount_com_code: '000123'\nECOUNT_CACHE_TTL_MS: 5000\n")
    monkeypatch.setenv("ECOUNT_CACHE_TTL_MS", "7000")
    monkeypatch.delenv("ECOUNT_COM_CODE", raising=False)

    load_configuration(config_file=config_file, env_file=tmp_path / "missing.env")

    assert get_config("ECOUNT_COM_CODE") == "000123"
    assert get_int_config("ECOUNT_CACHE_TTL_MS") == 7000


def test_dotenv_does_not_override_real_environment(fresh_config, tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text("ECOUNT_USER_ID=from_dotenv\nECOUNT_TEST_ONLY_KEY=dotenv_value\n")
    monkeypatch.setenv("ECOUNT_USER_ID", "from_env")
    monkeypatch.delenv("ECOUNT_TEST_ONLY_KEY", raising=False)

    load_configuration(config_file=tmp_path / "missing.yaml", env_file=env_file)

    assert get_config("ECOUNT_USER_ID") == "from_env"
    assert get_config("ECOUNT_TEST_ONLY_KEY") == "dotenv_value"
    monkeypatch.delenv("ECOUNT_TEST_ONLY_KEY")


def test_malformed_yaml_is_logged_not_raised(fresh_config, tmp_path, caplog):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("key: [unclosed\n")

    load_configuration(config_file=config_file, env_file=tmp_path / "missing.env")

    assert any("Failed to load or parse YAML" in r.message for r in caplog.records)


def test_test_overrides_take_priority(monkeypatch):
    monkeypatch.setenv("ECOUNT_USER_ID", "from_env")
    set_config_for_testing({"ECOUNT_USER_ID": "override"})
    assert get_config("ECOUNT_USER_ID") == "override"


@pytest.mark.parametrize("raw,expected", [
    ("true", True), ("YES", True), ("1", True), ("off", False), ("0", False), (True, True), ("maybe", False),
])
def test_bool_config(raw, expected):
    set_config_for_testing({"FLAG": raw})
    assert get_bool_config("FLAG") is expected


def test_int_config_parses_and_rejects():
    set_config_for_testing({"NUM": " 42 ", "BAD": "forty"})
    assert get_int_config("NUM") == 42
    assert get_int_config("MISSING_NUM_KEY", 7) == 7
    with pytest.raises(ValidationError):
        get_int_config("BAD")


def test_str_config_keeps_leading_zeros_and_treats_blank_as_missing():
    set_config_for_testing({"CODE": "000123", "BLANK": "   "})
    assert get_str_config("CODE") == "000123"
    assert get_str_config("BLANK", "fallback") == "fallback"


def test_load_gate_settings_defaults(loaded_config):
    set_config_for_testing({
        **CREDENTIALS,
        "ECOUNT_USE_TEST_SERVER": "false",
        "ECOUNT_SESSION_FILE": "",
        "ECOUNT_RATE_LIMIT_FILE": "",
        "ECOUNT_CACHE_TTL_MS": DEFAULT_CACHE_TTL_MS,
        "ECOUNT_RETRY_MAX_ATTEMPTS": "",
        "DEBUG": "false",
    })

    gate_settings = load_gate_settings()

    assert gate_settings.com_code == "012345"
    assert gate_settings.use_test_server is False
    assert gate_settings.session_file_path is None
    assert gate_settings.rate_limit_file_path is None
    assert gate_settings.cache_ttl_ms == DEFAULT_CACHE_TTL_MS
    assert gate_settings.retry is None


def test_load_gate_settings_optional_values(loaded_config, tmp_path):
    set_config_for_testing({
        **CREDENTIALS,
        "ECOUNT_USE_TEST_SERVER": "true",
        "ECOUNT_SESSION_FILE": str(tmp_path / "session.json"),
        "ECOUNT_RATE_LIMIT_FILE": str(tmp_path / "rate.json"),
        "ECOUNT_CACHE_TTL_MS": "30000",
        "ECOUNT_RETRY_MAX_ATTEMPTS": "2",
    })

    gate_settings = load_gate_settings()

    assert gate_settings.use_test_server is True
    assert gate_settings.session_file_path == Path(tmp_path / "session.json")
    assert gate_settings.rate_limit_file_path == Path(tmp_path / "rate.json")
    assert gate_settings.cache_ttl_ms == 30000
    assert gate_settings.retry.max_attempts == 2


@pytest.mark.parametrize("missing", sorted(CREDENTIALS))
def test_load_gate_settings_requires_credentials(loaded_config, missing):
    set_config_for_testing({**CREDENTIALS, missing: ""})

    with pytest.raises(ValidationError) as exc_info:
        load_gate_settings()

    assert exc_info.value.field == missing
