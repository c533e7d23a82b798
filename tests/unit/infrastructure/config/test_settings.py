import pytest

from conduit.infrastructure.config import settings


@pytest.fixture
def yaml_config(tmp_path, monkeypatch):
    """Loads a YAML file as the configuration and restores the previous values afterwards."""
    monkeypatch.setattr(settings, "_config", dict(settings._config))
    monkeypatch.setattr(settings, "_loaded", settings._loaded)
    missing_env = tmp_path / "missing.env"

    def _load(text: str):
        path = tmp_path / "config.yaml"
        path.write_text(text, encoding="utf-8")
        settings.reload_configuration(config_file=path, env_file=missing_env)
        return path

    return _load


def test_nested_yaml_keys(yaml_config, monkeypatch):
    monkeypatch.delenv("HTTP_TIMEOUT_SECONDS", raising=False)
    yaml_config("http:\n  timeout_seconds: 12\nlogging:\n  level: debug\n")
    assert settings.get_config("http.timeout_seconds") == 12
    assert settings.get_default_timeout() == 12.0
    assert settings.get_config("http.missing", "fallback") == "fallback"


def test_environment_overrides_yaml(yaml_config, monkeypatch):
    yaml_config("http:\n  timeout_seconds: 12\n")
    monkeypatch.setenv("HTTP_TIMEOUT_SECONDS", "2.5")
    assert settings.get_config("http.timeout_seconds") == 2.5


def test_test_config_overrides_everything(yaml_config, monkeypatch):
    yaml_config("logging:\n  level: debug\n")
    monkeypatch.setenv("LOGGING_LEVEL", "error")
    settings.set_config_for_testing({"logging.level": "warning"})
    assert settings.get_log_level() == "WARNING"

    settings.clear_test_config()
    assert settings.get_log_level() == "ERROR"


def test_env_value_coercion():
    assert settings._coerce_env_value("true") is True
    assert settings._coerce_env_value("FALSE") is False
    assert settings._coerce_env_value("42") == 42
    assert settings._coerce_env_value("0.5") == 0.5
    assert settings._coerce_env_value("hello") == "hello"


def test_invalid_timeout_falls_back(monkeypatch):
    settings.set_config_for_testing({"http.timeout_seconds": "soon"})
    assert settings.get_default_timeout() == settings.DEFAULT_TIMEOUT_SECONDS


def test_provider_overrides_section(yaml_config):
    yaml_config("providers:\n  hubspot:\n    timeout_seconds: 5\n  acme:\n    base_url: https://acme.example\n")
    assert settings.get_provider_overrides() == {
        "hubspot": {"timeout_seconds": 5},
        "acme": {"base_url": "https://acme.example"},
    }


def test_non_mapping_provider_section_is_ignored():
    settings.set_config_for_testing({"providers": ["hubspot"]})
    assert settings.get_provider_overrides() == {}


def test_credentials_file_expands_user(monkeypatch, tmp_path):
    monkeypatch.delenv("CREDENTIALS_FILE", raising=False)
    settings.set_config_for_testing({"credentials.file": "~/creds.json"})
    assert settings.get_credentials_file().name == "creds.json"
    assert "~" not in str(settings.get_credentials_file())


def test_dotenv_file_is_loaded_without_overriding_environment(yaml_config, tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text("CONDUIT_TEST_SECRET=from-dotenv\nCONDUIT_TEST_KEPT=from-dotenv\n", encoding="utf-8")
    monkeypatch.setenv("CONDUIT_TEST_KEPT", "from-env")
    monkeypatch.delenv("CONDUIT_TEST_SECRET", raising=False)

    config_file = tmp_path / "absent.yaml"
    settings.reload_configuration(config_file=config_file, env_file=env_file)
    try:
        assert settings.get_env_secret("CONDUIT_TEST_SECRET") == "from-dotenv"
        assert settings.get_env_secret("CONDUIT_TEST_KEPT") == "from-env"
    finally:
        monkeypatch.delenv("CONDUIT_TEST_SECRET", raising=False)


def test_get_env_secret_treats_empty_as_missing(monkeypatch):
    monkeypatch.setenv("CONDUIT_EMPTY_SECRET", "")
    assert settings.get_env_secret("CONDUIT_EMPTY_SECRET") is None
    assert settings.get_env_secret(None) is None
