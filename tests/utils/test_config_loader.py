from pathlib import Path

import pytest
import yaml

from market_watcher.utils.config_loader import ConfigLoader


@pytest.fixture
def secrets_env(monkeypatch, tmp_path):
    # Keep a developer's real .env out of the picture.
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("ALPHA_VANTAGE_API_KEY", "av-key")
    monkeypatch.setenv("TELEGRAM_ACCESS_TOKEN", "123:tg-token")
    monkeypatch.delenv("DEBUG_SCHEDULE", raising=False)
    monkeypatch.delenv("MARKET_WATCHER_CONFIG", raising=False)


def write_config(tmp_path: Path, data) -> str:
    path = tmp_path / "config.yaml"
    path.write_text(data if isinstance(data, str) else yaml.safe_dump(data), encoding="utf-8")
    return str(path)


def test_loads_defaults_and_secrets(secrets_env, tmp_path):
    config = ConfigLoader(write_config(tmp_path, {"system": {"version": "1.2.3"}})).get_config()

    assert config.system.version == "1.2.3"
    assert config.market_data.symbols == ["VGK", "VOO"]
    assert config.indicators.lookback_days == 14
    assert config.indicators.max_gap_days == 30
    assert config.indicators.average_over_samples is False
    assert config.scheduler.cron_expression == "0 9 * * *"
    assert config.scheduler.timezone == "Europe/London"
    assert config.secrets.alpha_vantage_api_key == "av-key"
    assert config.secrets.telegram_access_token == "123:tg-token"


def test_config_is_cached(secrets_env, tmp_path):
    loader = ConfigLoader(write_config(tmp_path, {}))
    assert loader.get_config() is loader.get_config()


def test_symbols_are_normalized(secrets_env, tmp_path):
    path = write_config(tmp_path, {"market_data": {"symbols": [" voo", "Vgk "]}})
    assert ConfigLoader(path).get_config().market_data.symbols == ["VOO", "VGK"]


def test_config_path_from_environment(secrets_env, tmp_path, monkeypatch):
    monkeypatch.setenv("MARKET_WATCHER_CONFIG", write_config(tmp_path, {"metrics": {"enabled": True}}))
    assert ConfigLoader().get_config().metrics.enabled is True


def test_debug_schedule_overrides_cron(secrets_env, tmp_path, monkeypatch):
    monkeypatch.setenv("DEBUG_SCHEDULE", "true")
    config = ConfigLoader(write_config(tmp_path, {"scheduler": {"cron_expression": "30 8 * * 1-5"}})).get_config()
    assert config.scheduler.cron_expression == "* * * * *"


def test_missing_file(secrets_env, tmp_path):
    with pytest.raises(FileNotFoundError):
        ConfigLoader(str(tmp_path / "absent.yaml")).get_config()


def test_empty_file(secrets_env, tmp_path):
    with pytest.raises(ValueError, match="empty"):
        ConfigLoader(write_config(tmp_path, "")).get_config()


def test_secrets_section_rejected(secrets_env, tmp_path):
    path = write_config(tmp_path, {"secrets": {"alpha_vantage_api_key": "inline"}})
    with pytest.raises(ValueError, match="secrets"):
        ConfigLoader(path).get_config()


@pytest.mark.parametrize(
    "data",
    [
        {"unknown_section": {}},
        {"market_data": {"symbols": []}},
        {"market_data": {"symbols": ["VOO", "voo"]}},
        {"indicators": {"lookback_days": 0}},
        {"scheduler": {"cron_expression": "every day"}},
        {"scheduler": {"timezone": "Mars/Olympus"}},
        {"market_data": {"rate_limit": {"limit": 0, "interval": 60}}},
    ],
)
def test_invalid_values_report_validation_error(secrets_env, tmp_path, data):
    with pytest.raises(ValueError, match="Configuration validation failed"):
        ConfigLoader(write_config(tmp_path, data)).get_config()


def test_missing_secret_is_fatal(secrets_env, tmp_path, monkeypatch):
    monkeypatch.delenv("TELEGRAM_ACCESS_TOKEN")
    with pytest.raises(ValueError, match="telegram_access_token"):
        ConfigLoader(write_config(tmp_path, {})).get_config()


def test_unparseable_yaml(secrets_env, tmp_path):
    with pytest.raises(ValueError, match="Error parsing"):
        ConfigLoader(write_config(tmp_path, "system: [unclosed")).get_config()
