import argparse
import pytest
from config import load_config, AppConfig

ENV_VARS = [
    'TELEGRAM_BOT_TOKEN',
    'TELEGRAM_CHAT_ID',
    'MONITOR_INTERVAL',
    'TVL_CHANGE_THRESHOLD',
    'PRICE_ALERT_THRESHOLD',
    'MONITOR_DB_PATH',
]


def _namespace(**overrides):
    values = dict(
        interval=None,
        tvl_change_threshold=None,
        price_alert_threshold=None,
        chain_id=56,
        db_path=None,
        telegram_enabled=False,
        once=False,
    )
    values.update(overrides)
    return argparse.Namespace(**values)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def _patch_args(monkeypatch, **overrides):
    monkeypatch.setattr('argparse.ArgumentParser.parse_args', lambda self: _namespace(**overrides))


def test_defaults(monkeypatch):
    _patch_args(monkeypatch)
    config = load_config()
    assert isinstance(config, AppConfig)
    assert config.interval == 60
    assert config.tvl_change_threshold == 20.0
    assert config.price_alert_threshold == 5.0
    assert config.db_path == 'data/monitor.db'
    assert config.telegram_enabled is False
    assert config.run_once is False


def test_environment_overrides_defaults(monkeypatch):
    monkeypatch.setenv('MONITOR_INTERVAL', '120')
    monkeypatch.setenv('TVL_CHANGE_THRESHOLD', '15.5')
    monkeypatch.setenv('PRICE_ALERT_THRESHOLD', '3')
    monkeypatch.setenv('MONITOR_DB_PATH', '/tmp/monitor.db')
    _patch_args(monkeypatch)
    config = load_config()
    assert config.interval == 120
    assert config.tvl_change_threshold == 15.5
    assert config.price_alert_threshold == 3.0
    assert config.db_path == '/tmp/monitor.db'


def test_flags_take_precedence_over_environment(monkeypatch):
    monkeypatch.setenv('MONITOR_INTERVAL', '120')
    monkeypatch.setenv('TVL_CHANGE_THRESHOLD', '15.5')
    _patch_args(monkeypatch, interval=30, tvl_change_threshold=40.0, once=True)
    config = load_config()
    assert config.interval == 30
    assert config.tvl_change_threshold == 40.0
    assert config.run_once is True


def test_telegram_enabled_requires_credentials(monkeypatch):
    _patch_args(monkeypatch, telegram_enabled=True)
    with pytest.raises(SystemExit):
        load_config()


def test_telegram_enabled_with_credentials(monkeypatch):
    monkeypatch.setenv('TELEGRAM_BOT_TOKEN', 'token')
    monkeypatch.setenv('TELEGRAM_CHAT_ID', '12345')
    _patch_args(monkeypatch, telegram_enabled=True)
    config = load_config()
    assert config.telegram_bot_token == 'token'
    assert config.telegram_chat_id == '12345'


def test_non_numeric_environment_value_exits(monkeypatch):
    monkeypatch.setenv('MONITOR_INTERVAL', 'soon')
    _patch_args(monkeypatch)
    with pytest.raises(SystemExit):
        load_config()
