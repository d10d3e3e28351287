#!/usr/bin/env python3
import os
import argparse
from typing import NamedTuple
import constants

class AppConfig(NamedTuple):
    """Typed configuration object."""
    interval: int
    tvl_change_threshold: float
    price_alert_threshold: float
    chain_id: int
    db_path: str
    telegram_enabled: bool
    telegram_bot_token: str | None
    telegram_chat_id: str | None
    run_once: bool


def _env_number(name: str, cast, default):
    raw = os.environ.get(name)
    if raw is None or raw == '':
        return default
    try:
        return cast(raw)
    except ValueError:
        print(f"{constants.C_RED}{name} must be a number, got {raw!r}.{constants.C_RESET}")
        exit(1)


def load_config() -> AppConfig:
    """
    Parses command-line arguments and loads environment variables to create a configuration object.
    Command-line flags take precedence over the environment.
    """
    parser = argparse.ArgumentParser(
        description="Monitor TermMax dual-investment pools and push alerts to Telegram.",
        epilog="Example: ./main.py --interval 60 --tvl-change-threshold 20 --telegram-enabled"
    )
    parser.add_argument('--interval', type=int, help=f'Seconds between monitor ticks (default: {constants.DEFAULT_INTERVAL_SECONDS}).')
    parser.add_argument('--tvl-change-threshold', type=float, help=f'TVL change percentage that triggers an alert (default: {constants.DEFAULT_TVL_CHANGE_THRESHOLD}).')
    parser.add_argument('--price-alert-threshold', type=float, help=f'Distance to strike percentage that triggers a price alert (default: {constants.DEFAULT_PRICE_ALERT_THRESHOLD}).')
    parser.add_argument('--chain-id', type=int, default=constants.DEFAULT_CHAIN_ID, help=f'Chain id to monitor (default: {constants.DEFAULT_CHAIN_ID}).')
    parser.add_argument('--db-path', type=str, help=f'SQLite file for known pools and watch rules (default: {constants.DEFAULT_DB_PATH}).')
    parser.add_argument('--telegram-enabled', action='store_true', help='Enable Telegram notifications and chat commands.')
    parser.add_argument('--once', action='store_true', help='Run a single monitor tick and exit.')

    args = parser.parse_args()

    # Load from environment
    telegram_bot_token = os.environ.get(constants.TELEGRAM_BOT_TOKEN_ENV_VAR)
    telegram_chat_id = os.environ.get(constants.TELEGRAM_CHAT_ID_ENV_VAR)

    interval = args.interval if args.interval is not None else _env_number(
        constants.MONITOR_INTERVAL_ENV_VAR, int, constants.DEFAULT_INTERVAL_SECONDS)
    tvl_change_threshold = args.tvl_change_threshold if args.tvl_change_threshold is not None else _env_number(
        constants.TVL_CHANGE_THRESHOLD_ENV_VAR, float, constants.DEFAULT_TVL_CHANGE_THRESHOLD)
    price_alert_threshold = args.price_alert_threshold if args.price_alert_threshold is not None else _env_number(
        constants.PRICE_ALERT_THRESHOLD_ENV_VAR, float, constants.DEFAULT_PRICE_ALERT_THRESHOLD)
    db_path = args.db_path or os.environ.get(constants.MONITOR_DB_PATH_ENV_VAR) or constants.DEFAULT_DB_PATH

    if interval <= 0:
        print(f"{constants.C_RED}--interval must be greater than 0.{constants.C_RESET}")
        exit(1)

    if args.telegram_enabled and not (telegram_bot_token and telegram_chat_id):
        print(f"{constants.C_RED}Telegram is enabled, but {constants.TELEGRAM_BOT_TOKEN_ENV_VAR} or {constants.TELEGRAM_CHAT_ID_ENV_VAR} are not set.{constants.C_RESET}")
        exit(1)

    return AppConfig(
        interval=interval,
        tvl_change_threshold=tvl_change_threshold,
        price_alert_threshold=price_alert_threshold,
        chain_id=args.chain_id,
        db_path=db_path,
        telegram_enabled=args.telegram_enabled,
        telegram_bot_token=telegram_bot_token,
        telegram_chat_id=telegram_chat_id,
        run_once=args.once,
    )
