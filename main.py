#!/usr/bin/env python3
import asyncio
import aiohttp
from telegram import BotCommand
from telegram.ext import Application
from telegram.error import TimedOut, TelegramError

import constants
from config import AppConfig, load_config
from alerts.alert_engine import AlertRuleEngine
from alerts.pool_detector import PoolDetector
from alerts.watchlist import WatchlistEngine
from bot.handlers import COMMANDS
from ingest.pool_ingestor import PoolDataIngestor
from ingest.price_cache import PriceCache
from ingest.tvl_ingestor import TvlIngestor
from monitor import PoolMonitor
from services.defillama_client import DefiLlamaClient
from services.notifier import ConsoleNotifier, Notifier, TelegramNotifier, register_command
from services.termmax_client import TermMaxClient
from storage import DocumentStore, SQLiteDocumentStore

BOT_COMMANDS = [
    BotCommand("status", "Monitoring status & summary"),
    BotCommand("pools", "List pools closest to strike"),
    BotCommand("prices", "Token prices"),
    BotCommand("tvl", "TVL information"),
    BotCommand("alerts", "Recent alerts"),
    BotCommand("watchlist", "View your watchlist"),
    BotCommand("calc", "Calculate expected return"),
    BotCommand("invest", "Track an investment"),
    BotCommand("report", "Investment report"),
    BotCommand("help", "Show help message"),
]


def build_monitor(
    config: AppConfig,
    session: aiohttp.ClientSession,
    store: DocumentStore,
    notifier: Notifier,
) -> PoolMonitor:
    """Wires the clients, ingestors and engines into one monitor."""
    pool_ingestor = PoolDataIngestor(TermMaxClient(session), chain_id=config.chain_id)
    tvl_ingestor = TvlIngestor(DefiLlamaClient(session))
    return PoolMonitor(
        pool_ingestor=pool_ingestor,
        tvl_ingestor=tvl_ingestor,
        price_cache=PriceCache(),
        detector=PoolDetector(store, notifier),
        alert_engine=AlertRuleEngine(
            notifier,
            tvl_threshold=config.tvl_change_threshold,
            price_threshold=config.price_alert_threshold,
        ),
        watchlist=WatchlistEngine(store, notifier),
        interval=config.interval,
    )


async def post_init_hook(application: Application) -> None:
    """A hook that runs after the bot is initialized to set up shared clients and tasks."""
    # Create and store a single, shared aiohttp session
    session = aiohttp.ClientSession(headers={'User-Agent': 'TermMaxMonitor/1.0'})
    application.bot_data['http_session'] = session

    config = application.bot_data['config']
    notifier = TelegramNotifier(application.bot, [config.telegram_chat_id])
    application.bot_data['notifier'] = notifier

    monitor = build_monitor(config, session, application.bot_data['store'], notifier)
    application.bot_data['monitor'] = monitor

    try:
        await application.bot.set_my_commands(BOT_COMMANDS)
    except (TimedOut, TelegramError) as exc:
        print(
            f"{constants.C_YELLOW}Warning: unable to set Telegram bot commands ({exc})."
            f" Continuing startup without updating commands.{constants.C_RESET}"
        )

    application.bot_data['monitor_task'] = asyncio.create_task(monitor.start())


async def post_shutdown_hook(application: Application) -> None:
    """A hook that runs on application shutdown to clean up resources."""
    monitor = application.bot_data.get('monitor')
    if monitor:
        monitor.stop()
    session = application.bot_data.get('http_session')
    if session:
        await session.close()
    store = application.bot_data.get('store')
    if store:
        store.close()


async def run_cli(config: AppConfig, store: DocumentStore) -> None:
    """Runs without a chat transport; alerts are printed to the console."""
    async with aiohttp.ClientSession(headers={'User-Agent': 'TermMaxMonitor/1.0'}) as session:
        monitor = build_monitor(config, session, store, ConsoleNotifier())
        if config.run_once:
            await monitor.update()
            return
        await monitor.start()
        try:
            await asyncio.Event().wait()
        finally:
            monitor.stop()


def main() -> None:
    """The main synchronous entry point for the application."""
    config = load_config()
    store = SQLiteDocumentStore(config.db_path)

    if config.run_once or not config.telegram_enabled or not config.telegram_bot_token:
        if not config.run_once:
            print("Telegram is not configured. The application will run in CLI-only mode.")
        try:
            asyncio.run(run_cli(config, store))
        except KeyboardInterrupt:
            print("Shutting down...")
        finally:
            store.close()
        return

    application = (
        Application.builder()
        .token(config.telegram_bot_token)
        .post_init(post_init_hook)
        .post_shutdown(post_shutdown_hook)
        .build()
    )

    # Store config and other shared data
    application.bot_data['config'] = config
    application.bot_data['store'] = store

    for command, handler in COMMANDS.items():
        register_command(application, command, handler)

    application.run_polling()


if __name__ == "__main__":
    main()
