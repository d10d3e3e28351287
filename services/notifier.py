#!/usr/bin/env python3
"""Outbound notification channels. Engines only see `notify(message, category)`."""
from __future__ import annotations

import re
from typing import Awaitable, Callable, Iterable, List, Optional, Protocol, Set, Tuple

from telegram import Bot
from telegram.error import TelegramError
from telegram.ext import Application, CommandHandler

from constants import C_BLUE, C_RED, C_RESET

CATEGORY_EMOJI = {
    'info': 'ℹ️',
    'warning': '⚠️',
    'danger': '🚨',
    'success': '✅',
    'price': '💰',
    'tvl': '📊',
}

_TAG_RE = re.compile(r'<[^>]+>')


class Notifier(Protocol):
    async def notify(self, message: str, category: str = 'info') -> None:
        ...


def format_alert(message: str, category: str) -> str:
    emoji = CATEGORY_EMOJI.get(category, 'ℹ️')
    return f"{emoji} <b>TermMax Alert</b>\n\n{message}"


class ConsoleNotifier:
    """Prints notifications when no chat transport is configured."""

    def __init__(self) -> None:
        self.sent: List[Tuple[str, str]] = []

    async def notify(self, message: str, category: str = 'info') -> None:
        self.sent.append((message, category))
        plain = _TAG_RE.sub('', format_alert(message, category))
        print(f"{C_BLUE}[alert:{category}]{C_RESET} {plain}")


class TelegramNotifier:
    """Sends HTML-formatted alerts to every registered chat."""

    def __init__(self, bot: Bot, chat_ids: Optional[Iterable[str]] = None) -> None:
        self.bot = bot
        self.chat_ids: Set[str] = {str(c) for c in chat_ids or [] if c}

    def add_chat_id(self, chat_id) -> None:
        self.chat_ids.add(str(chat_id))

    async def notify(self, message: str, category: str = 'info') -> None:
        if not self.chat_ids:
            print(f"Telegram alert (not sent, no chat registered): {_TAG_RE.sub('', message)}")
            return
        text = format_alert(message, category)
        for chat_id in sorted(self.chat_ids):
            try:
                await self.bot.send_message(chat_id=chat_id, text=text, parse_mode='HTML')
            except TelegramError as exc:
                print(f"{C_RED}Failed to send message to {chat_id}: {exc}{C_RESET}")


CommandCallback = Callable[..., Awaitable[None]]


def register_command(application: Application, command: str, handler: CommandCallback) -> None:
    """Command hook keyed by command name."""
    application.add_handler(CommandHandler(command, handler))
