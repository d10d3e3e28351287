from types import SimpleNamespace

import pytest

from alerts.watchlist import WatchlistEngine
from bot.handlers import calc_command, invest_command, report_command, start_command, status_command, watchlist_command
from ingest.models import PoolSnapshot
from services.notifier import ConsoleNotifier
from storage import InMemoryDocumentStore

NOW = 1_700_000_000.0


class FakeMessage:
    def __init__(self):
        self.replies = []

    async def reply_html(self, text):
        self.replies.append(text)

    async def reply_text(self, text):
        self.replies.append(text)


class StubIngestor:
    def __init__(self, pools):
        self.pools = pools

    def find_by_symbol(self, symbol):
        return next((p for p in self.pools if p.underlying_symbol.upper() == symbol.upper()), None)


class RecordingNotifier:
    def __init__(self):
        self.chat_ids = set()

    def add_chat_id(self, chat_id):
        self.chat_ids.add(str(chat_id))


def _pool():
    return PoolSnapshot(
        id="opt-1",
        symbol="B2/USDT",
        underlying_symbol="B2",
        underlying_price=120.0,
        strike_price=100.0,
        maturity=NOW + 365 * 86400,
        tvl=0.0,
        capacity=0.0,
        utilization=0.0,
        total_apy=36.5,
        price_to_target=20.0,
    )


def _context(args=None):
    watchlist = WatchlistEngine(InMemoryDocumentStore(), ConsoleNotifier(), clock=lambda: NOW)
    monitor = SimpleNamespace(pool_ingestor=StubIngestor([_pool()]), watchlist=watchlist)
    application = SimpleNamespace(bot_data={'monitor': monitor, 'notifier': RecordingNotifier()})
    return SimpleNamespace(args=args or [], application=application)


def _update():
    return SimpleNamespace(message=FakeMessage(), effective_chat=SimpleNamespace(id=4242))


@pytest.mark.asyncio
async def test_start_registers_chat():
    update, context = _update(), _context()
    await start_command(update, context)
    assert context.application.bot_data['notifier'].chat_ids == {'4242'}
    assert '4242' in update.message.replies[0]


@pytest.mark.asyncio
async def test_calc_shows_both_scenarios():
    update, context = _update(), _context(['b2', '1000'])
    await calc_command(update, context)
    reply = update.message.replies[0]
    assert 'Return: 1365.00 USDT' in reply
    assert 'Convert to: 10.0000 B2' in reply
    assert 'Break-even: $100.0000' in reply


@pytest.mark.asyncio
async def test_calc_usage_and_invalid_input():
    update = _update()
    await calc_command(update, _context(['b2']))
    await calc_command(update, _context(['b2', 'abc']))
    await calc_command(update, _context(['xyz', '10']))
    usage, invalid, missing = update.message.replies
    assert 'Usage' in usage
    assert invalid == '❌ Invalid amount'
    assert 'not found' in missing and 'B2' in missing


@pytest.mark.asyncio
async def test_invest_then_watchlist_and_report():
    context = _context(['B2', '500'])
    invest = _update()
    await invest_command(invest, context)
    assert 'Investment Tracked' in invest.message.replies[0]

    rule = context.application.bot_data['monitor'].watchlist.get_watch('opt-1')
    assert rule.conditions.invested_amount == 500
    assert rule.conditions.notify_on_maturity is True

    listing = _update()
    await watchlist_command(listing, context)
    assert '⏰Maturity' in listing.message.replies[0]

    report = _update()
    await report_command(report, context)
    assert 'Investment Report' in report.message.replies[0]


@pytest.mark.asyncio
async def test_status_escapes_last_error_markup():
    class StubSummaryIngestor:
        def get_summary(self):
            return {'total_tvl': 1000.0, 'avg_apy': 12.0, 'pool_count': 1}

    monitor = SimpleNamespace(
        pool_ingestor=StubSummaryIngestor(),
        get_status=lambda: {
            'is_running': True,
            'last_update': NOW,
            'stats': {'total_updates': 3, 'start_time': NOW - 60},
            'uptime': 60,
            'last_error': "unexpected token <html> in payload",
        },
    )
    context = SimpleNamespace(args=[], application=SimpleNamespace(bot_data={'monitor': monitor}))
    update = _update()

    await status_command(update, context)

    reply = update.message.replies[0]
    assert "&lt;html&gt;" in reply
    assert "<html>" not in reply
