# bot/handlers.py
import html
import time
from datetime import datetime, timezone

from telegram import Update
from telegram.ext import ContextTypes

from constants import format_number, risk_icon
from errors import ValidationError
from monitor import PoolMonitor

MAX_POOLS_LISTED = 8
MAX_ALERTS_LISTED = 10


def _monitor(context: ContextTypes.DEFAULT_TYPE) -> PoolMonitor:
    return context.application.bot_data['monitor']


def _parse_token_amount(context: ContextTypes.DEFAULT_TYPE):
    """Returns (TOKEN, amount) from `/cmd <token> <amount>`, or None when the arguments are missing."""
    args = context.args or []
    if len(args) < 2:
        return None
    try:
        amount = float(args[1])
    except ValueError:
        amount = float('nan')
    return args[0].upper(), amount


def _format_date(timestamp: float) -> str:
    if not timestamp:
        return 'Unknown'
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime('%Y-%m-%d')


# --- Command Handlers ---

async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Registers the chat for alerts and shows the command summary."""
    chat_id = update.effective_chat.id
    notifier = context.application.bot_data.get('notifier')
    if notifier is not None:
        notifier.add_chat_id(chat_id)
    await update.message.reply_html(
        "🚀 <b>TermMax Monitor Bot Started!</b>\n\n"
        f"Your Chat ID: <code>{chat_id}</code>\n\n"
        "Commands:\n"
        "/status - Get current status\n"
        "/prices - Get token prices\n"
        "/tvl - Get TVL info\n"
        "/alerts - Recent alerts\n"
        "/help - Show help"
    )


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Displays a help message with all available commands."""
    config = context.application.bot_data.get('config')
    tvl_threshold = config.tvl_change_threshold if config else 20
    help_text = (
        "📖 <b>TermMax Monitor Help</b>\n\n"
        "Monitor TermMax Dual Investment pools.\n\n"
        "<b><u>Available Commands:</u></b>\n"
        "/start - Start the bot\n"
        "/status - Monitoring status &amp; summary\n"
        "/pools - List pools closest to strike\n"
        "/prices - Token prices (24h change)\n"
        "/tvl - TVL information\n"
        "/alerts - Recent alerts\n"
        "/watchlist - View your watchlist\n"
        "/calc &lt;token&gt; &lt;amount&gt; - Calculate expected return\n"
        "/invest &lt;token&gt; &lt;amount&gt; - Track investment\n"
        "/report - View investment report\n"
        "/help - Show this help\n\n"
        "<b>Auto Alerts:</b>\n"
        f"🔴 TVL change &gt; {tvl_threshold:g}%\n"
        "⚠️ Price near strike\n"
        "📈 Utilization spike\n"
        "📊 APY significant change"
    )
    await update.message.reply_html(help_text)


async def status_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Checks and reports the monitor's operational status and pool summary."""
    monitor = _monitor(context)
    status = monitor.get_status()
    summary = monitor.pool_ingestor.get_summary() or {}

    uptime_str = time.strftime('%H:%M:%S', time.gmtime(status['uptime']))
    last_update = status['last_update']
    last_str = datetime.fromtimestamp(last_update, tz=timezone.utc).strftime('%H:%M:%S UTC') if last_update else 'Never'

    status_text = (
        "<b>📊 Monitor Status</b>\n"
        f"Running: {'✅' if status['is_running'] else '⏹️'}\n"
        f"Uptime: <code>{uptime_str}</code>\n"
        f"Updates: <code>{status['stats']['total_updates']}</code>\n"
        f"Last: <code>{last_str}</code>\n\n"
        "<b>TermMax Summary</b>\n"
        f"💰 Total TVL: ${format_number(summary.get('total_tvl'))}\n"
        f"📊 Avg APY: {summary.get('avg_apy', 0):.1f}%\n"
        f"🏊 Pools: {summary.get('pool_count', 0)}\n"
    )
    if status['last_error']:
        status_text += f"Last Error: <pre>{html.escape(status['last_error'])}</pre>\n"

    await update.message.reply_html(status_text)


async def pools_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Lists pools sorted by distance to strike, closest (riskiest) first."""
    pools = _monitor(context).pool_ingestor.pools
    if not pools:
        await update.message.reply_text("No pool data yet.")
        return

    ordered = sorted(pools, key=lambda p: abs(p.price_to_target or 0))
    lines = ["<b>🏊 TermMax Dual Investment (USDT)</b>\n"]
    for pool in ordered[:MAX_POOLS_LISTED]:
        lines.append(
            f"{risk_icon(pool.price_to_target)} <b>{pool.underlying_symbol}</b> @ ${pool.strike_price or pool.target_price:g}\n"
            f"   Price: ${pool.underlying_price:.4f} ({pool.price_to_target:.1f}%)\n"
            f"   TVL: ${format_number(pool.tvl)} | APY: {pool.total_apy:.1f}%\n"
        )
    if len(pools) > MAX_POOLS_LISTED:
        lines.append(f"<i>...and {len(pools) - MAX_POOLS_LISTED} more</i>")
    await update.message.reply_html("\n".join(lines))


async def prices_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Shows the latest underlying price per token."""
    prices = _monitor(context).price_cache.get_all()
    if not prices:
        await update.message.reply_text("No price data yet.")
        return
    lines = ["<b>💰 Token Prices (TermMax)</b>\n"]
    for symbol, entry in prices.items():
        lines.append(f"<b>{symbol}</b>: ${entry.price:.4f} ({entry.change_24h:+.2f}%)")
    await update.message.reply_html("\n".join(lines))


async def tvl_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Combines the live pool summary with the last DefiLlama reading."""
    monitor = _monitor(context)
    summary = monitor.pool_ingestor.get_summary() or {}
    tvl = monitor.tvl_ingestor.tvl_cache
    change = monitor.tvl_ingestor.get_tvl_change()

    message = (
        "<b>📊 TVL Information</b>\n\n"
        "<b>TermMax (Live):</b>\n"
        f"💰 Total TVL: ${format_number(summary.get('total_tvl'))}\n"
        f"📊 Capacity: ${format_number(summary.get('total_capacity'))}\n"
        f"📈 Avg Utilization: {summary.get('avg_utilization', 0):.1f}%\n\n"
        "<b>DefiLlama:</b>\n"
        f"💰 TVL: ${format_number(tvl.total_tvl if tvl else 0)}"
    )
    if change is not None:
        message += f" ({change.change_percent:+.2f}% over {change.period}m)"
    await update.message.reply_html(message)


async def alerts_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Lists the most recent global alerts."""
    alerts = _monitor(context).alert_engine.get_alerts(MAX_ALERTS_LISTED)
    if not alerts:
        await update.message.reply_text("✅ No alerts yet")
        return
    lines = ["<b>🚨 Recent Alerts</b>\n"]
    for alert in alerts:
        at = datetime.fromtimestamp(alert.created_at, tz=timezone.utc).strftime('%H:%M:%S')
        lines.append(f"• <b>{alert.title}</b> ({at})")
    await update.message.reply_html("\n".join(lines))


async def watchlist_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Shows every watch rule with its active conditions."""
    rules = _monitor(context).watchlist.get_all()
    if not rules:
        await update.message.reply_html(
            "📋 <b>Watchlist Empty</b>\n\nUse /invest &lt;token&gt; &lt;amount&gt; to start tracking a pool."
        )
        return

    lines = [f"<b>📋 Your Watchlist ({len(rules)})</b>\n"]
    for rule in rules:
        c = rule.conditions
        conditions = []
        if c.apy_below is not None:
            conditions.append(f"APY&lt;{c.apy_below:g}%")
        if c.apy_above is not None:
            conditions.append(f"APY&gt;{c.apy_above:g}%")
        if c.price_to_strike_below is not None:
            conditions.append(f"Strike&lt;{c.price_to_strike_below:g}%")
        if c.price_to_strike_above is not None:
            conditions.append(f"Strike&gt;{c.price_to_strike_above:g}%")
        if c.tvl_below is not None:
            conditions.append(f"TVL&lt;${format_number(c.tvl_below)}")
        if c.utilization_above is not None:
            conditions.append(f"Util&gt;{c.utilization_above:g}%")
        if c.notify_on_maturity:
            conditions.append("⏰Maturity")
        if c.invested_amount:
            conditions.append(f"💼{c.invested_amount:g} USDT")

        status = '🟢' if rule.enabled else '⚪'
        lines.append(f"{status} <b>{rule.underlying_symbol or rule.pool_id}</b> @ ${rule.strike_price:g}")
        if conditions:
            lines.append(f"   <i>{', '.join(conditions)}</i>")
        lines.append("")
    await update.message.reply_html("\n".join(lines))


async def calc_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """`/calc <token> <amount>`: projects both settlement scenarios."""
    parsed = _parse_token_amount(context)
    if parsed is None:
        await update.message.reply_html(
            "<b>📊 Calculate Return</b>\n\n"
            "Usage: <code>/calc &lt;token&gt; &lt;usdt_amount&gt;</code>\n\n"
            "Example: <code>/calc B2 1000</code>"
        )
        return
    symbol, amount = parsed
    if not amount > 0:
        await update.message.reply_text("❌ Invalid amount")
        return

    monitor = _monitor(context)
    pool = monitor.pool_ingestor.find_by_symbol(symbol)
    if pool is None:
        available = ', '.join(sorted({p.underlying_symbol for p in monitor.pool_ingestor.pools}))
        await update.message.reply_html(f"❌ Token <b>{symbol}</b> not found.\n\nAvailable: {available or 'none'}")
        return

    estimate = monitor.watchlist.estimate_return(pool, amount)
    if estimate is None:
        await update.message.reply_text("❌ Unable to calculate return")
        return

    await update.message.reply_html(
        f"<b>📊 Return Estimate: {pool.underlying_symbol}</b>\n\n"
        f"💰 Investment: {amount:g} USDT\n"
        f"📈 APY: {estimate.apy:.1f}%\n"
        f"⏳ Days to Maturity: {estimate.days_to_maturity:.0f}\n"
        f"📅 Maturity: {_format_date(estimate.maturity)}\n\n"
        "<b>Scenario 1: Price &gt; Strike</b>\n"
        f"✅ Return: {estimate.return_if_not_converted:.2f} USDT\n"
        f"💵 Profit: +{estimate.profit_if_not_converted:.2f} USDT ({estimate.profit_percent_if_not_converted:.2f}%)\n\n"
        f"<b>Scenario 2: Price ≤ Strike (${estimate.strike_price:g})</b>\n"
        f"🔄 Convert to: {estimate.token_amount_if_converted:.4f} {pool.underlying_symbol}\n"
        f"💱 Break-even: ${estimate.break_even_price:.4f}\n\n"
        f"<i>Current: ${estimate.current_price:.4f} | Strike: ${estimate.strike_price:g}</i>"
    )


async def invest_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """`/invest <token> <amount>`: records the amount and arms the maturity notification."""
    parsed = _parse_token_amount(context)
    if parsed is None:
        await update.message.reply_html(
            "<b>💼 Track Investment</b>\n\n"
            "Usage: <code>/invest &lt;token&gt; &lt;usdt_amount&gt;</code>\n\n"
            "Example: <code>/invest B2 1000</code>\n\n"
            "This will:\n"
            "1. Add to watchlist if not exists\n"
            "2. Track your investment amount\n"
            "3. Notify actual returns at maturity"
        )
        return
    symbol, amount = parsed
    if not amount > 0:
        await update.message.reply_text("❌ Invalid amount")
        return

    monitor = _monitor(context)
    pool = monitor.pool_ingestor.find_by_symbol(symbol)
    if pool is None:
        await update.message.reply_html(f"❌ Token <b>{symbol}</b> not found.")
        return

    try:
        monitor.watchlist.track_investment(pool, amount)
    except ValidationError as e:
        await update.message.reply_text(f"❌ {e}")
        return

    estimate = monitor.watchlist.estimate_return(pool, amount)
    await update.message.reply_html(
        "<b>✅ Investment Tracked</b>\n\n"
        f"Token: <b>{pool.underlying_symbol}</b>\n"
        f"Amount: {amount:g} USDT\n"
        f"Strike: ${pool.strike_price:g}\n"
        f"Entry Price: ${pool.underlying_price:.4f}\n"
        f"Maturity: {_format_date(pool.maturity)}\n\n"
        "<b>Expected Return (if no conversion):</b>\n"
        f"{estimate.return_if_not_converted:.2f} USDT (+{estimate.profit_percent_if_not_converted:.2f}%)\n\n"
        "<i>You will be notified at maturity with actual results.</i>"
    )


async def report_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """On-demand version of the daily digest."""
    monitor = _monitor(context)
    digest = monitor.watchlist.build_investment_report(monitor.pool_ingestor.pools)
    if not digest.has_content:
        await update.message.reply_html(
            "📊 <b>No Investments Tracked</b>\n\nUse /invest &lt;token&gt; &lt;amount&gt; to track investments."
        )
        return
    await update.message.reply_html(digest.text)


COMMANDS = {
    'start': start_command,
    'help': help_command,
    'status': status_command,
    'pools': pools_command,
    'prices': prices_command,
    'tvl': tvl_command,
    'alerts': alerts_command,
    'watchlist': watchlist_command,
    'calc': calc_command,
    'invest': invest_command,
    'report': report_command,
}
