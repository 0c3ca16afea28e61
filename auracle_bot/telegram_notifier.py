"""
Telegram notifier for delivering market lifecycle announcements.

This module formats the new/trending/closed/resolved messages and sends them
to a Telegram chat. It uses the python-telegram-bot library for message
delivery. Delivery is best-effort: one attempt, failures are logged.
"""

import asyncio
import logging
import re
from typing import Optional

from telegram import Bot, LinkPreviewOptions
from telegram.error import TelegramError, TimedOut, NetworkError

from auracle_bot.config import Config
from auracle_bot.models import Option

# Configure module logger
logger = logging.getLogger(__name__)

# Characters with meaning in Telegram's legacy Markdown
_MARKDOWN_SPECIAL = re.compile(r"([_*`\[])")


def escape_markdown(text: Optional[str]) -> str:
    """Escape scraped text so it renders literally in Markdown messages."""
    if not text:
        return ""
    return _MARKDOWN_SPECIAL.sub(r"\\\1", str(text))


def _pct(option: Option) -> str:
    return f"{option.pct}%" if option.pct is not None else "?"


def _inline_options(options: list[Option]) -> str:
    return " | ".join(f"{escape_markdown(o.label)} {_pct(o)}" for o in options) or "—"


def format_new_market(
    title: str,
    url: str,
    options: list[Option],
    ends_in: Optional[str] = None,
    category: Optional[str] = None
) -> str:
    """
    Format the "new market live" announcement.

    Args:
        title: Market title
        url: Market detail URL
        options: Options with current percentages
        ends_in: Human readable time left
        category: Market category

    Returns:
        Markdown message text
    """
    lines = ["🔥 *New Market Live on Auracle*", f"🏟️ {escape_markdown(title)}"]

    if category:
        lines.append(f"🏷️ {escape_markdown(category)}")
    if ends_in:
        lines.append(f"⏳ {escape_markdown(ends_in)}")

    lines.append("")
    if options:
        for option in options:
            lines.append(f"• {escape_markdown(option.label)} — *{_pct(option)}*")
    else:
        lines.append("—")

    lines.append("")
    lines.append(f"🔗 {url}")
    return "\n".join(lines)


def format_trending(title: str, url: str, options: Optional[list[Option]] = None) -> str:
    """Format the "trending now" announcement."""
    lines = ["📈 *Trending Now on Auracle!*", f"🏟️ {escape_markdown(title)}"]
    if options:
        lines.append(f"📊 {_inline_options(options)}")
    lines.append("")
    lines.append(f"🔗 {url}")
    return "\n".join(lines)


def format_closed(title: str, url: str, options: list[Option]) -> str:
    """Format the "market closed" announcement with the final pool."""
    return "\n".join([
        "🛑 *Market Closed — Final Pool*",
        f"🏟️ {escape_markdown(title)}",
        f"📊 {_inline_options(options)}",
        "👀 Awaiting resolution…",
        f"🔗 {url}",
    ])


def format_resolved(title: str, url: str, winner: str, options: list[Option]) -> str:
    """Format the "market resolved" announcement."""
    return "\n".join([
        "✅ *Market Resolved*",
        f"🏟️ {escape_markdown(title)}",
        f"🏆 Winner: *{escape_markdown(winner)}*",
        f"📊 Final: {_inline_options(options)}",
        "💰 Rewards live now",
        f"🔗 {url}",
    ])


async def _send(token: str, chat_id, message: str) -> None:
    async with Bot(token=token) as bot:
        await bot.send_message(
            chat_id=chat_id,
            text=message,
            parse_mode="Markdown",
            link_preview_options=LinkPreviewOptions(is_disabled=True),
            read_timeout=Config.HTTP_TIMEOUT,
            write_timeout=Config.HTTP_TIMEOUT
        )


def send_telegram_message(message: str, chat_id: Optional[str] = None) -> bool:
    """
    Send a message to Telegram safely with error handling.

    Handles network errors, timeouts, and other Telegram API errors.
    Returns False on any failure, True on success.

    Args:
        message: Message text to send (supports Markdown formatting)
        chat_id: Destination chat. If None, uses Config.TELEGRAM_CHAT_ID

    Returns:
        True if message sent successfully, False otherwise
    """
    chat_id = chat_id or Config.TELEGRAM_CHAT_ID

    if not Config.TELEGRAM_BOT_TOKEN or not chat_id:
        logger.debug("Telegram not configured (missing token or chat_id)")
        return False

    if not message or not message.strip():
        logger.warning("Empty message, not sending")
        return False

    # Parse chat_id (handle both string and int)
    try:
        target = int(chat_id)
    except ValueError:
        target = chat_id

    try:
        logger.debug(f"Sending message to Telegram chat {target}")
        asyncio.run(_send(Config.TELEGRAM_BOT_TOKEN, target, message))
        logger.info(f"Telegram message sent to {target}")
        return True

    except TimedOut:
        logger.error(f"Telegram API request timed out after {Config.HTTP_TIMEOUT}s")
        return False

    except NetworkError as e:
        logger.error(f"Network error sending Telegram message: {e}")
        return False

    except TelegramError as e:
        logger.error(f"Telegram API error: {e}")
        return False

    except Exception as e:
        logger.error(f"Unexpected error sending Telegram message: {e}", exc_info=True)
        return False


class TelegramNotifier:
    """Notifier handed to the reconciliation engine."""

    def notify(self, destination_id: Optional[str], message: str) -> bool:
        """
        Deliver one announcement.

        Args:
            destination_id: Chat id, falls back to the configured chat
            message: Formatted message

        Returns:
            True if delivered, False otherwise
        """
        return send_telegram_message(message, chat_id=destination_id)
