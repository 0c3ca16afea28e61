"""
Quick script to test the Telegram bot connection.
Run this to verify your Telegram setup works before starting the bot.
"""

import logging
import sys

# Fix Windows console encoding
if sys.platform == 'win32':
    import codecs
    sys.stdout = codecs.getwriter('utf-8')(sys.stdout.buffer, 'strict')
    sys.stderr = codecs.getwriter('utf-8')(sys.stderr.buffer, 'strict')

from auracle_bot.config import Config
from auracle_bot.telegram_notifier import send_telegram_message


def check_telegram() -> bool:
    """Check Telegram configuration and send a test message."""
    print("Checking Telegram configuration...\n")

    if not Config.TELEGRAM_BOT_TOKEN:
        print("[X] TELEGRAM_BOT_TOKEN not found in .env file")
        return False

    if not Config.TELEGRAM_CHAT_ID:
        print("[X] TELEGRAM_CHAT_ID not found in .env file")
        return False

    print(f"[OK] TELEGRAM_BOT_TOKEN: {Config.TELEGRAM_BOT_TOKEN[:20]}...")
    print(f"[OK] TELEGRAM_CHAT_ID: {Config.TELEGRAM_CHAT_ID}\n")

    print("Sending test message...\n")

    if send_telegram_message("Test Message - Auracle market bot is connected successfully!"):
        print("[SUCCESS] Check your Telegram - you should see a test message!")
        return True

    print("[ERROR] Message was not delivered, see the log above\n")
    print("Common issues:")
    print("  1. Make sure you clicked 'Start' in your bot's chat")
    print("  2. Verify bot token from @BotFather")
    print("  3. Verify chat ID from @userinfobot")
    return False


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    sys.exit(0 if check_telegram() else 1)
