"""
Control-surface commands.

Each command returns a human-readable reply. Failures are reported in the
reply instead of raised, so a bad command never takes the process down.

The commands run inside the bot process (see health.py). remote_command()
lets a separate CLI process hand a command to that running bot.
"""

import logging
from typing import Callable, Optional

import requests
from requests.exceptions import ConnectionError, RequestException

from auracle_bot.config import Config
from auracle_bot.ledger import Ledger

# Configure module logger
logger = logging.getLogger(__name__)


def trigger_tick(run_tick: Callable[[], bool]) -> str:
    """
    Run a tick immediately.

    Args:
        run_tick: Guarded tick runner, returns False when a tick is already running

    Returns:
        Reply text
    """
    try:
        if not run_tick():
            return "A tick is already running, try again shortly."
        return "Tick complete."
    except Exception as e:
        logger.error(f"Manual tick failed: {e}", exc_info=True)
        return f"Tick failed: {e}"


def ledger_status(ledger: Ledger, default_chat_id: Optional[str] = None) -> str:
    """Summarize ledger counts for display."""
    try:
        s = ledger.summary()
        target = s["target_chat_id"] or default_chat_id or "not set"
        return "\n".join([
            f"Markets: {s['total']} total | {s['open']} open | {s['closed']} closed | "
            f"{s['resolved']} resolved | {s['retired']} retired",
            f"Announced: {s['announced_open']} open | {s['announced_closed']} closed | "
            f"{s['announced_resolved']} resolved",
            f"Seeded: {s['seeded']}",
            f"Target chat: {target}",
        ])
    except Exception as e:
        logger.error(f"Status failed: {e}", exc_info=True)
        return f"Status failed: {e}"


def set_target_chat(ledger: Ledger, chat_id: str) -> str:
    """
    Override the notification destination and persist it.

    Args:
        ledger: Ledger holding the override
        chat_id: New destination chat id

    Returns:
        Reply text
    """
    chat_id = (chat_id or "").strip()
    if not chat_id:
        return "Chat id must not be empty."

    try:
        ledger.target_chat_id = chat_id
        ledger.persist()
        logger.info(f"Target chat set to {chat_id}")
        return f"Announcements will be sent to {chat_id}."
    except Exception as e:
        logger.error(f"Could not set target chat: {e}", exc_info=True)
        return f"Could not set target chat: {e}"


def skip_seed(ledger: Ledger) -> str:
    """
    Mark the ledger seeded without seeding it.

    Every market seen afterwards is treated as new, so the next tick
    announces whatever is currently open and listed.

    Returns:
        Reply text
    """
    try:
        if ledger.seeded:
            return "Ledger is already seeded."
        ledger.seeded = True
        ledger.persist()
        logger.info("Seeding skipped by command")
        return "Seeding skipped; the next tick will announce current markets."
    except Exception as e:
        logger.error(f"Could not skip seeding: {e}", exc_info=True)
        return f"Could not skip seeding: {e}"


def remote_command(
    method: str,
    path: str,
    payload: Optional[dict] = None,
    read_timeout: Optional[float] = None
) -> Optional[str]:
    """
    Send a control command to the running bot.

    Args:
        method: HTTP method
        path: Control route, e.g. "/chat"
        payload: JSON body
        read_timeout: Seconds to wait for the reply. None waits indefinitely
            (a manual tick lasts as long as the tick)

    Returns:
        Reply text, or None when no bot is listening at Config.CONTROL_URL
    """
    url = f"{Config.CONTROL_URL}{path}"
    headers = {"X-Control-Token": Config.CONTROL_TOKEN} if Config.CONTROL_TOKEN else {}

    try:
        response = requests.request(
            method,
            url,
            json=payload,
            headers=headers,
            timeout=(Config.HTTP_TIMEOUT, read_timeout)
        )
    except ConnectionError:
        logger.debug(f"No running bot at {Config.CONTROL_URL}")
        return None
    except RequestException as e:
        logger.error(f"Control request to {url} failed: {e}")
        return f"Running bot did not answer: {e}"

    if response.status_code != 200:
        return f"Running bot refused the command ({response.status_code}): {response.text}"

    try:
        return str(response.json().get("reply", ""))
    except ValueError:
        return response.text
