"""
Market scanner for the Auracle list and detail pages.

This module fetches pages from the Auracle site and turns their HTML into
MarketSummary and Snapshot objects. Extraction is heuristic and best-effort:
it performs no business logic and makes no promise that any single scrape
is complete or accurate.
"""

import logging
import re
import time
from typing import Optional
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup, Tag
from requests.exceptions import RequestException, Timeout, ConnectionError

from auracle_bot.config import Config
from auracle_bot.models import ListResult, MarketStatus, MarketSummary, Option, Snapshot
from auracle_bot.options import normalize_options, resolve_winner
from auracle_bot.utils import extract_market_id, format_ends_in, parse_close_time, safe_int

# Configure module logger
logger = logging.getLogger(__name__)

DETAIL_LINK_MARKER = "marketdetails?id="

# How far up from a market link to look for its card
CARD_SEARCH_DEPTH = 6

_RESOLVED_INLINE = re.compile(r"ORACLE\s+RESOLVED\s*[:\-]\s*([^\n\r]+)", re.IGNORECASE)
_RESOLVED_NEXT_LINE = re.compile(r"ORACLE\s+RESOLVED\s*\n\s*([^\n\r]+)", re.IGNORECASE)
_CLOSED = re.compile(r"ORACLE\s+CLOSED", re.IGNORECASE)
_CURRENT_LINE = re.compile(r"CURRENT\s+(.+?)\s+(\d{1,3})\s*%", re.IGNORECASE)
_IMPLIED_LINE = re.compile(r"^(.+?)\s+IMPLIED.*?(\d{1,3})\s*%", re.IGNORECASE)
_LABEL_PCT_LINE = re.compile(r"^(.+?)\s+(\d{1,3})\s*%$")
_PCT_ONLY_LINE = re.compile(r"^(\d{1,3})\s*%$")
_ENDS_IN = re.compile(r"(?:ends?|closes?)\s+(in\s+[^\n|]+)", re.IGNORECASE)
_IN_ABOUT = re.compile(r"\bin\s+about\s+\d+\s+\w+", re.IGNORECASE)


def _request(url: str, params: Optional[dict] = None) -> requests.Response:
    return requests.get(
        url,
        params=params,
        timeout=Config.HTTP_TIMEOUT,
        headers={
            "Accept": "text/html,application/xhtml+xml",
            "User-Agent": Config.USER_AGENT
        }
    )


def _lines(node) -> list[str]:
    return [line.strip() for line in node.get_text("\n").split("\n") if line.strip()]


def _text_options(lines: list[str]) -> list[Option]:
    """Pick "Label 55%" pairs out of card or page text lines."""
    options: list[Option] = []
    previous: Optional[str] = None

    for line in lines:
        match = _LABEL_PCT_LINE.match(line)
        if match:
            options.append(Option(label=match.group(1), pct=safe_int(match.group(2))))
            previous = None
            continue

        match = _PCT_ONLY_LINE.match(line)
        if match and previous:
            options.append(Option(label=previous, pct=safe_int(match.group(1))))
            previous = None
            continue

        previous = line

    return normalize_options(options)


def _ends_in(lines: list[str]) -> Optional[str]:
    for line in lines:
        match = _ENDS_IN.search(line)
        if match:
            return match.group(1).strip()
        match = _IN_ABOUT.search(line)
        if match:
            return match.group(0).strip()
    return None


def _category(node) -> Optional[str]:
    tag = node.select_one("[class*=category], [class*=Category], [data-category]")
    if tag is None:
        return None
    return tag.get("data-category") or tag.get_text(" ", strip=True) or None


# List page

def _links_elsewhere(node: Tag, market_id: str) -> bool:
    for a in node.find_all("a", href=True):
        href = a.get("href", "")
        if DETAIL_LINK_MARKER in href.lower() and extract_market_id(href) != market_id:
            return True
    return False


def _find_card(link: Tag, market_id: str) -> tuple[Tag, bool]:
    """
    Walk up from a market link to the widest element that is still its card.

    The walk stops before an element that also links to another market.
    A card is trending when it carries the "#N ... HOT" badge.
    """
    node = link
    card = link
    for _ in range(CARD_SEARCH_DEPTH):
        if node is None or not isinstance(node, Tag) or _links_elsewhere(node, market_id):
            break
        card = node
        text = node.get_text(" ", strip=True)
        if "#" in text and "HOT" in text:
            return node, True
        node = node.parent
    return card, False


def _card_title(card: Tag, link: Tag) -> Optional[str]:
    heading = card.find(["h1", "h2", "h3"])
    if heading is not None:
        title = heading.get_text(" ", strip=True)
        if title:
            return title
    lines = _lines(link)
    return lines[0] if lines else None


def parse_list_page(html: str, page_url: str) -> ListResult:
    """
    Parse the markets list page into active and trending sections.

    Every link to a MarketDetails page is a market card. A card is trending
    when it sits inside an element carrying the "#N HOT" badge.

    Args:
        html: List page HTML
        page_url: URL the page was fetched from, for resolving relative links

    Returns:
        ListResult with one summary per distinct market id
    """
    result = ListResult()
    soup = BeautifulSoup(html, "html.parser")
    seen: set[str] = set()

    for link in soup.find_all("a", href=True):
        href = link.get("href", "")
        if DETAIL_LINK_MARKER not in href.lower():
            continue

        url = urljoin(page_url, href)
        market_id = extract_market_id(url)
        if not market_id or market_id in seen:
            continue
        seen.add(market_id)

        card, hot = _find_card(link, market_id)
        lines = _lines(card)
        summary = MarketSummary(
            id=market_id,
            url=url,
            title=_card_title(card, link),
            category=_category(card),
            ends_in=_ends_in(lines),
            options=_text_options(lines),
        )

        if hot:
            result.trending.append(summary)
        else:
            result.active.append(summary)

    return result


def fetch_lists(base_url: Optional[str] = None) -> ListResult:
    """
    Fetch the active and trending market lists.

    Handles API failures gracefully and returns empty sections on error.
    Callers must not read empty sections as "no markets exist".

    Args:
        base_url: Site root. If None, uses Config.AURACLE_BASE_URL

    Returns:
        ListResult, empty on any failure

    Raises:
        No exceptions are raised - all errors are logged and handled gracefully.
    """
    base_url = (base_url or Config.AURACLE_BASE_URL).rstrip("/")
    url = f"{base_url}/Markets"

    try:
        # Cache-buster, the list is served stale otherwise
        response = _request(url, params={"ts": int(time.time() * 1000)})
        response.raise_for_status()

        result = parse_list_page(response.text, response.url or url)
        logger.debug(f"List page: {len(result.active)} active, {len(result.trending)} trending")
        return result

    except Timeout:
        logger.error(f"List request timed out after {Config.HTTP_TIMEOUT}s")
        return ListResult()

    except ConnectionError as e:
        logger.error(f"Connection error while fetching list: {e}")
        return ListResult()

    except RequestException as e:
        logger.error(f"List request failed: {e}")
        return ListResult()

    except Exception as e:
        logger.error(f"Unexpected error while parsing list: {e}", exc_info=True)
        return ListResult()


# Detail page

def _detail_status(raw: str) -> tuple[str, Optional[str]]:
    match = _RESOLVED_INLINE.search(raw) or _RESOLVED_NEXT_LINE.search(raw)
    if match:
        return MarketStatus.RESOLVED, match.group(1).strip()
    if _CLOSED.search(raw):
        return MarketStatus.CLOSED, None
    return MarketStatus.OPEN, None


def _row_options(soup: BeautifulSoup) -> list[Option]:
    options: list[Option] = []
    for row in soup.select(".option, .market-option, [data-option]"):
        pct_node = row.select_one(".percent, .percentage")
        if pct_node is None:
            continue

        label = None
        for selector in (".label", ".team", ".option-label", "span", "strong"):
            node = row.select_one(selector)
            if node is not None and node is not pct_node:
                label = node.get_text(" ", strip=True)
                if label:
                    break

        pct = safe_int(pct_node.get_text())
        if label and pct is not None:
            options.append(Option(label=label, pct=pct))
    return options


def _line_options(lines: list[str]) -> list[Option]:
    options: list[Option] = []
    for line in lines:
        match = _CURRENT_LINE.search(line)
        if match:
            options.append(Option(label=match.group(1), pct=safe_int(match.group(2))))
        match = _IMPLIED_LINE.search(line)
        if match:
            options.append(Option(label=match.group(1), pct=safe_int(match.group(2))))
    return options


def parse_detail_page(html: str, url: str) -> Optional[Snapshot]:
    """
    Parse a market detail page into a Snapshot.

    Status comes from the oracle banner ("ORACLE RESOLVED: X" or
    "ORACLE CLOSED"); anything else reads as open. Options come from option
    rows, falling back to "CURRENT X 55%" / "X IMPLIED ... 55%" text.

    Args:
        html: Detail page HTML
        url: URL of the page (carries the market id)

    Returns:
        Snapshot, or None when no market id can be determined
    """
    market_id = extract_market_id(url)
    if not market_id:
        logger.debug(f"No market id in {url}")
        return None

    soup = BeautifulSoup(html, "html.parser")
    raw = soup.get_text("\n")
    lines = _lines(soup)

    title = None
    heading = soup.select_one("h1, h2, .title")
    if heading is not None:
        title = heading.get_text(" ", strip=True) or None
    if not title and soup.title and soup.title.string:
        title = soup.title.string.split("|")[0].strip() or None

    status, winner = _detail_status(raw)

    options = _row_options(soup)
    if len(options) < 2:
        options = options + _line_options(lines)
    options = normalize_options(options)

    if winner:
        winner = resolve_winner(winner, options)

    close_time = parse_close_time(raw)

    return Snapshot(
        id=market_id,
        url=url,
        status=status,
        title=title,
        options=options,
        winner=winner,
        close_time=close_time,
        ends_in=format_ends_in(close_time),
        category=_category(soup),
    )


def fetch_detail(url: str) -> Optional[Snapshot]:
    """
    Fetch and parse one market detail page.

    Args:
        url: Detail page URL

    Returns:
        Snapshot, or None if the market is not found or nothing is extractable

    Raises:
        requests.RequestException: On transport errors (timeouts, connection
            failures, server errors)
    """
    logger.debug(f"Fetching detail {url}")
    response = _request(url)

    if response.status_code == 404:
        logger.debug(f"Detail page not found: {url}")
        return None

    response.raise_for_status()

    try:
        return parse_detail_page(response.text, url)
    except Exception as e:
        logger.warning(f"Could not parse detail page {url}: {e}")
        return None
