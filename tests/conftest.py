from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional, Union

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from auracle_bot.engine import ReconciliationEngine
from auracle_bot.ledger import Ledger
from auracle_bot.models import ListResult, MarketStatus, MarketSummary, Option, Snapshot
from auracle_bot.utils import extract_market_id

BASE_URL = "https://auracle.test"


def market_url(market_id: str) -> str:
    return f"{BASE_URL}/MarketDetails?id={market_id}"


def summary(market_id: str, **kwargs) -> MarketSummary:
    kwargs.setdefault("url", market_url(market_id))
    kwargs.setdefault("title", f"Market {market_id}")
    return MarketSummary(id=market_id, **kwargs)


def snapshot(
    market_id: Optional[str],
    status: str = MarketStatus.OPEN,
    options: Optional[list[tuple[str, Optional[int]]]] = None,
    **kwargs
) -> Snapshot:
    kwargs.setdefault("title", f"Market {market_id}")
    return Snapshot(
        id=market_id,
        url=market_url(market_id or "unknown"),
        status=status,
        options=[Option(label, pct) for label, pct in options or []],
        **kwargs
    )


def lists(active=(), trending=()) -> ListResult:
    return ListResult(
        active=[a if isinstance(a, MarketSummary) else summary(a) for a in active],
        trending=[t if isinstance(t, MarketSummary) else summary(t) for t in trending],
    )


class FakeDetails:
    """Snapshot source serving canned snapshots keyed by market id."""

    def __init__(self):
        self.snapshots: dict[str, Union[Snapshot, Exception, None]] = {}
        self.calls: list[str] = []

    def set(self, market_id: str, value: Union[Snapshot, Exception, None]) -> None:
        self.snapshots[market_id] = value

    def called_ids(self) -> list[str]:
        return [extract_market_id(url) for url in self.calls]

    def __call__(self, url: str) -> Optional[Snapshot]:
        self.calls.append(url)
        value = self.snapshots.get(extract_market_id(url))
        if isinstance(value, Exception):
            raise value
        return value


class RecordingNotifier:
    def __init__(self, result: bool = True):
        self.sent: list[tuple[Optional[str], str]] = []
        self.result = result

    def __call__(self, destination_id: Optional[str], message: str) -> bool:
        self.sent.append((destination_id, message))
        return self.result


@pytest.fixture
def ledger() -> Ledger:
    return Ledger()


@pytest.fixture
def seeded_ledger() -> Ledger:
    ledger = Ledger()
    ledger.seeded = True
    return ledger


@pytest.fixture
def details() -> FakeDetails:
    return FakeDetails()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def make_engine(details, notifier):
    def _make(ledger: Ledger, **kwargs) -> ReconciliationEngine:
        kwargs.setdefault("base_url", BASE_URL)
        kwargs.setdefault("default_chat_id", "chat-default")
        kwargs.setdefault("missing_close_threshold", 0)
        kwargs.setdefault("fetch_timeout", 5)
        kwargs.setdefault("fetch_workers", 1)
        kwargs.setdefault("high_water", 2000)
        return ReconciliationEngine(ledger=ledger, fetch_detail=details, notify=notifier, **kwargs)

    return _make
