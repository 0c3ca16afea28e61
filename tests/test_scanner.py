from __future__ import annotations

import pytest
import requests

from auracle_bot import scanner
from auracle_bot.models import ListResult, MarketStatus, Option
from auracle_bot.scanner import fetch_detail, fetch_lists, parse_detail_page, parse_list_page

LIST_PAGE = """
<html><body>
  <section class="trending">
    <div class="card">
      <span>#1</span><span>HOT</span>
      <a href="/MarketDetails?id=101"><h3>Lakers vs Celtics</h3></a>
      <div>Lakers 62%</div>
      <div>Celtics 38%</div>
      <div>Ends in about 3 hours</div>
    </div>
  </section>
  <section class="markets">
    <div class="card">
      <a href="/MarketDetails?id=202"><h3>Will it rain in Lisbon?</h3></a>
      <span class="category">Weather</span>
      <div>Yes</div>
      <div>70%</div>
      <a href="/MarketDetails?id=202">View market</a>
    </div>
    <div class="card">
      <a href="/MarketDetails?id=303">Home vs Away</a>
    </div>
  </section>
  <a href="/About">About</a>
</body></html>
"""

DETAIL_OPEN = """
<html><head><title>Lakers vs Celtics | Auracle</title></head><body>
  <h1>Lakers vs Celtics</h1>
  <span class="category">NBA</span>
  <div class="option"><span class="label">Lakers</span><span class="percent">62%</span></div>
  <div class="option"><span class="label">Celtics</span><span class="percent">38%</span></div>
  <p>Closes on March 5, 2099 at 7:30 PM</p>
</body></html>
"""


def test_parse_list_page_splits_trending_and_active():
    result = parse_list_page(LIST_PAGE, "https://auracle.test/Markets")

    assert [s.id for s in result.trending] == ["101"]
    assert [s.id for s in result.active] == ["202", "303"]

    hot = result.trending[0]
    assert hot.url == "https://auracle.test/MarketDetails?id=101"
    assert hot.title == "Lakers vs Celtics"
    assert hot.options == [Option("Lakers", 62), Option("Celtics", 38)]
    assert hot.ends_in == "in about 3 hours"


def test_parse_list_page_reads_card_details():
    result = parse_list_page(LIST_PAGE, "https://auracle.test/Markets")
    rain, plain = result.active

    assert rain.title == "Will it rain in Lisbon?"
    assert rain.category == "Weather"
    assert rain.options == [Option("Yes", 70)]
    assert plain.title == "Home vs Away"
    assert plain.options == []


def test_parse_list_page_without_markets():
    assert parse_list_page("<html><body>Maintenance</body></html>", "https://auracle.test/Markets").is_empty()


def test_parse_detail_page_open_market():
    snap = parse_detail_page(DETAIL_OPEN, "https://auracle.test/MarketDetails?id=101")

    assert snap.id == "101"
    assert snap.status == MarketStatus.OPEN
    assert snap.title == "Lakers vs Celtics"
    assert snap.category == "NBA"
    assert snap.options == [Option("Lakers", 62), Option("Celtics", 38)]
    assert snap.winner is None
    assert snap.close_time == "2099-03-05T19:30:00+00:00"
    assert snap.ends_in.startswith("in about ")


def test_parse_detail_page_closed_market():
    html = DETAIL_OPEN.replace("<h1>", "<div>ORACLE CLOSED</div><h1>")
    snap = parse_detail_page(html, "https://auracle.test/MarketDetails?id=101")

    assert snap.status == MarketStatus.CLOSED
    assert snap.winner is None


def test_parse_detail_page_maps_yes_to_first_option():
    html = DETAIL_OPEN.replace("<h1>", "<div>ORACLE RESOLVED: YES</div><h1>")
    snap = parse_detail_page(html, "https://auracle.test/MarketDetails?id=101")

    assert snap.status == MarketStatus.RESOLVED
    assert snap.winner == "Lakers"


def test_parse_detail_page_winner_on_next_line():
    html = DETAIL_OPEN.replace("<h1>", "<div>ORACLE RESOLVED</div>\n<div>celtics</div><h1>")
    snap = parse_detail_page(html, "https://auracle.test/MarketDetails?id=101")

    assert snap.status == MarketStatus.RESOLVED
    assert snap.winner == "Celtics"


def test_parse_detail_page_falls_back_to_text_options():
    html = """
    <html><body>
      <h1>Will it rain in Lisbon?</h1>
      <p>CURRENT Yes 70%</p>
      <p>No IMPLIED PROBABILITY 30%</p>
    </body></html>
    """
    snap = parse_detail_page(html, "https://auracle.test/MarketDetails?id=202")

    assert snap.options == [Option("Yes", 70), Option("No", 30)]
    assert snap.close_time is None
    assert snap.ends_in is None


def test_parse_detail_page_title_from_document_title():
    html = "<html><head><title>Derby Day | Auracle</title></head><body></body></html>"
    snap = parse_detail_page(html, "https://auracle.test/MarketDetails?id=9")

    assert snap.title == "Derby Day"
    assert snap.options == []


def test_parse_detail_page_requires_market_id():
    assert parse_detail_page(DETAIL_OPEN, "https://auracle.test/Markets") is None


class FakeResponse:
    def __init__(self, status_code: int = 200, text: str = "", url: str = ""):
        self.status_code = status_code
        self.text = text
        self.url = url

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


def test_fetch_detail_not_found(monkeypatch):
    monkeypatch.setattr(scanner.requests, "get", lambda url, **kwargs: FakeResponse(404))
    assert fetch_detail("https://auracle.test/MarketDetails?id=404") is None


def test_fetch_detail_server_error_raises(monkeypatch):
    monkeypatch.setattr(scanner.requests, "get", lambda url, **kwargs: FakeResponse(503))
    with pytest.raises(requests.HTTPError):
        fetch_detail("https://auracle.test/MarketDetails?id=1")


def test_fetch_detail_parses_page(monkeypatch):
    monkeypatch.setattr(scanner.requests, "get", lambda url, **kwargs: FakeResponse(200, DETAIL_OPEN, url))
    snap = fetch_detail("https://auracle.test/MarketDetails?id=101")
    assert snap.id == "101"
    assert snap.url == "https://auracle.test/MarketDetails?id=101"


def test_fetch_lists_sends_cache_buster(monkeypatch):
    calls = []

    def fake_get(url, **kwargs):
        calls.append((url, kwargs))
        return FakeResponse(200, LIST_PAGE, "https://auracle.test/Markets")

    monkeypatch.setattr(scanner.requests, "get", fake_get)
    result = fetch_lists("https://auracle.test/")

    assert calls[0][0] == "https://auracle.test/Markets"
    assert "ts" in calls[0][1]["params"]
    assert len(result.active) == 2
    assert len(result.trending) == 1


@pytest.mark.parametrize(
    "error",
    [requests.ConnectionError("down"), requests.Timeout("slow"), requests.HTTPError("bad")],
)
def test_fetch_lists_failure_returns_empty(monkeypatch, error):
    def fake_get(url, **kwargs):
        raise error

    monkeypatch.setattr(scanner.requests, "get", fake_get)
    assert fetch_lists("https://auracle.test") == ListResult()


def test_parse_detail_page_rounds_fractional_percentages():
    html = """
    <html><body>
      <h1>Derby</h1>
      <div class="option"><span class="label">Home</span><span class="percent">62.4%</span></div>
      <div class="option"><span class="label">Away</span><span class="percent">37.6%</span></div>
    </body></html>
    """
    snap = parse_detail_page(html, "https://auracle.test/MarketDetails?id=12")

    assert snap.options == [Option("Home", 62), Option("Away", 38)]
