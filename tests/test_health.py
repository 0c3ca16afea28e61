from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from conftest import lists, snapshot

from auracle_bot.health import create_app
from auracle_bot.ledger import JsonLedger
from auracle_bot.models import MarketStatus
from auracle_bot.scheduler import Scheduler

TOKEN = "s3cret"
AUTH = {"X-Control-Token": TOKEN}


def test_root_returns_ok():
    client = TestClient(create_app())

    response = client.get("/")

    assert response.status_code == 200
    assert response.text == "OK"


def test_healthz_includes_status():
    client = TestClient(create_app(lambda: {"ledger": {"total": 3}}))

    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "ledger": {"total": 3}}


def test_healthz_survives_failing_provider():
    def broken() -> dict:
        raise RuntimeError("ledger busy")

    client = TestClient(create_app(broken))

    assert client.get("/healthz").json() == {"status": "ok"}


def test_control_routes_need_engine_and_scheduler():
    client = TestClient(create_app())
    assert client.post("/tick", headers=AUTH).status_code == 404


@pytest.fixture
def bot(tmp_path, details, make_engine):
    """A running bot: JSON ledger, engine and scheduler behind the control app."""
    path = tmp_path / "state.json"
    engine = make_engine(JsonLedger(path))
    scheduler = Scheduler(lambda: engine.run_tick(lists(active=["A", "B"])))
    client = TestClient(create_app(engine=engine, scheduler=scheduler, control_token=TOKEN))
    return client, engine, scheduler, path


def reply(response) -> str:
    assert response.status_code == 200
    return response.json()["reply"]


def test_chat_override_survives_later_ticks(bot, details, notifier):
    client, engine, _, path = bot
    details.set("A", snapshot("A", MarketStatus.OPEN))

    assert reply(client.post("/tick", headers=AUTH)) == "Tick complete."
    assert engine.ledger.seeded

    assert reply(client.post("/chat", json={"chat_id": "-100999"}, headers=AUTH)) == (
        "Announcements will be sent to -100999."
    )

    details.set("B", snapshot("B", MarketStatus.OPEN))
    assert reply(client.post("/tick", headers=AUTH)) == "Tick complete."

    assert notifier.sent[-1][0] == "-100999"
    reloaded = JsonLedger(path)
    assert reloaded.target_chat_id == "-100999"
    assert reloaded.get("B").announced_open


def test_chat_accepts_numeric_id(bot):
    client, engine, _, _ = bot

    reply(client.post("/chat", json={"chat_id": -100123}, headers=AUTH))

    assert engine.ledger.target_chat_id == "-100123"


def test_chat_rejects_empty_id(bot):
    client, engine, _, _ = bot

    assert reply(client.post("/chat", json={"chat_id": " "}, headers=AUTH)) == "Chat id must not be empty."
    assert engine.ledger.target_chat_id is None


def test_skip_seed_changes_live_ledger(bot, details, notifier):
    client, engine, _, path = bot
    details.set("A", snapshot("A", MarketStatus.OPEN))

    assert reply(client.post("/skip-seed", headers=AUTH)).startswith("Seeding skipped")
    assert JsonLedger(path).seeded

    client.post("/tick", headers=AUTH)

    assert len(notifier.sent) == 1
    assert "New Market Live" in notifier.sent[0][1]
    assert engine.ledger.get("A").announced_open


def test_status_reports_live_ledger(bot):
    client, engine, _, _ = bot
    engine.ledger.target_chat_id = "-42"

    text = reply(client.get("/status", headers=AUTH))

    assert text.startswith("Markets: 0 total")
    assert text.endswith("Target chat: -42")


def test_tick_refused_while_another_runs(bot):
    client, _, scheduler, _ = bot

    assert scheduler.run_exclusive(lambda: client.post("/tick", headers=AUTH).json()["reply"]) == (
        "A tick is already running, try again shortly."
    )


@pytest.mark.parametrize("headers", [{}, {"X-Control-Token": "wrong"}])
def test_control_requires_token(bot, headers):
    client, engine, _, _ = bot

    assert client.post("/chat", json={"chat_id": "-1"}, headers=headers).status_code == 403
    assert client.post("/tick", headers=headers).status_code == 403
    assert engine.ledger.target_chat_id is None


def test_without_token_only_loopback_clients_allowed(details, make_engine, ledger):
    engine = make_engine(ledger)
    client = TestClient(create_app(engine=engine, scheduler=Scheduler(lambda: None), control_token=""))

    assert client.get("/status").status_code == 403
