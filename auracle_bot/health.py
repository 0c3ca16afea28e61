"""
HTTP surface of the running bot.

Serves the liveness endpoint the hosting platform polls, and the control
commands (status, manual tick, chat override, skip seeding). Control
commands act on the live engine's ledger under the scheduler's tick lock,
so they never interleave with a tick and are persisted by the same process
that owns the state file.
"""

import hmac
import logging
import threading
from typing import Annotated, Callable, Optional, Union

import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from auracle_bot.config import Config
from auracle_bot.control import ledger_status, set_target_chat, skip_seed, trigger_tick
from auracle_bot.engine import ReconciliationEngine
from auracle_bot.scheduler import Scheduler

# Configure module logger
logger = logging.getLogger(__name__)

LOOPBACK_HOSTS = ("127.0.0.1", "::1", "localhost")


class ChatRequest(BaseModel):
    chat_id: Union[str, int]


def create_app(
    status_provider: Optional[Callable[[], dict]] = None,
    engine: Optional[ReconciliationEngine] = None,
    scheduler: Optional[Scheduler] = None,
    control_token: Optional[str] = None
) -> FastAPI:
    """
    Build the HTTP app.

    Control routes are only mounted when both engine and scheduler are given.

    Args:
        status_provider: Returns scheduler/ledger status for /healthz
        engine: Live engine whose ledger the control commands change
        scheduler: Scheduler owning the tick lock
        control_token: Shared secret for control routes. If None, uses Config.CONTROL_TOKEN

    Returns:
        FastAPI application
    """
    app = FastAPI(title="Auracle Market Bot", docs_url=None, redoc_url=None)

    @app.get("/", response_class=PlainTextResponse, tags=["system"])
    def root() -> str:
        return "OK"

    @app.get("/healthz", tags=["system"])
    def healthcheck() -> dict:
        """Readiness check for infrastructure monitors, with scheduler and ledger status."""
        payload: dict = {"status": "ok"}
        if status_provider is not None:
            try:
                payload.update(status_provider())
            except Exception as e:
                logger.warning(f"Status provider failed: {e}")
        return payload

    if engine is None or scheduler is None:
        return app

    token = control_token if control_token is not None else Config.CONTROL_TOKEN

    def authorize(
        request: Request,
        x_control_token: Annotated[Optional[str], Header()] = None
    ) -> None:
        """Require the control token, or a loopback client when no token is configured."""
        if token:
            if not hmac.compare_digest(x_control_token or "", token):
                raise HTTPException(status_code=403, detail="Invalid control token")
            return

        host = request.client.host if request.client else None
        if host not in LOOPBACK_HOSTS:
            raise HTTPException(status_code=403, detail="Control commands are limited to localhost")

    guarded = [Depends(authorize)]

    @app.get("/status", tags=["control"], dependencies=guarded)
    def status() -> dict:
        reply = scheduler.run_exclusive(lambda: ledger_status(engine.ledger, engine.default_chat_id))
        return {"reply": reply}

    @app.post("/tick", tags=["control"], dependencies=guarded)
    def tick() -> dict:
        return {"reply": trigger_tick(scheduler.run_now)}

    @app.post("/chat", tags=["control"], dependencies=guarded)
    def chat(body: ChatRequest) -> dict:
        reply = scheduler.run_exclusive(lambda: set_target_chat(engine.ledger, str(body.chat_id)))
        return {"reply": reply}

    @app.post("/skip-seed", tags=["control"], dependencies=guarded)
    def skip_seeding() -> dict:
        return {"reply": scheduler.run_exclusive(lambda: skip_seed(engine.ledger))}

    return app


def serve_in_background(app: FastAPI, port: Optional[int] = None) -> threading.Thread:
    """
    Serve the app with uvicorn on a daemon thread.

    Args:
        app: Application to serve
        port: Listen port. If None, uses Config.PORT

    Returns:
        The started thread
    """
    port = port or Config.PORT
    server = uvicorn.Server(uvicorn.Config(app, host="0.0.0.0", port=port, log_level="warning"))

    thread = threading.Thread(target=server.run, name="health-http", daemon=True)
    thread.start()
    logger.info(f"[HTTP] listening on {port}")
    return thread
