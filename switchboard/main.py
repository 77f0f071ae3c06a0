"""
FastAPI application — the Switchboard entry point.

The streaming endpoint runs each turn as its own task feeding an SSESink;
the HTTP response drains the sink. If the client disconnects, the response
generator is cancelled and cancels the turn task, which closes the provider
stream before anything further is written.

Authentication happens upstream: callers arrive with X-User-Id set.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse, StreamingResponse

from switchboard import __version__
from switchboard.adapters.registry import AdapterRegistry
from switchboard.config import get_config
from switchboard.costs import CostTracker
from switchboard.errors import GatewayError, NotFoundError, AuthorizationError, ValidationError
from switchboard.orchestrator import Turn, TurnOrchestrator
from switchboard.sink import SSESink
from switchboard.storage.models import Conversation
from switchboard.storage.sqlite_store import SQLiteStore, UPDATABLE_FIELDS

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Globals — initialized at startup
# ---------------------------------------------------------------------------
sqlite_store: SQLiteStore | None = None
registry: AdapterRegistry | None = None
orchestrator: TurnOrchestrator | None = None
cost_tracker: CostTracker | None = None

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _setup_logging(cfg: dict):
    log_cfg = cfg.get("logging", {})
    level = getattr(logging, log_cfg.get("level", "INFO").upper(), logging.INFO)
    log_file = log_cfg.get("file")

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        from pathlib import Path
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    global sqlite_store, registry, orchestrator, cost_tracker

    cfg = get_config()
    _setup_logging(cfg)

    sqlite_store = SQLiteStore(cfg["storage"]["sqlite_path"])
    registry = AdapterRegistry.from_config(cfg.get("providers"))
    orchestrator = TurnOrchestrator.from_config(cfg, sqlite_store, registry)
    cost_tracker = CostTracker(sqlite_store)

    logger.info("Switchboard v%s ready", __version__)
    yield
    logger.info("Switchboard shutting down")


app = FastAPI(title="Switchboard", version=__version__, lifespan=lifespan)


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    return JSONResponse({"error": str(exc)}, status_code=exc.status_code)


def _owned_conversation(conv_id: str, user_id: str) -> Conversation:
    conv = sqlite_store.get_conversation(conv_id)
    if conv is None:
        raise NotFoundError("Conversation not found")
    if conv.user_id != user_id:
        raise AuthorizationError("Conversation belongs to another user")
    return conv


async def _json_body(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Request body must be JSON")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


# ---------------------------------------------------------------------------
# Streaming turns
# ---------------------------------------------------------------------------

async def _pump(turn: Turn, sink: SSESink):
    """Run the turn in its own task and relay its frames to the response."""
    task = asyncio.create_task(orchestrator.stream_turn(turn, sink))
    try:
        async for frame in sink.frames():
            yield frame
        await task
    finally:
        if not task.done():
            logger.info("Client went away, cancelling turn for conv=%s", turn.conversation.id)
            task.cancel()


@app.post("/api/v1/conversations/{conv_id}/stream")
async def stream_turn(conv_id: str, request: Request, x_user_id: str = Header(default="")):
    """
    Send a message and stream the answer as SSE.
    Precondition failures are returned as JSON errors before the stream opens.
    """
    body = await _json_body(request)
    turn = orchestrator.begin_turn(
        x_user_id, conv_id, body.get("message"), body.get("attachments"),
    )
    sink = SSESink()
    return StreamingResponse(_pump(turn, sink), media_type="text/event-stream", headers=SSE_HEADERS)


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------

@app.get("/api/v1/conversations")
async def list_conversations(x_user_id: str = Header(default="")):
    convs = sqlite_store.list_conversations(x_user_id)
    return JSONResponse([c.to_dict() for c in convs])


@app.post("/api/v1/conversations")
async def create_conversation(request: Request, x_user_id: str = Header(default="")):
    body = await _json_body(request)
    if sqlite_store.get_user(x_user_id) is None:
        raise AuthorizationError("Unknown user")
    provider = body.get("provider")
    model = body.get("model")
    if not provider or not model:
        raise ValidationError("provider and model are required")
    registry.resolve(provider)

    conv = sqlite_store.create_conversation(Conversation(
        user_id=x_user_id,
        title=body.get("title") or "New Chat",
        provider=provider,
        model=model,
        system_prompt=body.get("system_prompt") or "",
    ))
    return JSONResponse(conv.to_dict(), status_code=201)


@app.patch("/api/v1/conversations/{conv_id}")
async def update_conversation(conv_id: str, request: Request, x_user_id: str = Header(default="")):
    body = await _json_body(request)
    _owned_conversation(conv_id, x_user_id)
    fields = {k: v for k, v in body.items() if k in UPDATABLE_FIELDS}
    conv = sqlite_store.update_conversation(conv_id, **fields)
    return JSONResponse(conv.to_dict())


@app.delete("/api/v1/conversations/{conv_id}")
async def delete_conversation(conv_id: str, x_user_id: str = Header(default="")):
    _owned_conversation(conv_id, x_user_id)
    sqlite_store.delete_conversation(conv_id)
    return JSONResponse({"success": True})


@app.get("/api/v1/conversations/{conv_id}/messages")
async def get_messages(conv_id: str, x_user_id: str = Header(default="")):
    _owned_conversation(conv_id, x_user_id)
    return JSONResponse([m.to_dict() for m in sqlite_store.get_messages(conv_id)])


# ---------------------------------------------------------------------------
# Models, stats, health
# ---------------------------------------------------------------------------

@app.get("/api/v1/models")
async def list_models():
    """Models whose provider has credentials configured."""
    return JSONResponse({"models": registry.available_models()})


@app.get("/api/v1/stats")
async def user_stats(days: int = 30, x_user_id: str = Header(default="")):
    stats = sqlite_store.get_user_stats(x_user_id)
    if stats is None:
        raise AuthorizationError("Unknown user")
    stats["costs"] = cost_tracker.get_stats(days=days, user_id=x_user_id)
    return JSONResponse(stats)


@app.get("/api/v1/health")
async def health():
    return JSONResponse({
        "status": "ok",
        "version": __version__,
        "providers": {p: registry.is_configured(p) for p in registry.providers()},
    })
