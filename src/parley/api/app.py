"""
HTTP API for Parley.

It exposes the following endpoints:
- **GET /health**  - liveness probe for health checks.
- **POST /ask**   - answer a question, optionally continuing a stored conversation.
- **GET /conversations** - list stored conversation ids.
- **GET /conversations/{conversation_id}** - fetch a stored transcript.
"""

import logging
from typing import List

from fastapi import (
    FastAPI,
    HTTPException,
)

from parley.agent.events import EventLog
from parley.agent.factory import (
    build_answers_agent,
    conversation_store,
)
from parley.api.models import (
    AskRequest,
    AskResponse,
    ConversationResponse,
)
from parley.common import (
    AnsiColors,
    colored_print,
)
from parley.config import settings
from parley.core.schema import dump_messages
from parley.memory.memory_store import ReplayDecodeError

logger = logging.getLogger(__name__)

app = FastAPI(title="Parley API", version="0.1.0", description="Parley agent orchestrator API")


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.get("/health", summary="Health check")
async def health() -> dict[str, str]:
    """Return a simple liveness payload."""
    return {"status": "ok"}


@app.post("/ask", response_model=AskResponse, summary="Answer a question")
def ask_endpoint(req: AskRequest) -> AskResponse:
    """Run one question through the turn engine (blocking; served from the thread pool)."""
    events = EventLog()
    agent = build_answers_agent(settings, sink=events)
    try:
        conversation_id, session = agent.ask(
            req.question, conversation_id=req.conversation_id, use_planner=req.use_planner
        )
    except ReplayDecodeError as exc:
        logger.error("Stored conversation is corrupt: %s", exc)
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    _, usage = session.context_window_usage()
    return AskResponse(
        answer=session.response or "",
        conversation_id=conversation_id,
        events=events.events,
        tools_used=session.tools_used(),
        usage=usage,
    )


@app.get("/conversations", response_model=List[str], summary="List conversations")
async def list_conversations() -> List[str]:
    """List all stored conversation ids."""
    return conversation_store(settings).list_ids()


@app.get(
    "/conversations/{conversation_id}",
    response_model=ConversationResponse,
    summary="Fetch a conversation",
)
async def get_conversation(conversation_id: str) -> ConversationResponse:
    """Return the stored transcript of *conversation_id*."""
    store = conversation_store(settings)
    try:
        timestamp, messages = store.read(conversation_id)
    except ReplayDecodeError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except (FileNotFoundError, ValueError) as exc:
        raise HTTPException(status_code=404, detail="Conversation not found") from exc
    return ConversationResponse(
        conversation_id=conversation_id, timestamp=timestamp, messages=dump_messages(messages)
    )


# ---------------------------------------------------------------------------
# Public helper to launch the API (imported by main.py)
# ---------------------------------------------------------------------------
def run_api(
    host: str = "0.0.0.0", port: int = 8000, reload: bool = False, log_level: str | None = None
) -> None:
    """Start a uvicorn server hosting *app*.

    Parameters
    ----------
    host, port:
        Bind address for the HTTP server.
    reload:
        If *True*, enable auto-reload (useful in development).
    log_level:
        Logging level to use (default from settings if not provided).
    """

    # Lazy import: uvicorn is only needed when serving
    import uvicorn  # pylint: disable=import-outside-toplevel

    if log_level is None:  # Use the default from settings if not provided
        log_level = settings.LOG_LEVEL

    logger.info(
        "Starting Parley API at %s:%d (reload=%s, log_level=%s)", host, port, reload, log_level
    )
    colored_print(f"Parley API is running at http://localhost:{port}.", AnsiColors.GREEN)
    uvicorn.run(
        "parley.api.app:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


# ---------------------------------------------------------------------------
# `python -m parley.api.app` helper
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    run_api(reload=True)
