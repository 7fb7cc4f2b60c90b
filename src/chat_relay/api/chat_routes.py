"""
Chat routes: the push connection and message submission.

Protocol:
1. Open ``GET /chat/stream?token=...`` with EventSource
2. Receive ``{"type": "connected", "clientId": "..."}`` as the first event
3. Submit ``POST /chat/message`` with ``{"message": "...", "clientId": "..."}``
4. Receive the turn's events on the open stream:
   user_message, ai_thinking(true), ai_thinking_process_start,
   ai_thinking_process_chunk..., ai_thinking_process_end,
   ai_message_chunk..., ai_thinking(false)

Keep-alive comment records (``:``) arrive every heartbeat interval.
"""

import logging

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from chat_relay.config import Settings
from chat_relay.db.repository import MessageRepository
from chat_relay.relay.orchestrator import RelayOrchestrator
from chat_relay.security import AuthenticatedUser, require_user
from chat_relay.streaming import (
    PushSession,
    SessionLimitError,
    SessionRegistry,
    SSETransport,
    create_sse_response,
)

logger = logging.getLogger(__name__)
router = APIRouter()


class ChatMessageRequest(BaseModel):
    """Request for relaying one chat message."""

    model_config = ConfigDict(populate_by_name=True)

    message: str | None = Field(default=None, description="User's message")
    client_id: str | int | None = Field(
        default=None,
        alias="clientId",
        description="Client ID received in the connected event",
    )


@router.get("/chat/stream")
async def open_chat_stream(
    request: Request,
    user: AuthenticatedUser = Depends(require_user),
):
    """Open the push connection for one browser tab."""
    settings: Settings = request.app.state.settings
    registry: SessionRegistry = request.app.state.registry

    session = PushSession(
        SSETransport(),
        user_id=user.user_id,
        heartbeat_interval=settings.heartbeat_interval,
        idle_timeout=settings.idle_timeout,
        retry_ms=settings.client_retry_ms,
    )

    try:
        client_id = await registry.register(session)
    except SessionLimitError as e:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"error": str(e)},
        )

    await session.open()
    logger.info(f"Push connection {client_id} opened by {user.username}")

    return create_sse_response(
        session.iter_frames(
            is_disconnected=request.is_disconnected,
            poll_interval=settings.disconnect_poll_interval,
        )
    )


@router.post("/chat/message")
async def post_chat_message(
    body: ChatMessageRequest,
    request: Request,
    user: AuthenticatedUser = Depends(require_user),
):
    """
    Relay a message to the model.

    Returns as soon as the turn is scheduled; the answer streams over the
    push connection named by ``clientId``.
    """
    if not body.message or body.client_id is None or body.client_id == "":
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Message and client ID are required"},
        )

    client_id = str(body.client_id)

    # An unknown client ID is allowed; the turn's sends become no-ops
    registry: SessionRegistry = request.app.state.registry
    session = registry.lookup(client_id)
    if session is not None and session.user_id != user.user_id:
        logger.warning(f"User {user.user_id} tried to post to client {client_id} owned by user {session.user_id}")
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content={"error": "Client ID belongs to another user"},
        )

    logger.info(f"Message from user {user.user_id} (client {client_id}): {body.message[:100]}")

    orchestrator: RelayOrchestrator = request.app.state.orchestrator
    orchestrator.submit(user.user_id, client_id, body.message)

    return {"success": True}


@router.get("/chat/stream/stats")
async def get_stream_stats(
    request: Request,
    user: AuthenticatedUser = Depends(require_user),
):
    """Get push connection statistics."""
    registry: SessionRegistry = request.app.state.registry
    orchestrator: RelayOrchestrator = request.app.state.orchestrator
    return {
        "status": "ok",
        **registry.get_stats(),
        "active_turns": orchestrator.active_turn_count,
    }


@router.get("/chat/history")
def get_chat_history(
    request: Request,
    limit: int = Query(default=50, ge=1, le=500),
    user: AuthenticatedUser = Depends(require_user),
):
    """Get the caller's most recent messages, oldest first."""
    messages: MessageRepository = request.app.state.messages
    history = messages.get_history(user.user_id, limit=limit)
    return {
        "count": len(history),
        "messages": [m.to_dict() for m in history],
    }
