"""Chat endpoints: bot config, streamed messages, history and session deletion."""

from contextlib import aclosing

from fastapi import APIRouter, Request, Response, status
from fastapi.responses import StreamingResponse

from kb_assistant.dependencies import CallerDep, ChatRateLimitDep, ServicesDep
from kb_assistant.models.chat import BotConfigResponse, ChatRequest, HistoryResponse
from kb_assistant.services.container import Services
from kb_assistant.utils.errors import NotFoundError
from kb_assistant.utils.logging import get_logger

logger = get_logger("chat_api")

router = APIRouter(prefix="/chat", tags=["chat"])


@router.get("/config", response_model=BotConfigResponse)
async def get_bot_config(
    caller_id: str = CallerDep,
    services: Services = ServicesDep,
):
    """Public bot settings a chat widget needs before the first message."""
    bot = services.chat.bot_config
    return BotConfigResponse(bot_name=bot.bot_name, welcome_message=bot.welcome_message)


@router.post(
    "/message",
    summary="Send Chat Message",
    description="Send a message and receive the answer as a server-sent event stream.",
    responses={429: {"description": "Request rate or concurrent stream limit reached for this API key"}},
    dependencies=[ChatRateLimitDep],
)
async def send_message(
    body: ChatRequest,
    request: Request,
    caller_id: str = CallerDep,
    services: Services = ServicesDep,
):
    """
    Stream an answer to a chat message.

    Events are ``data: {json}\\n\\n`` frames of type ``start``, ``token``,
    ``done`` or ``error``. The session id is also returned in the
    ``X-Session-Id`` header. Unknown or foreign session ids start a new session.
    """
    # reject before a session is created for the caller
    services.chat.validate_message(body.message)

    limiter = services.stream_limiter
    limiter.acquire(caller_id)
    try:
        session = await services.chat.get_or_create_session(
            body.session_id, caller_id, origin=request.headers.get("origin")
        )
        turn = await services.chat.prepare_turn(session.id, body.message)
    except BaseException:
        limiter.release(caller_id)
        raise

    async def event_stream():
        try:
            async with aclosing(services.chat.run_turn(turn, request.is_disconnected)) as events:
                async for event in events:
                    yield event.to_sse()
        finally:
            limiter.release(caller_id)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
            "X-Session-Id": session.id,
        },
    )


@router.get("/history/{session_id}", response_model=HistoryResponse)
async def get_history(
    session_id: str,
    caller_id: str = CallerDep,
    services: Services = ServicesDep,
):
    """Messages of one of the caller's sessions, oldest first."""
    return await services.chat.get_history(session_id, caller_id)


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(
    session_id: str,
    caller_id: str = CallerDep,
    services: Services = ServicesDep,
):
    """Delete one of the caller's sessions together with its messages."""
    deleted = await services.chat.delete_session(session_id, caller_id)
    if not deleted:
        raise NotFoundError("Session", session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
