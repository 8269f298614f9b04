"""Chat router providing WebSocket and HTTP endpoints.

This module provides:
    - WebSocket /ws/projects?projectId=...: Realtime project chat
    - GET /projects/{project_id}/messages: Paginated message history
    - POST /projects/{project_id}/messages/search: Search retained messages
    - DELETE /projects/{project_id}/messages: Clear history (owner only)
    - GET /projects/{project_id}/messages/count: Retained message count

The WebSocket handshake refuses a connection (close code 1008, the reason
carrying the error type) before it is accepted when the room id is malformed
or the session token is missing or invalid. Once admitted, the connection is
served by MessageRelay; see relay.py for the event protocol.

HTTP routes authenticate the same way and require project membership.
A message cache outage is reported as 503.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, WebSocket

from codecollab.auth.dependencies import get_current_identity, get_member_project
from codecollab.auth.tokens import HandshakeError, Identity
from codecollab.projects import Project

from .schemas import ChatValidationError, ClearResult, MessageCount, MessagePage, SearchInput
from .store import MessageStore, StorageUnavailable

logger = logging.getLogger(__name__)

router = APIRouter()

# Policy violation: the handshake was refused
WS_POLICY_VIOLATION = 1008


def _store(request: Request) -> MessageStore:
    return request.app.state.store


def _unavailable(e: StorageUnavailable) -> HTTPException:
    logger.error(f"[Messages] {e}")
    return HTTPException(status_code=503, detail="Message store unavailable")


@router.websocket("/ws/projects")
async def project_chat(websocket: WebSocket) -> None:
    """WebSocket endpoint for realtime project chat.

    Query parameters:
        projectId: Room (project) id, 24 hex characters.
        token: Session token, used when no cookie or Authorization header
            carries one.
    """
    state = websocket.app.state
    try:
        handle = await state.handshake.authenticate(websocket)
    except HandshakeError as e:
        logger.warning(f"[WS] Connection refused ({e.error_type}): {e}")
        await websocket.close(code=WS_POLICY_VIOLATION, reason=e.error_type)
        return

    logger.info(f"[WS] {handle.identity.id} admitted to room {handle.room_id}")
    await state.relay.run(handle)


@router.get("/projects/{project_id}/messages", response_model=MessagePage)
async def get_project_messages(
    request: Request,
    project: Project = Depends(get_member_project),
    limit: int = Query(100, ge=1, description="Maximum number of messages"),
    offset: int = Query(0, ge=0, description="Messages to skip from the newest"),
) -> MessagePage:
    """Get a page of the project's message history, oldest first.

    Example:
        GET /projects/64b7f0c2e4b0a1a2b3c4d5e6/messages?limit=50&offset=100
    """
    store = _store(request)
    limit = min(limit, request.app.state.settings.chat.max_page_size)
    try:
        messages = await store.get_range(project.id, limit, offset)
        total = await store.count(project.id)
    except StorageUnavailable as e:
        raise _unavailable(e)

    return MessagePage(messages=[msg.to_wire() for msg in messages], totalCount=total)


@router.post("/projects/{project_id}/messages/search", response_model=MessagePage)
async def search_project_messages(
    body: SearchInput,
    request: Request,
    project: Project = Depends(get_member_project),
) -> MessagePage:
    """Search the project's retained messages (case-insensitive substring)."""
    try:
        term = body.require_term()
    except ChatValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        results = await _store(request).search(project.id, term)
    except StorageUnavailable as e:
        raise _unavailable(e)

    return MessagePage(messages=[msg.to_wire() for msg in results], totalCount=len(results))


@router.delete("/projects/{project_id}/messages", response_model=ClearResult)
async def clear_project_messages(
    request: Request,
    project: Project = Depends(get_member_project),
    identity: Identity = Depends(get_current_identity),
) -> ClearResult:
    """Delete the project's message history. Only the project owner may do this."""
    if not project.is_owner(identity.id):
        logger.warning(f"[Messages] {identity.id} tried to clear project {project.id} without ownership")
        raise HTTPException(status_code=403, detail="Only the project owner can clear messages")

    try:
        await _store(request).clear(project.id)
    except StorageUnavailable as e:
        raise _unavailable(e)

    return ClearResult()


@router.get("/projects/{project_id}/messages/count", response_model=MessageCount)
async def get_project_message_count(
    request: Request,
    project: Project = Depends(get_member_project),
) -> MessageCount:
    """Get the number of messages retained for the project."""
    try:
        count = await _store(request).count(project.id)
    except StorageUnavailable as e:
        raise _unavailable(e)
    return MessageCount(count=count)
