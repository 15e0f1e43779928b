"""Chat session management routes."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from parley.api.schemas import MessageSchema, SessionDetail, SessionSummary, SuccessResponse
from parley.api.services import Services, get_services
from parley.context import ChatSession, Sender

router = APIRouter(prefix="/sessions", tags=["sessions"])


def _summary(session: ChatSession) -> SessionSummary:
    first_user = next((m.text for m in session.messages if m.sender == Sender.USER), "")
    return SessionSummary(
        id=session.id,
        workspace_scope=session.workspace_scope,
        last_updated=session.last_updated,
        message_count=len(session.messages),
        preview=first_user[:80],
    )


@router.get("", response_model=list[SessionSummary])
async def list_sessions(scope: Optional[str] = None, services: Services = Depends(get_services)):
    """List sessions of a workspace scope, most recent first."""
    return [_summary(s) for s in services.store.list_for_scope(scope)]


@router.get("/{session_id}", response_model=SessionDetail)
async def get_session(session_id: str, services: Services = Depends(get_services)):
    session = services.store.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")

    return SessionDetail(
        id=session.id,
        workspace_scope=session.workspace_scope,
        last_updated=session.last_updated,
        messages=[MessageSchema.model_validate(m.to_dict()) for m in session.messages],
    )


@router.delete("/{session_id}", response_model=SuccessResponse)
async def delete_session(session_id: str, services: Services = Depends(get_services)):
    if not services.store.delete(session_id):
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
    return SuccessResponse(success=True, message=f"Deleted {session_id}")


@router.delete("", response_model=SuccessResponse)
async def clear_sessions(services: Services = Depends(get_services)):
    """Delete every stored session, in every scope."""
    if not services.store.clear_all():
        raise HTTPException(status_code=500, detail="Failed to clear sessions")
    return SuccessResponse(success=True, message="All sessions cleared")
