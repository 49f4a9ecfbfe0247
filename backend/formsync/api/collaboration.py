"""
HTTP views onto live collaboration state, for resynchronisation and diagnostics
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from formsync.core.errors import AuthenticationError
from formsync.models import UserRole

router = APIRouter(tags=["collaboration"])
security = HTTPBearer()


def get_collaboration_server(request: Request):
    return request.app.state.collaboration


async def get_current_identity(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    server=Depends(get_collaboration_server)
):
    """
    Resolve the bearer token the same way the Socket.IO handshake does
    """
    try:
        return await server.gate.authenticate_token(credentials.credentials)
    except AuthenticationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.message,
            headers={"WWW-Authenticate": "Bearer"},
        )


async def require_admin(identity=Depends(get_current_identity)):
    if identity.role != UserRole.ADMIN.value:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")
    return identity


@router.get("/collaboration/stats", response_model=Dict[str, Any])
async def collaboration_stats(
    identity=Depends(require_admin),
    server=Depends(get_collaboration_server)
):
    """
    Connection, room, event and sweeper statistics for this process
    """
    return server.get_server_stats()


@router.get("/groups/{group_code}/state", response_model=Dict[str, Any])
async def group_state(
    group_code: str,
    identity=Depends(get_current_identity),
    server=Depends(get_collaboration_server)
):
    """
    Snapshot of one group: members, live locks and the shared draft
    """
    group = await server.store.get_group(group_code)
    locks = await server.locks.live_locks(group)

    return {
        "shareCode": group.share_code,
        "groupName": group.group_name,
        "formTitle": group.form_title,
        "activeUsers": server.rooms.active_members(group.share_code),
        "locks": {
            lock.field_id: {
                "userId": lock.user_id,
                "userEmail": lock.user_email,
                "expiresAt": lock.expires_at.isoformat(),
            }
            for lock in locks
        },
        "formData": await server.store.draft_values(group.sharing_code_id),
    }
