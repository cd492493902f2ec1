"""
Websocket endpoints for the live dashboards. Auth and role checks run before
the channel is attached; a rejected socket gets one error frame and is closed
with 4001 (no user) or 4003 (wrong role).
"""
import logging

from fastapi import APIRouter, WebSocket

from app.auth import principal_from_headers, require_role
from app.channels import LiveChannel, WebSocketConnection, dumps
from app.errors import OrderServiceError, Unauthorized
from app.models import Principal, Role
from app.routes.notifications import recipient_for
from app.services import Services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/live", tags=["live"])


async def _authorize(websocket: WebSocket, *roles: Role) -> Principal | None:
    services: Services = websocket.app.state.services
    await websocket.accept()
    try:
        principal = principal_from_headers(websocket.headers, services.settings)
        if roles:
            require_role(principal, *roles)
    except OrderServiceError as e:
        await websocket.send_text(dumps({"status": "error", "code": e.code, "message": e.message}))
        await websocket.close(code=4001 if isinstance(e, Unauthorized) else 4003)
        return None
    return principal


async def _serve(websocket: WebSocket, channel: LiveChannel, scope: str | None) -> None:
    connection = WebSocketConnection(websocket)
    try:
        await channel.connect(connection, scope)
        await connection.listen()
    finally:
        # Runs the channel's unsubscribe on every exit path, including errors in connect.
        await connection.close()


@router.websocket("/marketing")
async def marketing_socket(websocket: WebSocket) -> None:
    if await _authorize(websocket, Role.MARKETING) is None:
        return
    services: Services = websocket.app.state.services
    await _serve(websocket, services.marketing_channel, None)


@router.websocket("/restaurant")
async def restaurant_socket(websocket: WebSocket) -> None:
    principal = await _authorize(websocket, Role.RESTAURANT)
    if principal is None:
        return
    services: Services = websocket.app.state.services
    await _serve(websocket, services.restaurant_channel, principal.restaurant_id)


@router.websocket("/notifications")
async def notifications_socket(websocket: WebSocket) -> None:
    principal = await _authorize(websocket)
    if principal is None:
        return
    services: Services = websocket.app.state.services
    await _serve(websocket, services.notification_channel, recipient_for(principal))
