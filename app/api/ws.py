import logging
from typing import Any, Dict, Set

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect

from app.core.config import settings
from app.db.models import SecurityRequest
from app.db.session import SessionLocal
from app.api.deps import resolve_session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ws", tags=["ws"])


class WebSocketHub:
    def __init__(self) -> None:
        self.rooms: Dict[str, Set[WebSocket]] = {}

    async def connect(self, room_id: str, ws: WebSocket) -> None:
        await ws.accept()
        self.rooms.setdefault(room_id, set()).add(ws)

    def disconnect(self, room_id: str, ws: WebSocket) -> None:
        if room_id in self.rooms:
            self.rooms[room_id].discard(ws)
            if not self.rooms[room_id]:
                del self.rooms[room_id]

    async def broadcast(self, room_id: str, message: dict) -> None:
        for ws in list(self.rooms.get(room_id, set())):
            try:
                await ws.send_json(message)
            except Exception:
                self.disconnect(room_id, ws)


hub = WebSocketHub()


def request_room(request_id: str) -> str:
    return f"security-request:{request_id}"


def user_room(user_id: int) -> str:
    return f"user:{user_id}"


def request_event(event_type: str, request: SecurityRequest) -> dict[str, Any]:
    return {
        "type": event_type,
        "request_id": request.request_id,
        "status": request.status,
        "kind": request.kind,
        "device_id": request.device_id,
        "ip_address": request.ip_address,
    }


async def push_request_resolved(request_id: str, event: dict) -> None:
    await hub.broadcast(request_room(request_id), event)


async def push_request_opened(user_id: int, event: dict) -> None:
    await hub.broadcast(user_room(user_id), event)


async def _hold(room: str, ws: WebSocket) -> None:
    await hub.connect(room, ws)
    try:
        while True:
            # Keep alive or handle client pings
            await ws.receive_text()
    except WebSocketDisconnect:
        hub.disconnect(room, ws)


@router.websocket("/security-requests/{request_id}")
async def watch_security_request(ws: WebSocket, request_id: str):
    # The request id is the same capability the polling endpoint accepts.
    await _hold(request_room(request_id), ws)


@router.websocket("/security-requests")
async def watch_incoming_requests(ws: WebSocket):
    device_id = ws.headers.get(settings.device_id_header, "")
    session_token = ws.headers.get(settings.session_token_header, "")
    db = SessionLocal()
    try:
        auth = resolve_session(device_id, session_token, db)
    except HTTPException as exc:
        logger.warning("WebSocket session rejected: %s", exc.detail)
        await ws.close(code=4401)
        return
    finally:
        db.close()
    await _hold(user_room(auth.user.user_id), ws)
