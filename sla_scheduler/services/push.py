"""
Real-time push channel.

Connected clients register a WebSocket under their system role (and
optionally their employee id). SLA broadcasts go to every socket of a
role; new notifications go to the recipient's own sockets.
"""
import logging
from collections import defaultdict
from typing import Any, Optional, Protocol

from fastapi import WebSocket


logger = logging.getLogger(__name__)


class PushChannel(Protocol):
    """What the scheduler needs from a push channel."""

    async def broadcast_to_role(self, role: str, event: str, payload: dict[str, Any]) -> None:
        ...

    async def send_to_user(self, user_id: str, event: str, payload: dict[str, Any]) -> None:
        ...


class RoleConnectionManager:
    """PushChannel over FastAPI WebSockets, grouped by role and user."""

    def __init__(self):
        self.role_connections: dict[str, set[WebSocket]] = defaultdict(set)
        self.user_connections: dict[str, set[WebSocket]] = defaultdict(set)

    async def connect(self, websocket: WebSocket, role: str, user_id: Optional[str] = None) -> None:
        self.role_connections[role].add(websocket)
        if user_id:
            self.user_connections[user_id].add(websocket)
        await websocket.accept()
        logger.debug(f"Push client connected (role={role}, user={user_id})")

    def disconnect(self, websocket: WebSocket) -> None:
        for groups in (self.role_connections, self.user_connections):
            for key in list(groups):
                groups[key].discard(websocket)
                if not groups[key]:
                    del groups[key]

    async def _send(self, sockets: set[WebSocket], event: str, payload: dict[str, Any]) -> int:
        sent = 0
        for websocket in list(sockets):
            try:
                await websocket.send_json({"event": event, "data": payload})
                sent += 1
            except Exception as e:
                logger.debug(f"Dropping push client after send failure: {e}")
                self.disconnect(websocket)
        return sent

    async def broadcast_to_role(self, role: str, event: str, payload: dict[str, Any]) -> None:
        sockets = self.role_connections.get(role)
        if sockets:
            await self._send(sockets, event, payload)

    async def send_to_user(self, user_id: str, event: str, payload: dict[str, Any]) -> None:
        sockets = self.user_connections.get(user_id)
        if sockets:
            await self._send(sockets, event, payload)

    @property
    def connection_count(self) -> int:
        return len({ws for sockets in self.role_connections.values() for ws in sockets})


push_channel = RoleConnectionManager()


def get_push_channel() -> RoleConnectionManager:
    """Get the process-wide push channel."""
    return push_channel
