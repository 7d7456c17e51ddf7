import asyncio
import json
from dataclasses import dataclass
from typing import Any, Optional

from sanic import Websocket

from .logger import logger


@dataclass
class Connection:
    id: str
    ws: Websocket
    username: Optional[str] = None

    @property
    def authenticated(self) -> bool:
        return self.username is not None


def encode_event(event: str, data: Any = None) -> str:
    return json.dumps({"event": event, "data": data})


class ConnectionManager:
    """Live websocket connections and their single-slot user bindings.

    A username is bound to at most one connection; binding it to a new
    connection releases the old one back to the unauthenticated state.
    """

    def __init__(self):
        self.active_connections: dict[str, Connection] = {}
        self._bindings: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def connect(self, connection_id: str, ws: Websocket) -> Connection:
        async with self._lock:
            conn = Connection(id=connection_id, ws=ws)
            self.active_connections[connection_id] = conn
            return conn

    async def disconnect(self, connection_id: str) -> Optional[str]:
        """Drop the connection, returning the username it was bound to."""
        async with self._lock:
            conn = self.active_connections.pop(connection_id, None)
            if conn is None or conn.username is None:
                return None
            if self._bindings.get(conn.username) == connection_id:
                del self._bindings[conn.username]
            return conn.username

    def bind(self, connection_id: str, username: str) -> Optional[str]:
        """Bind username to the connection, returning a displaced connection id."""
        conn = self.active_connections[connection_id]
        displaced = self._bindings.get(username)
        if displaced is not None and displaced != connection_id:
            if old := self.active_connections.get(displaced):
                old.username = None
        else:
            displaced = None
        conn.username = username
        self._bindings[username] = connection_id
        return displaced

    def unbind_user(self, username: str) -> Optional[str]:
        connection_id = self._bindings.pop(username, None)
        if connection_id and (conn := self.active_connections.get(connection_id)):
            conn.username = None
        return connection_id

    def username_for(self, connection_id: str) -> Optional[str]:
        if conn := self.active_connections.get(connection_id):
            return conn.username
        return None

    def is_bound(self, username: str) -> bool:
        return username in self._bindings

    async def broadcast(
        self, event: str, data: Any = None, exclude: Optional[str] = None
    ) -> None:
        payload = encode_event(event, data)
        async with self._lock:
            for connection_id, conn in list(self.active_connections.items()):
                if exclude and connection_id == exclude:
                    continue
                try:
                    await conn.ws.send(payload)
                except Exception as e:
                    # the connection's own handler cleans up once it notices
                    logger.warning(f"Send to {connection_id} failed: {e}")

    async def send_personal(self, connection_id: str, event: str, data: Any = None) -> bool:
        payload = encode_event(event, data)
        async with self._lock:
            if conn := self.active_connections.get(connection_id):
                try:
                    await conn.ws.send(payload)
                    return True
                except Exception as e:
                    logger.warning(f"Send to {connection_id} failed: {e}")
                    return False
        return False

    def count(self) -> int:
        return len(self.active_connections)
