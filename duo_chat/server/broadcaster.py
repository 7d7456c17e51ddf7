import json
from typing import Any, Optional

from sanic import Websocket

from .logger import logger
from .managers import ConnectionManager
from .models import Message, MessageIdGenerator, PresenceEvent, now_ms
from .presence import PresenceTracker
from .sessions import SessionManager
from .stores import MessageStore, UserRegistry


class Broadcaster:
    """Coordinates connection lifecycle, presence, and message fan-out.

    Each connection is either unauthenticated or bound to one user. Events
    from a connection are handled in arrival order, and every persistence
    write finishes before the broadcast that announces it goes out.
    """

    def __init__(
        self,
        registry: UserRegistry,
        sessions: SessionManager,
        presence: PresenceTracker,
        messages: MessageStore,
        connections: Optional[ConnectionManager] = None,
    ):
        self.registry = registry
        self.sessions = sessions
        self.presence = presence
        self.messages = messages
        self.connections = connections or ConnectionManager()
        self.ids = MessageIdGenerator()
        if last := messages.last():
            self.ids.prime(last.id)

        self._handlers = {
            "authenticate": self.authenticate,
            "send_message": self.send_message,
            "typing": self.typing,
        }

    async def connect(self, connection_id: str, ws: Websocket) -> None:
        await self.connections.connect(connection_id, ws)
        logger.info(f"Connection opened: {connection_id}")

    async def dispatch(self, connection_id: str, raw: Any) -> None:
        try:
            frame = json.loads(raw)
        except (TypeError, ValueError):
            logger.debug(f"Dropping non-JSON frame from {connection_id}")
            return

        if not isinstance(frame, dict):
            logger.debug(f"Dropping malformed frame from {connection_id}")
            return

        handler = self._handlers.get(frame.get("event"))
        if handler is None:
            logger.debug(f"Dropping unknown event {frame.get('event')!r}")
            return
        await handler(connection_id, frame.get("data"))

    async def authenticate(self, connection_id: str, token: Any) -> bool:
        user = self.sessions.resolve(token if isinstance(token, str) else None)
        if user is None:
            logger.info(f"Authentication failed on {connection_id}")
            await self.connections.send_personal(
                connection_id, "auth_failed", {"error": "Invalid token"}
            )
            return False

        # rebind before the first await so a concurrent logout sees the new binding
        switched_from = None
        previous = self.connections.username_for(connection_id)
        if previous and previous != user.username:
            self.connections.unbind_user(previous)
            switched_from = self.registry.get(previous)

        if displaced := self.connections.bind(connection_id, user.username):
            logger.info(f"{user.username} moved from {displaced} to {connection_id}")

        event = await self.presence.mark_online(user, connection_id)

        if switched_from is not None and switched_from.connection_id == connection_id:
            offline = await self.presence.mark_offline(switched_from)
            await self.connections.broadcast("user_status", offline.to_dict())

        if self.connections.username_for(connection_id) != user.username:
            logger.info(f"{user.username} lost its session while authenticating")
            await self.connections.send_personal(
                connection_id, "auth_failed", {"error": "Session revoked"}
            )
            return False

        await self.connections.broadcast("user_status", event.to_dict())
        await self.connections.send_personal(
            connection_id,
            "online_users",
            [e.to_dict() for e in self.presence.snapshot_online_users()],
        )
        logger.info(f"{user.username} authenticated on {connection_id}")
        return True

    async def send_message(self, connection_id: str, data: Any) -> Optional[Message]:
        username = self.connections.username_for(connection_id)
        if username is None:
            return None

        content = data.get("content") if isinstance(data, dict) else None
        if not isinstance(content, str) or not content:
            logger.debug(f"Dropping empty message from {username}")
            return None

        timestamp = now_ms()
        message = Message(
            id=self.ids.next(timestamp),
            sender=username,
            content=content,
            timestamp=timestamp,
        )
        await self.messages.append(message)
        await self.connections.broadcast("new_message", message.to_dict())
        return message

    async def typing(self, connection_id: str, data: Any) -> None:
        username = self.connections.username_for(connection_id)
        if username is None:
            return

        is_typing = bool(data.get("isTyping")) if isinstance(data, dict) else False
        await self.connections.broadcast(
            "user_typing",
            {"username": username, "isTyping": is_typing},
            exclude=connection_id,
        )

    async def disconnect(self, connection_id: str) -> None:
        username = await self.connections.disconnect(connection_id)
        logger.info(f"Connection closed: {connection_id}")
        if username is None:
            return

        user = self.registry.get(username)
        if user is None or user.connection_id != connection_id:
            return
        event = await self.presence.mark_offline(user)
        await self.connections.broadcast("user_status", event.to_dict())

    async def logout(self, token: Optional[str]) -> bool:
        user = self.sessions.resolve(token)
        if user is None:
            return False

        was_online = user.is_online
        self.connections.unbind_user(user.username)
        await self.sessions.revoke_token(token)
        if was_online:
            await self.connections.broadcast(
                "user_status",
                PresenceEvent(user.username, False, user.last_seen).to_dict(),
            )
        return True

    async def clear_chat(self) -> None:
        await self.messages.clear()
        await self.connections.broadcast("chat_cleared")

