import time
from dataclasses import dataclass, field
from typing import Any, Optional

from .logger import logger


def now_ms() -> int:
    return time.time_ns() // 1_000_000


@dataclass
class User:
    username: str
    password: str
    token: Optional[str] = None
    is_online: bool = False
    last_seen: Optional[int] = None
    connection_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "username": self.username,
            "password": self.password,
            "isOnline": self.is_online,
            "lastSeen": self.last_seen,
            "socketId": self.connection_id,
            "token": self.token,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "User":
        return cls(
            username=data["username"],
            password=data["password"],
            token=data.get("token"),
            is_online=bool(data.get("isOnline", False)),
            last_seen=data.get("lastSeen"),
            connection_id=data.get("socketId"),
        )


@dataclass(frozen=True)
class Message:
    id: str
    sender: str
    content: str
    timestamp: int = field(default_factory=now_ms)
    type: str = "text"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sender": self.sender,
            "content": self.content,
            "timestamp": self.timestamp,
            "type": self.type,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        return cls(
            id=str(data["id"]),
            sender=data["sender"],
            content=data["content"],
            timestamp=int(data["timestamp"]),
            type=data.get("type", "text"),
        )


@dataclass(frozen=True)
class PresenceEvent:
    username: str
    is_online: bool
    last_seen: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "username": self.username,
            "isOnline": self.is_online,
            "lastSeen": self.last_seen,
        }


class MessageIdGenerator:
    """Issues strictly increasing millisecond-based ids.

    Two messages created within the same millisecond get consecutive ids, so
    the id still sorts in creation order and stays close to the timestamp.
    """

    def __init__(self, last_id: int = 0):
        self._last = last_id

    def prime(self, message_id: str) -> None:
        try:
            self._last = max(self._last, int(message_id))
        except ValueError:
            logger.warning(f"Ignoring non-numeric message id {message_id!r}")

    def next(self, timestamp: Optional[int] = None) -> str:
        stamp = now_ms() if timestamp is None else timestamp
        self._last = max(stamp, self._last + 1)
        return str(self._last)
