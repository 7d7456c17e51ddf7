import asyncio
from typing import Any, Iterator, Mapping, Optional

from .credentials import hash_password
from .errors import PersistenceError
from .logger import logger
from .models import Message, User, now_ms
from .storage import JsonDocument


class PersistentStore:
    """Serializes whole-document writes so concurrent mutations never lose one."""

    def __init__(self, document: JsonDocument):
        self.document = document
        self.degraded = False
        self._lock = asyncio.Lock()

    async def _write(self, data: Any) -> bool:
        return await asyncio.to_thread(self._write_now, data)

    def _write_now(self, data: Any) -> bool:
        try:
            self.document.save(data)
        except PersistenceError as e:
            logger.error(f"Persistence failed, keeping in-memory state: {e}")
            self.degraded = True
            return False
        self.degraded = False
        return True

    def _read(self) -> Any:
        try:
            return self.document.load()
        except PersistenceError as e:
            logger.error(f"Cannot load {self.document.path}, using defaults: {e}")
            self.degraded = True
            return self.document.default


class UserRegistry(PersistentStore):
    """The fixed set of users known to this process.

    Users are seeded from the configured credentials and then overlaid with
    whatever the users document holds. Usernames that are not seeded are
    ignored, the registry never grows at runtime.
    """

    def __init__(self, document: JsonDocument, seed: Mapping[str, str]):
        super().__init__(document)
        self._users: dict[str, User] = {
            name: User(username=name, password=hash_password(password))
            for name, password in seed.items()
        }

    def load(self) -> None:
        stored = self._read()
        if not isinstance(stored, dict):
            logger.warning(f"Ignoring malformed users document {self.document.path}")
            stored = {}

        for name, record in stored.items():
            if name not in self._users:
                continue
            if not isinstance(record, dict) or record.get("username") != name:
                logger.warning(f"Ignoring record stored under {name!r} for another user")
                continue
            try:
                self._users[name] = User.from_dict(record)
            except (KeyError, TypeError) as e:
                logger.warning(f"Ignoring malformed record for {name}: {e}")

        # connections from a previous process are gone
        for user in self._users.values():
            if user.is_online or user.connection_id:
                user.is_online = False
                user.connection_id = None
                user.last_seen = now_ms()

        self._write_now(self.snapshot())
        logger.info(f"Loaded {len(self._users)} users")

    def snapshot(self) -> dict[str, dict[str, Any]]:
        return {name: user.to_dict() for name, user in self._users.items()}

    async def save(self) -> bool:
        async with self._lock:
            return await self._write(self.snapshot())

    def get(self, username: str) -> Optional[User]:
        return self._users.get(username)

    def find_by_token(self, token: Optional[str]) -> Optional[User]:
        if not token:
            return None
        for user in self._users.values():
            if user.token == token:
                return user
        return None

    def __iter__(self) -> Iterator[User]:
        return iter(list(self._users.values()))

    def __len__(self) -> int:
        return len(self._users)

    def as_mapping(self) -> Mapping[str, User]:
        return self._users


class MessageStore(PersistentStore):
    """Append-only message history, rewritten in full on every change."""

    def __init__(self, document: JsonDocument):
        super().__init__(document)
        self._messages: list[Message] = []

    def load(self) -> None:
        stored = self._read()
        if not isinstance(stored, list):
            logger.warning(f"Ignoring malformed messages document {self.document.path}")
            stored = []

        messages = []
        for record in stored:
            try:
                messages.append(Message.from_dict(record))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed message record: {e}")
        self._messages = messages
        logger.info(f"Loaded {len(self._messages)} messages")

    async def append(self, message: Message) -> None:
        async with self._lock:
            self._messages.append(message)
            await self._write([m.to_dict() for m in self._messages])
            logger.info(f"Message added: {message.id} from {message.sender}")

    async def get_all(self) -> list[Message]:
        async with self._lock:
            return self._messages.copy()

    async def clear(self) -> None:
        async with self._lock:
            count = len(self._messages)
            self._messages = []
            await self._write([])
            logger.info(f"Cleared {count} messages")

    async def count(self) -> int:
        async with self._lock:
            return len(self._messages)

    def last(self) -> Optional[Message]:
        return self._messages[-1] if self._messages else None
