import secrets
from typing import Optional

from .logger import logger
from .models import User, now_ms
from .stores import UserRegistry


class SessionManager:
    """Issues and revokes the opaque login tokens stored on each user.

    A user holds at most one token; issuing a new one silently invalidates
    the previous one. Tokens do not expire.
    """

    def __init__(self, registry: UserRegistry):
        self.registry = registry

    async def issue_token(self, username: str) -> str:
        user = self.registry.get(username)
        if user is None:
            raise KeyError(username)

        token = secrets.token_hex(32)
        user.token = token
        await self.registry.save()
        logger.info(f"Token issued for {username}")
        return token

    async def revoke_token(self, token: Optional[str]) -> bool:
        user = self.resolve(token)
        if user is None:
            return False

        user.token = None
        user.is_online = False
        user.last_seen = now_ms()
        user.connection_id = None
        await self.registry.save()
        logger.info(f"Token revoked for {user.username}")
        return True

    def resolve(self, token: Optional[str]) -> Optional[User]:
        return self.registry.find_by_token(token)
