from .models import PresenceEvent, User, now_ms
from .stores import UserRegistry


class PresenceTracker:
    """Derives presence transitions and persists the registry after each one.

    Every transition leaves a user online exactly when it has a bound
    connection and a null last-seen timestamp. Users that have never connected
    since provisioning are the one exception: offline with no last-seen yet.
    """

    def __init__(self, registry: UserRegistry):
        self.registry = registry

    async def mark_online(self, user: User, connection_id: str) -> PresenceEvent:
        user.is_online = True
        user.connection_id = connection_id
        user.last_seen = None
        await self.registry.save()
        return PresenceEvent(username=user.username, is_online=True, last_seen=None)

    async def mark_offline(self, user: User) -> PresenceEvent:
        user.is_online = False
        user.connection_id = None
        user.last_seen = now_ms()
        await self.registry.save()
        return PresenceEvent(
            username=user.username, is_online=False, last_seen=user.last_seen
        )

    def snapshot_online_users(self) -> list[PresenceEvent]:
        return [
            PresenceEvent(username=u.username, is_online=True, last_seen=u.last_seen)
            for u in self.registry
            if u.is_online
        ]
