import asyncio
import json

import pytest

from conftest import FakeWebsocket


async def open_connection(broadcaster, connection_id, ws=None):
    ws = ws or FakeWebsocket()
    await broadcaster.connect(connection_id, ws)
    return ws


async def signed_in(broadcaster, sessions, connection_id, username):
    ws = await open_connection(broadcaster, connection_id)
    token = await sessions.issue_token(username)
    assert await broadcaster.authenticate(connection_id, token) is True
    return ws, token


def frame(event, data=None):
    return json.dumps({"event": event, "data": data})


class TestAuthenticate:
    @pytest.mark.asyncio
    async def test_broadcasts_presence_and_unicasts_snapshot(self, broadcaster, sessions):
        other = await open_connection(broadcaster, "b")
        ws, _ = await signed_in(broadcaster, sessions, "a", "Gauri")

        status = {"username": "Gauri", "isOnline": True, "lastSeen": None}
        assert ws.events() == [("user_status", status), ("online_users", [status])]
        assert other.events() == [("user_status", status)]

    @pytest.mark.asyncio
    async def test_presence_persisted_before_broadcast(self, broadcaster, sessions, config):
        await signed_in(broadcaster, sessions, "a", "Btye")

        stored = json.loads(config.users_file.read_text())["Btye"]
        assert stored["isOnline"] is True
        assert stored["socketId"] == "a"

    @pytest.mark.asyncio
    async def test_unknown_token_stays_unauthenticated(self, broadcaster, registry):
        ws = await open_connection(broadcaster, "a")

        assert await broadcaster.authenticate("a", "bogus") is False

        assert ws.events() == [("auth_failed", {"error": "Invalid token"})]
        assert broadcaster.connections.username_for("a") is None
        assert not any(u.is_online for u in registry)

    @pytest.mark.asyncio
    async def test_non_string_token(self, broadcaster):
        ws = await open_connection(broadcaster, "a")
        assert await broadcaster.authenticate("a", {"token": "x"}) is False
        assert ws.named("auth_failed")

    @pytest.mark.asyncio
    async def test_last_authenticate_wins(self, broadcaster, sessions, registry):
        old, token = await signed_in(broadcaster, sessions, "a1", "Gauri")
        await open_connection(broadcaster, "a2")
        assert await broadcaster.authenticate("a2", token) is True

        assert broadcaster.connections.username_for("a1") is None
        assert broadcaster.connections.username_for("a2") == "Gauri"
        assert registry.get("Gauri").connection_id == "a2"

        assert await broadcaster.send_message("a1", {"content": "ghost"}) is None

        await broadcaster.disconnect("a1")
        assert registry.get("Gauri").is_online is True

        await broadcaster.disconnect("a2")
        assert registry.get("Gauri").is_online is False

    @pytest.mark.asyncio
    async def test_switching_user_on_same_connection(self, broadcaster, sessions, registry):
        watcher = await open_connection(broadcaster, "w")
        await signed_in(broadcaster, sessions, "a", "Gauri")
        token = await sessions.issue_token("Btye")
        watcher.sent.clear()

        await broadcaster.authenticate("a", token)

        assert registry.get("Gauri").is_online is False
        assert registry.get("Btye").is_online is True
        assert [s["username"] for s in watcher.named("user_status")] == ["Gauri", "Btye"]

    @pytest.mark.asyncio
    async def test_logout_during_user_switch_leaves_user_offline(
        self, broadcaster, sessions, registry, config
    ):
        ws, _ = await signed_in(broadcaster, sessions, "a", "Gauri")
        token = await sessions.issue_token("Btye")

        switched, logged_out = await asyncio.gather(
            broadcaster.authenticate("a", token), broadcaster.logout(token)
        )

        btye = registry.get("Btye")
        assert (switched, logged_out) == (False, True)
        assert btye.token is None
        assert btye.is_online is False
        assert btye.connection_id is None
        assert registry.get("Gauri").is_online is False
        assert broadcaster.connections.username_for("a") is None
        assert ws.named("auth_failed") == [{"error": "Session revoked"}]

        stored = json.loads(config.users_file.read_text())
        assert stored["Btye"]["isOnline"] is False
        assert stored["Gauri"]["isOnline"] is False

        await broadcaster.disconnect("a")
        assert not any(u.is_online for u in registry)

    @pytest.mark.asyncio
    async def test_logout_before_authenticate_rejects_token(self, broadcaster, sessions, registry):
        ws = await open_connection(broadcaster, "a")
        token = await sessions.issue_token("Btye")

        logged_out, authenticated = await asyncio.gather(
            broadcaster.logout(token), broadcaster.authenticate("a", token)
        )

        assert (logged_out, authenticated) == (True, False)
        assert registry.get("Btye").is_online is False
        assert ws.named("auth_failed") == [{"error": "Invalid token"}]


class TestMessaging:
    @pytest.mark.asyncio
    async def test_end_to_end_message(self, broadcaster, sessions, message_store):
        gauri, _ = await signed_in(broadcaster, sessions, "a", "Gauri")
        btye, _ = await signed_in(broadcaster, sessions, "b", "Btye")

        await broadcaster.dispatch("a", frame("send_message", {"content": "hi"}))

        for ws in (gauri, btye):
            (message,) = ws.named("new_message")
            assert message["sender"] == "Gauri"
            assert message["content"] == "hi"
            assert message["type"] == "text"
            assert isinstance(message["timestamp"], int)

        stored = await message_store.get_all()
        assert stored[-1].id == gauri.named("new_message")[0]["id"]

    @pytest.mark.asyncio
    async def test_unauthenticated_message_dropped(self, broadcaster, message_store):
        ws = await open_connection(broadcaster, "a")

        await broadcaster.dispatch("a", frame("send_message", {"content": "hi"}))

        assert ws.sent == []
        assert await message_store.count() == 0

    @pytest.mark.asyncio
    async def test_empty_content_dropped(self, broadcaster, sessions, message_store):
        await signed_in(broadcaster, sessions, "a", "Gauri")

        assert await broadcaster.send_message("a", {"content": ""}) is None
        assert await broadcaster.send_message("a", {"content": 5}) is None
        assert await broadcaster.send_message("a", "hi") is None
        assert await message_store.count() == 0

    @pytest.mark.asyncio
    async def test_ids_unique_within_one_millisecond(
        self, broadcaster, sessions, message_store, monkeypatch
    ):
        await signed_in(broadcaster, sessions, "a", "Gauri")
        monkeypatch.setattr(
            "duo_chat.server.broadcaster.now_ms", lambda: 1_700_000_000_000
        )

        for i in range(1000):
            await broadcaster.send_message("a", {"content": str(i)})

        ids = [m.id for m in await message_store.get_all()]
        assert len(ids) == 1000
        assert len(set(ids)) == 1000

    @pytest.mark.asyncio
    async def test_ids_continue_after_restart(
        self, registry, sessions, presence, message_store
    ):
        from duo_chat.server.broadcaster import Broadcaster
        from duo_chat.server.models import Message

        await message_store.append(
            Message(id="99999999999999", sender="Gauri", content="future")
        )
        broadcaster = Broadcaster(registry, sessions, presence, message_store)
        await signed_in(broadcaster, sessions, "a", "Btye")

        message = await broadcaster.send_message("a", {"content": "next"})
        assert message.id == "100000000000000"

    @pytest.mark.asyncio
    async def test_failed_send_does_not_stop_fanout(self, broadcaster, sessions):
        await open_connection(broadcaster, "dead", FakeWebsocket(fail=True))
        ws, _ = await signed_in(broadcaster, sessions, "a", "Gauri")

        await broadcaster.send_message("a", {"content": "still here"})

        assert ws.named("new_message")[0]["content"] == "still here"


class TestTyping:
    @pytest.mark.asyncio
    async def test_typing_excludes_sender(self, broadcaster, sessions):
        gauri, _ = await signed_in(broadcaster, sessions, "a", "Gauri")
        btye, _ = await signed_in(broadcaster, sessions, "b", "Btye")
        gauri.sent.clear()
        btye.sent.clear()

        await broadcaster.dispatch("a", frame("typing", {"isTyping": True}))

        assert gauri.sent == []
        assert btye.events() == [("user_typing", {"username": "Gauri", "isTyping": True})]

    @pytest.mark.asyncio
    async def test_typing_unauthenticated_dropped(self, broadcaster, sessions):
        listener, _ = await signed_in(broadcaster, sessions, "b", "Btye")
        await open_connection(broadcaster, "a")
        listener.sent.clear()

        await broadcaster.typing("a", {"isTyping": True})

        assert listener.sent == []


class TestDisconnect:
    @pytest.mark.asyncio
    async def test_authenticated_disconnect_broadcasts_offline(
        self, broadcaster, sessions, registry
    ):
        await signed_in(broadcaster, sessions, "a", "Gauri")
        btye, _ = await signed_in(broadcaster, sessions, "b", "Btye")
        btye.sent.clear()

        await broadcaster.disconnect("a")

        (status,) = btye.named("user_status")
        assert status["username"] == "Gauri"
        assert status["isOnline"] is False
        assert status["lastSeen"] is not None
        assert registry.get("Gauri").connection_id is None
        assert "a" not in broadcaster.connections.active_connections

    @pytest.mark.asyncio
    async def test_unauthenticated_disconnect_is_silent(self, broadcaster, sessions):
        listener, _ = await signed_in(broadcaster, sessions, "b", "Btye")
        await open_connection(broadcaster, "a")
        listener.sent.clear()

        await broadcaster.disconnect("a")

        assert listener.sent == []

    @pytest.mark.asyncio
    async def test_disconnect_unknown_connection(self, broadcaster):
        await broadcaster.disconnect("never-connected")


class TestLogoutAndClear:
    @pytest.mark.asyncio
    async def test_logout_unbinds_and_broadcasts(self, broadcaster, sessions, registry):
        _, token = await signed_in(broadcaster, sessions, "a", "Gauri")
        btye, _ = await signed_in(broadcaster, sessions, "b", "Btye")
        btye.sent.clear()

        assert await broadcaster.logout(token) is True

        assert sessions.resolve(token) is None
        assert broadcaster.connections.username_for("a") is None
        (status,) = btye.named("user_status")
        assert status["isOnline"] is False
        assert status["lastSeen"] == registry.get("Gauri").last_seen

    @pytest.mark.asyncio
    async def test_logout_offline_user_is_quiet(self, broadcaster, sessions):
        listener, _ = await signed_in(broadcaster, sessions, "b", "Btye")
        token = await sessions.issue_token("Gauri")
        listener.sent.clear()

        assert await broadcaster.logout(token) is True
        assert listener.sent == []

    @pytest.mark.asyncio
    async def test_logout_unknown_token(self, broadcaster):
        assert await broadcaster.logout("nope") is False

    @pytest.mark.asyncio
    async def test_clear_chat(self, broadcaster, sessions, message_store):
        gauri, _ = await signed_in(broadcaster, sessions, "a", "Gauri")
        anonymous = await open_connection(broadcaster, "x")
        await broadcaster.send_message("a", {"content": "bye"})

        await broadcaster.clear_chat()

        assert await message_store.get_all() == []
        assert gauri.events()[-1] == ("chat_cleared", None)
        assert anonymous.events()[-1] == ("chat_cleared", None)


class TestDispatch:
    @pytest.mark.asyncio
    async def test_garbage_frames_are_dropped(self, broadcaster, sessions):
        ws, _ = await signed_in(broadcaster, sessions, "a", "Gauri")
        ws.sent.clear()

        for raw in ("not json", "[1, 2]", frame("shout", {}), json.dumps({"data": 1})):
            await broadcaster.dispatch("a", raw)

        assert ws.sent == []

    @pytest.mark.asyncio
    async def test_authenticate_frame(self, broadcaster, sessions):
        ws = await open_connection(broadcaster, "a")
        token = await sessions.issue_token("Btye")

        await broadcaster.dispatch("a", frame("authenticate", token))

        assert broadcaster.connections.username_for("a") == "Btye"
        assert ws.named("online_users")
