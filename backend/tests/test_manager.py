"""Tests for ChatManager: connection lifecycle and event dispatch."""
import asyncio

import pytest

from app.chat.manager import ChatManager
from app.config import ChatSettings
from app.errors import AuthenticationError, NotFoundError, ValidationError

from conftest import frames


@pytest.fixture
def chat(store, authenticator):
    manager = ChatManager(store, authenticator, settings=ChatSettings(send_timeout_seconds=0.5))
    yield manager
    manager.close()


@pytest.fixture
def alice(store):
    return store.create_identity("alice", "Alice", "hash")


@pytest.fixture
def channel(store, alice):
    return store.create_channel("general", created_by=alice.id)


async def open_connection(chat, make_connection, user_id, **kwargs):
    """Run the connect flow on a FakeWebSocket-backed connection and settle fan-out."""
    fake = make_connection(user_id, **kwargs)._websocket
    connection = await chat.connect(fake, user_id)
    await chat.drain()
    return connection


class TestLifecycle:
    """connect/disconnect bookkeeping and presence events."""

    def test_authenticate(self, chat, authenticator):
        assert chat.authenticate(authenticator.issue("alice")) == "alice"
        with pytest.raises(AuthenticationError):
            chat.authenticate(None)

    @pytest.mark.asyncio
    async def test_connect_sends_init_then_update(self, chat, make_connection):
        conn = await open_connection(chat, make_connection, "alice")

        assert frames(conn).sent == [
            {"type": "presence_init", "payload": {"onlineUsers": ["alice"]}},
            {"type": "presence_update", "payload": {"userId": "alice", "online": True, "count": 1}},
        ]
        assert chat.presence.is_online("alice")
        assert chat.rooms.get_connection(conn.id) is conn

    @pytest.mark.asyncio
    async def test_presence_update_reaches_everyone(self, chat, make_connection):
        alice = await open_connection(chat, make_connection, "alice")
        bob = await open_connection(chat, make_connection, "bob")

        assert frames(bob).of_type("presence_init") == [{"onlineUsers": ["alice", "bob"]}]
        assert frames(alice).of_type("presence_update")[-1] == {
            "userId": "bob", "online": True, "count": 1,
        }

    @pytest.mark.asyncio
    async def test_second_connection_same_user(self, chat, make_connection):
        first = await open_connection(chat, make_connection, "alice")
        second = await open_connection(chat, make_connection, "alice")

        assert chat.presence.connection_count("alice") == 2
        assert frames(first).of_type("presence_update")[-1]["count"] == 2

        chat.disconnect(second)
        await chat.drain()
        assert frames(first).of_type("presence_update")[-1] == {
            "userId": "alice", "online": True, "count": 1,
        }

    @pytest.mark.asyncio
    async def test_disconnect_cleans_rooms_and_presence(self, chat, make_connection, channel):
        alice = await open_connection(chat, make_connection, "alice")
        bob = await open_connection(chat, make_connection, "bob")
        await chat.join_channel(alice, channel.id)
        await chat.join_channel(alice, "scratch")

        chat.disconnect(alice)
        await chat.drain()

        assert chat.rooms.rooms_of(alice.id) == set()
        assert chat.rooms.room_size(channel.id) == 0
        assert chat.rooms.get_connection(alice.id) is None
        assert not chat.presence.is_online("alice")
        assert frames(bob).of_type("presence_update")[-1] == {
            "userId": "alice", "online": False, "count": 0,
        }

    @pytest.mark.asyncio
    async def test_disconnect_twice_is_harmless(self, chat, make_connection):
        alice = await open_connection(chat, make_connection, "alice")
        chat.disconnect(alice)
        chat.disconnect(alice)
        await chat.drain()
        assert chat.presence.online_identities() == set()

    def test_open_registers_without_sending(self, chat, make_connection):
        fake = make_connection("alice")._websocket

        conn = chat.open(fake, "alice")

        assert chat.presence.is_online("alice")
        assert chat.rooms.get_connection(conn.id) is conn
        assert fake.sent == []

        chat.disconnect(conn)
        assert chat.presence.online_identities() == set()
        assert chat.rooms.connection_count() == 0

    @pytest.mark.asyncio
    async def test_disconnect_does_not_wait_for_slow_sockets(self, chat, make_connection):
        await open_connection(chat, make_connection, "bob", delay=0.3)
        alice = await open_connection(chat, make_connection, "alice")

        loop = asyncio.get_running_loop()
        started = loop.time()
        chat.disconnect(alice)
        assert loop.time() - started < 0.1

        await chat.drain()


class TestEvents:
    """handle_event dispatch."""

    @pytest.mark.asyncio
    async def test_unknown_event(self, chat, make_connection):
        conn = await open_connection(chat, make_connection, "alice")
        with pytest.raises(ValidationError) as exc:
            await chat.handle_event(conn, "dance", {})
        assert exc.value.message == "Unknown event: dance"

    @pytest.mark.asyncio
    async def test_join_requires_channel_id(self, chat, make_connection):
        conn = await open_connection(chat, make_connection, "alice")
        for payload in (None, {}, {"channelId": ""}, "general"):
            with pytest.raises(ValidationError) as exc:
                await chat.handle_event(conn, "join_channel", payload)
            assert exc.value.message == "channelId is required"

    @pytest.mark.asyncio
    async def test_join_existing_channel_announces_member_count(self, chat, make_connection, channel):
        alice = await open_connection(chat, make_connection, "alice")
        bob = await open_connection(chat, make_connection, "bob")

        await chat.handle_event(alice, "join_channel", {"channelId": channel.id})
        await chat.handle_event(bob, "join_channel", {"channelId": channel.id})
        await chat.drain()

        assert frames(alice).of_type("channel_member_update") == [
            {"channelId": channel.id, "memberSocketCount": 1},
            {"channelId": channel.id, "memberSocketCount": 2},
        ]
        assert frames(bob).of_type("channel_member_update") == [
            {"channelId": channel.id, "memberSocketCount": 2},
        ]

    @pytest.mark.asyncio
    async def test_join_unknown_channel_joins_silently(self, chat, make_connection):
        alice = await open_connection(chat, make_connection, "alice")

        await chat.handle_event(alice, "join_channel", {"channelId": "no-such-channel"})
        await chat.drain()

        assert chat.rooms.rooms_of(alice.id) == {"no-such-channel"}
        assert frames(alice).of_type("channel_member_update") == []

    @pytest.mark.asyncio
    async def test_leave_channel(self, chat, make_connection, channel):
        alice = await open_connection(chat, make_connection, "alice")
        await chat.handle_event(alice, "join_channel", {"channelId": channel.id})
        await chat.handle_event(alice, "leave_channel", {"channelId": channel.id})
        assert chat.rooms.rooms_of(alice.id) == set()

    @pytest.mark.asyncio
    async def test_typing_excludes_sender(self, chat, make_connection, channel):
        alice = await open_connection(chat, make_connection, "alice")
        bob = await open_connection(chat, make_connection, "bob")
        await chat.join_channel(alice, channel.id)
        await chat.join_channel(bob, channel.id)

        await chat.handle_event(alice, "typing", {"channelId": channel.id, "isTyping": True})
        await chat.drain()

        assert frames(bob).of_type("typing_update") == [
            {"channelId": channel.id, "userId": "alice", "isTyping": True},
        ]
        assert frames(alice).of_type("typing_update") == []

    @pytest.mark.asyncio
    async def test_typing_does_not_wait_for_slow_member(self, chat, make_connection, channel):
        alice = await open_connection(chat, make_connection, "alice")
        slow = chat.open(make_connection("bob", delay=1.0)._websocket, "bob")
        await chat.join_channel(alice, channel.id)
        await chat.join_channel(slow, channel.id)

        loop = asyncio.get_running_loop()
        started = loop.time()
        await chat.handle_event(alice, "typing", {"channelId": channel.id, "isTyping": True})
        assert loop.time() - started < 0.2

        # The slow send is abandoned at the 0.5s timeout
        await chat.drain()
        assert frames(slow).of_type("typing_update") == []

    @pytest.mark.asyncio
    async def test_send_message_uses_bound_identity(self, chat, make_connection, channel, alice):
        conn = await open_connection(chat, make_connection, alice.id)
        await chat.join_channel(conn, channel.id)

        await chat.handle_event(
            conn, "send_message",
            {"channelId": channel.id, "text": "hi", "senderId": "someone-else"},
        )
        await chat.drain()

        received = frames(conn).of_type("receive_message")
        assert len(received) == 1
        assert received[0]["sender"]["id"] == alice.id
        assert received[0]["text"] == "hi"

    @pytest.mark.asyncio
    async def test_send_message_to_unknown_channel(self, chat, make_connection):
        conn = await open_connection(chat, make_connection, "alice")
        with pytest.raises(NotFoundError):
            await chat.handle_event(conn, "send_message", {"channelId": "missing", "text": "hi"})

    @pytest.mark.asyncio
    async def test_send_message_bad_payload(self, chat, make_connection):
        conn = await open_connection(chat, make_connection, "alice")
        with pytest.raises(ValidationError):
            await chat.handle_event(conn, "send_message", {"text": "no channel"})

    @pytest.mark.asyncio
    async def test_ping_check(self, chat, make_connection):
        conn = await open_connection(chat, make_connection, "alice")
        await chat.handle_event(conn, "ping_check", {"n": 1})
        assert frames(conn).of_type("pong_check") == [{"ok": True, "payload": {"n": 1}}]


def test_fetch_page_uses_settings(store, authenticator, alice, channel):
    chat = ChatManager(store, authenticator, settings=ChatSettings(default_page_size=3))
    for i in range(5):
        store.create_message(channel.id, alice.id, f"m{i}")

    page = chat.fetch_page(channel.id)

    assert len(page.messages) == 3
    assert page.hasMore is True
    chat.close()
