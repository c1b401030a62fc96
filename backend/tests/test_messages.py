"""Tests for the messages API: history pagination, HTTP send and delete."""
import pytest

from conftest import auth_headers, create_channel, signup


@pytest.fixture
def alice(client):
    return signup(client, "alice", display_name="Alice")


@pytest.fixture
def channel(client, alice):
    return create_channel(client, alice["token"])


def post_message(client, token, channel_id, text):
    return client.post(
        f"/api/channels/{channel_id}/messages", json={"text": text}, headers=auth_headers(token)
    )


class TestHistory:
    """GET /api/channels/{id}/messages."""

    def test_empty(self, client, channel):
        response = client.get(f"/api/channels/{channel['id']}/messages")
        assert response.status_code == 200
        assert response.json() == {"messages": [], "hasMore": False, "nextCursor": None}

    def test_pages_with_cursor(self, client, alice, channel):
        for i in range(7):
            assert post_message(client, alice["token"], channel["id"], f"m{i}").status_code == 201

        url = f"/api/channels/{channel['id']}/messages"
        first = client.get(url, params={"limit": 3}).json()
        second = client.get(url, params={"limit": 3, "before": first["nextCursor"]}).json()
        third = client.get(url, params={"limit": 3, "before": second["nextCursor"]}).json()

        assert [m["text"] for m in first["messages"]] == ["m4", "m5", "m6"]
        assert [m["text"] for m in second["messages"]] == ["m1", "m2", "m3"]
        assert [m["text"] for m in third["messages"]] == ["m0"]
        assert (first["hasMore"], second["hasMore"], third["hasMore"]) == (True, True, False)
        assert first["messages"][0]["sender"]["displayName"] == "Alice"

    def test_unknown_channel(self, client):
        response = client.get("/api/channels/missing/messages")
        assert response.status_code == 404
        assert response.json() == {"message": "Channel not found"}

    def test_invalid_limit(self, client, channel):
        response = client.get(f"/api/channels/{channel['id']}/messages", params={"limit": 0})
        assert response.status_code == 400

    def test_invalid_cursor(self, client, channel):
        response = client.get(f"/api/channels/{channel['id']}/messages", params={"before": "yesterday"})
        assert response.status_code == 400


class TestSend:
    """POST /api/channels/{id}/messages."""

    def test_create(self, client, alice, channel):
        response = post_message(client, alice["token"], channel["id"], "  hello  ")

        assert response.status_code == 201
        body = response.json()
        assert body["message"] == "Message created"
        assert body["data"]["text"] == "hello"
        assert body["data"]["sender"]["id"] == alice["user"]["id"]
        assert body["data"]["channelId"] == channel["id"]

    def test_requires_auth(self, client, channel):
        response = client.post(f"/api/channels/{channel['id']}/messages", json={"text": "hi"})
        assert response.status_code == 401

    def test_empty_text(self, client, alice, channel):
        response = post_message(client, alice["token"], channel["id"], "   ")
        assert response.status_code == 400
        assert response.json() == {"message": "Message text required"}

    def test_unknown_channel(self, client, alice):
        response = post_message(client, alice["token"], "missing", "hi")
        assert response.status_code == 404

    def test_broadcasts_to_room(self, client, alice, channel):
        bob = signup(client, "bob")
        with client.websocket_connect(f"/ws?token={bob['token']}") as ws:
            ws.receive_json()  # presence_init
            ws.receive_json()  # presence_update
            ws.send_json({"type": "join_channel", "payload": {"channelId": channel["id"]}})
            assert ws.receive_json()["type"] == "channel_member_update"

            post_message(client, alice["token"], channel["id"], "over http")

            frame = ws.receive_json()
            assert frame["type"] == "receive_message"
            assert frame["payload"]["text"] == "over http"


class TestDelete:
    """DELETE /api/channels/{id}/messages/{message_id}."""

    def test_owner_deletes(self, client, alice, channel):
        message = post_message(client, alice["token"], channel["id"], "oops").json()["data"]

        response = client.delete(
            f"/api/channels/{channel['id']}/messages/{message['id']}",
            headers=auth_headers(alice["token"]),
        )

        assert response.status_code == 200
        assert response.json() == {"message": "Message deleted"}
        history = client.get(f"/api/channels/{channel['id']}/messages").json()
        assert history["messages"] == []

    def test_non_owner(self, client, alice, channel):
        bob = signup(client, "bob")
        message = post_message(client, alice["token"], channel["id"], "mine").json()["data"]

        response = client.delete(
            f"/api/channels/{channel['id']}/messages/{message['id']}",
            headers=auth_headers(bob["token"]),
        )

        assert response.status_code == 403
        assert response.json() == {"message": "Not allowed"}

    def test_unknown_message(self, client, alice, channel):
        response = client.delete(
            f"/api/channels/{channel['id']}/messages/missing",
            headers=auth_headers(alice["token"]),
        )
        assert response.status_code == 404

    def test_room_is_notified(self, client, alice, channel):
        message = post_message(client, alice["token"], channel["id"], "bye").json()["data"]

        with client.websocket_connect(f"/ws?token={alice['token']}") as ws:
            ws.receive_json()  # presence_init
            ws.receive_json()  # presence_update
            ws.send_json({"type": "join_channel", "payload": {"channelId": channel["id"]}})
            ws.receive_json()  # channel_member_update

            client.delete(
                f"/api/channels/{channel['id']}/messages/{message['id']}",
                headers=auth_headers(alice["token"]),
            )

            assert ws.receive_json() == {"type": "message_deleted", "payload": {"id": message["id"]}}
