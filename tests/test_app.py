"""
End-to-end tests over the WebSocket endpoint and the inspection API.

Run with:
    pytest tests/test_app.py -v
"""

import pytest
from fastapi import WebSocketDisconnect

from app import origin_allowed


def join(ws, room_id, display_name):
    ws.send_json({"type": "join", "roomId": room_id, "displayName": display_name})


class TestSignalingSocket:

    def test_meeting_scenario(self, client):
        with client.websocket_connect("/ws") as alice:
            join(alice, "ABC123", "Alice")
            assert alice.receive_json() == {"type": "existing-peers", "peers": []}

            with client.websocket_connect("/ws") as bob:
                join(bob, "ABC123", "Bob")

                joined = alice.receive_json()
                assert joined["type"] == "peer-joined"
                assert joined["displayName"] == "Bob"
                bob_id = joined["connectionId"]

                existing = bob.receive_json()
                assert existing["type"] == "existing-peers"
                assert [p["displayName"] for p in existing["peers"]] == ["Alice"]
                alice_id = existing["peers"][0]["connectionId"]
                assert alice_id != bob_id

                bob.send_json({"type": "negotiation-offer", "targetId": alice_id, "payload": "sdp1"})
                assert alice.receive_json() == {"type": "negotiation-offer", "fromId": bob_id, "payload": "sdp1"}

                alice.send_json({"type": "negotiation-answer", "targetId": bob_id, "payload": {"sdp": "sdp2"}})
                assert bob.receive_json() == {"type": "negotiation-answer", "fromId": alice_id, "payload": {"sdp": "sdp2"}}

            assert alice.receive_json() == {"type": "peer-left", "connectionId": bob_id}

            response = client.get("/rooms/ABC123")
            assert response.status_code == 200
            details = response.json()
            assert details["online_users_count"] == 1
            assert details["online_users"][0]["connection_id"] == alice_id
            assert details["online_users"][0]["display_name"] == "Alice"

    def test_malformed_frames_do_not_close_socket(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_text("hello?")
            ws.send_json({"type": "join"})
            ws.send_json({"type": "negotiation-offer", "targetId": "nobody", "payload": "sdp"})
            join(ws, "room", "Alice")

            assert ws.receive_json() == {"type": "existing-peers", "peers": []}

    def test_binary_frame_ignored_and_socket_stays_open(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_bytes(b'{"type": "join", "roomId": "room", "displayName": "Bytes"}')
            join(ws, "room", "Alice")

            assert ws.receive_json() == {"type": "existing-peers", "peers": []}

            details = client.get("/rooms/room").json()
            assert [u["display_name"] for u in details["online_users"]] == ["Alice"]

    def test_payload_forwarded_byte_for_byte(self, client):
        payload_text = '{"sdp": "v=0\\r\\n", "n": 1.0000000000000000001, "k": 1, "k": 2}'
        with client.websocket_connect("/ws") as alice:
            join(alice, "room", "Alice")
            alice.receive_json()
            with client.websocket_connect("/ws") as bob:
                join(bob, "room", "Bob")
                bob_id = alice.receive_json()["connectionId"]
                alice_id = bob.receive_json()["peers"][0]["connectionId"]

                bob.send_text(
                    '{"type": "negotiation-offer", "targetId": "%s", "payload": %s}' % (alice_id, payload_text)
                )

                assert alice.receive_text() == (
                    '{"type":"negotiation-offer","fromId":"%s","payload":%s}' % (bob_id, payload_text)
                )

    def test_allowed_origin_accepted(self, client):
        with client.websocket_connect("/ws", headers={"origin": "http://localhost:3000"}) as ws:
            join(ws, "room", "Alice")
            assert ws.receive_json()["type"] == "existing-peers"

    def test_disallowed_origin_rejected(self, client):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws", headers={"origin": "http://evil.example"}):
                pass

        assert exc_info.value.code == 1008


class TestInspectionApi:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "rooms": 0, "connections": 0}

    def test_unknown_room_is_404(self, client):
        response = client.get("/rooms/does-not-exist")

        assert response.status_code == 404
        assert response.json()["detail"] == "Room not found"

    def test_cors_preflight_for_allowed_origin(self, client):
        response = client.options(
            "/health",
            headers={"Origin": "http://localhost:3000", "Access-Control-Request-Method": "GET"},
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "http://localhost:3000"


@pytest.mark.parametrize(
    "origin,allowed,expected",
    [
        (None, ["http://localhost:3000"], True),
        ("http://localhost:3000", ["http://localhost:3000"], True),
        ("http://evil.example", ["http://localhost:3000"], False),
        ("http://evil.example", ["*"], True),
        ("http://localhost:3000", [], False),
    ],
)
def test_origin_allowed(origin, allowed, expected):
    assert origin_allowed(origin, allowed) is expected
