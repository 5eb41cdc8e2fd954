"""
Classroom Realtime - HTTP and WebSocket API Tests
=================================================

Routes exercised through FastAPI's TestClient with in-memory components.
"""

import asyncio

import pytest
from fastapi import WebSocketDisconnect

from classroom_realtime.services.auth_service import create_token


def joined_socket(state, identity, room, make_socket):
    ws = make_socket()
    conn = state.connection_manager.connect(ws, identity)
    asyncio.run(state.connection_manager.join(conn, room))
    return ws


# =============================================================================
# Operational Endpoints
# =============================================================================

class TestOperational:
    """Root, health and metrics."""

    def test_root_lists_endpoints(self, client):
        """Test the root endpoint describes the service."""
        body = client.get("/").json()
        assert body["endpoints"]["websocket"] == "/ws"

    def test_health(self, client):
        """Test health reports status and bus mode."""
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["bus"] == "local"
        assert body["connections"] == 0

    def test_metrics_count_accepted_messages(self, client, student, auth_headers):
        """Test metrics reflect accepted posts."""
        client.post("/discussions/c1", data={"content": "hello"}, headers=auth_headers(student))
        body = client.get("/metrics").json()
        assert body["total_messages"] == 1
        assert body["bus"] == "local"


# =============================================================================
# Discussions and Groups
# =============================================================================

class TestDiscussionRoutes:
    """Posting and reading classroom discussions."""

    def test_requires_token(self, client):
        """Test requests without a bearer token are 401."""
        response = client.post("/discussions/c1", data={"content": "hello"})
        assert response.status_code == 401
        assert response.json()["reason"] == "unauthenticated"

    def test_invalid_token(self, client):
        """Test a bad bearer token is 401."""
        response = client.get("/discussions/c1", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_post_delivers_to_room(self, client, app_state, student, other_student, auth_headers, make_socket):
        """Test an accepted post is 201 and reaches sockets joined to the classroom."""
        ws = joined_socket(app_state, other_student, "classroom:c1", make_socket)

        response = client.post("/discussions/c1", data={"content": "hello"}, headers=auth_headers(student))

        assert response.status_code == 201
        body = response.json()
        assert body["content"] == "hello"
        assert body["room"] == "classroom:c1"
        assert ws.events("newMessage")[0]["data"]["id"] == body["id"]

    def test_post_with_file(self, client, student, auth_headers):
        """Test multipart uploads become attachments."""
        response = client.post(
            "/discussions/c1",
            data={"content": "see attached"},
            files={"files": ("notes.txt", b"chapter 1", "text/plain")},
            headers=auth_headers(student),
        )
        assert response.status_code == 201
        attachment = response.json()["attachments"][0]
        assert attachment["fileName"] == "notes.txt"
        assert attachment["fileType"] == "text/plain"

    def test_spam_is_400(self, client, student, auth_headers):
        """Test spam content is rejected with reason spam."""
        text = "WIN A FREE PRIZE CLICK HERE https://a https://b https://c https://d"
        response = client.post("/discussions/c1", data={"content": text}, headers=auth_headers(student))
        assert response.status_code == 400
        assert response.json()["reason"] == "spam"

    def test_non_member_is_403(self, client, auth_headers):
        """Test posting outside one's classrooms is forbidden."""
        from classroom_realtime.models.models import Identity

        stranger = Identity(user_id="stranger", role="student")
        response = client.post("/discussions/c1", data={"content": "hi"}, headers=auth_headers(stranger))
        assert response.status_code == 403

    def test_rate_limit_is_429_with_retry_after(self, client, student, auth_headers):
        """Test the eleventh post in a minute is 429 with retry information."""
        headers = auth_headers(student)
        for i in range(10):
            assert client.post("/discussions/c1", data={"content": f"msg {i}"}, headers=headers).status_code == 201

        response = client.post("/discussions/c1", data={"content": "again"}, headers=headers)

        assert response.status_code == 429
        assert response.json()["retryAfter"] > 0
        assert int(response.headers["Retry-After"]) > 0

    def test_persistence_failure_is_500(self, client, store, student, auth_headers):
        """Test a store outage surfaces as 500."""
        store.fail = True
        response = client.post("/discussions/c1", data={"content": "hello"}, headers=auth_headers(student))
        assert response.status_code == 500
        assert response.json()["reason"] == "persistence_failure"

    def test_history(self, client, student, auth_headers):
        """Test history returns posts oldest first."""
        headers = auth_headers(student)
        client.post("/discussions/c1", data={"content": "first"}, headers=headers)
        client.post("/discussions/c1", data={"content": "second"}, headers=headers)

        body = client.get("/discussions/c1", headers=headers).json()
        assert [m["content"] for m in body["messages"]] == ["first", "second"]
        assert body["currentPage"] == 1

    @pytest.mark.parametrize("params", [{"limit": 0}, {"limit": -5}, {"page": 0}])
    def test_history_paging_bounds(self, client, student, auth_headers, params):
        """Test page and limit below 1 are rejected instead of defaulted."""
        response = client.get("/discussions/c1", params=params, headers=auth_headers(student))
        assert response.status_code == 422

    def test_reply_and_thread_history(self, client, app_state, student, other_student, auth_headers, make_socket):
        """Test a reply is pushed as newReply and listed under its parent only."""
        ws = joined_socket(app_state, student, "classroom:c1", make_socket)
        parent = client.post("/discussions/c1", data={"content": "question"}, headers=auth_headers(student)).json()

        response = client.post(
            f"/discussions/{parent['id']}/reply",
            json={"content": "answer", "mentions": [student.user_id]},
            headers=auth_headers(other_student),
        )

        assert response.status_code == 201
        reply = response.json()
        assert reply["parentId"] == parent["id"]
        assert reply["mentions"] == [student.user_id]
        assert ws.events("newReply")[0]["data"]["id"] == reply["id"]

        headers = auth_headers(student)
        top = client.get("/discussions/c1", headers=headers).json()
        thread = client.get("/discussions/c1", params={"parentId": parent["id"]}, headers=headers).json()
        assert [m["content"] for m in top["messages"]] == ["question"]
        assert [m["content"] for m in thread["messages"]] == ["answer"]

    def test_reply_to_unknown_is_404(self, client, student, auth_headers):
        """Test replying to a missing message is 404."""
        response = client.post(f"/discussions/{'a' * 24}/reply", json={"content": "hi"}, headers=auth_headers(student))
        assert response.status_code == 404

    def test_post_with_mentions(self, client, student, other_student, auth_headers):
        """Test mentions sent as form fields are stored on the message."""
        response = client.post(
            "/discussions/c1",
            data={"content": "@bob look", "mentions": [other_student.user_id]},
            headers=auth_headers(student),
        )
        assert response.status_code == 201
        assert response.json()["mentions"] == [other_student.user_id]

    def test_react_toggles(self, client, app_state, student, other_student, auth_headers, make_socket):
        """Test reacting twice with the same emoji removes the reaction."""
        ws = joined_socket(app_state, student, "classroom:c1", make_socket)
        message = client.post("/discussions/c1", data={"content": "done!"}, headers=auth_headers(student)).json()
        url = f"/discussions/{message['id']}/react"

        first = client.post(url, json={"emoji": "🎉"}, headers=auth_headers(other_student))
        second = client.post(url, json={"emoji": "🎉"}, headers=auth_headers(other_student))

        assert first.status_code == 200
        assert first.json()["reactions"][0]["user"] == other_student.user_id
        assert second.json()["reactions"] == []
        assert len(ws.events("messageReaction")) == 2

    def test_react_requires_emoji(self, client, student, auth_headers):
        """Test an empty emoji is a validation error."""
        message = client.post("/discussions/c1", data={"content": "hi there"}, headers=auth_headers(student)).json()
        response = client.post(f"/discussions/{message['id']}/react", json={"emoji": ""}, headers=auth_headers(student))
        assert response.status_code == 422

    def test_group_messages(self, client, app_state, student, teacher, auth_headers, make_socket):
        """Test group posts are delivered as newGroupMessage."""
        ws = joined_socket(app_state, teacher, "group:g1", make_socket)
        response = client.post("/groups/g1/messages", data={"content": "lab"}, headers=auth_headers(student))
        assert response.status_code == 201
        assert ws.events("newGroupMessage")

        history = client.get("/groups/g1/messages", headers=auth_headers(student)).json()
        assert history["total"] == 1


# =============================================================================
# Moderation
# =============================================================================

class TestModerationRoutes:
    """Delete and report."""

    def test_teacher_deletes(self, client, student, teacher, auth_headers):
        """Test a teacher soft-deletes a message."""
        message = client.post("/discussions/c1", data={"content": "oops"}, headers=auth_headers(student)).json()

        response = client.delete(f"/messages/{message['id']}", params={"reason": "spam"}, headers=auth_headers(teacher))

        assert response.status_code == 200
        assert response.json()["message"]["isDeleted"] is True

    def test_student_cannot_delete(self, client, student, auth_headers):
        """Test students get 403 on delete."""
        message = client.post("/discussions/c1", data={"content": "mine"}, headers=auth_headers(student)).json()
        response = client.delete(f"/messages/{message['id']}", headers=auth_headers(student))
        assert response.status_code == 403

    def test_report(self, client, student, other_student, auth_headers):
        """Test a classmate can flag a message."""
        message = client.post("/discussions/c1", data={"content": "hmm"}, headers=auth_headers(student)).json()
        response = client.post(
            f"/messages/{message['id']}/report", json={"reason": "rude"}, headers=auth_headers(other_student)
        )
        assert response.status_code == 200
        assert response.json()["message"]["flagged"] is True

    def test_report_unknown_is_404(self, client, student, auth_headers):
        """Test reporting a missing message is 404."""
        response = client.post(f"/messages/{'a' * 24}/report", headers=auth_headers(student))
        assert response.status_code == 404


# =============================================================================
# Leaderboard and Notifications
# =============================================================================

class TestLeaderboardRoutes:
    """Score intake and the top list."""

    def test_student_cannot_score(self, client, student, auth_headers):
        """Test score intake is elevated only."""
        response = client.post(
            "/leaderboard/scores", json={"userId": student.user_id, "points": 5}, headers=auth_headers(student)
        )
        assert response.status_code == 403

    @pytest.mark.parametrize("points", [0, -100])
    def test_non_positive_points_rejected(self, client, student, teacher, auth_headers, points):
        """Test score intake refuses deltas that would not increase the total."""
        response = client.post(
            "/leaderboard/scores",
            json={"userId": student.user_id, "points": points},
            headers=auth_headers(teacher),
        )
        assert response.status_code == 422

    def test_score_and_top(self, client, app_state, student, teacher, auth_headers, make_socket):
        """Test a teacher records a score and the dashboard is updated."""
        dashboard = joined_socket(app_state, teacher, "admin:dashboard", make_socket)

        response = client.post(
            "/leaderboard/scores",
            json={"userId": student.user_id, "points": 50, "reason": "Quiz completed"},
            headers=auth_headers(teacher),
        )
        assert response.status_code == 202

        top = client.get("/leaderboard/top", params={"limit": 3}, headers=auth_headers(student)).json()
        assert top["topPerformers"][0]["userId"] == student.user_id
        assert top["topPerformers"][0]["score"] == 50

        update = dashboard.events("top_performers_update")[-1]["data"]
        assert update["recentActivity"]["reason"] == "Quiz completed"


class TestNotificationRoutes:
    """Targeted pushes."""

    def test_notification_delivered(self, client, app_state, student, teacher, auth_headers, make_socket):
        """Test a notification reaches the user's personal room."""
        ws = make_socket()
        app_state.connection_manager.connect(ws, student)

        response = client.post(
            "/notifications",
            json={"userId": student.user_id, "notification": {"title": "Graded"}},
            headers=auth_headers(teacher),
        )

        assert response.status_code == 202
        assert ws.events("notification")[0]["data"] == {"title": "Graded"}

    def test_announcement_requires_elevated(self, client, student, auth_headers):
        """Test students cannot announce."""
        response = client.post(
            "/announcements",
            json={"userIds": ["student-2"], "announcement": {"title": "x"}},
            headers=auth_headers(student),
        )
        assert response.status_code == 403

    def test_announcement_counts_recipients(self, client, teacher, auth_headers):
        """Test the response reports distinct recipients."""
        response = client.post(
            "/announcements",
            json={"userIds": ["a", "b", "a"], "announcement": {"title": "Exam moved"}},
            headers=auth_headers(teacher),
        )
        assert response.json()["recipients"] == 2


# =============================================================================
# WebSocket
# =============================================================================

class TestWebSocketRoute:
    """The /ws endpoint end to end."""

    def test_connect_and_join(self, client, student):
        """Test the handshake and a classroom join over a real socket."""
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"token": create_token(student.user_id, student.role)})
            connected = ws.receive_json()
            assert connected["event"] == "connected"
            assert connected["data"]["userId"] == student.user_id

            ws.send_json({"event": "joinClassroom", "data": "c1"})
            assert ws.receive_json() == {"event": "room_joined", "data": {"room": "classroom:c1"}}

    def test_bad_token_closed_4401(self, client):
        """Test a bad credential closes the socket with 4401."""
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"token": "bogus"})
            with pytest.raises(WebSocketDisconnect) as exc:
                ws.receive_json()
        assert exc.value.code == 4401
