"""
Integration tests for live proctoring flows over real WebSocket connections
"""

from fastapi import status

STUDENT_WS = "/api/v1/proctoring/ws/student"
MONITOR_WS = "/api/v1/proctoring/ws/monitor"


def _send(ws, event, data=None):
    ws.send_json({"event": event, "data": data or {}})


def _collect_until(ws, event):
    """All events received up to and including the wanted one"""
    messages = []
    while True:
        message = ws.receive_json()
        messages.append(message)
        if message["event"] == event:
            return messages


def _receive_until(ws, event):
    """Skip interleaved pool updates until the wanted event arrives"""
    return _collect_until(ws, event)[-1]["data"]


class TestMonitoringFlow:
    """Student joins, streams, violates and leaves while an admin watches"""

    def test_frame_relayed_to_admin(self, client, join_payload):
        with client.websocket_connect(MONITOR_WS) as admin:
            _send(admin, "admin:join-monitoring")
            assert admin.receive_json()["event"] == "active-sessions"
            assert admin.receive_json()["event"] == "monitoring-config"

            with client.websocket_connect(STUDENT_WS) as student:
                _send(student, "student:join-proctoring", join_payload("s1", name="Asha"))
                assert student.receive_json()["data"]["isMonitored"] is True

                pool = admin.receive_json()
                assert pool["event"] == "monitoring-pool-updated"
                assert pool["data"]["monitoredStudents"] == ["s1"]
                joined = admin.receive_json()
                assert joined["event"] == "student:joined"
                assert joined["data"]["studentId"] == "s1"

                _send(student, "proctoring:frame", {
                    "studentId": "s1",
                    "studentName": "Asha",
                    "testId": "test-1",
                    "frame": "aGVsbG8=",
                    "timestamp": 1737367200000,
                })
                frame = admin.receive_json()

        assert frame["event"] == "proctoring:frame"
        assert frame["data"]["studentId"] == "s1"
        assert frame["data"]["studentName"] == "Asha"
        assert frame["data"]["frame"] == "aGVsbG8="
        assert frame["data"]["timestamp"] == 1737367200000

    def test_violation_persisted_and_alerted(self, client, join_payload, mock_violation_store):
        with client.websocket_connect(MONITOR_WS) as admin:
            _send(admin, "admin:join-monitoring")
            admin.receive_json()
            admin.receive_json()

            with client.websocket_connect(STUDENT_WS) as student:
                _send(student, "student:join-proctoring", join_payload("s1", test_id="test-9"))
                student.receive_json()
                _send(student, "proctoring:ai-violation", {
                    "violation": {"type": "phone_detected", "severity": "high", "message": "Phone in view"},
                })
                alert = _receive_until(admin, "ai-violation-alert")

        assert alert["studentId"] == "s1"
        assert alert["testId"] == "test-9"
        assert alert["violation"] == {"type": "phone_detected", "severity": "high", "message": "Phone in view"}
        mock_violation_store.insert_violation.assert_called_once()
        args = mock_violation_store.insert_violation.call_args.args
        assert args[:4] == ("s1", "test-9", "phone_detected", "high")

    def test_violation_not_alerted_when_store_fails(self, client, join_payload, mock_violation_store):
        mock_violation_store.insert_violation.side_effect = RuntimeError("database unavailable")

        with client.websocket_connect(MONITOR_WS) as admin:
            _send(admin, "admin:join-monitoring")
            admin.receive_json()
            admin.receive_json()

            with client.websocket_connect(STUDENT_WS) as student:
                _send(student, "student:join-proctoring", join_payload("s1"))
                student.receive_json()
                _send(student, "proctoring:ai-violation", {
                    "violation": {"type": "no_face", "severity": "medium"},
                })
                _send(student, "client-error", {"message": "after violation"})

                # Messages are handled in order, so the error arrives after
                # whatever the violation produced
                received = _collect_until(admin, "student:error")

        events = [m["event"] for m in received]
        assert "ai-violation-alert" not in events
        assert received[-1]["data"]["studentId"] == "s1"
        assert mock_violation_store.insert_violation.call_count == 1

    def test_explicit_leave_then_disconnect(self, client, join_payload):
        with client.websocket_connect(MONITOR_WS) as admin:
            _send(admin, "admin:join-monitoring")
            admin.receive_json()
            admin.receive_json()

            with client.websocket_connect(STUDENT_WS) as student:
                _send(student, "student:join-proctoring", join_payload("s1"))
                student.receive_json()
                _send(student, "student:leave-proctoring", {"studentId": "s1"})
                left = _receive_until(admin, "student:left")

            with client.websocket_connect(STUDENT_WS) as student:
                _send(student, "student:join-proctoring", join_payload("s2"))
                student.receive_json()
            dropped = _receive_until(admin, "student:left")

        assert left["studentId"] == "s1"
        assert left["reason"] == "explicit_leave"
        assert dropped["studentId"] == "s2"
        assert dropped["reason"] == "disconnect"

    def test_status_reflects_connected_students(self, client, join_payload):
        with client.websocket_connect(STUDENT_WS) as first, client.websocket_connect(STUDENT_WS) as second:
            _send(first, "student:join-proctoring", join_payload("s1"))
            first.receive_json()
            _send(second, "student:join-proctoring", join_payload("s2"))
            second.receive_json()

            status_response = client.get("/api/v1/proctoring/monitoring/status")
            sessions_response = client.get("/api/v1/proctoring/monitoring/sessions")

        assert status_response.status_code == status.HTTP_200_OK
        assert status_response.json()["totalStudents"] == 2
        assert status_response.json()["monitoredCount"] == 2
        assert sessions_response.status_code == status.HTTP_200_OK
        assert sorted(s["studentId"] for s in sessions_response.json()) == ["s1", "s2"]

    def test_replaced_connection_cannot_speak_for_student(self, client, join_payload, mock_violation_store):
        with client.websocket_connect(MONITOR_WS) as admin:
            _send(admin, "admin:join-monitoring")
            admin.receive_json()
            admin.receive_json()

            with client.websocket_connect(STUDENT_WS) as old, client.websocket_connect(STUDENT_WS) as new:
                _send(old, "student:join-proctoring", join_payload("s1"))
                old.receive_json()
                _send(new, "student:join-proctoring", join_payload("s1"))
                new.receive_json()

                _send(old, "proctoring:frame", {"frame": "aGVsbG8="})
                _send(old, "proctoring:ai-violation", {
                    "violation": {"type": "phone_detected", "severity": "high"},
                })
                _send(old, "ping")
                assert _receive_until(old, "pong") is not None

                _send(new, "client-error", {"message": "marker"})
                received = _collect_until(admin, "student:error")

                status_response = client.get("/api/v1/proctoring/monitoring/status")

        events = [m["event"] for m in received]
        assert "proctoring:frame" not in events
        assert "ai-violation-alert" not in events
        mock_violation_store.insert_violation.assert_not_called()
        assert status_response.json()["totalStudents"] == 1
