"""
Tests for the in-memory session registry
"""

from app.models.proctoring import SessionHealth
from app.services.session_registry import SessionRegistry


class TestSessionRegistry:
    """Tests for session and observer bookkeeping"""

    def test_register_session_defaults(self, fake_clock):
        """New sessions start unobserved with start time and heartbeat at now"""
        registry = SessionRegistry(clock=fake_clock)

        session, replaced = registry.register_session("s1", "conn-1", "Asha", "test-1", "Final Exam")

        assert replaced is None
        assert session.is_observed is False
        assert session.start_time == fake_clock.now
        assert session.last_heartbeat == fake_clock.now
        assert session.health == SessionHealth.ALIVE
        assert "s1" in registry
        assert len(registry) == 1

    def test_register_same_student_replaces_session(self, fake_clock):
        """Last writer wins on reconnect; exactly one entry remains"""
        registry = SessionRegistry(clock=fake_clock)
        registry.register_session("s1", "conn-1", "Asha", "test-1", "Final Exam")
        fake_clock.advance(5)

        session, replaced = registry.register_session("s1", "conn-2", "Asha", "test-1", "Final Exam")

        assert replaced.connection_id == "conn-1"
        assert session.connection_id == "conn-2"
        assert len(registry.list_sessions()) == 1
        assert [s.connection_id for s in registry.sessions()] == ["conn-2"]
        assert registry.list_sessions()[0].student_id == "s1"

    def test_remove_missing_student_is_noop(self):
        """Removing an unknown id returns None, never raises"""
        registry = SessionRegistry()

        assert registry.remove_session("ghost") is None
        assert len(registry) == 0

    def test_remove_session_returns_previous(self):
        registry = SessionRegistry()
        registry.register_session("s1", "conn-1")

        removed = registry.remove_session("s1")

        assert removed.student_id == "s1"
        assert removed.health == SessionHealth.EVICTED
        assert "s1" not in registry

    def test_apply_observed_set_replaces_wholesale(self):
        registry = SessionRegistry()
        for sid in ("s1", "s2", "s3"):
            registry.register_session(sid, f"conn-{sid}")

        registry.apply_observed_set({"s1", "s2"})
        registry.apply_observed_set({"s3"})

        assert registry.observed_ids() == ["s3"]
        assert registry.is_observed("s3")
        assert not registry.is_observed("s1")
        assert not registry.is_observed("missing")

    def test_list_sessions_is_detached_snapshot(self):
        """Snapshots do not change when the live session does"""
        registry = SessionRegistry()
        registry.register_session("s1", "conn-1", "Asha", "test-1", "Final Exam")

        snapshots = registry.list_sessions()
        registry.apply_observed_set({"s1"})

        assert snapshots[0].is_monitored is False
        assert registry.list_sessions()[0].is_monitored is True

    def test_snapshot_wire_format(self):
        registry = SessionRegistry()
        registry.register_session("s1", "conn-1", "Asha", "test-1", "Final Exam")

        wire = registry.list_sessions()[0].to_wire()

        assert set(wire) == {"studentId", "studentName", "testId", "testTitle", "startTime", "isMonitored"}
        assert wire["studentName"] == "Asha"

    def test_record_heartbeat(self, fake_clock):
        registry = SessionRegistry(clock=fake_clock)
        session, _ = registry.register_session("s1", "conn-1")
        session.health = SessionHealth.SUSPECT
        fake_clock.advance(30)

        assert registry.record_heartbeat("s1") is True
        assert session.last_heartbeat == fake_clock.now
        assert session.health == SessionHealth.ALIVE
        assert registry.record_heartbeat("ghost") is False

    def test_observers(self):
        registry = SessionRegistry()

        registry.register_observer("admin-1")
        registry.register_observer("admin-2")

        assert registry.observer_count == 2
        assert registry.remove_observer("admin-1") is True
        assert registry.remove_observer("admin-1") is False
        assert registry.observers == ["admin-2"]
