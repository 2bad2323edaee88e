"""
Pytest configuration and fixtures for backend tests
"""

import pytest
import random
from unittest.mock import MagicMock
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from starlette.testclient import TestClient

from app.config import MonitoringConfig, Settings
from app.main import get_application
from app.services.proctoring_coordinator import ProctoringCoordinator


class FakeClock:
    """Controllable clock injected wherever the code asks for 'now'"""

    def __init__(self, start=None):
        self.now = start or datetime(2025, 1, 20, 10, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


class FakeGateway:
    """Records emits and room broadcasts instead of writing to sockets"""

    def __init__(self):
        self.sent = []
        self.broadcasts = []
        self.rooms = defaultdict(set)
        self.connected = set()

    def connect(self, connection_id):
        self.connected.add(connection_id)

    def drop(self, connection_id):
        self.connected.discard(connection_id)

    def emit(self, connection_id, event, data=None):
        self.sent.append((connection_id, event, data))
        return connection_id in self.connected

    def broadcast(self, room, event, data=None):
        self.broadcasts.append((room, event, data))
        return len(self.rooms.get(room, ()))

    def join_room(self, room, connection_id):
        self.rooms[room].add(connection_id)

    def leave_room(self, room, connection_id):
        self.rooms[room].discard(connection_id)

    def is_connected(self, connection_id):
        return connection_id in self.connected

    def events_to(self, connection_id, event=None):
        return [
            data for cid, name, data in self.sent
            if cid == connection_id and (event is None or name == event)
        ]

    def broadcast_events(self, event):
        return [data for _, name, data in self.broadcasts if name == event]


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def monitoring_config():
    """Default policy: 15% sample, 5..60 monitored, 5 minute rotation, 2 FPS"""
    return MonitoringConfig()


@pytest.fixture
def mock_violation_store():
    """Violation store whose inserts succeed"""
    store = MagicMock()
    store.insert_violation.return_value = 1
    return store


@pytest.fixture
def coordinator(monitoring_config, fake_gateway, mock_violation_store, fake_clock):
    """Coordinator wired to fakes, with a seeded random source"""
    return ProctoringCoordinator(
        monitoring_config,
        fake_gateway,
        mock_violation_store,
        rng=random.Random(42),
        clock=fake_clock,
    )


@pytest.fixture
def join_payload():
    """Factory for student:join-proctoring payload data"""
    def _make(student_id, name=None, test_id="test-1", title="Python Basics Final"):
        return {
            "studentId": student_id,
            "studentName": name or f"Student {student_id}",
            "testId": test_id,
            "testTitle": title,
        }
    return _make


@pytest.fixture
def app_settings():
    return Settings(PROCTORING_IDENTIFY_TIMEOUT_SECONDS=5)


@pytest.fixture
def client(app_settings, mock_violation_store):
    """FastAPI test client with the lifespan (coordinator) running"""
    app = get_application(
        settings=app_settings,
        violation_store=mock_violation_store,
        rng=random.Random(7),
    )
    with TestClient(app) as test_client:
        yield test_client
