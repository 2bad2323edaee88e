"""
Connection Gateway - WebSocket connections, rooms and ordered delivery
"""

import asyncio
import json
import logging
import uuid
from collections import defaultdict
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket
from fastapi.websockets import WebSocketState

logger = logging.getLogger(__name__)

ADMIN_ROOM = "admin-room"


class Connection:
    """One accepted WebSocket with its own outbound queue"""

    def __init__(self, websocket: WebSocket, queue_size: int):
        self.connection_id = uuid.uuid4().hex
        self.websocket = websocket
        self.outbox: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.sender_task: Optional[asyncio.Task] = None
        self.alive = True
        self.identified = False
        self.student_id: Optional[str] = None
        self.is_admin = False


class ConnectionGateway:
    """
    Tracks accepted WebSockets and named broadcast rooms.

    Every connection is drained by a single sender task, so messages to one
    connection are delivered in the order they were emitted, and emitting
    never waits on a slow socket. A full outbound queue drops the message.
    """

    def __init__(self, queue_size: int = 256, identify_timeout: float = 30):
        self.queue_size = queue_size
        self.identify_timeout = identify_timeout
        self.connections: Dict[str, Connection] = {}
        self.rooms: Dict[str, Set[str]] = defaultdict(set)

    async def accept(self, websocket: WebSocket) -> Connection:
        await websocket.accept()
        connection = Connection(websocket, self.queue_size)
        self.connections[connection.connection_id] = connection
        connection.sender_task = asyncio.create_task(self._sender_loop(connection))
        logger.info(f"WebSocket client connected: {connection.connection_id}")
        return connection

    async def _sender_loop(self, connection: Connection) -> None:
        while True:
            message = await connection.outbox.get()
            try:
                await connection.websocket.send_text(message)
            except Exception as e:
                logger.warning(f"Send failed on connection {connection.connection_id}: {str(e)}")
                connection.alive = False
            finally:
                connection.outbox.task_done()

    def get(self, connection_id: str) -> Optional[Connection]:
        return self.connections.get(connection_id)

    def _enqueue(self, connection: Connection, message: str) -> bool:
        if not connection.alive:
            return False
        try:
            connection.outbox.put_nowait(message)
        except asyncio.QueueFull:
            logger.debug(f"Outbound queue full, dropping message for {connection.connection_id}")
            return False
        return True

    @staticmethod
    def _encode(event: str, data: Any) -> str:
        return json.dumps({"event": event, "data": data}, default=str)

    def emit(self, connection_id: str, event: str, data: Any = None) -> bool:
        """Queue one event for one connection; False when it cannot be delivered"""
        connection = self.connections.get(connection_id)
        if connection is None:
            return False
        return self._enqueue(connection, self._encode(event, data))

    def broadcast(self, room: str, event: str, data: Any = None) -> int:
        """Queue one event for every member of a room; returns how many accepted it"""
        members = self.rooms.get(room)
        if not members:
            return 0
        message = self._encode(event, data)
        delivered = 0
        for connection_id in list(members):
            connection = self.connections.get(connection_id)
            if connection is not None and self._enqueue(connection, message):
                delivered += 1
        return delivered

    def join_room(self, room: str, connection_id: str) -> None:
        self.rooms[room].add(connection_id)

    def leave_room(self, room: str, connection_id: str) -> None:
        members = self.rooms.get(room)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self.rooms[room]

    def room_size(self, room: str) -> int:
        return len(self.rooms.get(room, ()))

    def is_connected(self, connection_id: str) -> bool:
        """Transport-level liveness as seen by the Health Reaper"""
        connection = self.connections.get(connection_id)
        if connection is None or not connection.alive:
            return False
        return connection.websocket.client_state == WebSocketState.CONNECTED

    async def flush(self, connection_id: str, timeout: float = 2.0) -> None:
        """Wait until queued messages for a connection have been written"""
        connection = self.connections.get(connection_id)
        if connection is None or connection.sender_task is None:
            return
        try:
            await asyncio.wait_for(connection.outbox.join(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.debug(f"Flush timed out for connection {connection_id}")

    async def close(self, connection_id: str, code: int = 1000) -> None:
        """Server-initiated close, after queued messages are written"""
        connection = self.connections.get(connection_id)
        if connection is None:
            return
        await self.flush(connection_id)
        connection.alive = False
        try:
            await connection.websocket.close(code=code)
        except Exception as e:
            logger.debug(f"Close failed on connection {connection_id}: {str(e)}")

    async def disconnect(self, connection_id: str) -> None:
        """Forget a connection and stop its sender task"""
        connection = self.connections.pop(connection_id, None)
        if connection is None:
            return
        connection.alive = False
        for room in list(self.rooms):
            self.leave_room(room, connection_id)
        if connection.sender_task is not None:
            connection.sender_task.cancel()
            # Cancellation of the caller still propagates
            await asyncio.gather(connection.sender_task, return_exceptions=True)
        logger.debug(f"WebSocket client disconnected: {connection_id}")

    async def shutdown(self) -> None:
        for connection_id in list(self.connections):
            await self.disconnect(connection_id)
