# gateway/connection.py
from __future__ import annotations
from enum import Enum
from typing import Any, Dict, List, Optional, Set
import asyncio
import json
import logging

from fastapi import WebSocket, WebSocketDisconnect

from .core import FALLBACK_ANSWER, RetrievalPipeline
from .errors import MalformedMessage
from .protocol import (
    ChatFrame,
    ErrorFrame,
    InitFrame,
    OutgoingChat,
    echo_of,
    parse_frame,
)
from .sessions import SessionRegistry, User

log = logging.getLogger(__name__)

# Ende-Marke für die Outbound-Queue
_CLOSE = object()

# ab dieser Queue-Länge werden verwerfbare Frames (Heartbeats) nicht mehr eingereiht
MAX_PENDING_FRAMES = 256


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    ACTIVE = "active"
    CLOSED = "closed"


class Connection:
    """
    Eine WebSocket-Verbindung mit eigener Outbound-Queue.
    Ein einzelner Writer-Task leert die Queue, daher bleibt die Reihenfolge
    der Frames pro Verbindung erhalten. post() auf eine geschlossene
    Verbindung ist ein stilles No-op.

    Liest ein Client nicht mehr, staut sich die Queue. Verwerfbare Frames
    (Heartbeats) werden dann ab `max_pending` verworfen; Antworten, Echos
    und Fehler gehen nie verloren.
    """

    def __init__(self, websocket: WebSocket, max_pending: int = MAX_PENDING_FRAMES) -> None:
        self.websocket = websocket
        self.max_pending = max_pending
        self.dropped = 0
        self.state = ConnectionState.CONNECTING
        self.user: Optional[User] = None
        self._queue: asyncio.Queue = asyncio.Queue()
        self._writer: Optional[asyncio.Task] = None

    @property
    def is_active(self) -> bool:
        return self.state is ConnectionState.ACTIVE

    @property
    def is_closed(self) -> bool:
        return self.state is ConnectionState.CLOSED

    def start_writer(self) -> None:
        if self._writer is None:
            self._writer = asyncio.create_task(self._write_loop())

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def post(self, frame: Dict[str, Any], droppable: bool = False) -> bool:
        if self.is_closed:
            return False
        if droppable and self._queue.qsize() >= self.max_pending:
            self.dropped += 1
            if self.dropped == 1 or self.dropped % 100 == 0:
                log.warning("Client is not reading, dropped %d frames (queue=%d)", self.dropped, self._queue.qsize())
            return False
        self._queue.put_nowait(frame)
        return True

    async def _write_loop(self) -> None:
        while True:
            frame = await self._queue.get()
            if frame is _CLOSE:
                return
            try:
                await self.websocket.send_text(json.dumps(frame, ensure_ascii=False))
            except (WebSocketDisconnect, RuntimeError, OSError) as e:
                # Transport ist weg: weitere Frames verwerfen
                log.debug("Write to closed websocket dropped: %s", e)
                self.state = ConnectionState.CLOSED
                return

    async def close(self) -> None:
        self.state = ConnectionState.CLOSED
        if self._writer is not None and not self._writer.done():
            self._queue.put_nowait(_CLOSE)
            await self._writer


class ConnectionHub:
    """Alle bekannten Verbindungen (Ziel der Heartbeat-Fan-out)."""

    def __init__(self) -> None:
        self._connections: Set[Connection] = set()

    def __len__(self) -> int:
        return len(self._connections)

    def add(self, conn: Connection) -> None:
        self._connections.add(conn)

    def discard(self, conn: Connection) -> None:
        self._connections.discard(conn)

    def active(self) -> List[Connection]:
        return [c for c in self._connections if c.is_active]

    def broadcast(self, frame: Dict[str, Any], droppable: bool = False) -> int:
        sent = 0
        for conn in self.active():
            if conn.post(frame, droppable=droppable):
                sent += 1
        return sent


class ConnectionHandler:
    """
    Zustandsmaschine pro Verbindung: CONNECTING -> ACTIVE -> CLOSED.
    Chat-Frames werden sofort geechot; die RAG-Antwort läuft als eigener Task
    und wird bei Abschluss gepostet (Abschluss-Reihenfolge, nicht Anfrage-Reihenfolge).
    """

    def __init__(
        self,
        registry: SessionRegistry,
        pipeline: RetrievalPipeline,
        hub: ConnectionHub,
        greeting_text: str = "Hello {name}!",
    ) -> None:
        self.registry = registry
        self.pipeline = pipeline
        self.hub = hub
        self.greeting_text = greeting_text
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending_answers(self) -> int:
        return len(self._tasks)

    async def handle(self, websocket: WebSocket) -> None:
        await websocket.accept()
        conn = Connection(websocket)
        conn.start_writer()
        self.hub.add(conn)
        try:
            self._open(conn)
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                raw = message.get("text")
                if raw is None and message.get("bytes") is not None:
                    raw = message["bytes"].decode("utf-8", errors="replace")
                if raw is None:
                    continue
                self.on_frame(conn, raw)
        except WebSocketDisconnect:
            pass
        finally:
            await self._close(conn)

    def _open(self, conn: Connection) -> None:
        params = conn.websocket.query_params
        user, is_new = self.registry.resolve_or_create(
            requested_id=params.get("uuid") or None,
            display_name=params.get("userName") or None,
            connection=conn,
        )
        conn.user = user
        conn.state = ConnectionState.ACTIVE

        conn.post(InitFrame(uuid=str(user.id), display_name=user.display_name, is_new=is_new).to_wire())
        greeting = self.greeting_text.format(name=user.display_name)
        conn.post(ChatFrame.incoming(greeting).to_wire())

    def on_frame(self, conn: Connection, raw: str) -> None:
        try:
            frame = parse_frame(raw)
        except MalformedMessage as e:
            log.info("Malformed frame from %s: %s", conn.user.id if conn.user else "?", e)
            conn.post(ErrorFrame(message=str(e)).to_wire())
            return

        if isinstance(frame, OutgoingChat):
            conn.post(echo_of(frame))
            task = asyncio.create_task(self._answer(conn, frame.text))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            return

        conn.post(ErrorFrame(message=f"Unknown message type: {frame.type}").to_wire())

    async def _answer(self, conn: Connection, text: str) -> None:
        try:
            answer = await self.pipeline.answer(text)
        except Exception:
            log.exception("Retrieval pipeline failed")
            answer = FALLBACK_ANSWER
        # Verbindung evtl. schon zu: dann verwirft post() den Frame
        if not conn.post(ChatFrame.incoming(answer).to_wire()):
            log.debug("Answer discarded, connection closed")

    async def _close(self, conn: Connection) -> None:
        # erst synchron aufräumen, damit auch ein abgebrochener Task den User deaktiviert
        conn.state = ConnectionState.CLOSED
        self.hub.discard(conn)
        if conn.user is not None:
            self.registry.deactivate(conn.user, connection=conn)
        await conn.close()
