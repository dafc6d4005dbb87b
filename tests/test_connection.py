"""
Tests für Connection/ConnectionHandler ohne echten Server.

Szenarien:
- Reihenfolge init -> Begrüßung
- Antworten in Abschluss-Reihenfolge (nicht Anfrage-Reihenfolge)
- Antwort nach Verbindungsende wird verworfen, kein Crash
- Schreibfehler schließt die Verbindung
- Client liest nicht: Heartbeats werden ab max_pending verworfen
"""

import asyncio
import json
from typing import Any, Dict, List

from gateway.connection import Connection, ConnectionHandler, ConnectionHub, ConnectionState
from gateway.core import FALLBACK_ANSWER
from gateway.errors import NotInitialized
from gateway.heartbeat import HeartbeatScheduler
from gateway.sessions import SessionRegistry


class _FakeSocket:
    def __init__(self, query_params: Dict[str, str] = None, fail_after: int = -1) -> None:
        self.query_params = query_params or {}
        self.sent: List[str] = []
        self.fail_after = fail_after

    async def send_text(self, data: str) -> None:
        if 0 <= self.fail_after <= len(self.sent):
            raise RuntimeError('Cannot call "send" once a close message has been sent.')
        self.sent.append(data)

    @property
    def frames(self) -> List[Dict[str, Any]]:
        return [json.loads(s) for s in self.sent]


class _GatedPipeline:
    """Antwortet erst, wenn das Event zur jeweiligen Frage gesetzt ist."""

    def __init__(self, *questions: str) -> None:
        self.gates = {q: asyncio.Event() for q in questions}

    async def answer(self, text: str) -> str:
        await self.gates[text].wait()
        return f"answer:{text}"


class _BrokenPipeline:
    async def answer(self, text: str) -> str:
        raise NotInitialized("not loaded")


def _chat(text: str, msg_id: str) -> str:
    return json.dumps({"type": "outgoing", "id": msg_id, "text": text, "timestamp": 1000})


async def _open(handler: ConnectionHandler, socket: _FakeSocket) -> Connection:
    conn = Connection(socket)
    conn.start_writer()
    handler.hub.add(conn)
    handler._open(conn)
    return conn


def test_open_sends_init_then_greeting() -> None:
    async def scenario():
        handler = ConnectionHandler(SessionRegistry(), _GatedPipeline(), ConnectionHub(), greeting_text="Hi {name}!")
        socket = _FakeSocket({"userName": "Ada"})
        conn = await _open(handler, socket)
        await handler._close(conn)
        return socket.frames, conn

    frames, conn = asyncio.run(scenario())

    assert frames[0]["type"] == "init"
    assert frames[0]["displayName"] == "Ada"
    assert frames[0]["isNew"] is True
    assert frames[1]["type"] == "incoming"
    assert frames[1]["text"] == "Hi Ada!"
    assert conn.state is ConnectionState.CLOSED


def test_answers_arrive_in_completion_order() -> None:
    async def scenario():
        pipeline = _GatedPipeline("first", "second")
        handler = ConnectionHandler(SessionRegistry(), pipeline, ConnectionHub())
        socket = _FakeSocket()
        conn = await _open(handler, socket)

        handler.on_frame(conn, _chat("first", "1"))
        handler.on_frame(conn, _chat("second", "2"))
        await asyncio.sleep(0.01)

        pipeline.gates["second"].set()
        await asyncio.sleep(0.01)
        pipeline.gates["first"].set()
        await asyncio.sleep(0.01)

        await handler._close(conn)
        return socket.frames

    frames = asyncio.run(scenario())

    # init, Begrüßung, Echo 1, Echo 2, Antwort 2, Antwort 1
    assert [f["type"] for f in frames] == ["init", "incoming", "outgoing", "outgoing", "incoming", "incoming"]
    assert [f["id"] for f in frames[2:4]] == ["1", "2"]
    assert [f["text"] for f in frames[4:]] == ["answer:second", "answer:first"]
    assert frames[4]["id"] not in ("1", "2")


def test_answer_after_close_is_discarded() -> None:
    async def scenario():
        pipeline = _GatedPipeline("late")
        registry = SessionRegistry()
        handler = ConnectionHandler(registry, pipeline, ConnectionHub())
        socket = _FakeSocket()
        conn = await _open(handler, socket)

        handler.on_frame(conn, _chat("late", "1"))
        await asyncio.sleep(0.01)
        await handler._close(conn)

        pipeline.gates["late"].set()
        await asyncio.sleep(0.01)
        return socket.frames, conn.user, handler.pending_answers

    frames, user, pending = asyncio.run(scenario())

    assert [f["type"] for f in frames] == ["init", "incoming", "outgoing"]
    assert user.is_active is False
    assert user.connection is None
    assert pending == 0


def test_pipeline_exception_becomes_fallback_answer() -> None:
    async def scenario():
        handler = ConnectionHandler(SessionRegistry(), _BrokenPipeline(), ConnectionHub())
        socket = _FakeSocket()
        conn = await _open(handler, socket)
        handler.on_frame(conn, _chat("q", "1"))
        await asyncio.sleep(0.01)
        await handler._close(conn)
        return socket.frames

    frames = asyncio.run(scenario())
    assert frames[-1]["type"] == "incoming"
    assert frames[-1]["text"] == FALLBACK_ANSWER


def test_malformed_and_unknown_frames_get_error_and_stay_active() -> None:
    async def scenario():
        pipeline = _GatedPipeline("ok")
        pipeline.gates["ok"].set()
        handler = ConnectionHandler(SessionRegistry(), pipeline, ConnectionHub())
        socket = _FakeSocket()
        conn = await _open(handler, socket)

        handler.on_frame(conn, "not json")
        handler.on_frame(conn, '{"type": "chat"}')
        state = conn.state
        handler.on_frame(conn, _chat("ok", "9"))
        await asyncio.sleep(0.01)
        await handler._close(conn)
        return socket.frames, state

    frames, state = asyncio.run(scenario())

    assert state is ConnectionState.ACTIVE
    assert frames[2] == {"type": "error", "message": "Invalid message format"}
    assert frames[3] == {"type": "error", "message": "Unknown message type: chat"}
    assert frames[4]["id"] == "9"
    assert frames[5]["text"] == "answer:ok"


def test_write_failure_closes_connection_and_post_becomes_noop() -> None:
    async def scenario():
        socket = _FakeSocket(fail_after=1)
        conn = Connection(socket)
        conn.state = ConnectionState.ACTIVE
        conn.start_writer()
        conn.post({"n": 1})
        conn.post({"n": 2})
        await asyncio.sleep(0.01)
        accepted = conn.post({"n": 3})
        await conn.close()
        return socket.frames, conn.state, accepted

    frames, state, accepted = asyncio.run(scenario())

    assert frames == [{"n": 1}]
    assert state is ConnectionState.CLOSED
    assert accepted is False


def test_hub_broadcast_reaches_only_active_connections() -> None:
    async def scenario():
        hub = ConnectionHub()
        active, closed = Connection(_FakeSocket()), Connection(_FakeSocket())
        active.state = ConnectionState.ACTIVE
        closed.state = ConnectionState.CLOSED
        connecting = Connection(_FakeSocket())
        for c in (active, closed, connecting):
            hub.add(c)
        return hub.broadcast({"type": "heartbeat", "time": 1})

    assert asyncio.run(scenario()) == 1


def test_stalled_client_queue_is_capped_for_heartbeats() -> None:
    async def scenario():
        # kein Writer: simuliert einen Client, der nicht mehr liest
        conn = Connection(_FakeSocket(), max_pending=5)
        conn.state = ConnectionState.ACTIVE
        hub = ConnectionHub()
        hub.add(conn)
        delivered = [hub.broadcast({"type": "heartbeat", "time": n}, droppable=True) for n in range(50)]
        answer_accepted = conn.post({"type": "incoming", "text": "still delivered"})
        return conn, delivered, answer_accepted

    conn, delivered, answer_accepted = asyncio.run(scenario())

    assert sum(delivered) == 5
    assert conn.dropped == 45
    assert answer_accepted is True
    assert conn.pending == 6


def test_heartbeat_scheduler_does_not_grow_a_stalled_queue() -> None:
    async def scenario():
        hub = ConnectionHub()
        conn = Connection(_FakeSocket(), max_pending=3)
        conn.state = ConnectionState.ACTIVE
        hub.add(conn)
        scheduler = HeartbeatScheduler(hub, interval=0.005)
        scheduler.start()
        await asyncio.sleep(0.1)
        await scheduler.stop()
        return conn.pending, scheduler.beats

    pending, beats = asyncio.run(scenario())
    assert beats > 3
    assert pending == 3
