# gateway/heartbeat.py
from __future__ import annotations
from typing import Optional
import asyncio
import logging

from .connection import ConnectionHub
from .protocol import HeartbeatFrame

log = logging.getLogger(__name__)


class HeartbeatScheduler:
    """
    Prozessweiter Timer: alle `interval` Sekunden ein heartbeat-Frame an
    jede aktive Verbindung. Kein Backoff; Ende nur über stop() beim Shutdown.
    """

    def __init__(self, hub: ConnectionHub, interval: float = 1.0) -> None:
        self.hub = hub
        self.interval = interval
        self._task: Optional[asyncio.Task] = None
        self.beats = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    def beat(self) -> int:
        # Heartbeats sind verwerfbar, wenn ein Client nicht mehr liest
        return self.hub.broadcast(HeartbeatFrame().to_wire(), droppable=True)

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        next_ts = loop.time() + self.interval
        while True:
            # gegen festen Takt schlafen, damit Drift sich nicht aufsummiert
            await asyncio.sleep(max(0.0, next_ts - loop.time()))
            next_ts = max(next_ts + self.interval, loop.time())
            try:
                self.beat()
                self.beats += 1
            except Exception:
                log.exception("Heartbeat round failed")
