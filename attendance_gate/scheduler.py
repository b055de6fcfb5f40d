import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class Tick:
    seq: int
    at: float  # loop monotonic time

class TickScheduler:
    """
    Emits a Tick on a bounded queue every `interval` seconds.
    If the consumer has not taken the previous tick yet, the new one is
    dropped instead of queued, so a slow cycle never builds a backlog.
    """
    def __init__(self, interval: float = 0.2, maxsize: int = 1):
        if interval <= 0:
            raise ValueError("tick interval must be positive")
        self.interval = float(interval)
        self.queue: "asyncio.Queue[Tick]" = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        if self.running:
            return self._task
        self._task = asyncio.get_running_loop().create_task(self._run())
        return self._task

    async def _run(self):
        seq = 0
        loop = asyncio.get_running_loop()
        next_at = loop.time()
        while True:
            try:
                self.queue.put_nowait(Tick(seq=seq, at=loop.time()))
            except asyncio.QueueFull:
                self.dropped += 1
            seq += 1
            next_at += self.interval
            # fixed-rate schedule, skip missed slots instead of bursting
            delay = next_at - loop.time()
            if delay < 0:
                next_at = loop.time()
                delay = 0
            await asyncio.sleep(delay)

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.debug(f"Tick scheduler stopped ({self.dropped} ticks dropped)")
