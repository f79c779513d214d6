"""
Trainer registry and the serialized request queue shared by async lookups.

Lookups are pushed through a RequestQueue so that only one runs at a time,
with a short pause between requests; many records parsed concurrently must
not hammer the backing store.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from poke_types import Trainer

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_REQUEST_DELAY = 0.1


class RequestQueue:
    """Runs submitted requests one at a time, `delay` seconds apart."""

    def __init__(self, delay: float = DEFAULT_REQUEST_DELAY) -> None:
        self.delay = delay
        self._lock: Optional[asyncio.Lock] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def _get_lock(self) -> asyncio.Lock:
        # A lock is tied to the loop it first runs on
        loop = asyncio.get_running_loop()
        if self._lock is None or self._loop is not loop:
            self._lock = asyncio.Lock()
            self._loop = loop
        return self._lock

    async def submit(self, request: Callable[[], Awaitable[T]]) -> T:
        async with self._get_lock():
            try:
                return await request()
            finally:
                if self.delay > 0:
                    await asyncio.sleep(self.delay)


class TrainerRegistry:
    """In-memory store handing out one stable id per distinct trainer."""

    def __init__(self, queue: Optional[RequestQueue] = None) -> None:
        self.queue = queue if queue is not None else RequestQueue()
        self._ids: dict[Trainer, int] = {}
        self._trainers: dict[int, Trainer] = {}

    def __len__(self) -> int:
        return len(self._trainers)

    async def add_or_get_trainer(self, name: str, game_id: int, local_id: int) -> int:
        trainer = Trainer(name=name, game_id=game_id, trainer_id=local_id)
        return await self.queue.submit(lambda: self._add_or_get(trainer))

    async def _add_or_get(self, trainer: Trainer) -> int:
        existing = self._ids.get(trainer)
        if existing is not None:
            return existing
        ref_id = len(self._trainers) + 1
        self._ids[trainer] = ref_id
        self._trainers[ref_id] = trainer
        logger.debug("Registered trainer %s as %d", trainer, ref_id)
        return ref_id

    def get(self, ref_id: int) -> Trainer:
        return self._trainers[ref_id]

    def trainers(self) -> dict[int, Trainer]:
        return dict(self._trainers)
