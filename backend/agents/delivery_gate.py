"""
Delivery Gate — paces agent messages against a slow narration consumer.

One credit-based semaphore per game:
- capacity credits are available up front, so the first `capacity` waits
  never block
- ack() hands off straight to the oldest blocked waiter; only when nobody is
  waiting is the ack banked as a credit (capped at capacity)
- a blocked wait gives up after `timeout` seconds so a vanished consumer can
  never stall the game
- with gating disabled (the default) every wait returns immediately
"""
import asyncio
import logging
from collections import deque
from typing import Deque, Dict, Optional

from config import settings

logger = logging.getLogger(__name__)


class DeliveryGate:

    def __init__(self, capacity: int, timeout: float, enabled: bool = False):
        self.capacity = capacity
        self.timeout = timeout
        self.enabled = enabled
        self.credits = capacity
        self._waiters: Deque[asyncio.Future] = deque()

    @property
    def waiting(self) -> int:
        return sum(1 for fut in self._waiters if not fut.done())

    async def wait(self) -> bool:
        """Returns False only when the wait timed out."""
        if not self.enabled:
            return True
        if self.credits > 0:
            self.credits -= 1
            return True

        fut = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        try:
            await asyncio.wait_for(fut, timeout=self.timeout)
            return True
        except asyncio.TimeoutError:
            return False
        finally:
            try:
                self._waiters.remove(fut)
            except ValueError:
                pass

    def ack(self):
        while self._waiters:
            fut = self._waiters.popleft()
            if not fut.done():
                fut.set_result(True)
                return
        self.credits = min(self.capacity, self.credits + 1)

    def set_enabled(self, enabled: bool):
        self.enabled = enabled
        if not enabled:
            while self._waiters:
                fut = self._waiters.popleft()
                if not fut.done():
                    fut.set_result(True)
            self.credits = self.capacity


class DeliveryGateManager:
    """Lazily creates one DeliveryGate per game."""

    def __init__(self, capacity: Optional[int] = None, timeout: Optional[float] = None):
        self.capacity = capacity if capacity is not None else settings.delivery_buffer_size
        self.timeout = timeout if timeout is not None else settings.delivery_timeout_seconds
        self._gates: Dict[str, DeliveryGate] = {}

    def get(self, game_id: str) -> DeliveryGate:
        gate = self._gates.get(game_id)
        if gate is None:
            gate = DeliveryGate(self.capacity, self.timeout)
            self._gates[game_id] = gate
        return gate

    async def wait(self, game_id: str) -> bool:
        delivered = await self.get(game_id).wait()
        if not delivered:
            logger.warning("[%s] Narration ack timed out after %.0fs, continuing", game_id, self.timeout)
        return delivered

    def ack(self, game_id: str):
        self.get(game_id).ack()

    def set_gating(self, game_id: str, enabled: bool):
        self.get(game_id).set_enabled(enabled)
        logger.info("[%s] Narration gating %s", game_id, "enabled" if enabled else "disabled")


# Singleton
delivery_gates = DeliveryGateManager()
