"""
Transport error backoff for executor loops.

When the queue transport fails (dequeue, ack or nack raising), executors
pause with a jittered, growing delay so a dead Redis is not hammered by
every executor at once. Job retry delays are not computed here; they
come from each job's deterministic BackoffPolicy.
"""

import asyncio
import random


class ExponentialBackoff:
    """
    Exponential backoff with jitter.

    delay = min(base * multiplier^attempt, max_delay) +/- jitter_range * delay

    Usage:
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=30.0)
        while not stop.is_set():
            try:
                job = await queue.dequeue("email", timeout=1.0, stop=stop)
            except QueueError:
                await backoff.sleep(stop)
                continue
            backoff.reset()
    """

    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        multiplier: float = 2.0,
        jitter_range: float = 0.5,
    ):
        if base_delay <= 0 or max_delay < base_delay:
            raise ValueError("Require 0 < base_delay <= max_delay")
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.multiplier = multiplier
        self.jitter_range = jitter_range
        self._failures = 0

    @property
    def attempt(self) -> int:
        """Consecutive failures since the last reset."""
        return self._failures

    def next_delay(self) -> float:
        """Record a failure and return how long to pause before the next try."""
        ceiling = min(self.base_delay * (self.multiplier ** self._failures), self.max_delay)
        self._failures += 1
        spread = ceiling * self.jitter_range
        return max(0.0, ceiling + random.uniform(-spread, spread))

    async def sleep(self, stop: asyncio.Event | None = None) -> float:
        """
        Pause for the next delay.

        Returns early, without error, as soon as ``stop`` is set.

        Returns:
            The delay that was scheduled
        """
        delay = self.next_delay()
        if stop is None:
            await asyncio.sleep(delay)
            return delay
        try:
            await asyncio.wait_for(stop.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass
        return delay

    def reset(self) -> None:
        self._failures = 0
