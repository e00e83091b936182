import asyncio
from typing import Awaitable, Callable, Optional

import httpx

from shopbot.bot.dispatcher import UpdateDispatcher
from shopbot.common.exceptions import GatewayError
from shopbot.common.logging_setup import get_logger

logger = get_logger("shopbot.poller")


class UpdatePoller:
    """Long-poll loop. Updates are handled one at a time, in arrival order."""

    def __init__(self, gateway, dispatcher: UpdateDispatcher, *, poll_timeout: int = 30,
                 retry_delay: float = 3.0, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.poll_timeout = poll_timeout
        self.retry_delay = retry_delay
        self.sleep = sleep
        self.offset = 0
        self._stop = asyncio.Event()

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    async def poll_once(self) -> int:
        updates = await self.gateway.get_updates(offset=self.offset, timeout=self.poll_timeout)
        for update in updates:
            # acknowledge before handling so a poisoned update is never redelivered
            self.offset = max(self.offset, update.update_id + 1)
            await self.dispatcher.dispatch(update)
        return len(updates)

    async def run(self, max_cycles: Optional[int] = None) -> None:
        logger.info("poller.started", extra={"poll_timeout": self.poll_timeout})
        cycles = 0
        while not self.stopped:
            if max_cycles is not None and cycles >= max_cycles:
                break
            cycles += 1
            try:
                await self.poll_once()
            except (GatewayError, httpx.HTTPError) as exc:
                logger.warning("poller.fetch_failed", extra={"error": str(exc), "retry_in": self.retry_delay})
                await self.sleep(self.retry_delay)
        logger.info("poller.stopped", extra={"offset": self.offset})
