import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional
from shopbot.common.logging_setup import get_logger

logger = get_logger("shopbot.notifications")

SENTINEL = None  # queue sentinel

TaskHandler = Callable[[Dict[str, Any], str], Awaitable[None]]


class NotificationWorker:
    """
    Fire-and-forget outbound sends. Producers `enqueue` and move on; N consumer loops hand each task
    to `handler`. A failing task is logged and dropped, it never reaches the producer.
    """

    def __init__(self, handler: TaskHandler, workers_count: int = 1, max_queue_size: int = 1000):
        self.handler = handler
        self.queue: asyncio.Queue[Optional[Dict[str, Any]]] = asyncio.Queue(maxsize=max_queue_size)
        self.worker_loops: Dict[str, asyncio.Task] = {}
        self.workers_count: int = max(1, workers_count)
        self.processed = 0
        self.failed = 0

    def start(self) -> None:
        if self.worker_loops:
            return
        for i in range(self.workers_count):
            cur_worker_name = f"notify:{i + 1}"
            self.worker_loops[cur_worker_name] = asyncio.create_task(self._worker_loop(cur_worker_name))
            logger.info("notify_worker.started", extra={"worker": cur_worker_name})

    @property
    def running(self) -> bool:
        return bool(self.worker_loops)

    def enqueue(self, task: Dict[str, Any]) -> bool:
        try:
            self.queue.put_nowait(task)
            return True
        except asyncio.QueueFull:
            logger.warning("notify_worker.queue_full", extra={"event": task.get("event")})
            return False

    async def _worker_loop(self, cur_worker_name: str):
        while True:
            qitem = await self.queue.get()
            try:
                if qitem is SENTINEL:
                    logger.debug("notify_worker.sentinel", extra={"worker": cur_worker_name})
                    break
                try:
                    await self.handler(qitem, cur_worker_name)
                    self.processed += 1
                except Exception:
                    self.failed += 1
                    logger.exception("notify_worker.task_failed", extra={"worker": cur_worker_name,
                                                                        "event": qitem.get("event")})
            finally:
                self.queue.task_done()

    async def drain(self, timeout: float = 30.0) -> None:
        try:
            await asyncio.wait_for(self.queue.join(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("notify_worker.drain_timeout", extra={"pending": self.queue.qsize()})

    async def shutdown(self, *, drain_first: bool = True, drain_timeout: float = 30.0,
                       wait_timeout: float = 30.0) -> None:
        """Graceful stop: drain, one sentinel per loop, then wait (cancel stragglers)."""
        if not self.worker_loops:
            return
        if drain_first:
            await self.drain(drain_timeout)

        for _ in self.worker_loops:
            await self.queue.put(SENTINEL)

        for name, task in self.worker_loops.items():
            try:
                await asyncio.wait_for(task, timeout=wait_timeout)
            except asyncio.TimeoutError:
                logger.warning("notify_worker.cancelled", extra={"worker": name})
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self.worker_loops = {}
        logger.info("notify_worker.stopped", extra={"processed": self.processed, "failed": self.failed})
