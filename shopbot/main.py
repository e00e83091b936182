import asyncio
import signal
import sys
from contextlib import suppress

from shopbot.bot.dispatcher import UpdateDispatcher
from shopbot.bot.handlers import ShopBot
from shopbot.bot.poller import UpdatePoller
from shopbot.common.exceptions import GatewayAuthError
from shopbot.common.logging_setup import get_logger, setup_logging, stop_logging
from shopbot.config.settings import Settings, config_settings
from shopbot.conversation.store import ConversationStore
from shopbot.db.connection import async_engine, async_session, init_models
from shopbot.gateway.client import BotGateway
from shopbot.notifications.service import NotificationService
from shopbot.notifications.worker import NotificationWorker

logger = get_logger("shopbot.app")


async def serve(settings: Settings = config_settings) -> int:
    if not settings.BOT_TOKEN:
        logger.error("startup.missing_token")
        return 1

    await init_models(async_engine)

    gateway = BotGateway(settings)
    try:
        me = await gateway.get_me()
    except GatewayAuthError as exc:
        logger.error("startup.auth_failed", extra={"error": exc.message})
        await gateway.aclose()
        await async_engine.dispose()
        return 1
    logger.info("startup.connected", extra={"bot_username": me.get("username")})

    notifier = NotificationService(gateway, async_session, settings)
    worker = NotificationWorker(notifier.handle, workers_count=settings.NOTIFY_WORKERS)
    notifier.worker = worker
    worker.start()

    store = ConversationStore(ttl_seconds=settings.CONVERSATION_TTL_SECONDS)
    bot = ShopBot(gateway, async_session, store, settings, notifier)
    poller = UpdatePoller(
        gateway,
        UpdateDispatcher(bot),
        poll_timeout=settings.POLL_TIMEOUT,
        retry_delay=settings.POLL_RETRY_DELAY,
    )

    loop = asyncio.get_running_loop()
    poll_task = asyncio.create_task(poller.run(), name="poller")

    def _request_stop():
        logger.info("shutdown.requested")
        poller.stop()
        # a long poll can sit for POLL_TIMEOUT seconds
        poll_task.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        with suppress(NotImplementedError):
            loop.add_signal_handler(sig, _request_stop)

    try:
        with suppress(asyncio.CancelledError):
            await poll_task
    finally:
        await worker.shutdown(drain_first=True, drain_timeout=10)
        await gateway.aclose()
        await async_engine.dispose()
        logger.info("shutdown.complete", extra={"notified": worker.processed, "notify_failed": worker.failed})
    return 0


def run() -> None:
    setup_logging()
    try:
        code = asyncio.run(serve())
    finally:
        stop_logging()
    sys.exit(code)


if __name__ == "__main__":
    run()
