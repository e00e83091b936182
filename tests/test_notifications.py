import pytest

from shopbot.config.settings import Settings
from shopbot.notifications.service import NotificationService
from shopbot.notifications.worker import NotificationWorker
from shopbot.orders.models import LowStockItem
from tests.fakes import ADMIN_CHAT_ID, FakeGateway, no_sleep, seed_user


class SleepLog:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.mark.asyncio
async def test_broadcast_counts_failures_and_skips_blocked_users(session_factory, settings):
    for chat_id in (8001, 8002, 8003):
        await seed_user(session_factory, chat_id)
    await seed_user(session_factory, 8004, is_blocked=True)

    gateway = FakeGateway(failing_chats=(8002,))
    sleep = SleepLog()
    notifier = NotificationService(gateway, session_factory, settings, sleep=sleep)

    report = await notifier.run_broadcast("Weekend sale", report_to=ADMIN_CHAT_ID)

    assert (report.sent, report.failed) == (2, 1)
    assert gateway.texts(8001) == ["Weekend sale"]
    assert gateway.texts(8004) == []
    # one pause per recipient, failures included
    assert sleep.delays == [settings.BROADCAST_DELAY] * 3
    assert "✅ موفق: 2" in gateway.last(ADMIN_CHAT_ID)["text"]
    assert "❌ ناموفق: 1" in gateway.last(ADMIN_CHAT_ID)["text"]


@pytest.mark.asyncio
async def test_inline_notice_swallows_gateway_errors(session_factory, settings):
    gateway = FakeGateway(failing_chats=(8100,))
    notifier = NotificationService(gateway, session_factory, settings, sleep=no_sleep)

    await notifier.send(8100, "you will never see this")
    await notifier.send(8101, "hello")
    assert gateway.texts() == ["hello"]


@pytest.mark.asyncio
async def test_admin_notices_need_an_admin_chat(session_factory):
    gateway = FakeGateway()
    settings = Settings(_env_file=None, BOT_TOKEN="1:x", ADMIN_CHAT_ID=None)
    notifier = NotificationService(gateway, session_factory, settings, sleep=no_sleep)

    await notifier.new_order("new order", None)
    await notifier.low_stock([LowStockItem(product_id=1, name="Pen", stock=1)])
    assert gateway.sent == []


@pytest.mark.asyncio
async def test_low_stock_alert_lists_items(session_factory, settings):
    gateway = FakeGateway()
    notifier = NotificationService(gateway, session_factory, settings, sleep=no_sleep)

    await notifier.low_stock([])
    assert gateway.sent == []

    await notifier.low_stock([LowStockItem(product_id=3, name="Pen", stock=1)])
    assert "Pen" in gateway.last(ADMIN_CHAT_ID)["text"]


@pytest.mark.asyncio
async def test_worker_delivers_queued_notices(session_factory, settings):
    gateway = FakeGateway(failing_chats=(8200,))
    notifier = NotificationService(gateway, session_factory, settings, sleep=no_sleep)
    worker = NotificationWorker(notifier.handle, workers_count=2)
    notifier.worker = worker
    worker.start()
    assert worker.running

    await notifier.send(8201, "first")
    await notifier.send(8200, "lost")
    await notifier.send(8201, "second")

    await worker.shutdown()

    assert not worker.running
    assert sorted(gateway.texts(8201)) == ["first", "second"]
    assert (worker.processed, worker.failed) == (2, 1)


@pytest.mark.asyncio
async def test_full_queue_drops_the_notice():
    async def handler(task, worker_name):
        return None

    worker = NotificationWorker(handler, max_queue_size=1)
    assert worker.enqueue({"event": "message"})
    assert not worker.enqueue({"event": "message"})


@pytest.mark.asyncio
async def test_unknown_event_is_ignored(session_factory, settings):
    gateway = FakeGateway()
    notifier = NotificationService(gateway, session_factory, settings, sleep=no_sleep)
    await notifier.handle({"event": "carrier_pigeon"})
    assert gateway.sent == []
