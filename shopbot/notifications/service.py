import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence
import httpx
from pydantic import BaseModel
from shopbot.bot import views
from shopbot.common.exceptions import GatewayError
from shopbot.common.logging_setup import get_logger
from shopbot.config.settings import Settings
from shopbot.notifications.worker import NotificationWorker
from shopbot.orders.models import LowStockItem
from shopbot.schema.full_schema import OrderStatus
from shopbot.users import repository as users_repo

logger = get_logger("shopbot.notifications")


class BroadcastReport(BaseModel):
    sent: int = 0
    failed: int = 0


class NotificationService:
    """
    Outbound notices that must never fail the action that caused them. With a running worker the
    sends are queued (fire-and-forget); without one they run inline but still swallow gateway errors.
    """

    def __init__(self, gateway, session_factory, settings: Settings,
                 worker: Optional[NotificationWorker] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.gateway = gateway
        self.session_factory = session_factory
        self.settings = settings
        self.worker = worker
        self.sleep = sleep

    # -- task plumbing --

    async def handle(self, task: Dict[str, Any], worker_name: str = "inline") -> None:
        event = task["event"]
        if event == "message":
            await self.gateway.send_message(task["chat_id"], task["text"], task.get("keyboard"))
        elif event == "photo":
            await self.gateway.send_photo(task["chat_id"], task["photo"], task.get("caption", ""), task.get("keyboard"))
        elif event == "broadcast":
            await self.run_broadcast(task["text"], task.get("report_to"))
        else:
            logger.warning("notify.unknown_event", extra={"event": event, "worker": worker_name})

    async def _submit(self, task: Dict[str, Any]) -> None:
        if self.worker is not None and self.worker.running:
            self.worker.enqueue(task)
            return
        try:
            await self.handle(task)
        except (GatewayError, httpx.HTTPError) as exc:
            logger.warning("notify.send_failed", extra={"event": task["event"], "error": str(exc)})

    async def send(self, chat_id: int, text: str, keyboard: Optional[Dict[str, Any]] = None) -> None:
        await self._submit({"event": "message", "chat_id": chat_id, "text": text, "keyboard": keyboard})

    async def send_admin(self, text: str, keyboard: Optional[Dict[str, Any]] = None) -> None:
        if self.settings.ADMIN_CHAT_ID is None:
            logger.debug("notify.admin_unset")
            return
        await self.send(self.settings.ADMIN_CHAT_ID, text, keyboard)

    # -- domain notices --

    async def order_status_changed(self, chat_id: int, order_id: int, tracking_code: str, status: OrderStatus) -> None:
        await self.send(chat_id, views.order_status_notice(order_id, tracking_code, status))

    async def order_cancelled(self, chat_id: int, order_id: int, tracking_code: str, reason: Optional[str]) -> None:
        await self.send(chat_id, views.order_cancelled_notice(order_id, tracking_code, reason))

    async def new_order(self, text: str, keyboard: Optional[Dict[str, Any]]) -> None:
        await self.send_admin(text, keyboard)

    async def low_stock(self, items: Sequence[LowStockItem]) -> None:
        if items:
            await self.send_admin(views.low_stock_alert(items))

    async def payment_decided(self, chat_id: int, order_id: int, approved: bool) -> None:
        await self.send(chat_id, views.payment_verdict_notice(order_id, approved))

    async def receipt_submitted(self, receipt_ref: str, caption: str, keyboard: Optional[Dict[str, Any]]) -> None:
        if self.settings.ADMIN_CHAT_ID is None:
            return
        await self._submit({
            "event": "photo",
            "chat_id": self.settings.ADMIN_CHAT_ID,
            "photo": receipt_ref,
            "caption": caption,
            "keyboard": keyboard,
        })

    # -- broadcast --

    async def broadcast(self, text: str, report_to: Optional[int] = None) -> None:
        task = {"event": "broadcast", "text": text, "report_to": report_to}
        if self.worker is not None and self.worker.running:
            self.worker.enqueue(task)
        else:
            await self.handle(task)

    async def run_broadcast(self, text: str, report_to: Optional[int] = None) -> BroadcastReport:
        """Sequential send to every non-blocked user with a fixed gap; one failure never stops the loop."""
        async with self.session_factory() as session:
            chat_ids = await users_repo.list_broadcast_chat_ids(session)

        report = BroadcastReport()
        logger.info("broadcast.started", extra={"recipients": len(chat_ids)})
        for chat_id in chat_ids:
            try:
                await self.gateway.send_message(chat_id, text)
                report.sent += 1
            except (GatewayError, httpx.HTTPError) as exc:
                report.failed += 1
                logger.warning("broadcast.send_failed", extra={"target_chat": chat_id, "error": str(exc)})
            await self.sleep(self.settings.BROADCAST_DELAY)

        logger.info("broadcast.finished", extra={"sent": report.sent, "failed": report.failed})
        if report_to is not None:
            try:
                await self.gateway.send_message(report_to, views.broadcast_report(report.sent, report.failed))
            except (GatewayError, httpx.HTTPError) as exc:
                logger.warning("broadcast.report_failed", extra={"error": str(exc)})
        return report
