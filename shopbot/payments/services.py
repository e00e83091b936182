from typing import Optional, Tuple
from shopbot.common.exceptions import BusinessRuleError, NotFoundError
from shopbot.common.logging_setup import get_logger
from shopbot.orders import repository as orders_repo
from shopbot.payments import repository as payments_repo
from shopbot.schema.full_schema import OrderPaymentStatus, OrderStatus, Orders, Payment

logger = get_logger("shopbot.payments")


def can_upload_receipt(order: Orders) -> bool:
    return order.payment_status == OrderPaymentStatus.UNPAID and order.status != OrderStatus.CANCELLED


async def submit_receipt(session, order_id: int, user_id: int, receipt_ref: str) -> Tuple[Orders, Payment]:
    order = await orders_repo.find_order(session, order_id)
    if order is None or order.user_id != user_id:
        raise NotFoundError("❌ سفارش یافت نشد")
    if not can_upload_receipt(order):
        raise BusinessRuleError("❌ برای این سفارش امکان ارسال فیش وجود ندارد")

    payment = await payments_repo.save_receipt(session, order_id, user_id, order.final_price, receipt_ref)
    return order, payment


async def verify_payment(session, payment_id: int, approved: bool, admin_chat_id: int,
                         notes: Optional[str] = None) -> Tuple[Payment, Orders]:
    """Verdict on a receipt; approval also marks the order paid, in the same commit."""
    payment = await payments_repo.find_payment(session, payment_id)
    if payment is None:
        raise NotFoundError("❌ پرداخت یافت نشد")
    if approved:
        order = await orders_repo.find_order(session, payment.order_id)
        if order is None or not can_upload_receipt(order):
            raise BusinessRuleError("❌ این سفارش لغو شده یا قبلاً پرداخت شده است و قابل تایید نیست")

    if not await payments_repo.set_payment_verdict(session, payment_id, approved, admin_chat_id, notes):
        await session.rollback()
        raise BusinessRuleError("❌ این پرداخت قبلاً بررسی شده است")
    if approved:
        await orders_repo.update_payment_status(session, payment.order_id, OrderPaymentStatus.PAID)
    await session.commit()

    await session.refresh(payment)
    order = await orders_repo.find_order(session, payment.order_id)
    logger.info(
        "payment.verified" if approved else "payment.rejected",
        extra={"payment_id": payment_id, "order_id": payment.order_id, "admin_chat_id": admin_chat_id},
    )
    return payment, order
