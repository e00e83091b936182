from typing import Dict, List, Optional
from sqlalchemy import case, func, select, update
from shopbot.common.logging_setup import get_logger
from shopbot.common.utils import now
from shopbot.schema.full_schema import Orders, Payment, PaymentStatus, Users

logger = get_logger("shopbot.payments")


async def create_payment(session, order_id: int, user_id: int, amount: int,
                         status: PaymentStatus = PaymentStatus.PENDING, payment_method: str = "manual") -> Payment:
    payment = Payment(order_id=order_id, user_id=user_id, amount=amount, status=status, payment_method=payment_method)
    session.add(payment)
    await session.flush()
    return payment


async def find_payment(session, payment_id: int) -> Optional[Payment]:
    res = await session.execute(select(Payment).where(Payment.id == payment_id))
    return res.scalar_one_or_none()


async def list_order_payments(session, order_id: int) -> List[Payment]:
    res = await session.execute(select(Payment).where(Payment.order_id == order_id).order_by(Payment.id.desc()))
    return list(res.scalars().all())


async def save_receipt(session, order_id: int, user_id: int, amount: int, receipt_ref: str) -> Payment:
    """Attach a receipt to the order's open payment, opening one first if there is none."""
    payments = await list_order_payments(session, order_id)
    # a newer receipt replaces one still awaiting verification
    open_statuses = (PaymentStatus.PENDING, PaymentStatus.PENDING_VERIFICATION, PaymentStatus.REJECTED)
    payment = next((p for p in payments if p.status in open_statuses), None)
    if payment is None:
        payment = await create_payment(session, order_id, user_id, amount)

    payment.receipt_image = receipt_ref
    payment.status = PaymentStatus.PENDING_VERIFICATION
    payment.submitted_at = now()
    await session.commit()
    await session.refresh(payment)
    logger.info("payment.receipt_saved", extra={"payment_id": payment.id, "order_id": order_id})
    return payment


async def set_payment_verdict(session, payment_id: int, approved: bool, admin_chat_id: int,
                              notes: Optional[str] = None) -> bool:
    """Only a payment still awaiting verification can be decided."""
    stamp = now()
    stmt = (
        update(Payment)
        .where(Payment.id == payment_id, Payment.status == PaymentStatus.PENDING_VERIFICATION)
        .values(
            status=PaymentStatus.VERIFIED if approved else PaymentStatus.REJECTED,
            verified_by=admin_chat_id,
            verified_at=stamp,
            admin_notes=notes,
            paid_at=stamp if approved else None,
        )
    )
    res = await session.execute(stmt)
    return res.rowcount == 1


async def get_pending_verifications(session, limit: int = 20) -> List[Dict]:
    stmt = (
        select(
            Payment.id,
            Payment.order_id,
            Payment.amount,
            Payment.receipt_image,
            Payment.submitted_at,
            Orders.full_name,
            Orders.phone,
            Orders.tracking_code,
            Users.chat_id,
        )
        .join(Orders, Orders.id == Payment.order_id)
        .join(Users, Users.id == Payment.user_id)
        .where(Payment.status == PaymentStatus.PENDING_VERIFICATION)
        .order_by(Payment.submitted_at.desc(), Payment.id.desc())
        .limit(limit)
    )
    res = await session.execute(stmt)
    return [dict(row._mapping) for row in res.all()]


async def get_payment_stats(session) -> Dict[str, int]:
    stmt = select(
        func.count(Payment.id),
        func.count(Payment.id).filter(Payment.status == PaymentStatus.PENDING_VERIFICATION),
        func.count(Payment.id).filter(Payment.status == PaymentStatus.VERIFIED),
        func.count(Payment.id).filter(Payment.status == PaymentStatus.REJECTED),
        func.coalesce(func.sum(case((Payment.status == PaymentStatus.VERIFIED, Payment.amount), else_=0)), 0),
    )
    res = await session.execute(stmt)
    total, pending, verified, rejected, amount = res.one()
    return {
        "total": int(total),
        "pending": int(pending),
        "verified": int(verified),
        "rejected": int(rejected),
        "verified_amount": int(amount or 0),
    }
