from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy import and_, case, func, or_, select, update
from shopbot.common.logging_setup import get_logger
from shopbot.common.utils import now
from shopbot.schema.full_schema import OrderItem, OrderPaymentStatus, OrderStatus, Orders, Product

logger = get_logger("shopbot.orders")


async def find_order(session, order_id: int) -> Optional[Orders]:
    res = await session.execute(select(Orders).where(Orders.id == order_id))
    return res.scalar_one_or_none()


async def find_order_by_tracking_code(session, tracking_code: str) -> Optional[Orders]:
    res = await session.execute(select(Orders).where(Orders.tracking_code == tracking_code.strip().upper()))
    return res.scalar_one_or_none()


async def tracking_code_exists(session, tracking_code: str) -> bool:
    res = await session.execute(select(Orders.id).where(Orders.tracking_code == tracking_code).limit(1))
    return res.scalar_one_or_none() is not None


async def get_order_items(session, order_id: int) -> List[OrderItem]:
    res = await session.execute(select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.id))
    return list(res.scalars().all())


async def list_user_orders(session, user_id: int, limit: int = 10) -> List[Orders]:
    stmt = select(Orders).where(Orders.user_id == user_id).order_by(Orders.id.desc()).limit(limit)
    res = await session.execute(stmt)
    return list(res.scalars().all())


def _order_filters(status: Optional[OrderStatus] = None, payment_status: Optional[OrderPaymentStatus] = None):
    conds = []
    if status is not None:
        conds.append(Orders.status == status)
    if payment_status is not None:
        conds.append(Orders.payment_status == payment_status)
    return conds


async def list_orders(session, limit: int = 10, offset: int = 0, status: Optional[OrderStatus] = None,
                      payment_status: Optional[OrderPaymentStatus] = None) -> List[Orders]:
    stmt = (
        select(Orders)
        .where(*_order_filters(status, payment_status))
        .order_by(Orders.id.desc())
        .limit(limit)
        .offset(offset)
    )
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def count_orders(session, status: Optional[OrderStatus] = None,
                       payment_status: Optional[OrderPaymentStatus] = None) -> int:
    stmt = select(func.count(Orders.id)).where(*_order_filters(status, payment_status))
    res = await session.execute(stmt)
    return int(res.scalar_one())


async def insert_order(session, values: Dict[str, Any]) -> Orders:
    order = Orders(**values)
    session.add(order)
    await session.flush()  # to get order.id
    return order


async def lock_product(session, product_id: int) -> Optional[Product]:
    """Fresh read inside the order transaction; row-locked where the backend supports it."""
    stmt = select(Product).where(Product.id == product_id).with_for_update()
    res = await session.execute(stmt.execution_options(populate_existing=True))
    return res.scalar_one_or_none()


async def decrement_stock(session, product_id: int, quantity: int) -> bool:
    # conditional decrement; rowcount 0 means the product vanished, was deactivated or ran short
    stmt = (
        update(Product)
        .where(and_(Product.id == product_id, Product.is_active.is_(True), Product.stock >= quantity))
        .values(stock=Product.stock - quantity, sold_count=Product.sold_count + quantity, updated_at=now())
    )
    res = await session.execute(stmt)
    return res.rowcount == 1


async def restore_stock(session, product_id: int, quantity: int) -> bool:
    stmt = (
        update(Product)
        .where(Product.id == product_id)
        .values(
            stock=Product.stock + quantity,
            sold_count=case((Product.sold_count >= quantity, Product.sold_count - quantity), else_=0),
            updated_at=now(),
        )
    )
    res = await session.execute(stmt)
    return res.rowcount == 1


async def set_order_status(session, order_id: int, status: OrderStatus, admin_notes: Optional[str] = None,
                           expected: Optional[OrderStatus] = None) -> bool:
    """Single-field status write. With `expected`, only applies if nobody moved the order meanwhile."""
    values: Dict[str, Any] = {"status": status, "updated_at": now()}
    if admin_notes is not None:
        values["admin_notes"] = admin_notes
    stmt = update(Orders).where(Orders.id == order_id)
    if expected is not None:
        stmt = stmt.where(Orders.status == expected)
    res = await session.execute(stmt.values(**values))
    return res.rowcount == 1


async def update_payment_status(session, order_id: int, payment_status: OrderPaymentStatus) -> bool:
    res = await session.execute(
        update(Orders).where(Orders.id == order_id).values(payment_status=payment_status, updated_at=now())
    )
    return res.rowcount == 1


async def get_order_stats(session, since: Optional[datetime] = None) -> Dict[str, int]:
    revenue_cond = and_(
        Orders.status != OrderStatus.CANCELLED,
        or_(Orders.payment_status == OrderPaymentStatus.PAID, Orders.status == OrderStatus.DELIVERED),
    )
    stmt = select(
        func.count(Orders.id),
        func.count(Orders.id).filter(Orders.status == OrderStatus.PENDING),
        func.count(Orders.id).filter(Orders.status == OrderStatus.DELIVERED),
        func.count(Orders.id).filter(Orders.status == OrderStatus.CANCELLED),
        func.coalesce(func.sum(Orders.final_price).filter(revenue_cond), 0),
    )
    if since is not None:
        stmt = stmt.where(Orders.created_at >= since)
    res = await session.execute(stmt)
    total, pending, delivered, cancelled, revenue = res.one()
    return {
        "total": int(total),
        "pending": int(pending),
        "delivered": int(delivered),
        "cancelled": int(cancelled),
        "revenue": int(revenue or 0),
    }
