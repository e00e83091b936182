from typing import Callable, Iterable, List, Optional
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from shopbot.cart import repository as cart_repo
from shopbot.cart.models import CartLine
from shopbot.common.exceptions import (
    EmptyCartError,
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    ShopBotError,
)
from shopbot.common.logging_setup import get_logger
from shopbot.discounts import repository as discounts_repo
from shopbot.discounts.services import DiscountQuote, revalidate_quote
from shopbot.orders import repository as orders_repo
from shopbot.orders.models import CancelledOrder, CheckoutDetails, CheckoutOutcome, LowStockItem, PlacedOrder
from shopbot.orders.utils import (
    CANCELLABLE_STATUSES,
    TRACKING_CODE_ATTEMPTS,
    can_transition,
    compute_order_totals,
    generate_tracking_code,
)
from shopbot.schema.full_schema import OrderItem, OrderPaymentStatus, OrderStatus, Orders

logger = get_logger("shopbot.orders")


async def _unique_tracking_code(session, tracking_code_factory: Callable[[], str]) -> str:
    for attempt in range(1, TRACKING_CODE_ATTEMPTS + 1):
        code = tracking_code_factory()
        if not await orders_repo.tracking_code_exists(session, code):
            return code
        logger.warning("order.tracking_code.collision", extra={"attempt": attempt})
    raise ShopBotError("could not generate a unique tracking code")


def _is_tracking_code_conflict(exc: IntegrityError) -> bool:
    return "tracking_code" in str(exc.orig)


async def _create_order_once(session_factory, user_id: int, details: CheckoutDetails, lines: List[CartLine],
                             tax_percentage: int, discount_amount: int, discount_code_id: Optional[int],
                             low_stock_threshold: Optional[int], tracking_code_factory) -> PlacedOrder:

    # lock rows in product-id order so two checkouts over the same products cannot deadlock
    ordered = sorted(lines, key=lambda l: l.product_id)

    async with session_factory() as session:
        async with session.begin():
            fresh = []
            for line in ordered:
                product = await orders_repo.lock_product(session, line.product_id)
                if product is None or not product.is_active or product.stock < line.quantity:
                    raise InsufficientStockError(
                        line.product_id,
                        product.name if product else line.name,
                        requested=line.quantity,
                        available=product.stock if product else 0,
                    )
                fresh.append((line.quantity, product))

            subtotal = sum(product.effective_price * qty for qty, product in fresh)
            totals = compute_order_totals(subtotal, discount_amount, tax_percentage)
            tracking_code = await _unique_tracking_code(session, tracking_code_factory)

            order = await orders_repo.insert_order(session, {
                "user_id": user_id,
                "full_name": details.full_name,
                "phone": details.phone,
                "address": details.address,
                "postal_code": details.postal_code,
                "customer_notes": details.customer_notes,
                "total_price": totals.total_price,
                "discount_amount": totals.discount_amount,
                "tax_amount": totals.tax_amount,
                "final_price": totals.final_price,
                "status": OrderStatus.PENDING,
                "payment_status": OrderPaymentStatus.UNPAID,
                "tracking_code": tracking_code,
                "discount_code_id": discount_code_id if totals.discount_amount else None,
            })

            low_stock: List[LowStockItem] = []
            for qty, product in fresh:
                session.add(OrderItem(
                    order_id=order.id,
                    product_id=product.id,
                    product_name=product.name,
                    quantity=qty,
                    price=product.price,
                    discount_price=product.discount_price,
                ))
                remaining = product.stock - qty
                if not await orders_repo.decrement_stock(session, product.id, qty):
                    # lost a race after the read; the whole order goes
                    raise InsufficientStockError(product.id, product.name, requested=qty, available=0)
                if low_stock_threshold is not None and remaining <= low_stock_threshold:
                    low_stock.append(LowStockItem(product_id=product.id, name=product.name, stock=remaining))

            await session.flush()

    logger.info(
        "order.created",
        extra={"order_id": order.id, "user_id": user_id, "items": len(fresh), "final_price": totals.final_price},
    )
    return PlacedOrder(
        order_id=order.id,
        tracking_code=tracking_code,
        total_price=totals.total_price,
        discount_amount=totals.discount_amount,
        tax_amount=totals.tax_amount,
        final_price=totals.final_price,
        low_stock=low_stock,
    )


async def create_order(session_factory, user_id: int, details: CheckoutDetails, lines: Iterable[CartLine], *,
                       tax_percentage: int, discount_amount: int = 0, discount_code_id: Optional[int] = None,
                       low_stock_threshold: Optional[int] = None,
                       tracking_code_factory: Callable[[], str] = generate_tracking_code) -> PlacedOrder:
    """
    One unit of work: the order row, every item snapshot and every stock decrement commit together
    or not at all. Discount usage and cart cleanup are the caller's post-commit steps.
    """
    lines = list(lines)
    if not lines:
        raise EmptyCartError()

    try:
        return await _create_order_once(session_factory, user_id, details, lines, tax_percentage,
                                        discount_amount, discount_code_id, low_stock_threshold,
                                        tracking_code_factory)
    except IntegrityError as exc:
        if not _is_tracking_code_conflict(exc):
            raise
        logger.warning("order.tracking_code.conflict_retry", extra={"user_id": user_id})

    return await _create_order_once(session_factory, user_id, details, lines, tax_percentage,
                                    discount_amount, discount_code_id, low_stock_threshold,
                                    tracking_code_factory)


async def place_order(session_factory, user_id: int, details: CheckoutDetails, staged: Optional[DiscountQuote], *,
                      tax_percentage: int, low_stock_threshold: Optional[int] = None,
                      tracking_code_factory: Callable[[], str] = generate_tracking_code) -> CheckoutOutcome:
    """Terminal checkout step: read the cart, re-check the staged discount, create the order, then clean up."""
    async with session_factory() as session:
        cart = await cart_repo.get_cart(session, user_id)
        if cart.is_empty:
            raise EmptyCartError()
        quote, rejection = await revalidate_quote(session, staged, user_id, cart.subtotal)

    placed = await create_order(
        session_factory,
        user_id,
        details,
        cart.lines,
        tax_percentage=tax_percentage,
        discount_amount=quote.discount_amount if quote else 0,
        discount_code_id=quote.discount_code_id if quote else None,
        low_stock_threshold=low_stock_threshold,
        tracking_code_factory=tracking_code_factory,
    )

    # post-commit; a failure here leaves a valid order behind
    try:
        async with session_factory() as session:
            if quote and placed.discount_amount:
                await discounts_repo.record_discount_usage(session, quote.discount_code_id, user_id, placed.order_id)
            await cart_repo.clear_cart(session, user_id)
    except SQLAlchemyError:
        logger.exception("order.post_commit.failed", extra={"order_id": placed.order_id, "user_id": user_id})

    return CheckoutOutcome(
        order=placed,
        discount_applied=bool(quote and placed.discount_amount),
        discount_dropped_reason=rejection.message if rejection else None,
    )


async def cancel_order(session_factory, order_id: int, reason: Optional[str] = None) -> CancelledOrder:
    """Inverse of create_order: stock and sold_count go back, the order becomes cancelled. Atomic."""
    async with session_factory() as session:
        async with session.begin():
            res = await session.execute(select(Orders).where(Orders.id == order_id).with_for_update())
            order = res.scalar_one_or_none()
            if order is None:
                raise NotFoundError("❌ سفارش یافت نشد")
            if order.status not in CANCELLABLE_STATUSES:
                raise InvalidTransitionError("❌ این سفارش قابل لغو نیست")

            items = await orders_repo.get_order_items(session, order_id)
            restored = 0
            for item in items:
                # product rows may be gone; the snapshot keeps the history either way
                if item.product_id is not None and await orders_repo.restore_stock(session, item.product_id, item.quantity):
                    restored += 1

            if not await orders_repo.set_order_status(session, order_id, OrderStatus.CANCELLED,
                                                      admin_notes=reason, expected=order.status):
                raise InvalidTransitionError("❌ وضعیت سفارش همزمان تغییر کرد")

            result = CancelledOrder(
                order_id=order.id,
                user_id=order.user_id,
                tracking_code=order.tracking_code,
                reason=reason,
                restored_items=restored,
            )

    logger.info("order.cancelled", extra={"order_id": order_id, "restored_items": restored})
    return result


async def transition_order_status(session, order_id: int, target: OrderStatus) -> Orders:
    """Forward-only status move; cancellation has its own transaction."""
    if target == OrderStatus.CANCELLED:
        raise InvalidTransitionError("❌ برای لغو سفارش از گزینه لغو استفاده کنید")

    order = await orders_repo.find_order(session, order_id)
    if order is None:
        raise NotFoundError("❌ سفارش یافت نشد")

    current = order.status
    if not can_transition(current, target):
        raise InvalidTransitionError("❌ تغییر وضعیت به این مرحله مجاز نیست")

    if not await orders_repo.set_order_status(session, order_id, target, expected=current):
        await session.rollback()
        raise InvalidTransitionError("❌ وضعیت سفارش همزمان تغییر کرد")
    await session.commit()

    await session.refresh(order)
    logger.info("order.status_changed", extra={"order_id": order_id, "from": current.value, "to": target.value})
    return order
