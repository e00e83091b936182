from typing import Optional
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from shopbot.cart.models import CartLine, CartSummary
from shopbot.common.constants import MAX_CART_ITEM_QTY
from shopbot.common.exceptions import InsufficientStockError, NotFoundError
from shopbot.common.logging_setup import get_logger
from shopbot.schema.full_schema import CartItem, Product

logger = get_logger("shopbot.cart")


async def get_cart(session, user_id: int) -> CartSummary:
    stmt = (
        select(
            CartItem.product_id,
            CartItem.quantity,
            Product.name,
            Product.price,
            Product.discount_price,
            Product.stock,
            Product.is_active,
            Product.image_url,
        )
        .join(Product, Product.id == CartItem.product_id)
        .where(CartItem.user_id == user_id)
        .order_by(CartItem.id)
    )
    res = await session.execute(stmt)
    lines = [
        CartLine(
            product_id=row[0],
            quantity=row[1],
            name=row[2],
            price=row[3],
            discount_price=row[4],
            stock=row[5],
            is_active=row[6],
            image_url=row[7],
        )
        for row in res.all()
    ]
    return CartSummary(lines=lines)


async def _find_line(session, user_id: int, product_id: int) -> Optional[CartItem]:
    stmt = select(CartItem).where(CartItem.user_id == user_id, CartItem.product_id == product_id)
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def add_to_cart(session, user_id: int, product_id: int, quantity: int = 1) -> int:
    """Increment (or create) the line, never past current stock. Returns the new quantity."""
    res = await session.execute(select(Product).where(Product.id == product_id, Product.is_active.is_(True)))
    product = res.scalar_one_or_none()
    if product is None:
        raise NotFoundError("❌ محصول یافت نشد")

    line = await _find_line(session, user_id, product_id)
    current = line.quantity if line else 0
    new_qty = min(current + quantity, MAX_CART_ITEM_QTY)
    if new_qty > product.stock or new_qty == current:
        raise InsufficientStockError(product.id, product.name, requested=current + quantity, available=product.stock)

    if line:
        await session.execute(update(CartItem).where(CartItem.id == line.id).values(quantity=new_qty))
        await session.commit()
        return new_qty

    session.add(CartItem(user_id=user_id, product_id=product_id, quantity=new_qty))
    try:
        await session.commit()
    except IntegrityError:
        # a concurrent add created the row first; fold this add into it
        await session.rollback()
        await session.execute(
            update(CartItem)
            .where(CartItem.user_id == user_id, CartItem.product_id == product_id)
            .values(quantity=CartItem.quantity + quantity)
        )
        await session.commit()
    logger.debug("cart.item_added", extra={"user_id": user_id, "product_id": product_id})
    return new_qty


async def decrease_cart_item(session, user_id: int, product_id: int) -> int:
    """Decrement by one; a line that would reach zero is removed. Returns the remaining quantity."""
    line = await _find_line(session, user_id, product_id)
    if line is None:
        return 0
    if line.quantity <= 1:
        await remove_from_cart(session, user_id, product_id)
        return 0
    await session.execute(update(CartItem).where(CartItem.id == line.id).values(quantity=line.quantity - 1))
    await session.commit()
    return line.quantity - 1


async def remove_from_cart(session, user_id: int, product_id: int) -> bool:
    res = await session.execute(
        delete(CartItem).where(CartItem.user_id == user_id, CartItem.product_id == product_id)
    )
    await session.commit()
    return res.rowcount > 0


async def clear_cart(session, user_id: int) -> int:
    res = await session.execute(delete(CartItem).where(CartItem.user_id == user_id))
    await session.commit()
    return res.rowcount
