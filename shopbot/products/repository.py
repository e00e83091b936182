from typing import Any, Dict, List, Optional
from sqlalchemy import func, or_, select, update
from shopbot.common.exceptions import NotFoundError
from shopbot.common.logging_setup import get_logger
from shopbot.common.utils import now
from shopbot.schema.full_schema import Product

logger = get_logger("shopbot.products")

EDITABLE_FIELDS = {
    "category_id", "name", "description", "price", "discount_price",
    "stock", "image_url", "is_active", "is_featured",
}

SEARCH_LIMIT = 20


async def find_product(session, product_id: int) -> Optional[Product]:
    res = await session.execute(select(Product).where(Product.id == product_id))
    return res.scalar_one_or_none()


async def list_category_products(session, category_id: int, active_only: bool = True) -> List[Product]:
    stmt = select(Product).where(Product.category_id == category_id)
    if active_only:
        stmt = stmt.where(Product.is_active.is_(True))
    stmt = stmt.order_by(Product.is_featured.desc(), Product.id.desc())
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def list_products(session, limit: int = 10, offset: int = 0) -> List[Product]:
    stmt = select(Product).order_by(Product.id.desc()).limit(limit).offset(offset)
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def count_products(session) -> int:
    res = await session.execute(select(func.count(Product.id)))
    return int(res.scalar_one())


async def search_products(session, query: str, limit: int = SEARCH_LIMIT) -> List[Product]:
    pattern = f"%{query.strip()}%"
    stmt = (
        select(Product)
        .where(Product.is_active.is_(True), or_(Product.name.ilike(pattern), Product.description.ilike(pattern)))
        .order_by(Product.is_featured.desc(), Product.sold_count.desc(), Product.id.desc())
        .limit(limit)
    )
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def create_product(session, category_id: int, name: str, price: int, stock: int = 0,
                         description: Optional[str] = None, discount_price: Optional[int] = None,
                         image_url: Optional[str] = None, is_featured: bool = False) -> Product:
    product = Product(
        category_id=category_id,
        name=name,
        description=description,
        price=price,
        discount_price=discount_price,
        stock=stock,
        image_url=image_url,
        is_featured=is_featured,
    )
    session.add(product)
    await session.commit()
    await session.refresh(product)
    logger.info("product.created", extra={"product_id": product.id, "category_id": category_id})
    return product


async def update_product(session, product_id: int, changes: Dict[str, Any]) -> bool:
    values = {k: v for k, v in changes.items() if k in EDITABLE_FIELDS}
    if not values:
        return False
    values["updated_at"] = now()
    res = await session.execute(update(Product).where(Product.id == product_id).values(**values))
    await session.commit()
    if res.rowcount == 0:
        raise NotFoundError("❌ محصول یافت نشد")
    logger.info("product.updated", extra={"product_id": product_id, "fields": sorted(values)})
    return True


async def set_product_active(session, product_id: int, active: bool) -> bool:
    return await update_product(session, product_id, {"is_active": active})


async def toggle_product_featured(session, product_id: int) -> bool:
    """Flip the featured flag and return the new value."""
    product = await find_product(session, product_id)
    if product is None:
        raise NotFoundError("❌ محصول یافت نشد")
    featured = not product.is_featured
    await update_product(session, product_id, {"is_featured": featured})
    return featured


async def increase_view_count(session, product_ids: List[int]) -> None:
    if not product_ids:
        return
    await session.execute(
        update(Product).where(Product.id.in_(product_ids)).values(view_count=Product.view_count + 1)
    )
    await session.commit()


async def get_low_stock_products(session, threshold: int) -> List[Product]:
    stmt = (
        select(Product)
        .where(Product.is_active.is_(True), Product.stock <= threshold)
        .order_by(Product.stock, Product.id)
    )
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def get_product_stats(session, low_stock_threshold: int) -> Dict[str, int]:
    stmt = select(
        func.count(Product.id),
        func.count(Product.id).filter(Product.is_active.is_(True)),
        func.count(Product.id).filter(Product.stock == 0),
        func.count(Product.id).filter(Product.stock > 0, Product.stock <= low_stock_threshold),
    )
    res = await session.execute(stmt)
    total, active, out_of_stock, low_stock = res.one()
    return {
        "total": int(total),
        "active": int(active),
        "out_of_stock": int(out_of_stock),
        "low_stock": int(low_stock),
    }
