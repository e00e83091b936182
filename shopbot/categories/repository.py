from typing import Any, Dict, List, Optional
from sqlalchemy import delete, func, select, update
from shopbot.common.exceptions import BusinessRuleError, NotFoundError
from shopbot.common.logging_setup import get_logger
from shopbot.common.utils import now
from shopbot.schema.full_schema import Category, Product

logger = get_logger("shopbot.categories")

EDITABLE_FIELDS = {"title", "icon", "description", "sort_order", "is_active"}


async def list_categories(session, active_only: bool = True) -> List[Category]:
    stmt = select(Category)
    if active_only:
        stmt = stmt.where(Category.is_active.is_(True))
    stmt = stmt.order_by(Category.sort_order, Category.id)
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def find_category(session, category_id: int) -> Optional[Category]:
    res = await session.execute(select(Category).where(Category.id == category_id))
    return res.scalar_one_or_none()


async def create_category(session, title: str, icon: Optional[str] = None,
                          description: Optional[str] = None, sort_order: int = 0) -> Category:
    category = Category(title=title, icon=icon, description=description, sort_order=sort_order)
    session.add(category)
    await session.commit()
    await session.refresh(category)
    logger.info("category.created", extra={"category_id": category.id})
    return category


async def update_category(session, category_id: int, changes: Dict[str, Any]) -> bool:
    values = {k: v for k, v in changes.items() if k in EDITABLE_FIELDS}
    if not values:
        return False
    values["updated_at"] = now()
    res = await session.execute(update(Category).where(Category.id == category_id).values(**values))
    await session.commit()
    if res.rowcount == 0:
        raise NotFoundError("❌ دسته‌بندی یافت نشد")
    logger.info("category.updated", extra={"category_id": category_id, "fields": sorted(values)})
    return True


async def set_category_active(session, category_id: int, active: bool) -> bool:
    # products keep their own flag; deactivation only hides the category from the menu
    return await update_category(session, category_id, {"is_active": active})


async def count_category_products(session, category_id: int) -> int:
    res = await session.execute(select(func.count(Product.id)).where(Product.category_id == category_id))
    return int(res.scalar_one())


async def hard_delete_category(session, category_id: int) -> bool:
    referenced = await count_category_products(session, category_id)
    if referenced:
        logger.warning("category.delete.refused", extra={"category_id": category_id, "products": referenced})
        raise BusinessRuleError(f"❌ این دسته‌بندی {referenced} محصول دارد و قابل حذف نیست")

    res = await session.execute(delete(Category).where(Category.id == category_id))
    await session.commit()
    if res.rowcount == 0:
        raise NotFoundError("❌ دسته‌بندی یافت نشد")
    logger.warning("category.hard_deleted", extra={"category_id": category_id})
    return True
