from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from shopbot.common.exceptions import NotFoundError
from shopbot.common.logging_setup import get_logger
from shopbot.common.utils import now
from shopbot.schema.full_schema import DiscountCode, DiscountType, DiscountUsage

logger = get_logger("shopbot.discounts")

EDITABLE_FIELDS = {
    "description", "discount_type", "discount_value", "min_purchase", "max_discount",
    "usage_limit", "is_active", "start_date", "end_date",
}


def _active_window(current: datetime):
    # window comparison stays in SQL; sqlite hands datetimes back naive
    return (
        DiscountCode.is_active.is_(True),
        DiscountCode.start_date <= current,
        or_(DiscountCode.end_date.is_(None), DiscountCode.end_date >= current),
    )


async def find_active_discount(session, code: str, current: Optional[datetime] = None) -> Optional[DiscountCode]:
    stmt = select(DiscountCode).where(DiscountCode.code == code.strip().upper(), *_active_window(current or now()))
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def find_discount(session, discount_id: int) -> Optional[DiscountCode]:
    res = await session.execute(select(DiscountCode).where(DiscountCode.id == discount_id))
    return res.scalar_one_or_none()


async def find_discount_by_code(session, code: str) -> Optional[DiscountCode]:
    res = await session.execute(select(DiscountCode).where(DiscountCode.code == code.strip().upper()))
    return res.scalar_one_or_none()


async def has_user_used_discount(session, discount_code_id: int, user_id: int) -> bool:
    stmt = select(DiscountUsage.id).where(
        DiscountUsage.discount_code_id == discount_code_id, DiscountUsage.user_id == user_id
    ).limit(1)
    res = await session.execute(stmt)
    return res.scalar_one_or_none() is not None


async def record_discount_usage(session, discount_code_id: int, user_id: int, order_id: Optional[int] = None) -> bool:
    """Insert the usage row and bump used_count together. False when (code, user) already exists."""
    session.add(DiscountUsage(discount_code_id=discount_code_id, user_id=user_id, order_id=order_id))
    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        logger.warning(
            "discount.usage.duplicate",
            extra={"discount_code_id": discount_code_id, "user_id": user_id, "order_id": order_id},
        )
        return False

    await session.execute(
        update(DiscountCode)
        .where(DiscountCode.id == discount_code_id)
        .values(used_count=DiscountCode.used_count + 1)
    )
    await session.commit()
    logger.info("discount.usage.recorded", extra={"discount_code_id": discount_code_id, "order_id": order_id})
    return True


async def create_discount(session, code: str, discount_type: DiscountType, discount_value: int,
                          min_purchase: int = 0, max_discount: Optional[int] = None,
                          usage_limit: Optional[int] = None, description: Optional[str] = None,
                          start_date: Optional[datetime] = None, end_date: Optional[datetime] = None) -> DiscountCode:
    discount = DiscountCode(
        code=code.strip().upper(),
        description=description,
        discount_type=discount_type,
        discount_value=discount_value,
        min_purchase=min_purchase,
        max_discount=max_discount,
        usage_limit=usage_limit,
        start_date=start_date or now(),
        end_date=end_date,
    )
    session.add(discount)
    await session.commit()
    await session.refresh(discount)
    logger.info("discount.created", extra={"discount_code_id": discount.id, "discount_type": discount_type.value})
    return discount


async def update_discount(session, discount_id: int, changes: Dict[str, Any]) -> bool:
    values = {k: v for k, v in changes.items() if k in EDITABLE_FIELDS}
    if not values:
        return False
    res = await session.execute(update(DiscountCode).where(DiscountCode.id == discount_id).values(**values))
    await session.commit()
    if res.rowcount == 0:
        raise NotFoundError("❌ کد تخفیف یافت نشد")
    logger.info("discount.updated", extra={"discount_code_id": discount_id, "fields": sorted(values)})
    return True


async def deactivate_discount(session, discount_id: int) -> bool:
    return await update_discount(session, discount_id, {"is_active": False})


async def list_active_discounts(session, current: Optional[datetime] = None) -> List[DiscountCode]:
    stmt = select(DiscountCode).where(*_active_window(current or now())).order_by(DiscountCode.id.desc())
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def get_discount_usage_stats(session, discount_id: int) -> Dict[str, int]:
    stmt = select(func.count(DiscountUsage.id), func.count(func.distinct(DiscountUsage.user_id))).where(
        DiscountUsage.discount_code_id == discount_id
    )
    res = await session.execute(stmt)
    uses, users = res.one()
    return {"uses": int(uses), "unique_users": int(users)}
