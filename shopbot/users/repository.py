from datetime import datetime, timedelta
from typing import Dict, List, Optional
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from shopbot.common.logging_setup import get_logger
from shopbot.common.utils import now
from shopbot.schema.full_schema import Users

logger = get_logger("shopbot.users")


async def find_user_by_chat_id(session, chat_id: int) -> Optional[Users]:
    res = await session.execute(select(Users).where(Users.chat_id == chat_id))
    return res.scalar_one_or_none()


async def find_user_by_id(session, user_id: int) -> Optional[Users]:
    res = await session.execute(select(Users).where(Users.id == user_id))
    return res.scalar_one_or_none()


async def get_or_create_user(session, chat_id: int, username: Optional[str] = None,
                             first_name: Optional[str] = None, last_name: Optional[str] = None) -> Users:
    """Lazily register a chat on first contact. Concurrent first contacts resolve to one row."""
    user = await find_user_by_chat_id(session, chat_id)
    if user:
        if (user.username, user.first_name, user.last_name) != (username, first_name, last_name) and any(
            (username, first_name, last_name)
        ):
            user.username, user.first_name, user.last_name = username, first_name, last_name
            await session.commit()
        return user

    user = Users(chat_id=chat_id, username=username, first_name=first_name, last_name=last_name)
    session.add(user)
    try:
        await session.commit()
        await session.refresh(user)
        logger.info("user.created", extra={"user_id": user.id})
        return user
    except IntegrityError:
        await session.rollback()
        user = await find_user_by_chat_id(session, chat_id)
        if user is None:
            raise
        return user


async def set_user_blocked(session, user_id: int, blocked: bool) -> bool:
    res = await session.execute(update(Users).where(Users.id == user_id).values(is_blocked=blocked, updated_at=now()))
    await session.commit()
    logger.info("user.blocked" if blocked else "user.unblocked", extra={"user_id": user_id})
    return res.rowcount > 0


async def set_user_admin(session, user_id: int, is_admin: bool) -> bool:
    res = await session.execute(update(Users).where(Users.id == user_id).values(is_admin=is_admin, updated_at=now()))
    await session.commit()
    logger.info("user.admin_flag", extra={"user_id": user_id, "is_admin": is_admin})
    return res.rowcount > 0


async def hard_delete_user(session, user_id: int) -> bool:
    """Admin escape hatch; carts, orders and payments go with the row via ON DELETE CASCADE."""
    res = await session.execute(delete(Users).where(Users.id == user_id))
    await session.commit()
    logger.warning("user.hard_deleted", extra={"user_id": user_id})
    return res.rowcount > 0


async def list_users(session, limit: int = 10, offset: int = 0) -> List[Users]:
    stmt = select(Users).order_by(Users.created_at.desc(), Users.id.desc()).limit(limit).offset(offset)
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def count_users(session) -> int:
    res = await session.execute(select(func.count(Users.id)))
    return int(res.scalar_one())


async def list_broadcast_chat_ids(session) -> List[int]:
    res = await session.execute(select(Users.chat_id).where(Users.is_blocked.is_(False)).order_by(Users.id))
    return [int(c) for c in res.scalars().all()]


async def get_user_stats(session, current: Optional[datetime] = None) -> Dict[str, int]:
    current = current or now()
    day_start = current.replace(hour=0, minute=0, second=0, microsecond=0)
    week_start = current - timedelta(days=7)

    stmt = select(
        func.count(Users.id),
        func.count(Users.id).filter(Users.created_at >= day_start),
        func.count(Users.id).filter(Users.created_at >= week_start),
        func.count(Users.id).filter(Users.is_blocked.is_(True)),
    )
    res = await session.execute(stmt)
    total, today, week, blocked = res.one()
    return {"total": int(total), "today": int(today), "week": int(week), "blocked": int(blocked)}
