from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, async_sessionmaker, AsyncSession
from sqlmodel import SQLModel
from shopbot.config.settings import config_settings
from shopbot.db.utils import _normalize_db_url

DATABASE_URL = _normalize_db_url(config_settings.DATABASE_URL)

async_engine = create_async_engine(DATABASE_URL, echo=config_settings.DB_ECHO, pool_pre_ping=True)

async_session = async_sessionmaker(bind=async_engine, class_=AsyncSession, expire_on_commit=False)


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


async def init_models(engine: AsyncEngine = async_engine) -> None:
    """Create missing tables. Schema migrations are managed outside the bot."""
    # registers every table on SQLModel.metadata
    import shopbot.schema.full_schema  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
