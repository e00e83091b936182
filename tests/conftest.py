import os

# module-level engines are built at import time; keep them off any real database
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENV", "dev")

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from shopbot.bot.dispatcher import UpdateDispatcher
from shopbot.bot.handlers import ShopBot
from shopbot.config.settings import Settings
from shopbot.conversation.store import ConversationStore
from shopbot.db.connection import init_models, make_session_factory
from shopbot.notifications.service import NotificationService
from tests.fakes import ADMIN_CHAT_ID, FakeGateway, no_sleep


@pytest.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'shop.db'}")
    await init_models(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        BOT_TOKEN="123456:test-token",
        ADMIN_CHAT_ID=ADMIN_CHAT_ID,
        TAX_PERCENTAGE=9,
        LOW_STOCK_THRESHOLD=5,
        BROADCAST_DELAY=0,
        PRODUCT_SEND_DELAY=0,
        CARD_NUMBER="6037-0000-0000-0000",
    )


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def store():
    return ConversationStore()


@pytest.fixture
def notifier(gateway, session_factory, settings):
    # no worker: notices run inline so tests can assert on them right away
    return NotificationService(gateway, session_factory, settings, sleep=no_sleep)


@pytest.fixture
def bot(gateway, session_factory, store, settings, notifier):
    return ShopBot(gateway, session_factory, store, settings, notifier, sleep=no_sleep)


@pytest.fixture
def dispatcher(bot):
    return UpdateDispatcher(bot)
