import pytest
from sqlalchemy import select

from shopbot.bot import menus
from shopbot.callbacks.commands import CallbackAction, encode
from shopbot.cart import repository as cart_repo
from shopbot.conversation.drafts import CheckoutDraft, CheckoutStep
from shopbot.products import repository as products_repo
from shopbot.schema.full_schema import Orders
from tests.fakes import ADMIN_CHAT_ID, callback_update, seed_category, seed_product, text_update

CHAT = 7001
REPLIES = ["ValidName", "09123456789", "A full valid address of 10+ chars", "0"]


async def orders_in_db(session_factory):
    async with session_factory() as session:
        return list((await session.execute(select(Orders))).scalars().all())


@pytest.fixture
async def product(session_factory):
    category = await seed_category(session_factory)
    return await seed_product(session_factory, category.id, name="Notebook", price=100_000, stock=5)


async def fill_cart(dispatcher, product, times=1):
    for _ in range(times):
        await dispatcher.dispatch(callback_update(CHAT, encode(CallbackAction.ADD_TO_CART, product.id)))


@pytest.mark.asyncio
async def test_full_checkout_creates_one_order(dispatcher, gateway, store, session_factory, product):
    await dispatcher.dispatch(text_update(CHAT, menus.CMD_START))
    await fill_cart(dispatcher, product, times=2)
    await dispatcher.dispatch(callback_update(CHAT, encode(CallbackAction.CHECKOUT_START)))
    assert isinstance(store.get(CHAT).flow, CheckoutDraft)

    for reply in REPLIES:
        await dispatcher.dispatch(text_update(CHAT, reply))

    orders = await orders_in_db(session_factory)
    assert len(orders) == 1
    order = orders[0]
    assert order.postal_code is None
    assert order.full_name == "ValidName"
    assert order.total_price == 200_000
    assert order.final_price == 218_000
    assert store.get(CHAT).flow is None

    receipt = gateway.last(CHAT)["text"]
    assert order.tracking_code in receipt
    assert "6037-0000-0000-0000" in receipt

    admin_texts = gateway.texts(ADMIN_CHAT_ID)
    assert any(order.tracking_code in t and "Notebook" in t for t in admin_texts)

    async with session_factory() as session:
        assert (await cart_repo.get_cart(session, order.user_id)).is_empty
        assert (await products_repo.find_product(session, product.id)).stock == 3


@pytest.mark.asyncio
async def test_bad_postal_code_reprompts(dispatcher, gateway, store, session_factory, product):
    await fill_cart(dispatcher, product)
    await dispatcher.dispatch(callback_update(CHAT, encode(CallbackAction.CHECKOUT_START)))
    for reply in REPLIES[:3] + ["12345"]:
        await dispatcher.dispatch(text_update(CHAT, reply))

    assert store.get(CHAT).flow.step == CheckoutStep.POSTAL
    assert "10" in gateway.last(CHAT)["text"]
    assert await orders_in_db(session_factory) == []

    await dispatcher.dispatch(text_update(CHAT, "1234567890"))
    orders = await orders_in_db(session_factory)
    assert [o.postal_code for o in orders] == ["1234567890"]


@pytest.mark.asyncio
async def test_checkout_with_empty_cart_does_not_start(dispatcher, gateway, store):
    await dispatcher.dispatch(callback_update(CHAT, encode(CallbackAction.CHECKOUT_START)))
    assert store.get(CHAT).flow is None
    assert "خالی" in gateway.last(CHAT)["text"]


@pytest.mark.asyncio
async def test_menu_button_abandons_the_flow(dispatcher, gateway, store, product):
    await fill_cart(dispatcher, product)
    await dispatcher.dispatch(callback_update(CHAT, encode(CallbackAction.CHECKOUT_START)))
    await dispatcher.dispatch(text_update(CHAT, "ValidName"))

    await dispatcher.dispatch(text_update(CHAT, menus.BTN_CART))
    assert store.get(CHAT).flow is None
    assert "Notebook" in gateway.last(CHAT)["text"]


@pytest.mark.asyncio
async def test_cancel_keeps_the_staged_discount(dispatcher, gateway, store, product):
    await fill_cart(dispatcher, product)
    state = store.get(CHAT)
    state.staged_discount = "staged"
    await dispatcher.dispatch(callback_update(CHAT, encode(CallbackAction.CHECKOUT_START)))

    await dispatcher.dispatch(text_update(CHAT, menus.BTN_CANCEL))
    assert store.get(CHAT).flow is None
    assert store.get(CHAT).staged_discount == "staged"


@pytest.mark.asyncio
async def test_stock_sold_out_mid_checkout(dispatcher, gateway, store, session_factory, product):
    await fill_cart(dispatcher, product, times=2)
    await dispatcher.dispatch(callback_update(CHAT, encode(CallbackAction.CHECKOUT_START)))
    for reply in REPLIES[:3]:
        await dispatcher.dispatch(text_update(CHAT, reply))

    async with session_factory() as session:
        await products_repo.update_product(session, product.id, {"stock": 1})

    await dispatcher.dispatch(text_update(CHAT, "0"))
    assert await orders_in_db(session_factory) == []
    assert "Notebook" in gateway.last(CHAT)["text"]
    assert store.get(CHAT).flow is None


@pytest.mark.asyncio
async def test_discount_code_applies_at_checkout(dispatcher, gateway, store, session_factory, product):
    from shopbot.discounts import repository as discounts_repo
    from shopbot.schema.full_schema import DiscountType

    async with session_factory() as session:
        await discounts_repo.create_discount(session, "WELCOME", DiscountType.PERCENTAGE, 10)

    await fill_cart(dispatcher, product)
    await dispatcher.dispatch(callback_update(CHAT, encode(CallbackAction.DISCOUNT_ENTER)))
    await dispatcher.dispatch(text_update(CHAT, "welcome"))
    assert store.get(CHAT).staged_discount.discount_amount == 10_000
    assert "WELCOME" in gateway.last(CHAT)["text"]

    await dispatcher.dispatch(callback_update(CHAT, encode(CallbackAction.CHECKOUT_START)))
    for reply in REPLIES:
        await dispatcher.dispatch(text_update(CHAT, reply))

    orders = await orders_in_db(session_factory)
    assert orders[0].discount_amount == 10_000
    assert orders[0].final_price == 90_000 + 8_100
    assert store.get(CHAT).staged_discount is None


@pytest.mark.asyncio
async def test_rejected_discount_shows_reason_and_cart(dispatcher, gateway, store, product):
    await fill_cart(dispatcher, product)
    await dispatcher.dispatch(callback_update(CHAT, encode(CallbackAction.DISCOUNT_ENTER)))
    await dispatcher.dispatch(text_update(CHAT, "MISSING"))

    assert store.get(CHAT).staged_discount is None
    texts = gateway.texts(CHAT)
    assert "نامعتبر" in texts[-2]
    assert "Notebook" in texts[-1]
