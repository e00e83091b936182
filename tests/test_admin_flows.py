import pytest
from sqlalchemy import select

from shopbot.bot import menus
from shopbot.bot.handlers import ACCESS_DENIED
from shopbot.callbacks.commands import CallbackAction, encode
from shopbot.categories import repository as categories_repo
from shopbot.conversation.drafts import ProductEditDraft, ProductStep
from shopbot.conversation.flows import CONFIRM_NO, CONFIRM_YES
from shopbot.discounts import repository as discounts_repo
from shopbot.products import repository as products_repo
from shopbot.schema.full_schema import Category, DiscountType, Product
from tests.fakes import ADMIN_CHAT_ID, callback_update, photo_update, seed_category, seed_product, seed_user, text_update

ADMIN = ADMIN_CHAT_ID


async def say(dispatcher, *replies, chat_id=ADMIN):
    for reply in replies:
        await dispatcher.dispatch(text_update(chat_id, reply))


async def all_rows(session_factory, model):
    async with session_factory() as session:
        return list((await session.execute(select(model))).scalars().all())


@pytest.mark.asyncio
async def test_product_create_flow(dispatcher, gateway, store, session_factory):
    category = await seed_category(session_factory, "Lighting")
    await dispatcher.dispatch(callback_update(ADMIN, encode(CallbackAction.ADMIN_PRODUCT_NEW, category.id)))
    assert "Lighting" in gateway.last(ADMIN)["text"]

    await say(dispatcher, "Desk Lamp", "0", "250,000")
    # a discount price at or above the list price is refused and the step repeats
    await say(dispatcher, "300000")
    assert store.get(ADMIN).flow.step == ProductStep.DISCOUNT_PRICE
    await say(dispatcher, "200000", "7")
    await dispatcher.dispatch(photo_update(ADMIN, "lamp-photo"))

    assert store.get(ADMIN).flow is None
    [product] = await all_rows(session_factory, Product)
    assert (product.name, product.price, product.discount_price, product.stock) == ("Desk Lamp", 250_000, 200_000, 7)
    assert product.description is None
    assert product.image_url == "lamp-photo"
    assert product.category_id == category.id
    assert str(product.id) in gateway.last(ADMIN)["text"]


@pytest.mark.asyncio
async def test_product_edit_stages_changes_until_the_last_step(dispatcher, gateway, store, session_factory):
    category = await seed_category(session_factory)
    product = await seed_product(session_factory, category.id, name="Chair", price=100_000, stock=4)

    await dispatcher.dispatch(callback_update(ADMIN, encode(CallbackAction.ADMIN_PRODUCT_EDIT, product.id)))
    draft = store.get(ADMIN).flow
    assert isinstance(draft, ProductEditDraft)
    assert draft.current["name"] == "Chair"
    assert "Chair" in gateway.last(ADMIN)["text"]

    await say(dispatcher, "0", "0", "120000")
    async with session_factory() as session:
        assert (await products_repo.find_product(session, product.id)).price == 100_000

    # discount price is checked against the staged price, not the stored one
    await say(dispatcher, "110000", "0", "0")

    async with session_factory() as session:
        updated = await products_repo.find_product(session, product.id)
    assert (updated.name, updated.price, updated.discount_price, updated.stock) == ("Chair", 120_000, 110_000, 4)
    assert store.get(ADMIN).flow is None


@pytest.mark.asyncio
async def test_lowering_the_price_drops_a_kept_discount_above_it(dispatcher, gateway, session_factory):
    category = await seed_category(session_factory)
    product = await seed_product(session_factory, category.id, name="Desk", price=100_000, discount_price=90_000)

    await dispatcher.dispatch(callback_update(ADMIN, encode(CallbackAction.ADMIN_PRODUCT_EDIT, product.id)))
    await say(dispatcher, "0", "0", "80000", "0", "0", "0")

    async with session_factory() as session:
        updated = await products_repo.find_product(session, product.id)
    assert (updated.price, updated.discount_price) == (80_000, None)
    assert "حذف شد" in gateway.last(ADMIN)["text"]


@pytest.mark.asyncio
async def test_raising_the_price_keeps_the_discount(dispatcher, session_factory):
    category = await seed_category(session_factory)
    product = await seed_product(session_factory, category.id, name="Desk", price=100_000, discount_price=90_000)

    await dispatcher.dispatch(callback_update(ADMIN, encode(CallbackAction.ADMIN_PRODUCT_EDIT, product.id)))
    await say(dispatcher, "0", "0", "150000", "0", "0", "0")

    async with session_factory() as session:
        updated = await products_repo.find_product(session, product.id)
    assert (updated.price, updated.discount_price) == (150_000, 90_000)


@pytest.mark.asyncio
async def test_product_edit_with_every_field_kept_writes_nothing(dispatcher, gateway, session_factory):
    category = await seed_category(session_factory)
    product = await seed_product(session_factory, category.id, name="Chair")

    await dispatcher.dispatch(callback_update(ADMIN, encode(CallbackAction.ADMIN_PRODUCT_EDIT, product.id)))
    await say(dispatcher, *["0"] * 6)

    async with session_factory() as session:
        same = await products_repo.find_product(session, product.id)
    assert (same.name, same.price, same.stock) == (product.name, product.price, product.stock)
    assert "تغییری" in gateway.last(ADMIN)["text"]


@pytest.mark.asyncio
async def test_category_create_and_edit(dispatcher, gateway, session_factory):
    await dispatcher.dispatch(callback_update(ADMIN, encode(CallbackAction.ADMIN_CATEGORY_NEW)))
    await say(dispatcher, "Stationery", "✏️", "0", "0")

    [category] = await all_rows(session_factory, Category)
    assert (category.title, category.icon, category.description, category.sort_order) == ("Stationery", "✏️", None, 0)

    await dispatcher.dispatch(callback_update(ADMIN, encode(CallbackAction.ADMIN_CATEGORY_EDIT, category.id)))
    await say(dispatcher, "Office", "0", "Pens and paper", "3")

    async with session_factory() as session:
        edited = await categories_repo.find_category(session, category.id)
    assert (edited.title, edited.icon, edited.description, edited.sort_order) == ("Office", "✏️", "Pens and paper", 3)


@pytest.mark.asyncio
async def test_category_with_products_cannot_be_deleted(dispatcher, gateway, session_factory):
    category = await seed_category(session_factory)
    await seed_product(session_factory, category.id)
    empty = await seed_category(session_factory, "Empty")

    await dispatcher.dispatch(callback_update(ADMIN, encode(CallbackAction.ADMIN_CATEGORY_DELETE, category.id)))
    assert gateway.answers[-1]["alert"] is True

    await dispatcher.dispatch(callback_update(ADMIN, encode(CallbackAction.ADMIN_CATEGORY_DELETE, empty.id)))
    assert gateway.answers[-1]["alert"] is False
    assert [c.id for c in await all_rows(session_factory, Category)] == [category.id]


@pytest.mark.asyncio
async def test_percentage_discount_create_flow(dispatcher, gateway, store, session_factory):
    await dispatcher.dispatch(callback_update(ADMIN, encode(CallbackAction.ADMIN_DISCOUNT_NEW)))
    await say(dispatcher, "summer20", "درصدی", "150")
    assert "100" in gateway.last(ADMIN)["text"]

    await say(dispatcher, "20", "50000", "0", "0", "30")
    assert store.get(ADMIN).flow is None

    async with session_factory() as session:
        discount = await discounts_repo.find_discount_by_code(session, "SUMMER20")
    assert discount.discount_type == DiscountType.PERCENTAGE
    assert (discount.discount_value, discount.max_discount, discount.min_purchase) == (20, 50_000, 0)
    assert discount.usage_limit is None
    assert discount.end_date is not None
    assert "SUMMER20" in gateway.last(ADMIN)["text"]


@pytest.mark.asyncio
async def test_fixed_discount_skips_the_cap_step(dispatcher, gateway, store, session_factory):
    await dispatcher.dispatch(callback_update(ADMIN, encode(CallbackAction.ADMIN_DISCOUNT_NEW)))
    await say(dispatcher, "FLAT5", "مبلغ ثابت", "5000", "100000", "10", "0")
    assert store.get(ADMIN).flow is None

    async with session_factory() as session:
        discount = await discounts_repo.find_discount_by_code(session, "flat5")
    assert discount.discount_type == DiscountType.FIXED
    assert discount.max_discount is None
    assert (discount.min_purchase, discount.usage_limit, discount.end_date) == (100_000, 10, None)


@pytest.mark.asyncio
async def test_duplicate_discount_code_is_refused(dispatcher, gateway, session_factory):
    async with session_factory() as session:
        await discounts_repo.create_discount(session, "TAKEN", DiscountType.FIXED, 1000)

    await dispatcher.dispatch(callback_update(ADMIN, encode(CallbackAction.ADMIN_DISCOUNT_NEW)))
    await say(dispatcher, "taken", "مبلغ ثابت", "2000", "0", "0", "0")

    assert "TAKEN" in gateway.last(ADMIN)["text"]
    async with session_factory() as session:
        assert (await discounts_repo.find_discount_by_code(session, "TAKEN")).discount_value == 1000


@pytest.mark.asyncio
async def test_discount_edit_uses_the_stored_type(dispatcher, session_factory):
    async with session_factory() as session:
        discount = await discounts_repo.create_discount(session, "TENOFF", DiscountType.PERCENTAGE, 10)

    await dispatcher.dispatch(callback_update(ADMIN, encode(CallbackAction.ADMIN_DISCOUNT_EDIT, discount.id)))
    # percentage bounds still apply in the edit flow
    await say(dispatcher, "120", "15", "0", "100000", "0", "0")

    async with session_factory() as session:
        edited = await discounts_repo.find_discount(session, discount.id)
    assert (edited.discount_value, edited.min_purchase, edited.max_discount) == (15, 100_000, None)


@pytest.mark.asyncio
async def test_broadcast_reaches_everyone_but_blocked_users(dispatcher, gateway, session_factory):
    await seed_user(session_factory, 7301)
    await seed_user(session_factory, 7302, is_blocked=True)
    await seed_user(session_factory, 7303)

    await say(dispatcher, menus.BTN_BROADCAST, "Big sale today")
    assert "Big sale today" in gateway.last(ADMIN)["text"]
    await say(dispatcher, CONFIRM_YES)

    assert gateway.texts(7301) == ["Big sale today"]
    assert gateway.texts(7303) == ["Big sale today"]
    assert gateway.texts(7302) == []
    assert "✅ موفق: 3" in gateway.last(ADMIN)["text"]


@pytest.mark.asyncio
async def test_broadcast_can_be_called_off(dispatcher, gateway, session_factory):
    await seed_user(session_factory, 7301)
    await say(dispatcher, menus.BTN_BROADCAST, "Never mind", CONFIRM_NO)
    assert gateway.texts(7301) == []


@pytest.mark.asyncio
async def test_admin_menu_is_closed_to_customers(dispatcher, gateway, store):
    await say(dispatcher, menus.BTN_BROADCAST, chat_id=7400)
    assert gateway.last(7400)["text"] == ACCESS_DENIED
    assert store.get(7400).flow is None


@pytest.mark.asyncio
async def test_admin_views_render(dispatcher, gateway, session_factory):
    category = await seed_category(session_factory)
    await seed_product(session_factory, category.id, name="Scarce", stock=2)

    for button in (menus.BTN_STATS, menus.BTN_ORDERS_ADMIN, menus.BTN_USERS_ADMIN, menus.BTN_PRODUCTS_ADMIN,
                   menus.BTN_CATEGORIES_ADMIN, menus.BTN_DISCOUNTS_ADMIN, menus.BTN_PENDING_PAYMENTS):
        before = len(gateway.sent)
        await say(dispatcher, button)
        assert len(gateway.sent) == before + 1

    await say(dispatcher, menus.BTN_LOW_STOCK)
    assert "Scarce" in gateway.last(ADMIN)["text"]
