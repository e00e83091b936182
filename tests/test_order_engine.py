import asyncio

import pytest
from sqlalchemy import func, select

from shopbot.cart import repository as cart_repo
from shopbot.cart.models import CartLine
from shopbot.common.exceptions import EmptyCartError, InsufficientStockError, InvalidTransitionError
from shopbot.orders import repository as orders_repo
from shopbot.orders.models import CheckoutDetails
from shopbot.orders.services import cancel_order, create_order, place_order, transition_order_status
from shopbot.products import repository as products_repo
from shopbot.schema.full_schema import OrderItem, Orders, OrderStatus
from tests.fakes import seed_category, seed_product, seed_user

DETAILS = CheckoutDetails(full_name="ValidName", phone="09123456789", address="A full valid address of 10+ chars")


def line_for(product, quantity):
    return CartLine(
        product_id=product.id,
        name=product.name,
        quantity=quantity,
        price=product.price,
        discount_price=product.discount_price,
        stock=product.stock,
    )


async def count_orders(session_factory):
    async with session_factory() as session:
        return (await session.execute(select(func.count(Orders.id)))).scalar_one()


async def stock_of(session_factory, product_id):
    async with session_factory() as session:
        return (await products_repo.find_product(session, product_id)).stock


@pytest.fixture
async def catalog(session_factory):
    user = await seed_user(session_factory, 501)
    category = await seed_category(session_factory)
    pen = await seed_product(session_factory, category.id, "Pen", price=20_000, stock=3)
    book = await seed_product(session_factory, category.id, "Book", price=150_000, discount_price=120_000, stock=10)
    return user, pen, book


@pytest.mark.asyncio
async def test_order_snapshots_prices_and_decrements_stock(session_factory, catalog):
    user, pen, book = catalog
    placed = await create_order(session_factory, user.id, DETAILS, [line_for(pen, 2), line_for(book, 1)],
                                tax_percentage=9)

    # book sells at its discount price
    assert placed.total_price == 2 * 20_000 + 120_000
    assert placed.tax_amount == 14_400
    assert placed.final_price == placed.total_price - placed.discount_amount + placed.tax_amount
    assert placed.tracking_code.startswith("TR-")

    assert await stock_of(session_factory, pen.id) == 1
    assert await stock_of(session_factory, book.id) == 9

    async with session_factory() as session:
        items = await orders_repo.get_order_items(session, placed.order_id)
        product = await products_repo.find_product(session, pen.id)
    assert {i.product_name: i.quantity for i in items} == {"Pen": 2, "Book": 1}
    assert product.sold_count == 2


@pytest.mark.asyncio
async def test_empty_order_is_refused(session_factory, catalog):
    user, _, _ = catalog
    with pytest.raises(EmptyCartError):
        await create_order(session_factory, user.id, DETAILS, [], tax_percentage=9)


@pytest.mark.asyncio
async def test_stock_never_goes_negative(session_factory, catalog):
    user, pen, _ = catalog
    await create_order(session_factory, user.id, DETAILS, [line_for(pen, 2)], tax_percentage=9)

    with pytest.raises(InsufficientStockError) as info:
        await create_order(session_factory, user.id, DETAILS, [line_for(pen, 2)], tax_percentage=9)
    assert info.value.available == 1

    assert await stock_of(session_factory, pen.id) == 1
    assert await count_orders(session_factory) == 1


@pytest.mark.asyncio
async def test_concurrent_checkouts_never_oversell(session_factory):
    """
    Four shoppers race for a 5-unit product, two units each.
    Exactly two orders can be filled; the others must fail without leaving an order behind.
    """
    category = await seed_category(session_factory)
    lamp = await seed_product(session_factory, category.id, "Lamp", price=40_000, stock=5)
    shoppers = [await seed_user(session_factory, 600 + i) for i in range(4)]

    results = await asyncio.gather(
        *(create_order(session_factory, s.id, DETAILS, [line_for(lamp, 2)], tax_percentage=9) for s in shoppers),
        return_exceptions=True,
    )

    placed = [r for r in results if not isinstance(r, Exception)]
    refused = [r for r in results if isinstance(r, Exception)]
    assert len(placed) == 5 // 2
    assert all(isinstance(r, InsufficientStockError) for r in refused), refused

    async with session_factory() as session:
        product = await products_repo.find_product(session, lamp.id)
        item_qty = (await session.execute(select(func.coalesce(func.sum(OrderItem.quantity), 0)))).scalar_one()
    assert await count_orders(session_factory) == len(placed)
    assert item_qty == 2 * len(placed)
    assert product.stock == 5 - item_qty
    assert product.sold_count == item_qty


@pytest.mark.asyncio
async def test_failed_line_rolls_back_the_whole_order(session_factory, catalog, monkeypatch):
    user, pen, book = catalog
    real_decrement = orders_repo.decrement_stock
    calls = []

    async def flaky_decrement(session, product_id, quantity):
        calls.append(product_id)
        if len(calls) == 2:
            return False
        return await real_decrement(session, product_id, quantity)

    monkeypatch.setattr(orders_repo, "decrement_stock", flaky_decrement)

    with pytest.raises(InsufficientStockError):
        await create_order(session_factory, user.id, DETAILS, [line_for(pen, 1), line_for(book, 1)],
                           tax_percentage=9)

    assert len(calls) == 2
    assert await stock_of(session_factory, pen.id) == 3
    assert await stock_of(session_factory, book.id) == 10
    assert await count_orders(session_factory) == 0
    async with session_factory() as session:
        assert (await session.execute(select(func.count(OrderItem.id)))).scalar_one() == 0


@pytest.mark.asyncio
async def test_inactive_product_blocks_the_order(session_factory, catalog):
    user, pen, _ = catalog
    async with session_factory() as session:
        await products_repo.set_product_active(session, pen.id, False)
    with pytest.raises(InsufficientStockError):
        await create_order(session_factory, user.id, DETAILS, [line_for(pen, 1)], tax_percentage=9)


@pytest.mark.asyncio
async def test_tracking_code_collision_draws_again(session_factory, catalog):
    user, _, book = catalog
    first = await create_order(session_factory, user.id, DETAILS, [line_for(book, 1)], tax_percentage=9,
                               tracking_code_factory=lambda: "TR-SAME-000000")
    codes = iter(["TR-SAME-000000", "TR-SAME-000000", "TR-NEXT-111111"])
    second = await create_order(session_factory, user.id, DETAILS, [line_for(book, 1)], tax_percentage=9,
                                tracking_code_factory=lambda: next(codes))
    assert first.tracking_code == "TR-SAME-000000"
    assert second.tracking_code == "TR-NEXT-111111"


@pytest.mark.asyncio
async def test_low_stock_is_reported(session_factory, catalog):
    user, pen, _ = catalog
    placed = await create_order(session_factory, user.id, DETAILS, [line_for(pen, 2)], tax_percentage=9,
                                low_stock_threshold=2)
    assert [(i.product_id, i.stock) for i in placed.low_stock] == [(pen.id, 1)]


@pytest.mark.asyncio
async def test_place_order_reads_and_clears_the_cart(session_factory, catalog):
    user, pen, book = catalog
    async with session_factory() as session:
        await cart_repo.add_to_cart(session, user.id, pen.id)
        await cart_repo.add_to_cart(session, user.id, book.id)

    outcome = await place_order(session_factory, user.id, DETAILS, None, tax_percentage=9)
    assert outcome.order.total_price == 140_000
    assert not outcome.discount_applied

    async with session_factory() as session:
        assert (await cart_repo.get_cart(session, user.id)).is_empty

    with pytest.raises(EmptyCartError):
        await place_order(session_factory, user.id, DETAILS, None, tax_percentage=9)


@pytest.mark.asyncio
async def test_cancel_restores_stock_and_sold_count(session_factory, catalog):
    user, pen, book = catalog
    placed = await create_order(session_factory, user.id, DETAILS, [line_for(pen, 2), line_for(book, 3)],
                                tax_percentage=9)

    cancelled = await cancel_order(session_factory, placed.order_id, reason="out of delivery zone")
    assert cancelled.restored_items == 2
    assert await stock_of(session_factory, pen.id) == 3
    assert await stock_of(session_factory, book.id) == 10

    async with session_factory() as session:
        order = await orders_repo.find_order(session, placed.order_id)
        product = await products_repo.find_product(session, book.id)
    assert order.status == OrderStatus.CANCELLED
    assert order.admin_notes == "out of delivery zone"
    assert product.sold_count == 0

    with pytest.raises(InvalidTransitionError):
        await cancel_order(session_factory, placed.order_id)
    assert await stock_of(session_factory, pen.id) == 3


@pytest.mark.asyncio
async def test_status_moves_forward_only(session_factory, catalog):
    user, pen, _ = catalog
    placed = await create_order(session_factory, user.id, DETAILS, [line_for(pen, 1)], tax_percentage=9)

    async with session_factory() as session:
        order = await transition_order_status(session, placed.order_id, OrderStatus.PREPARING)
        assert order.status == OrderStatus.PREPARING

        with pytest.raises(InvalidTransitionError):
            await transition_order_status(session, placed.order_id, OrderStatus.CONFIRMED)
        with pytest.raises(InvalidTransitionError):
            await transition_order_status(session, placed.order_id, OrderStatus.CANCELLED)

        order = await transition_order_status(session, placed.order_id, OrderStatus.DELIVERED)
        assert order.status == OrderStatus.DELIVERED

    with pytest.raises(InvalidTransitionError):
        await cancel_order(session_factory, placed.order_id)
