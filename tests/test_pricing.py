import random

import pytest

from shopbot.orders.utils import (
    calculate_discount_percent,
    calculate_tax,
    can_transition,
    compute_order_totals,
    generate_tracking_code,
    next_statuses,
    round_half_up_div,
)
from shopbot.schema.full_schema import OrderStatus


def test_round_half_up():
    assert round_half_up_div(5, 10) == 1
    assert round_half_up_div(4, 10) == 0
    assert round_half_up_div(15, 10) == 2
    assert round_half_up_div(0, 7) == 0


def test_tax_rounds_half_up():
    # 9% of 150 = 13.5
    assert calculate_tax(150, 9) == 14
    assert calculate_tax(100_000, 9) == 9_000


def test_price_law_holds():
    totals = compute_order_totals(250_000, 30_000, 9)
    assert totals.total_price == 250_000
    assert totals.discount_amount == 30_000
    assert totals.tax_amount == 19_800
    assert totals.final_price == totals.total_price - totals.discount_amount + totals.tax_amount


def test_discount_is_clamped_to_subtotal():
    totals = compute_order_totals(80_000, 100_000, 9)
    assert totals.discount_amount == 80_000
    assert totals.tax_amount == 0
    assert totals.final_price == 0


def test_negative_discount_is_ignored():
    assert compute_order_totals(10_000, -500, 0).discount_amount == 0


def test_discount_percent_of_a_product():
    assert calculate_discount_percent(200_000, 150_000) == 25
    assert calculate_discount_percent(200_000, None) == 0
    assert calculate_discount_percent(200_000, 250_000) == 0


def test_tracking_code_shape():
    code = generate_tracking_code(clock_ms=lambda: 1_700_000_000_000, rng=random.Random(7))
    prefix, stamp, suffix = code.split("-")
    assert prefix == "TR"
    assert int(stamp, 36) == 1_700_000_000_000
    assert len(suffix) == 6
    assert code == code.upper()


def test_tracking_codes_differ_within_the_same_millisecond():
    rng = random.Random(1)
    codes = {generate_tracking_code(clock_ms=lambda: 42, rng=rng) for _ in range(50)}
    assert len(codes) == 50


@pytest.mark.parametrize("current,target,allowed", [
    (OrderStatus.PENDING, OrderStatus.CONFIRMED, True),
    (OrderStatus.PENDING, OrderStatus.SHIPPED, True),
    (OrderStatus.SHIPPED, OrderStatus.CONFIRMED, False),
    (OrderStatus.PREPARING, OrderStatus.PREPARING, False),
    (OrderStatus.SHIPPED, OrderStatus.CANCELLED, True),
    (OrderStatus.DELIVERED, OrderStatus.CANCELLED, False),
    (OrderStatus.CANCELLED, OrderStatus.PENDING, False),
])
def test_status_transitions(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_next_statuses():
    assert next_statuses(OrderStatus.SHIPPED) == [OrderStatus.DELIVERED, OrderStatus.CANCELLED]
    assert next_statuses(OrderStatus.DELIVERED) == []
