import random
import string
import time
from typing import Callable, Dict, Optional

from pydantic import BaseModel

from shopbot.schema.full_schema import OrderPaymentStatus, OrderStatus, PaymentStatus

TRACKING_CODE_ATTEMPTS = 5

_BASE36 = string.digits + string.ascii_lowercase

# forward-only lifecycle; cancelled hangs off every non-terminal status
STATUS_SEQUENCE = (
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
)
TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})
CANCELLABLE_STATUSES = frozenset(STATUS_SEQUENCE) - TERMINAL_STATUSES

ORDER_STATUS_LABELS: Dict[OrderStatus, str] = {
    OrderStatus.PENDING: "در انتظار تایید",
    OrderStatus.CONFIRMED: "تایید شده",
    OrderStatus.PREPARING: "در حال آماده‌سازی",
    OrderStatus.SHIPPED: "ارسال شده",
    OrderStatus.DELIVERED: "تحویل داده شده",
    OrderStatus.CANCELLED: "لغو شده",
}

ORDER_PAYMENT_LABELS: Dict[OrderPaymentStatus, str] = {
    OrderPaymentStatus.UNPAID: "پرداخت نشده",
    OrderPaymentStatus.PAID: "پرداخت شده",
    OrderPaymentStatus.REFUNDED: "بازگشت داده شده",
}

PAYMENT_LABELS: Dict[PaymentStatus, str] = {
    PaymentStatus.PENDING: "در انتظار پرداخت",
    PaymentStatus.PENDING_VERIFICATION: "در انتظار تایید فیش",
    PaymentStatus.VERIFIED: "تایید شده",
    PaymentStatus.REJECTED: "رد شده",
}


class OrderTotals(BaseModel):
    total_price: int
    discount_amount: int
    tax_amount: int
    final_price: int


def round_half_up_div(numerator: int, denominator: int) -> int:
    """Integer division rounded half away from zero, matching Math.round for the non-negative money values."""
    if numerator >= 0:
        return (2 * numerator + denominator) // (2 * denominator)
    return -((-2 * numerator + denominator) // (2 * denominator))


def calculate_tax(amount: int, tax_percentage: int) -> int:
    return round_half_up_div(amount * tax_percentage, 100)


def compute_order_totals(subtotal: int, discount_amount: int, tax_percentage: int) -> OrderTotals:
    """final = subtotal - discount + round((subtotal - discount) * rate)."""
    discount = max(0, min(int(discount_amount), int(subtotal)))
    taxable = subtotal - discount
    tax = calculate_tax(taxable, tax_percentage)
    return OrderTotals(
        total_price=subtotal,
        discount_amount=discount,
        tax_amount=tax,
        final_price=taxable + tax,
    )


def calculate_discount_percent(price: int, discount_price: Optional[int]) -> int:
    if not discount_price or discount_price >= price or price <= 0:
        return 0
    return round_half_up_div((price - discount_price) * 100, price)


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    out = []
    while value:
        value, rem = divmod(value, 36)
        out.append(_BASE36[rem])
    return "".join(reversed(out))


def generate_tracking_code(
    clock_ms: Callable[[], int] = lambda: int(time.time() * 1000),
    rng: Optional[random.Random] = None,
) -> str:
    """TR-<base36 epoch millis>-<6 random base36 chars>, upper-cased."""
    rng = rng or random.SystemRandom()
    suffix = "".join(rng.choice(_BASE36) for _ in range(6))
    return f"TR-{_to_base36(clock_ms())}-{suffix}".upper()


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    if current in TERMINAL_STATUSES:
        return False
    if target == OrderStatus.CANCELLED:
        return True
    if target not in STATUS_SEQUENCE:
        return False
    return STATUS_SEQUENCE.index(target) > STATUS_SEQUENCE.index(current)


def next_statuses(current: OrderStatus):
    """Statuses an admin may move `current` to, in lifecycle order (cancel last)."""
    if current in TERMINAL_STATUSES:
        return []
    forward = [s for s in STATUS_SEQUENCE if STATUS_SEQUENCE.index(s) > STATUS_SEQUENCE.index(current)]
    return forward + [OrderStatus.CANCELLED]
