from typing import Optional
from pydantic import BaseModel
from shopbot.common.exceptions import DiscountRejected, DiscountRejection
from shopbot.common.logging_setup import get_logger
from shopbot.discounts import repository as discounts_repo
from shopbot.orders.utils import round_half_up_div
from shopbot.schema.full_schema import DiscountCode, DiscountType

logger = get_logger("shopbot.discounts")


class DiscountQuote(BaseModel):
    """A validated, not yet redeemed discount; lives in conversation state until checkout commits."""
    discount_code_id: int
    code: str
    discount_amount: int


def compute_discount_amount(discount: DiscountCode, subtotal: int) -> int:
    if discount.discount_type == DiscountType.PERCENTAGE:
        amount = round_half_up_div(subtotal * discount.discount_value, 100)
        if discount.max_discount is not None:
            amount = min(amount, discount.max_discount)
    else:
        amount = discount.discount_value
    # a fixed code larger than the cart floors the payable amount at zero
    return max(0, min(amount, subtotal))


async def validate_discount(session, code: str, user_id: int, subtotal: int) -> DiscountQuote:
    """First failing check wins: window, capacity, minimum purchase, prior use."""
    discount = await discounts_repo.find_active_discount(session, code)
    if discount is None:
        raise DiscountRejected(DiscountRejection.INVALID_OR_EXPIRED, "❌ کد تخفیف نامعتبر یا منقضی شده است")

    if discount.usage_limit is not None and discount.used_count >= discount.usage_limit:
        raise DiscountRejected(DiscountRejection.CAPACITY_EXHAUSTED, "❌ ظرفیت استفاده از این کد تخفیف تمام شده است")

    if subtotal < discount.min_purchase:
        raise DiscountRejected(
            DiscountRejection.MIN_PURCHASE_NOT_MET,
            f"❌ حداقل مبلغ خرید برای این کد {discount.min_purchase:,} است",
            min_purchase=discount.min_purchase,
        )

    if await discounts_repo.has_user_used_discount(session, discount.id, user_id):
        raise DiscountRejected(DiscountRejection.ALREADY_USED, "❌ شما قبلاً از این کد تخفیف استفاده کرده‌اید")

    quote = DiscountQuote(
        discount_code_id=discount.id,
        code=discount.code,
        discount_amount=compute_discount_amount(discount, subtotal),
    )
    logger.info("discount.validated", extra={"discount_code_id": discount.id, "user_id": user_id})
    return quote


async def revalidate_quote(session, quote: Optional[DiscountQuote], user_id: int, subtotal: int):
    """Re-run every check against the current subtotal. Returns (quote_or_None, rejection_or_None)."""
    if quote is None:
        return None, None
    try:
        return await validate_discount(session, quote.code, user_id, subtotal), None
    except DiscountRejected as exc:
        logger.info("discount.revalidation.rejected", extra={"user_id": user_id, "reason": exc.reason.value})
        return None, exc
