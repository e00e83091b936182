"""Step tables for every multi-turn flow.

A flow is an ordered list of FieldStep rows. Each row names the draft attribute it fills, the prompt,
the parser for the raw reply, and optionally a cross-field check and a `when` guard that skips the row.
Rows marked `optional` accept the skip sentinel and store None (create flows: no value, edit flows:
keep the current value).
"""
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, Union

from shopbot.common.exceptions import InputError
from shopbot.common.validators import (
    parse_address,
    parse_discount_code,
    parse_image_ref,
    parse_name,
    parse_non_negative_int,
    parse_phone,
    parse_positive_int,
    parse_postal_code,
    parse_price,
    parse_stock,
    parse_text,
    parse_title,
    sanitize_text,
)
from shopbot.conversation.drafts import (
    BroadcastDraft,
    BroadcastStep,
    CategoryDraft,
    CategoryEditDraft,
    CategoryStep,
    CheckoutDraft,
    CheckoutStep,
    DiscountDraft,
    DiscountEditDraft,
    DiscountEntryDraft,
    DiscountStep,
    ProductDraft,
    ProductEditDraft,
    ProductStep,
    PromptStep,
    ReceiptDraft,
    SearchDraft,
    TrackOrderDraft,
)
from shopbot.schema.full_schema import DiscountType

SKIP_HINT = "(برای رد شدن 0 بفرستید)"
KEEP_HINT = "(برای بدون تغییر ماندن 0 بفرستید)"

DISCOUNT_TYPE_CHOICES = {"درصدی": DiscountType.PERCENTAGE, "مبلغ ثابت": DiscountType.FIXED}
CONFIRM_YES = "✅ ارسال"
CONFIRM_NO = "❌ انصراف"

Prompt = Union[str, Callable[[Any], str]]


@dataclass(frozen=True)
class FieldStep:
    step: Any
    attr: str
    prompt: Prompt
    parse: Callable[[str], Any]
    optional: bool = False
    check: Optional[Callable[[Any, Any], None]] = None
    when: Optional[Callable[[Any], bool]] = None
    accepts_photo: bool = False
    choices: Tuple[str, ...] = ()

    def render_prompt(self, draft) -> str:
        return self.prompt(draft) if callable(self.prompt) else self.prompt


@dataclass(frozen=True)
class FlowSpec:
    name: str
    steps: Sequence[FieldStep]

    def __post_init__(self):
        seen = [s.step for s in self.steps]
        if len(seen) != len(set(seen)):
            raise ValueError(f"flow {self.name} repeats a step")

    def find(self, step) -> FieldStep:
        for row in self.steps:
            if row.step == step:
                return row
        raise KeyError(f"{step!r} is not a step of {self.name}")

    def first(self, draft) -> Optional[FieldStep]:
        return self._from(0, draft)

    def after(self, step, draft) -> Optional[FieldStep]:
        index = [s.step for s in self.steps].index(step)
        return self._from(index + 1, draft)

    def _from(self, index: int, draft) -> Optional[FieldStep]:
        for row in self.steps[index:]:
            if row.when is None or row.when(draft):
                return row
        return None


# -- flow-local parsers and checks ------------------------------------------------------------


def parse_discount_type(text: str) -> DiscountType:
    choice = DISCOUNT_TYPE_CHOICES.get((text or "").strip())
    if choice is None:
        raise InputError("❌ لطفاً یکی از گزینه‌های «درصدی» یا «مبلغ ثابت» را انتخاب کنید:")
    return choice


def parse_confirm(text: str) -> bool:
    reply = (text or "").strip()
    if reply == CONFIRM_YES:
        return True
    if reply == CONFIRM_NO:
        return False
    raise InputError(f"❌ لطفاً «{CONFIRM_YES}» یا «{CONFIRM_NO}» را انتخاب کنید:")


def parse_icon(text: str) -> str:
    return parse_text(text, min_length=1, max_length=16)


def parse_description(text: str) -> str:
    return parse_text(text, min_length=2)


def parse_broadcast_text(text: str) -> str:
    return parse_text(text, min_length=2, max_length=4000)


def parse_query(text: str) -> str:
    return parse_text(text, min_length=2, max_length=100)


def parse_tracking_query(text: str) -> str:
    query = sanitize_text(text, 40).replace(" ", "")
    if not query:
        raise InputError("❌ شماره سفارش یا کد پیگیری معتبر نیست:")
    return query


def parse_receipt_text(text: str) -> str:
    raise InputError("❌ لطفاً تصویر فیش واریز را به صورت عکس ارسال کنید:")


def _price_of(draft) -> Optional[int]:
    if draft.price is not None:
        return draft.price
    return getattr(draft, "current", {}).get("price")


def check_discount_price(draft, value: Optional[int]) -> None:
    price = _price_of(draft)
    if value is not None and price is not None and value >= price:
        raise InputError("❌ قیمت با تخفیف باید کمتر از قیمت اصلی باشد:")


def _discount_type_of(draft):
    return getattr(draft, "discount_type", None) or getattr(draft, "current", {}).get("discount_type")


def check_discount_value(draft, value: Optional[int]) -> None:
    if value is not None and _discount_type_of(draft) == DiscountType.PERCENTAGE and not 1 <= value <= 100:
        raise InputError("❌ درصد باید بین 1 تا 100 باشد:")


def is_percentage(draft) -> bool:
    return _discount_type_of(draft) == DiscountType.PERCENTAGE


def _current(draft, key: str) -> str:
    value = draft.current.get(key)
    return "-" if value in (None, "") else str(value)


# -- flows ----------------------------------------------------------------------------------------

CHECKOUT_FLOW = FlowSpec("checkout", [
    FieldStep(CheckoutStep.NAME, "full_name", "👤 لطفاً نام و نام خانوادگی خود را وارد کنید:", parse_name),
    FieldStep(CheckoutStep.PHONE, "phone", "📱 شماره تلفن همراه خود را وارد کنید:\n(مثال: 09123456789)", parse_phone),
    FieldStep(CheckoutStep.ADDRESS, "address", "📍 آدرس کامل پستی را وارد کنید:", parse_address),
    FieldStep(CheckoutStep.POSTAL, "postal_code", f"📮 کد پستی 10 رقمی را وارد کنید:\n{SKIP_HINT}",
              parse_postal_code, optional=True),
])

PRODUCT_FLOW = FlowSpec("product_create", [
    FieldStep(ProductStep.NAME, "name", "📝 نام محصول را وارد کنید:", parse_title),
    FieldStep(ProductStep.DESCRIPTION, "description", f"📄 توضیحات محصول را وارد کنید:\n{SKIP_HINT}",
              parse_description, optional=True),
    FieldStep(ProductStep.PRICE, "price", "💰 قیمت محصول (تومان) را وارد کنید:", parse_price),
    FieldStep(ProductStep.DISCOUNT_PRICE, "discount_price", f"🏷 قیمت با تخفیف را وارد کنید:\n{SKIP_HINT}",
              parse_price, optional=True, check=check_discount_price),
    FieldStep(ProductStep.STOCK, "stock", "📦 موجودی انبار را وارد کنید:", parse_stock),
    FieldStep(ProductStep.IMAGE, "image_url", f"🖼 عکس محصول را بفرستید یا لینک آن را وارد کنید:\n{SKIP_HINT}",
              parse_image_ref, optional=True, accepts_photo=True),
])

PRODUCT_EDIT_FLOW = FlowSpec("product_edit", [
    FieldStep(ProductStep.NAME, "name",
              lambda d: f"📝 نام جدید محصول:\nفعلی: {_current(d, 'name')}\n{KEEP_HINT}", parse_title, optional=True),
    FieldStep(ProductStep.DESCRIPTION, "description",
              lambda d: f"📄 توضیحات جدید:\nفعلی: {_current(d, 'description')}\n{KEEP_HINT}",
              parse_description, optional=True),
    FieldStep(ProductStep.PRICE, "price",
              lambda d: f"💰 قیمت جدید:\nفعلی: {_current(d, 'price')}\n{KEEP_HINT}", parse_price, optional=True),
    FieldStep(ProductStep.DISCOUNT_PRICE, "discount_price",
              lambda d: f"🏷 قیمت با تخفیف جدید:\nفعلی: {_current(d, 'discount_price')}\n{KEEP_HINT}",
              parse_price, optional=True, check=check_discount_price),
    FieldStep(ProductStep.STOCK, "stock",
              lambda d: f"📦 موجودی جدید:\nفعلی: {_current(d, 'stock')}\n{KEEP_HINT}", parse_stock, optional=True),
    FieldStep(ProductStep.IMAGE, "image_url",
              lambda d: f"🖼 عکس یا لینک جدید:\n{KEEP_HINT}", parse_image_ref, optional=True, accepts_photo=True),
])

CATEGORY_FLOW = FlowSpec("category_create", [
    FieldStep(CategoryStep.TITLE, "title", "📁 عنوان دسته‌بندی را وارد کنید:", parse_title),
    FieldStep(CategoryStep.ICON, "icon", f"🎨 آیکون (ایموجی) دسته را بفرستید:\n{SKIP_HINT}", parse_icon, optional=True),
    FieldStep(CategoryStep.DESCRIPTION, "description", f"📄 توضیحات دسته را وارد کنید:\n{SKIP_HINT}",
              parse_description, optional=True),
    FieldStep(CategoryStep.SORT_ORDER, "sort_order", f"🔢 ترتیب نمایش (عدد) را وارد کنید:\n{SKIP_HINT}",
              parse_non_negative_int, optional=True),
])

CATEGORY_EDIT_FLOW = FlowSpec("category_edit", [
    FieldStep(CategoryStep.TITLE, "title",
              lambda d: f"📁 عنوان جدید:\nفعلی: {_current(d, 'title')}\n{KEEP_HINT}", parse_title, optional=True),
    FieldStep(CategoryStep.ICON, "icon",
              lambda d: f"🎨 آیکون جدید:\nفعلی: {_current(d, 'icon')}\n{KEEP_HINT}", parse_icon, optional=True),
    FieldStep(CategoryStep.DESCRIPTION, "description",
              lambda d: f"📄 توضیحات جدید:\nفعلی: {_current(d, 'description')}\n{KEEP_HINT}",
              parse_description, optional=True),
    FieldStep(CategoryStep.SORT_ORDER, "sort_order",
              lambda d: f"🔢 ترتیب نمایش جدید:\nفعلی: {_current(d, 'sort_order')}\n{KEEP_HINT}",
              parse_positive_int, optional=True),
])

DISCOUNT_FLOW = FlowSpec("discount_create", [
    FieldStep(DiscountStep.CODE, "code", "🎟 کد تخفیف را وارد کنید (حروف انگلیسی و عدد):", parse_discount_code),
    FieldStep(DiscountStep.TYPE, "discount_type", "نوع تخفیف را انتخاب کنید:", parse_discount_type,
              choices=tuple(DISCOUNT_TYPE_CHOICES)),
    FieldStep(DiscountStep.VALUE, "discount_value",
              lambda d: "📊 درصد تخفیف (1 تا 100):" if is_percentage(d) else "💰 مبلغ تخفیف (تومان):",
              parse_positive_int, check=check_discount_value),
    FieldStep(DiscountStep.MAX_DISCOUNT, "max_discount", f"🔝 سقف مبلغ تخفیف (تومان):\n{SKIP_HINT}",
              parse_price, optional=True, when=is_percentage),
    FieldStep(DiscountStep.MIN_PURCHASE, "min_purchase", f"🛒 حداقل مبلغ خرید (تومان):\n{SKIP_HINT}",
              parse_price, optional=True),
    FieldStep(DiscountStep.USAGE_LIMIT, "usage_limit", f"🔢 حداکثر تعداد استفاده:\n{SKIP_HINT}",
              parse_positive_int, optional=True),
    FieldStep(DiscountStep.VALID_DAYS, "valid_days", f"📅 مدت اعتبار (روز):\n{SKIP_HINT}",
              parse_positive_int, optional=True),
])

DISCOUNT_EDIT_FLOW = FlowSpec("discount_edit", [
    FieldStep(DiscountStep.VALUE, "discount_value",
              lambda d: f"📊 مقدار جدید تخفیف:\nفعلی: {_current(d, 'discount_value')}\n{KEEP_HINT}",
              parse_positive_int, optional=True, check=check_discount_value),
    FieldStep(DiscountStep.MAX_DISCOUNT, "max_discount",
              lambda d: f"🔝 سقف جدید تخفیف:\nفعلی: {_current(d, 'max_discount')}\n{KEEP_HINT}",
              parse_price, optional=True, when=is_percentage),
    FieldStep(DiscountStep.MIN_PURCHASE, "min_purchase",
              lambda d: f"🛒 حداقل خرید جدید:\nفعلی: {_current(d, 'min_purchase')}\n{KEEP_HINT}",
              parse_price, optional=True),
    FieldStep(DiscountStep.USAGE_LIMIT, "usage_limit",
              lambda d: f"🔢 سقف استفاده جدید:\nفعلی: {_current(d, 'usage_limit')}\n{KEEP_HINT}",
              parse_positive_int, optional=True),
    FieldStep(DiscountStep.VALID_DAYS, "valid_days",
              lambda d: f"📅 اعتبار از امروز (روز):\nپایان فعلی: {_current(d, 'end_date')}\n{KEEP_HINT}",
              parse_positive_int, optional=True),
])

BROADCAST_FLOW = FlowSpec("broadcast", [
    FieldStep(BroadcastStep.TEXT, "text", "📢 متن پیام همگانی را بنویسید:", parse_broadcast_text),
    FieldStep(BroadcastStep.CONFIRM, "confirmed",
              lambda d: f"پیش‌نمایش پیام:\n\n{d.text}\n\nارسال شود؟", parse_confirm,
              choices=(CONFIRM_YES, CONFIRM_NO)),
])

DISCOUNT_ENTRY_FLOW = FlowSpec("enter_discount", [
    FieldStep(PromptStep.ENTER_DISCOUNT, "code", "🎟 کد تخفیف خود را وارد کنید:", parse_discount_code),
])

TRACK_ORDER_FLOW = FlowSpec("track_order", [
    FieldStep(PromptStep.TRACK_ORDER, "query", "🔍 شماره سفارش یا کد پیگیری را وارد کنید:",
              parse_tracking_query),
])

RECEIPT_FLOW = FlowSpec("receipt", [
    FieldStep(PromptStep.RECEIPT, "receipt_ref", "🧾 لطفاً تصویر فیش واریز را ارسال کنید:",
              parse_receipt_text, accepts_photo=True),
])

SEARCH_FLOW = FlowSpec("search", [
    FieldStep(PromptStep.SEARCH, "query", "🔎 نام محصول مورد نظر را وارد کنید:", parse_query),
])

FLOWS: Dict[type, FlowSpec] = {
    CheckoutDraft: CHECKOUT_FLOW,
    ProductDraft: PRODUCT_FLOW,
    ProductEditDraft: PRODUCT_EDIT_FLOW,
    CategoryDraft: CATEGORY_FLOW,
    CategoryEditDraft: CATEGORY_EDIT_FLOW,
    DiscountDraft: DISCOUNT_FLOW,
    DiscountEditDraft: DISCOUNT_EDIT_FLOW,
    BroadcastDraft: BROADCAST_FLOW,
    DiscountEntryDraft: DISCOUNT_ENTRY_FLOW,
    TrackOrderDraft: TRACK_ORDER_FLOW,
    ReceiptDraft: RECEIPT_FLOW,
    SearchDraft: SEARCH_FLOW,
}
