"""One draft type per flow. A draft carries its own step enum, so a step can only ever sit on the
draft shape it belongs to."""
import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


class CheckoutStep(str, enum.Enum):
    NAME = "checkout_name"
    PHONE = "checkout_phone"
    ADDRESS = "checkout_address"
    POSTAL = "checkout_postal"


class ProductStep(str, enum.Enum):
    NAME = "product_name"
    DESCRIPTION = "product_description"
    PRICE = "product_price"
    DISCOUNT_PRICE = "product_discount_price"
    STOCK = "product_stock"
    IMAGE = "product_image"


class CategoryStep(str, enum.Enum):
    TITLE = "category_title"
    ICON = "category_icon"
    DESCRIPTION = "category_description"
    SORT_ORDER = "category_sort_order"


class DiscountStep(str, enum.Enum):
    CODE = "discount_code"
    TYPE = "discount_type"
    VALUE = "discount_value"
    MAX_DISCOUNT = "discount_max"
    MIN_PURCHASE = "discount_min_purchase"
    USAGE_LIMIT = "discount_usage_limit"
    VALID_DAYS = "discount_valid_days"


class BroadcastStep(str, enum.Enum):
    TEXT = "broadcast_text"
    CONFIRM = "broadcast_confirm"


class PromptStep(str, enum.Enum):
    """Steps of the single-prompt flows."""
    ENTER_DISCOUNT = "enter_discount"
    TRACK_ORDER = "track_order"
    RECEIPT = "receipt_upload"
    SEARCH = "search"


@dataclass
class CheckoutDraft:
    step: CheckoutStep = CheckoutStep.NAME
    full_name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    postal_code: Optional[str] = None


@dataclass
class ProductDraft:
    category_id: int
    step: ProductStep = ProductStep.NAME
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[int] = None
    discount_price: Optional[int] = None
    stock: Optional[int] = None
    image_url: Optional[str] = None


@dataclass
class ProductEditDraft:
    """Edits are staged here and written in one UPDATE at the end. None means keep."""
    product_id: int
    current: Dict[str, Any] = field(default_factory=dict)
    step: ProductStep = ProductStep.NAME
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[int] = None
    discount_price: Optional[int] = None
    stock: Optional[int] = None
    image_url: Optional[str] = None


@dataclass
class CategoryDraft:
    step: CategoryStep = CategoryStep.TITLE
    title: Optional[str] = None
    icon: Optional[str] = None
    description: Optional[str] = None
    sort_order: Optional[int] = None


@dataclass
class CategoryEditDraft:
    category_id: int
    current: Dict[str, Any] = field(default_factory=dict)
    step: CategoryStep = CategoryStep.TITLE
    title: Optional[str] = None
    icon: Optional[str] = None
    description: Optional[str] = None
    sort_order: Optional[int] = None


@dataclass
class DiscountDraft:
    step: DiscountStep = DiscountStep.CODE
    code: Optional[str] = None
    discount_type: Optional[Any] = None
    discount_value: Optional[int] = None
    max_discount: Optional[int] = None
    min_purchase: Optional[int] = None
    usage_limit: Optional[int] = None
    valid_days: Optional[int] = None


@dataclass
class DiscountEditDraft:
    discount_id: int
    current: Dict[str, Any] = field(default_factory=dict)
    step: DiscountStep = DiscountStep.VALUE
    discount_value: Optional[int] = None
    max_discount: Optional[int] = None
    min_purchase: Optional[int] = None
    usage_limit: Optional[int] = None
    valid_days: Optional[int] = None


@dataclass
class BroadcastDraft:
    step: BroadcastStep = BroadcastStep.TEXT
    text: Optional[str] = None
    confirmed: Optional[bool] = None


@dataclass
class DiscountEntryDraft:
    step: PromptStep = PromptStep.ENTER_DISCOUNT
    code: Optional[str] = None


@dataclass
class TrackOrderDraft:
    step: PromptStep = PromptStep.TRACK_ORDER
    query: Optional[str] = None


@dataclass
class ReceiptDraft:
    order_id: int
    step: PromptStep = PromptStep.RECEIPT
    receipt_ref: Optional[str] = None


@dataclass
class SearchDraft:
    step: PromptStep = PromptStep.SEARCH
    query: Optional[str] = None
