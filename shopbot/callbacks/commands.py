"""Inline-button payloads, decoded once at the boundary into a typed command.

Wire format is `<action>` or `<action>_<int>`, e.g. `cart_inc_12` or `admin_users_page_3`.
"""
import enum
from dataclasses import dataclass
from typing import Optional

from shopbot.schema.full_schema import OrderStatus


class CallbackAction(str, enum.Enum):
    NOOP = "noop"
    BACK_MAIN = "back_main"

    CATEGORY = "cat"
    ADD_TO_CART = "addcart"
    CART_INC = "cart_inc"
    CART_DEC = "cart_dec"
    CART_DEL = "cart_del"
    CART_CLEAR = "cart_clear"
    CART_VIEW = "cart_view"

    CHECKOUT_START = "checkout_start"
    DISCOUNT_ENTER = "discount_enter"
    DISCOUNT_REMOVE = "discount_remove"

    ORDER_VIEW = "order_view"
    ORDER_PAY = "order_pay"
    ORDER_CONFIRM = "order_confirm"
    ORDER_PREPARE = "order_prepare"
    ORDER_SHIP = "order_ship"
    ORDER_DELIVER = "order_deliver"
    ORDER_CANCEL = "order_cancel"

    PAY_VERIFY = "pay_verify"
    PAY_REJECT = "pay_reject"

    ADMIN_BACK = "admin_back"
    ADMIN_ORDER = "admin_order"
    ADMIN_ORDERS_PAGE = "admin_orders_page"
    ADMIN_USERS_PAGE = "admin_users_page"
    ADMIN_TOGGLE_BLOCK = "admin_toggle_block"
    ADMIN_TOGGLE_ADMIN = "admin_toggle_admin"
    ADMIN_DELETE_USER = "admin_delete_user"
    ADMIN_PRODUCTS_PAGE = "admin_products_page"
    ADMIN_PRODUCT_PICK = "admin_product_pick"
    ADMIN_PRODUCT_NEW = "admin_product_new"
    ADMIN_PRODUCT_EDIT = "admin_product_edit"
    ADMIN_PRODUCT_TOGGLE = "admin_product_toggle"
    ADMIN_PRODUCT_FEATURE = "admin_product_feature"
    ADMIN_CATEGORY_NEW = "admin_category_new"
    ADMIN_CATEGORY_EDIT = "admin_category_edit"
    ADMIN_CATEGORY_TOGGLE = "admin_category_toggle"
    ADMIN_CATEGORY_DELETE = "admin_category_delete"
    ADMIN_DISCOUNT_NEW = "admin_discount_new"
    ADMIN_DISCOUNT_EDIT = "admin_discount_edit"
    ADMIN_DISCOUNT_OFF = "admin_discount_off"
    ADMIN_DISCOUNT_STATS = "admin_discount_stats"


# actions that carry an integer argument
ARG_ACTIONS = frozenset({
    CallbackAction.CATEGORY,
    CallbackAction.ADD_TO_CART,
    CallbackAction.CART_INC,
    CallbackAction.CART_DEC,
    CallbackAction.CART_DEL,
    CallbackAction.ORDER_VIEW,
    CallbackAction.ORDER_PAY,
    CallbackAction.ORDER_CONFIRM,
    CallbackAction.ORDER_PREPARE,
    CallbackAction.ORDER_SHIP,
    CallbackAction.ORDER_DELIVER,
    CallbackAction.ORDER_CANCEL,
    CallbackAction.PAY_VERIFY,
    CallbackAction.PAY_REJECT,
    CallbackAction.ADMIN_ORDER,
    CallbackAction.ADMIN_ORDERS_PAGE,
    CallbackAction.ADMIN_USERS_PAGE,
    CallbackAction.ADMIN_TOGGLE_BLOCK,
    CallbackAction.ADMIN_TOGGLE_ADMIN,
    CallbackAction.ADMIN_DELETE_USER,
    CallbackAction.ADMIN_PRODUCTS_PAGE,
    CallbackAction.ADMIN_PRODUCT_NEW,
    CallbackAction.ADMIN_PRODUCT_EDIT,
    CallbackAction.ADMIN_PRODUCT_TOGGLE,
    CallbackAction.ADMIN_PRODUCT_FEATURE,
    CallbackAction.ADMIN_CATEGORY_EDIT,
    CallbackAction.ADMIN_CATEGORY_TOGGLE,
    CallbackAction.ADMIN_CATEGORY_DELETE,
    CallbackAction.ADMIN_DISCOUNT_EDIT,
    CallbackAction.ADMIN_DISCOUNT_OFF,
    CallbackAction.ADMIN_DISCOUNT_STATS,
})

ADMIN_ACTIONS = frozenset(
    {a for a in CallbackAction if a.value.startswith("admin_")}
    | {
        CallbackAction.ORDER_CONFIRM,
        CallbackAction.ORDER_PREPARE,
        CallbackAction.ORDER_SHIP,
        CallbackAction.ORDER_DELIVER,
        CallbackAction.ORDER_CANCEL,
        CallbackAction.PAY_VERIFY,
        CallbackAction.PAY_REJECT,
    }
)

_BY_VALUE = {a.value: a for a in CallbackAction}


@dataclass(frozen=True)
class CallbackCommand:
    action: CallbackAction
    arg: Optional[int] = None
    raw: str = ""

    @property
    def admin_only(self) -> bool:
        return self.action in ADMIN_ACTIONS


def encode(action: CallbackAction, arg: Optional[int] = None) -> str:
    if action in ARG_ACTIONS:
        if arg is None:
            raise ValueError(f"{action.value} needs an argument")
        return f"{action.value}_{int(arg)}"
    return action.value


def decode(payload: Optional[str]) -> CallbackCommand:
    """Anything unrecognized or malformed decodes to NOOP; the router still acknowledges it."""
    raw = (payload or "").strip()
    head, sep, tail = raw.rpartition("_")
    if sep and tail.isdigit() and head in _BY_VALUE:
        action = _BY_VALUE[head]
        if action in ARG_ACTIONS:
            return CallbackCommand(action, int(tail), raw)
    action = _BY_VALUE.get(raw)
    if action is not None and action not in ARG_ACTIONS:
        return CallbackCommand(action, None, raw)
    return CallbackCommand(CallbackAction.NOOP, None, raw)


# order lifecycle buttons; cancel runs its own transaction and is not a plain transition
STATUS_ACTIONS = {
    OrderStatus.CONFIRMED: CallbackAction.ORDER_CONFIRM,
    OrderStatus.PREPARING: CallbackAction.ORDER_PREPARE,
    OrderStatus.SHIPPED: CallbackAction.ORDER_SHIP,
    OrderStatus.DELIVERED: CallbackAction.ORDER_DELIVER,
    OrderStatus.CANCELLED: CallbackAction.ORDER_CANCEL,
}
ACTION_STATUSES = {action: status for status, action in STATUS_ACTIONS.items()}
