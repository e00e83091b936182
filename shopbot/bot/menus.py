from typing import Sequence
from shopbot.gateway.keyboards import reply_keyboard

# user menu
BTN_PRODUCTS = "🛍 محصولات"
BTN_CART = "🛒 سبد خرید"
BTN_MY_ORDERS = "📦 سفارش‌های من"
BTN_TRACK_ORDER = "🔍 پیگیری سفارش"
BTN_SEARCH = "🔎 جستجوی محصول"
BTN_ABOUT = "ℹ️ درباره ما"
BTN_SUPPORT = "☎️ پشتیبانی"

# admin menu
BTN_STATS = "📊 آمار کلی"
BTN_ORDERS_ADMIN = "📋 مدیریت سفارش‌ها"
BTN_USERS_ADMIN = "👥 مدیریت کاربران"
BTN_PRODUCTS_ADMIN = "📦 مدیریت محصولات"
BTN_CATEGORIES_ADMIN = "📁 مدیریت دسته‌بندی‌ها"
BTN_DISCOUNTS_ADMIN = "🎟 مدیریت کدهای تخفیف"
BTN_LOW_STOCK = "⚠️ موجودی کم"
BTN_PENDING_PAYMENTS = "🧾 پرداخت‌های در انتظار"
BTN_BROADCAST = "📢 پیام همگانی"
BTN_BACK_TO_USER = "🔙 برگشت به منوی کاربر"

BTN_CANCEL = "❌ لغو"

CMD_START = "/start"
CMD_ADMIN = "/admin"
CMD_CANCEL = "/cancel"

USER_BUTTONS = (BTN_PRODUCTS, BTN_CART, BTN_MY_ORDERS, BTN_TRACK_ORDER, BTN_SEARCH, BTN_ABOUT, BTN_SUPPORT)
ADMIN_BUTTONS = (
    BTN_STATS, BTN_ORDERS_ADMIN, BTN_USERS_ADMIN, BTN_PRODUCTS_ADMIN, BTN_CATEGORIES_ADMIN,
    BTN_DISCOUNTS_ADMIN, BTN_LOW_STOCK, BTN_PENDING_PAYMENTS, BTN_BROADCAST, BTN_BACK_TO_USER,
)


def main_menu():
    return reply_keyboard([
        [BTN_PRODUCTS, BTN_CART],
        [BTN_MY_ORDERS, BTN_TRACK_ORDER],
        [BTN_SEARCH],
        [BTN_ABOUT, BTN_SUPPORT],
    ])


def admin_menu():
    return reply_keyboard([
        [BTN_STATS],
        [BTN_ORDERS_ADMIN, BTN_USERS_ADMIN],
        [BTN_PRODUCTS_ADMIN, BTN_CATEGORIES_ADMIN],
        [BTN_DISCOUNTS_ADMIN, BTN_LOW_STOCK],
        [BTN_PENDING_PAYMENTS, BTN_BROADCAST],
        [BTN_BACK_TO_USER],
    ])


def flow_menu(choices: Sequence[str] = ()):
    """Keyboard shown while a flow waits for input: the step's choices (if any) and a cancel button."""
    rows = [[c] for c in choices]
    rows.append([BTN_CANCEL])
    return reply_keyboard(rows)
