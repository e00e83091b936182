"""Message renderers. Every function returns `(text, keyboard)`; nothing here talks to the gateway."""
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from shopbot.callbacks.commands import STATUS_ACTIONS, CallbackAction as A, encode
from shopbot.cart.models import CartSummary
from shopbot.common.utils import truncate
from shopbot.gateway.keyboards import button, inline_keyboard
from shopbot.orders.models import CheckoutOutcome, LowStockItem
from shopbot.orders.utils import (
    ORDER_PAYMENT_LABELS,
    ORDER_STATUS_LABELS,
    calculate_discount_percent,
    compute_order_totals,
    next_statuses,
)
from shopbot.payments.services import can_upload_receipt
from shopbot.schema.full_schema import (
    Category,
    DiscountCode,
    DiscountType,
    OrderItem,
    Orders,
    OrderStatus,
    Product,
    Users,
)

View = Tuple[str, Optional[Dict[str, Any]]]

STATUS_BUTTON_LABELS = {
    OrderStatus.CONFIRMED: "✅ تایید",
    OrderStatus.PREPARING: "📦 آماده‌سازی",
    OrderStatus.SHIPPED: "🚚 ارسال",
    OrderStatus.DELIVERED: "🏁 تحویل",
    OrderStatus.CANCELLED: "❌ لغو",
}


def format_price(amount: Optional[int]) -> str:
    return f"{int(amount or 0):,}"


def format_datetime(value: Optional[datetime]) -> str:
    return value.strftime("%Y/%m/%d %H:%M") if value else "-"


def _pager(action: A, page: int, pages: int) -> List[Dict[str, str]]:
    row = []
    if page > 1:
        row.append(button("⬅️ قبلی", encode(action, page - 1)))
    if pages > 1:
        row.append(button(f"{page}/{pages}", encode(A.NOOP)))
    if page < pages:
        row.append(button("بعدی ➡️", encode(action, page + 1)))
    return row


# -- storefront -----------------------------------------------------------------------------------


def welcome(first_name: Optional[str], shop_name: str) -> str:
    return (
        f"سلام {first_name or 'کاربر عزیز'} 👋\n\n"
        f"به {shop_name} خوش اومدی!\n\n"
        "🛍 از منوی زیر برای شروع خرید استفاده کن:"
    )


def about(shop_name: str) -> str:
    return f"ℹ️ *درباره {shop_name}*\n\nفروشگاه آنلاین با ارسال به سراسر کشور."


def support(contact: str) -> str:
    return f"☎️ *پشتیبانی*\n\nبرای ارتباط با پشتیبانی به {contact} پیام دهید."


def categories_view(categories: Sequence[Category]) -> View:
    if not categories:
        return "هیچ دسته‌بندی‌ای موجود نیست.", None
    rows = [[button(f"{c.icon or '📂'} {c.title}", encode(A.CATEGORY, c.id))] for c in categories]
    return "📂 یک دسته‌بندی انتخاب کنید:", inline_keyboard(rows)


def empty_category_view() -> View:
    return "این دسته‌بندی محصولی ندارد 😅", inline_keyboard([[button("🔙 برگشت", encode(A.BACK_MAIN))]])


def product_card(product: Product, currency: str) -> View:
    percent = calculate_discount_percent(product.price, product.discount_price)
    lines = [f"🛍 *{product.name}*", ""]
    if product.is_featured:
        lines.insert(0, "⭐️ ویژه")
    if product.description:
        lines += [f"📝 {truncate(product.description, 150)}", ""]
    if percent > 0:
        lines.append(f"💰 قیمت: ~{format_price(product.price)}~ {format_price(product.effective_price)} {currency}")
        lines += [f"🔥 {percent}٪ تخفیف", ""]
    else:
        lines += [f"💰 قیمت: {format_price(product.price)} {currency}", ""]
    lines.append(f"📦 موجودی: {product.stock if product.stock > 0 else 'ناموجود'}")

    if product.stock > 0:
        keyboard = inline_keyboard([[button("➕ افزودن به سبد", encode(A.ADD_TO_CART, product.id))]])
    else:
        keyboard = inline_keyboard([[button("❌ ناموجود", encode(A.NOOP))]])
    return "\n".join(lines), keyboard


def search_results_view(query: str, products: Sequence[Product], currency: str) -> View:
    if not products:
        return f"🔎 نتیجه‌ای برای «{query}» پیدا نشد.", None
    lines = [f"🔎 نتایج جستجو برای «{query}»:", ""]
    rows = []
    for p in products:
        lines.append(f"• {p.name} | {format_price(p.effective_price)} {currency}")
        if p.stock > 0:
            rows.append([button(f"➕ {truncate(p.name, 30)}", encode(A.ADD_TO_CART, p.id))])
    return "\n".join(lines), inline_keyboard(rows) if rows else None


def cart_view(cart: CartSummary, currency: str, tax_percentage: int,
              discount_code: Optional[str] = None, discount_amount: int = 0) -> View:
    if cart.is_empty:
        return "🛒 سبد خرید شما خالی است!\n\nبرای خرید از منوی محصولات استفاده کنید.", None

    lines = ["🛒 *سبد خرید شما:*", ""]
    rows = []
    for index, line in enumerate(cart.lines, start=1):
        lines.append(f"{index}. {line.name}")
        lines.append(f"   💰 {format_price(line.unit_price)} × {line.quantity} = {format_price(line.line_total)}")
        if not line.is_active or line.quantity > line.stock:
            lines.append("   ⚠️ موجودی این کالا کافی نیست")
        lines.append("")
        rows.append([
            button("➖", encode(A.CART_DEC, line.product_id)),
            button(f"{truncate(line.name, 20)} ({line.quantity})", encode(A.NOOP)),
            button("➕", encode(A.CART_INC, line.product_id)),
            button("🗑", encode(A.CART_DEL, line.product_id)),
        ])

    totals = compute_order_totals(cart.subtotal, discount_amount, tax_percentage)
    lines.append(f"💵 *جمع کل:* {format_price(totals.total_price)} {currency}")
    if discount_code:
        lines.append(f"🎟 تخفیف ({discount_code}): {format_price(totals.discount_amount)} {currency}")
    lines.append(f"📊 مالیات ({tax_percentage}٪): {format_price(totals.tax_amount)} {currency}")
    lines.append(f"✅ *قابل پرداخت:* {format_price(totals.final_price)} {currency}")
    lines.append(f"📦 *تعداد اقلام:* {cart.item_count}")

    if discount_code:
        rows.append([button("❌ حذف کد تخفیف", encode(A.DISCOUNT_REMOVE))])
    else:
        rows.append([button("🎟 کد تخفیف دارم", encode(A.DISCOUNT_ENTER))])
    rows.append([button("🗑 پاک کردن سبد", encode(A.CART_CLEAR))])
    rows.append([button("✅ تکمیل خرید", encode(A.CHECKOUT_START))])
    return "\n".join(lines), inline_keyboard(rows)


def checkout_receipt(outcome: CheckoutOutcome, currency: str, card_number: Optional[str] = None) -> str:
    order = outcome.order
    lines = ["✅ سفارش شما با موفقیت ثبت شد!", ""]
    if outcome.discount_dropped_reason:
        lines += [f"⚠️ کد تخفیف اعمال نشد: {outcome.discount_dropped_reason}", ""]
    lines += [
        f"🆔 شماره سفارش: *{order.order_id}*",
        f"📍 کد پیگیری: *{order.tracking_code}*",
        f"💵 جمع: {format_price(order.total_price)} {currency}",
    ]
    if order.discount_amount:
        lines.append(f"🎁 تخفیف: {format_price(order.discount_amount)} {currency}")
    lines += [
        f"📊 مالیات: {format_price(order.tax_amount)} {currency}",
        f"💰 مبلغ نهایی: *{format_price(order.final_price)}* {currency}",
        "",
        f"📌 وضعیت: {ORDER_STATUS_LABELS[OrderStatus.PENDING]}",
    ]
    if card_number:
        lines += ["", f"💳 شماره کارت برای واریز: {card_number}", "پس از واریز، فیش را از بخش «سفارش‌های من» ارسال کنید."]
    return "\n".join(lines)


def orders_list_view(orders: Sequence[Orders], currency: str) -> View:
    if not orders:
        return "📦 شما هنوز سفارشی ثبت نکرده‌اید.", None
    lines = ["📦 *سفارش‌های شما:*", ""]
    rows = []
    for o in orders:
        lines.append(f"#{o.id} | {ORDER_STATUS_LABELS[o.status]} | {format_price(o.final_price)} {currency}")
        rows.append([button(f"📄 سفارش #{o.id}", encode(A.ORDER_VIEW, o.id))])
    return "\n".join(lines), inline_keyboard(rows)


def _order_body(order: Orders, items: Sequence[OrderItem], currency: str) -> List[str]:
    lines = [
        f"📍 کد پیگیری: {order.tracking_code}",
        f"📅 تاریخ: {format_datetime(order.created_at)}",
        f"📌 وضعیت: {ORDER_STATUS_LABELS[order.status]}",
        f"💳 پرداخت: {ORDER_PAYMENT_LABELS[order.payment_status]}",
        "",
        "📦 اقلام:",
    ]
    for index, item in enumerate(items, start=1):
        unit = item.discount_price if item.discount_price is not None and item.discount_price < item.price else item.price
        lines.append(f"{index}. {item.product_name} × {item.quantity} ({format_price(unit)})")
    lines += ["", f"💵 جمع: {format_price(order.total_price)} {currency}"]
    if order.discount_amount:
        lines.append(f"🎁 تخفیف: {format_price(order.discount_amount)} {currency}")
    lines += [
        f"📊 مالیات: {format_price(order.tax_amount)} {currency}",
        f"💰 مبلغ نهایی: {format_price(order.final_price)} {currency}",
    ]
    return lines


def order_detail_view(order: Orders, items: Sequence[OrderItem], currency: str,
                      card_number: Optional[str] = None) -> View:
    lines = [f"📦 *جزئیات سفارش {order.id}*", ""] + _order_body(order, items, currency)
    keyboard = None
    if can_upload_receipt(order):
        if card_number:
            lines += ["", f"💳 شماره کارت: {card_number}"]
        keyboard = inline_keyboard([[button("🧾 ارسال فیش واریز", encode(A.ORDER_PAY, order.id))]])
    return "\n".join(lines), keyboard


def order_status_buttons(order: Orders) -> List[List[Dict[str, str]]]:
    row = [
        button(STATUS_BUTTON_LABELS[status], encode(STATUS_ACTIONS[status], order.id))
        for status in next_statuses(order.status)
    ]
    return [row[i:i + 2] for i in range(0, len(row), 2)]


def admin_order_view(order: Orders, items: Sequence[OrderItem], currency: str) -> View:
    lines = [
        f"📦 *سفارش #{order.id}*",
        "",
        f"👤 {order.full_name}",
        f"📱 {order.phone}",
        f"📍 {order.address}",
    ]
    if order.postal_code:
        lines.append(f"📮 {order.postal_code}")
    if order.customer_notes:
        lines.append(f"📝 {order.customer_notes}")
    if order.admin_notes:
        lines.append(f"🗒 یادداشت: {order.admin_notes}")
    lines.append("")
    lines += _order_body(order, items, currency)
    rows = order_status_buttons(order)
    return "\n".join(lines), inline_keyboard(rows) if rows else None


def admin_new_order_alert(outcome: CheckoutOutcome, user: Users, full_name: str, phone: str, address: str,
                          postal_code: Optional[str], items: Sequence[OrderItem], currency: str) -> View:
    order = outcome.order
    lines = [
        "🔔 *سفارش جدید ثبت شد!*",
        "",
        f"🆔 شماره سفارش: {order.order_id}",
        f"📍 کد پیگیری: {order.tracking_code}",
        f"👤 نام: {full_name}",
        f"📱 تلفن: {phone}",
        f"📍 آدرس: {address}",
    ]
    if postal_code:
        lines.append(f"📮 کد پستی: {postal_code}")
    if user.username:
        lines.append(f"🔗 @{user.username}")
    lines += ["", "📦 *اقلام سفارش:*"]
    for index, item in enumerate(items, start=1):
        lines.append(f"{index}. {item.product_name} × {item.quantity}")
    lines += [
        "",
        f"💰 جمع: {format_price(order.total_price)}",
        f"🎁 تخفیف: {format_price(order.discount_amount)}",
        f"📊 مالیات: {format_price(order.tax_amount)}",
        f"💵 *مبلغ نهایی: {format_price(order.final_price)} {currency}*",
    ]
    keyboard = inline_keyboard([
        [button("✅ تایید", encode(A.ORDER_CONFIRM, order.order_id)),
         button("📦 آماده‌سازی", encode(A.ORDER_PREPARE, order.order_id))],
        [button("❌ لغو", encode(A.ORDER_CANCEL, order.order_id))],
    ])
    return "\n".join(lines), keyboard


def order_status_notice(order_id: int, tracking_code: str, status: OrderStatus) -> str:
    messages = {
        OrderStatus.CONFIRMED: f"✅ سفارش #{order_id} شما تایید شد.",
        OrderStatus.PREPARING: f"📦 سفارش #{order_id} شما در حال آماده‌سازی است.",
        OrderStatus.SHIPPED: f"🚚 سفارش #{order_id} شما ارسال شد.",
        OrderStatus.DELIVERED: f"🏁 سفارش #{order_id} شما تحویل داده شد. از خرید شما متشکریم!",
    }
    text = messages.get(status, f"📌 وضعیت سفارش #{order_id}: {ORDER_STATUS_LABELS[status]}")
    return f"{text}\n📍 کد پیگیری: {tracking_code}"


def order_cancelled_notice(order_id: int, tracking_code: str, reason: Optional[str]) -> str:
    text = f"❌ متاسفانه سفارش #{order_id} شما لغو شد.\n📍 کد پیگیری: {tracking_code}"
    if reason:
        text += f"\n📝 دلیل: {reason}"
    return text


def payment_verdict_notice(order_id: int, approved: bool) -> str:
    if approved:
        return f"✅ پرداخت سفارش #{order_id} تایید شد. سفارش شما در صف پردازش قرار گرفت."
    return f"❌ فیش ارسالی برای سفارش #{order_id} تایید نشد. لطفاً با پشتیبانی تماس بگیرید یا فیش صحیح را ارسال کنید."


def receipt_for_admin(payment_id: int, order: Orders, currency: str) -> View:
    caption = (
        f"🧾 *فیش واریز جدید*\n\n"
        f"🆔 سفارش: #{order.id}\n"
        f"📍 کد پیگیری: {order.tracking_code}\n"
        f"👤 {order.full_name} | 📱 {order.phone}\n"
        f"💰 مبلغ: {format_price(order.final_price)} {currency}"
    )
    keyboard = inline_keyboard([[
        button("✅ تایید پرداخت", encode(A.PAY_VERIFY, payment_id)),
        button("❌ رد", encode(A.PAY_REJECT, payment_id)),
    ]])
    return caption, keyboard


def low_stock_alert(items: Sequence[LowStockItem]) -> str:
    lines = ["⚠️ *هشدار موجودی کم*", ""]
    lines += [f"• {i.name} (#{i.product_id}): {i.stock} عدد" for i in items]
    return "\n".join(lines)


# -- admin panel ----------------------------------------------------------------------------------


def stats_view(users: Dict[str, int], orders: Dict[str, int], products: Dict[str, int],
               payments: Dict[str, int], currency: str) -> str:
    return "\n".join([
        "📊 *آمار کلی فروشگاه*",
        "",
        "👥 *کاربران*",
        f"   کل: {users['total']} | امروز: {users['today']} | هفته: {users['week']} | بلاک: {users['blocked']}",
        "",
        "📦 *سفارش‌ها*",
        f"   کل: {orders['total']} | در انتظار: {orders['pending']}",
        f"   تحویل شده: {orders['delivered']} | لغو شده: {orders['cancelled']}",
        f"   💰 درآمد: {format_price(orders['revenue'])} {currency}",
        "",
        "🛍 *محصولات*",
        f"   کل: {products['total']} | فعال: {products['active']}",
        f"   ناموجود: {products['out_of_stock']} | موجودی کم: {products['low_stock']}",
        "",
        "🧾 *پرداخت‌ها*",
        f"   در انتظار: {payments['pending']} | تایید: {payments['verified']} | رد: {payments['rejected']}",
        f"   💵 مبلغ تایید شده: {format_price(payments['verified_amount'])} {currency}",
    ])


def admin_orders_view(orders: Sequence[Orders], page: int, pages: int, currency: str) -> View:
    if not orders:
        return "📋 سفارشی یافت نشد.", None
    lines = [f"📋 *سفارش‌ها* (صفحه {page})", ""]
    rows = []
    for o in orders:
        lines.append(f"#{o.id} | {o.full_name} | {ORDER_STATUS_LABELS[o.status]} | {format_price(o.final_price)} {currency}")
        rows.append([button(f"#{o.id} {ORDER_STATUS_LABELS[o.status]}", encode(A.ADMIN_ORDER, o.id))])
    rows.append(_pager(A.ADMIN_ORDERS_PAGE, page, pages))
    return "\n".join(lines), inline_keyboard(rows)


def admin_users_view(users: Sequence[Users], page: int, pages: int, super_admin_chat_id: Optional[int]) -> View:
    if not users:
        return "کاربری یافت نشد.", None
    lines = [f"👥 *لیست کاربران* (صفحه {page})", ""]
    rows = []
    for u in users:
        status = "🔴 بلاک شده" if u.is_blocked else "🟢 فعال"
        role = " | 👑 ادمین" if u.is_admin or u.chat_id == super_admin_chat_id else ""
        lines.append(f"{u.id}. {u.first_name or 'بدون نام'} (@{u.username or 'بدون یوزر'})")
        lines.append(f"   chat_id: {u.chat_id} | {status}{role}")
        lines.append("")
        rows.append([
            button("🟢 آنبلاک" if u.is_blocked else "🔴 بلاک", encode(A.ADMIN_TOGGLE_BLOCK, u.id)),
            button("👤 حذف ادمین" if u.is_admin else "👑 ادمین", encode(A.ADMIN_TOGGLE_ADMIN, u.id)),
            button("🗑 حذف", encode(A.ADMIN_DELETE_USER, u.id)),
        ])
    rows.append(_pager(A.ADMIN_USERS_PAGE, page, pages))
    return "\n".join(lines), inline_keyboard(rows)


def admin_products_view(products: Sequence[Product], page: int, pages: int, currency: str) -> View:
    lines = [f"📦 *مدیریت محصولات* (صفحه {page})", ""]
    rows = []
    for p in products:
        flags = ("🟢" if p.is_active else "🔴") + (" ⭐️" if p.is_featured else "")
        lines.append(f"{p.id}. {p.name} | {format_price(p.effective_price)} {currency} | موجودی: {p.stock} {flags}")
        rows.append([
            button(f"✏️ {truncate(p.name, 15)}", encode(A.ADMIN_PRODUCT_EDIT, p.id)),
            button("🔴 غیرفعال" if p.is_active else "🟢 فعال", encode(A.ADMIN_PRODUCT_TOGGLE, p.id)),
            button("☆ عادی" if p.is_featured else "⭐️ ویژه", encode(A.ADMIN_PRODUCT_FEATURE, p.id)),
        ])
    if not products:
        lines.append("محصولی ثبت نشده است.")
    rows.append(_pager(A.ADMIN_PRODUCTS_PAGE, page, pages))
    rows.append([button("➕ افزودن محصول", encode(A.ADMIN_PRODUCT_PICK))])
    return "\n".join(lines), inline_keyboard(rows)


def category_picker_view(categories: Sequence[Category]) -> View:
    if not categories:
        return "❌ ابتدا یک دسته‌بندی بسازید.", inline_keyboard([[button("➕ دسته جدید", encode(A.ADMIN_CATEGORY_NEW))]])
    rows = [[button(f"{c.icon or '📂'} {c.title}", encode(A.ADMIN_PRODUCT_NEW, c.id))] for c in categories]
    return "📂 محصول جدید در کدام دسته‌بندی قرار بگیرد؟", inline_keyboard(rows)


def admin_categories_view(categories: Sequence[Category]) -> View:
    lines = ["📁 *مدیریت دسته‌بندی‌ها*", ""]
    rows = []
    for c in categories:
        lines.append(f"{c.id}. {c.icon or '📂'} {c.title} | ترتیب: {c.sort_order} | {'🟢' if c.is_active else '🔴'}")
        rows.append([
            button(f"✏️ {truncate(c.title, 15)}", encode(A.ADMIN_CATEGORY_EDIT, c.id)),
            button("🔴 غیرفعال" if c.is_active else "🟢 فعال", encode(A.ADMIN_CATEGORY_TOGGLE, c.id)),
            button("🗑 حذف", encode(A.ADMIN_CATEGORY_DELETE, c.id)),
        ])
    if not categories:
        lines.append("دسته‌بندی‌ای ثبت نشده است.")
    rows.append([button("➕ دسته جدید", encode(A.ADMIN_CATEGORY_NEW))])
    return "\n".join(lines), inline_keyboard(rows)


def describe_discount(d: DiscountCode, currency: str) -> str:
    if d.discount_type == DiscountType.PERCENTAGE:
        value = f"{d.discount_value}٪"
        if d.max_discount:
            value += f" (سقف {format_price(d.max_discount)})"
    else:
        value = f"{format_price(d.discount_value)} {currency}"
    usage = f"{d.used_count}/{d.usage_limit}" if d.usage_limit else f"{d.used_count}/∞"
    parts = [f"🎟 {d.code} | {value} | استفاده: {usage}"]
    if d.min_purchase:
        parts.append(f"   حداقل خرید: {format_price(d.min_purchase)}")
    if d.end_date:
        parts.append(f"   تا: {format_datetime(d.end_date)}")
    return "\n".join(parts)


def admin_discounts_view(discounts: Sequence[DiscountCode], currency: str) -> View:
    lines = ["🎟 *کدهای تخفیف فعال*", ""]
    rows = []
    for d in discounts:
        lines.append(describe_discount(d, currency))
        rows.append([
            button(f"✏️ {d.code}", encode(A.ADMIN_DISCOUNT_EDIT, d.id)),
            button("📈 آمار", encode(A.ADMIN_DISCOUNT_STATS, d.id)),
            button("⛔️ غیرفعال", encode(A.ADMIN_DISCOUNT_OFF, d.id)),
        ])
    if not discounts:
        lines.append("کد تخفیف فعالی وجود ندارد.")
    rows.append([button("➕ کد تخفیف جدید", encode(A.ADMIN_DISCOUNT_NEW))])
    return "\n".join(lines), inline_keyboard(rows)


def discount_stats_view(d: DiscountCode, stats: Dict[str, int], currency: str) -> str:
    return (
        f"📈 *آمار کد {d.code}*\n\n{describe_discount(d, currency)}\n\n"
        f"تعداد استفاده: {stats['uses']}\nکاربران یکتا: {stats['unique_users']}"
    )


def low_stock_view(products: Sequence[Product], threshold: int) -> str:
    if not products:
        return f"✅ هیچ محصولی موجودی کمتر از {threshold} ندارد."
    lines = [f"⚠️ *محصولات با موجودی {threshold} یا کمتر*", ""]
    lines += [f"• {p.name} (#{p.id}): {p.stock if p.stock else 'ناموجود'}" for p in products]
    return "\n".join(lines)


def pending_payments_view(rows_data: Sequence[Dict[str, Any]], currency: str) -> View:
    if not rows_data:
        return "✅ پرداختی در انتظار تایید نیست.", None
    lines = ["🧾 *پرداخت‌های در انتظار تایید*", ""]
    rows = []
    for p in rows_data:
        lines.append(
            f"#{p['id']} | سفارش #{p['order_id']} | {p['full_name']} | {format_price(p['amount'])} {currency}"
        )
        rows.append([
            button(f"✅ تایید #{p['id']}", encode(A.PAY_VERIFY, p["id"])),
            button(f"❌ رد #{p['id']}", encode(A.PAY_REJECT, p["id"])),
        ])
    return "\n".join(lines), inline_keyboard(rows)


def broadcast_report(sent: int, failed: int) -> str:
    return f"📢 ارسال پیام همگانی تمام شد.\n\n✅ موفق: {sent}\n❌ ناموفق: {failed}"
