from typing import Awaitable, Callable, Dict, Optional, Tuple, Union

import httpx

from shopbot.bot import menus, views
from shopbot.bot.handlers import ACCESS_DENIED, USE_MENU, ChatContext, ShopBot
from shopbot.callbacks.commands import ACTION_STATUSES, CallbackAction as A, CallbackCommand, decode
from shopbot.cart import repository as cart_repo
from shopbot.categories import repository as categories_repo
from shopbot.common.exceptions import GatewayError, InsufficientStockError, NotFoundError, ShopBotError
from shopbot.common.logging_setup import get_logger
from shopbot.conversation.drafts import (
    CategoryDraft,
    CategoryEditDraft,
    DiscountDraft,
    DiscountEditDraft,
    DiscountEntryDraft,
    ProductDraft,
    ProductEditDraft,
    ReceiptDraft,
)
from shopbot.discounts import repository as discounts_repo
from shopbot.gateway.types import CallbackQuery
from shopbot.orders import repository as orders_repo
from shopbot.orders.services import cancel_order, transition_order_status
from shopbot.payments.services import can_upload_receipt, verify_payment
from shopbot.products import repository as products_repo
from shopbot.users import repository as users_repo

logger = get_logger("shopbot.callbacks")

# (text, alert) shown in the callback toast; a bare string is a quiet toast
Answer = Union[None, str, Tuple[str, bool]]
Handler = Callable[[ChatContext, CallbackCommand], Awaitable[Answer]]


class CallbackRouter:
    """
    Maps a decoded button press to its handler. Admin-only actions are refused before any handler
    runs, and every callback query is acknowledged exactly once.
    """

    def __init__(self, bot: ShopBot):
        self.bot = bot
        self.routes: Dict[A, Handler] = {
            A.NOOP: self._noop,
            A.BACK_MAIN: self._back_main,
            A.CATEGORY: self._category,
            A.ADD_TO_CART: self._add_to_cart,
            A.CART_INC: self._add_to_cart,
            A.CART_DEC: self._cart_dec,
            A.CART_DEL: self._cart_del,
            A.CART_CLEAR: self._cart_clear,
            A.CART_VIEW: self._cart_view,
            A.CHECKOUT_START: self._checkout_start,
            A.DISCOUNT_ENTER: self._discount_enter,
            A.DISCOUNT_REMOVE: self._discount_remove,
            A.ORDER_VIEW: self._order_view,
            A.ORDER_PAY: self._order_pay,
            A.ORDER_CONFIRM: self._order_status,
            A.ORDER_PREPARE: self._order_status,
            A.ORDER_SHIP: self._order_status,
            A.ORDER_DELIVER: self._order_status,
            A.ORDER_CANCEL: self._order_cancel,
            A.PAY_VERIFY: self._payment_verdict,
            A.PAY_REJECT: self._payment_verdict,
            A.ADMIN_BACK: self._admin_back,
            A.ADMIN_ORDER: self._admin_order,
            A.ADMIN_ORDERS_PAGE: lambda ctx, cmd: self.bot.show_admin_orders(ctx, cmd.arg),
            A.ADMIN_USERS_PAGE: lambda ctx, cmd: self.bot.show_admin_users(ctx, cmd.arg),
            A.ADMIN_TOGGLE_BLOCK: self._toggle_block,
            A.ADMIN_TOGGLE_ADMIN: self._toggle_admin,
            A.ADMIN_DELETE_USER: self._delete_user,
            A.ADMIN_PRODUCTS_PAGE: lambda ctx, cmd: self.bot.show_admin_products(ctx, cmd.arg),
            A.ADMIN_PRODUCT_PICK: lambda ctx, cmd: self.bot.show_category_picker(ctx),
            A.ADMIN_PRODUCT_NEW: self._product_new,
            A.ADMIN_PRODUCT_EDIT: self._product_edit,
            A.ADMIN_PRODUCT_TOGGLE: self._product_toggle,
            A.ADMIN_PRODUCT_FEATURE: self._product_feature,
            A.ADMIN_CATEGORY_NEW: lambda ctx, cmd: self.bot.begin_flow(ctx, CategoryDraft()),
            A.ADMIN_CATEGORY_EDIT: self._category_edit,
            A.ADMIN_CATEGORY_TOGGLE: self._category_toggle,
            A.ADMIN_CATEGORY_DELETE: self._category_delete,
            A.ADMIN_DISCOUNT_NEW: lambda ctx, cmd: self.bot.begin_flow(ctx, DiscountDraft()),
            A.ADMIN_DISCOUNT_EDIT: self._discount_edit,
            A.ADMIN_DISCOUNT_OFF: self._discount_off,
            A.ADMIN_DISCOUNT_STATS: self._discount_stats,
        }

    async def route(self, ctx: ChatContext, callback: CallbackQuery) -> CallbackCommand:
        cmd = decode(callback.data)
        if cmd.action == A.NOOP and cmd.raw not in ("", A.NOOP.value):
            logger.debug("callback.unknown", extra={"payload": cmd.raw})

        if cmd.admin_only and not ctx.is_admin:
            logger.warning("callback.forbidden", extra={"action": cmd.action.value, "user_id": ctx.user_id})
            await self._answer(callback, (ACCESS_DENIED, True))
            return cmd

        try:
            answer = await self.routes[cmd.action](ctx, cmd)
        except ShopBotError as exc:
            answer = (exc.message, True)
        await self._answer(callback, answer)
        return cmd

    async def _answer(self, callback: CallbackQuery, answer: Answer) -> None:
        text, alert = ("", False)
        if isinstance(answer, tuple):
            text, alert = answer
        elif answer:
            text = answer
        await self.bot.gateway.answer_callback(callback.id, text, alert)

    # -- storefront --

    async def _noop(self, ctx, cmd):
        return None

    async def _retire_message(self, ctx: ChatContext) -> None:
        if ctx.message_id is None:
            return
        try:
            await self.bot.gateway.delete_message(ctx.chat_id, ctx.message_id)
        except (GatewayError, httpx.HTTPError) as exc:
            logger.debug("callback.delete_failed", extra={"error": str(exc)})

    async def _back_main(self, ctx, cmd):
        await self._retire_message(ctx)
        await self.bot.send(ctx.chat_id, USE_MENU, menus.main_menu())

    async def _category(self, ctx, cmd):
        await self._retire_message(ctx)
        await self.bot.show_category_products(ctx, cmd.arg)

    async def _add_to_cart(self, ctx, cmd):
        async with self.bot.session_factory() as session:
            try:
                quantity = await cart_repo.add_to_cart(session, ctx.user_id, cmd.arg)
            except InsufficientStockError as exc:
                return f"❌ موجودی «{exc.product_name}» کافی نیست (موجود: {exc.available})", True
        if cmd.action == A.CART_INC:
            await self.bot.show_cart(ctx)
        return f"✅ به سبد خرید اضافه شد ({quantity} عدد)"

    async def _cart_dec(self, ctx, cmd):
        async with self.bot.session_factory() as session:
            await cart_repo.decrease_cart_item(session, ctx.user_id, cmd.arg)
        await self.bot.show_cart(ctx)

    async def _cart_del(self, ctx, cmd):
        async with self.bot.session_factory() as session:
            await cart_repo.remove_from_cart(session, ctx.user_id, cmd.arg)
        await self.bot.show_cart(ctx)
        return "🗑 از سبد حذف شد"

    async def _cart_clear(self, ctx, cmd):
        async with self.bot.session_factory() as session:
            await cart_repo.clear_cart(session, ctx.user_id)
        self.bot.store.get(ctx.chat_id).staged_discount = None
        await self._retire_message(ctx)
        await self.bot.show_cart(ctx)
        return "🗑 سبد خرید خالی شد"

    async def _cart_view(self, ctx, cmd):
        await self.bot.show_cart(ctx)

    async def _checkout_start(self, ctx, cmd):
        await self._retire_message(ctx)
        await self.bot.start_checkout(ctx)

    async def _discount_enter(self, ctx, cmd):
        await self.bot.begin_flow(ctx, DiscountEntryDraft())

    async def _discount_remove(self, ctx, cmd):
        self.bot.store.get(ctx.chat_id).staged_discount = None
        await self.bot.show_cart(ctx)
        return "کد تخفیف حذف شد"

    async def _order_view(self, ctx, cmd):
        async with self.bot.session_factory() as session:
            order = await orders_repo.find_order(session, cmd.arg)
        if order is None or (order.user_id != ctx.user_id and not ctx.is_admin):
            raise NotFoundError("❌ سفارش یافت نشد")
        await self.bot.show_order(ctx, order)

    async def _order_pay(self, ctx, cmd):
        async with self.bot.session_factory() as session:
            order = await orders_repo.find_order(session, cmd.arg)
        if order is None or order.user_id != ctx.user_id:
            raise NotFoundError("❌ سفارش یافت نشد")
        if not can_upload_receipt(order):
            return "❌ برای این سفارش امکان ارسال فیش وجود ندارد", True
        await self.bot.begin_flow(ctx, ReceiptDraft(order_id=order.id))

    # -- order lifecycle --

    async def _refresh_admin_order(self, ctx: ChatContext, order_id: int) -> None:
        async with self.bot.session_factory() as session:
            order = await orders_repo.find_order(session, order_id)
            items = await orders_repo.get_order_items(session, order_id)
        text, keyboard = views.admin_order_view(order, items, self.bot.settings.SHOP_CURRENCY)
        if ctx.message_id is not None:
            try:
                await self.bot.gateway.edit_message_text(ctx.chat_id, ctx.message_id, text, keyboard)
                return
            except (GatewayError, httpx.HTTPError) as exc:
                logger.debug("callback.edit_failed", extra={"error": str(exc)})
        await self.bot.send(ctx.chat_id, text, keyboard)

    async def _chat_of(self, user_id: int) -> Optional[int]:
        async with self.bot.session_factory() as session:
            user = await users_repo.find_user_by_id(session, user_id)
        return user.chat_id if user else None

    async def _order_status(self, ctx, cmd):
        target = ACTION_STATUSES[cmd.action]
        async with self.bot.session_factory() as session:
            order = await transition_order_status(session, cmd.arg, target)
            customer = await users_repo.find_user_by_id(session, order.user_id)

        if customer is not None:
            await self.bot.notifier.order_status_changed(customer.chat_id, order.id, order.tracking_code, target)
        await self._refresh_admin_order(ctx, order.id)
        return "✅ وضعیت سفارش به‌روز شد"

    async def _order_cancel(self, ctx, cmd):
        cancelled = await cancel_order(self.bot.session_factory, cmd.arg, reason="لغو توسط مدیر")
        chat_id = await self._chat_of(cancelled.user_id)
        if chat_id is not None:
            await self.bot.notifier.order_cancelled(chat_id, cancelled.order_id, cancelled.tracking_code, cancelled.reason)
        await self._refresh_admin_order(ctx, cancelled.order_id)
        return "❌ سفارش لغو شد و موجودی برگشت"

    async def _payment_verdict(self, ctx, cmd):
        approved = cmd.action == A.PAY_VERIFY
        async with self.bot.session_factory() as session:
            payment, order = await verify_payment(session, cmd.arg, approved, ctx.chat_id)
            customer = await users_repo.find_user_by_id(session, payment.user_id)
        if customer is not None:
            await self.bot.notifier.payment_decided(customer.chat_id, order.id, approved)
        return "✅ پرداخت تایید شد" if approved else "❌ پرداخت رد شد"

    # -- admin: users --

    async def _admin_back(self, ctx, cmd):
        await self.bot.send(ctx.chat_id, "🔐 پنل مدیریت", menus.admin_menu())

    async def _admin_order(self, ctx, cmd):
        async with self.bot.session_factory() as session:
            order = await orders_repo.find_order(session, cmd.arg)
        if order is None:
            raise NotFoundError("❌ سفارش یافت نشد")
        await self.bot.show_order(ctx, order, admin_view=True)

    async def _target_user(self, cmd):
        async with self.bot.session_factory() as session:
            user = await users_repo.find_user_by_id(session, cmd.arg)
        if user is None:
            raise NotFoundError("❌ کاربر یافت نشد")
        return user

    def _protected(self, ctx, user) -> bool:
        return user.id == ctx.user_id or user.chat_id == self.bot.settings.ADMIN_CHAT_ID

    async def _toggle_block(self, ctx, cmd):
        user = await self._target_user(cmd)
        if self._protected(ctx, user):
            return "❌ این کاربر قابل مسدودسازی نیست", True
        async with self.bot.session_factory() as session:
            await users_repo.set_user_blocked(session, user.id, not user.is_blocked)
        await self.bot.show_admin_users(ctx, 1)
        return "🟢 کاربر آزاد شد" if user.is_blocked else "🔴 کاربر مسدود شد"

    async def _toggle_admin(self, ctx, cmd):
        user = await self._target_user(cmd)
        if self._protected(ctx, user):
            return "❌ نقش این کاربر قابل تغییر نیست", True
        async with self.bot.session_factory() as session:
            await users_repo.set_user_admin(session, user.id, not user.is_admin)
        await self.bot.show_admin_users(ctx, 1)
        return "👤 دسترسی ادمین برداشته شد" if user.is_admin else "👑 کاربر ادمین شد"

    async def _delete_user(self, ctx, cmd):
        user = await self._target_user(cmd)
        if self._protected(ctx, user):
            return "❌ این کاربر قابل حذف نیست", True
        async with self.bot.session_factory() as session:
            await users_repo.hard_delete_user(session, user.id)
        self.bot.store.clear(user.chat_id)
        await self.bot.show_admin_users(ctx, 1)
        return "🗑 کاربر حذف شد"

    # -- admin: catalog --

    async def _product_new(self, ctx, cmd):
        async with self.bot.session_factory() as session:
            category = await categories_repo.find_category(session, cmd.arg)
        if category is None:
            raise NotFoundError("❌ دسته‌بندی یافت نشد")
        await self.bot.begin_flow(ctx, ProductDraft(category_id=category.id), intro=f"📁 دسته: {category.title}")

    async def _product_edit(self, ctx, cmd):
        async with self.bot.session_factory() as session:
            product = await products_repo.find_product(session, cmd.arg)
        if product is None:
            raise NotFoundError("❌ محصول یافت نشد")
        current = {
            "name": product.name,
            "description": product.description,
            "price": product.price,
            "discount_price": product.discount_price,
            "stock": product.stock,
        }
        await self.bot.begin_flow(ctx, ProductEditDraft(product_id=product.id, current=current),
                                  intro=f"✏️ ویرایش محصول #{product.id}")

    async def _product_toggle(self, ctx, cmd):
        async with self.bot.session_factory() as session:
            product = await products_repo.find_product(session, cmd.arg)
            if product is None:
                raise NotFoundError("❌ محصول یافت نشد")
            active = not product.is_active
            await products_repo.set_product_active(session, product.id, active)
        await self.bot.show_admin_products(ctx, 1)
        return "🟢 محصول فعال شد" if active else "🔴 محصول غیرفعال شد"

    async def _product_feature(self, ctx, cmd):
        async with self.bot.session_factory() as session:
            featured = await products_repo.toggle_product_featured(session, cmd.arg)
        await self.bot.show_admin_products(ctx, 1)
        return "⭐️ محصول ویژه شد" if featured else "محصول از حالت ویژه خارج شد"

    async def _category_edit(self, ctx, cmd):
        async with self.bot.session_factory() as session:
            category = await categories_repo.find_category(session, cmd.arg)
        if category is None:
            raise NotFoundError("❌ دسته‌بندی یافت نشد")
        current = {
            "title": category.title,
            "icon": category.icon,
            "description": category.description,
            "sort_order": category.sort_order,
        }
        await self.bot.begin_flow(ctx, CategoryEditDraft(category_id=category.id, current=current),
                                  intro=f"✏️ ویرایش دسته‌بندی #{category.id}")

    async def _category_toggle(self, ctx, cmd):
        async with self.bot.session_factory() as session:
            category = await categories_repo.find_category(session, cmd.arg)
            if category is None:
                raise NotFoundError("❌ دسته‌بندی یافت نشد")
            active = not category.is_active
            await categories_repo.set_category_active(session, category.id, active)
        await self.bot.show_admin_categories(ctx)
        return "🟢 دسته‌بندی فعال شد" if active else "🔴 دسته‌بندی غیرفعال شد"

    async def _category_delete(self, ctx, cmd):
        async with self.bot.session_factory() as session:
            await categories_repo.hard_delete_category(session, cmd.arg)
        await self.bot.show_admin_categories(ctx)
        return "🗑 دسته‌بندی حذف شد"

    # -- admin: discounts --

    async def _find_discount(self, cmd):
        async with self.bot.session_factory() as session:
            discount = await discounts_repo.find_discount(session, cmd.arg)
        if discount is None:
            raise NotFoundError("❌ کد تخفیف یافت نشد")
        return discount

    async def _discount_edit(self, ctx, cmd):
        discount = await self._find_discount(cmd)
        current = {
            "discount_type": discount.discount_type,
            "discount_value": discount.discount_value,
            "max_discount": discount.max_discount,
            "min_purchase": discount.min_purchase,
            "usage_limit": discount.usage_limit,
            "end_date": views.format_datetime(discount.end_date) if discount.end_date else None,
        }
        await self.bot.begin_flow(ctx, DiscountEditDraft(discount_id=discount.id, current=current),
                                  intro=f"✏️ ویرایش کد {discount.code}")

    async def _discount_off(self, ctx, cmd):
        async with self.bot.session_factory() as session:
            await discounts_repo.deactivate_discount(session, cmd.arg)
        await self.bot.show_admin_discounts(ctx)
        return "⛔️ کد تخفیف غیرفعال شد"

    async def _discount_stats(self, ctx, cmd):
        discount = await self._find_discount(cmd)
        async with self.bot.session_factory() as session:
            stats = await discounts_repo.get_discount_usage_stats(session, discount.id)
        await self.bot.send(ctx.chat_id, views.discount_stats_view(discount, stats, self.bot.settings.SHOP_CURRENCY))
