import asyncio
from dataclasses import dataclass, fields
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, Optional

from shopbot.bot import menus, views
from shopbot.cart import repository as cart_repo
from shopbot.categories import repository as categories_repo
from shopbot.common.constants import RECENT_ORDERS_LIMIT
from shopbot.common.exceptions import BusinessRuleError, DiscountRejected
from shopbot.common.logging_setup import get_logger
from shopbot.common.utils import now, page_bounds, total_pages
from shopbot.config.settings import Settings
from shopbot.conversation.drafts import (
    BroadcastDraft,
    CategoryDraft,
    CategoryEditDraft,
    CheckoutDraft,
    DiscountDraft,
    DiscountEditDraft,
    DiscountEntryDraft,
    ProductDraft,
    ProductEditDraft,
    ReceiptDraft,
    SearchDraft,
    TrackOrderDraft,
)
from shopbot.conversation.machine import StateMachine, StepOutcome
from shopbot.conversation.store import ConversationState, ConversationStore
from shopbot.discounts import repository as discounts_repo
from shopbot.discounts.services import validate_discount
from shopbot.gateway.types import Message
from shopbot.notifications.service import NotificationService
from shopbot.orders import repository as orders_repo
from shopbot.orders.models import CheckoutDetails
from shopbot.orders.services import place_order
from shopbot.orders.utils import generate_tracking_code
from shopbot.payments import repository as payments_repo
from shopbot.payments.services import submit_receipt
from shopbot.products import repository as products_repo
from shopbot.schema.full_schema import Orders, Users
from shopbot.users import repository as users_repo

logger = get_logger("shopbot.bot")

ACCESS_DENIED = "⛔️ شما دسترسی به این بخش را ندارید."
BLOCKED_NOTICE = "⛔️ دسترسی شما به ربات مسدود شده است."
FLOW_CANCELLED = "❌ عملیات لغو شد."
USE_MENU = "لطفاً از منوی زیر استفاده کنید 👇"


@dataclass
class ChatContext:
    chat_id: int
    user: Users
    is_admin: bool
    message_id: Optional[int] = None

    @property
    def user_id(self) -> int:
        return self.user.id


class ShopBot:
    """Message-side behaviour: menus, flow steps and the commit that ends each flow."""

    def __init__(self, gateway, session_factory, store: ConversationStore, settings: Settings,
                 notifier: NotificationService, machine: Optional[StateMachine] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 tracking_code_factory: Callable[[], str] = generate_tracking_code):
        self.gateway = gateway
        self.session_factory = session_factory
        self.store = store
        self.settings = settings
        self.notifier = notifier
        self.machine = machine or StateMachine()
        self.sleep = sleep
        self.tracking_code_factory = tracking_code_factory

        self._commits: Dict[type, Callable[[ChatContext, ConversationState, Any], Awaitable[None]]] = {
            CheckoutDraft: self._commit_checkout,
            ProductDraft: self._commit_product,
            ProductEditDraft: self._commit_product_edit,
            CategoryDraft: self._commit_category,
            CategoryEditDraft: self._commit_category_edit,
            DiscountDraft: self._commit_discount,
            DiscountEditDraft: self._commit_discount_edit,
            BroadcastDraft: self._commit_broadcast,
            DiscountEntryDraft: self._commit_discount_entry,
            TrackOrderDraft: self._commit_track_order,
            ReceiptDraft: self._commit_receipt,
            SearchDraft: self._commit_search,
        }

        self._user_menu = {
            menus.BTN_PRODUCTS: self.show_categories,
            menus.BTN_CART: self.show_cart,
            menus.BTN_MY_ORDERS: self.show_my_orders,
            menus.BTN_TRACK_ORDER: lambda ctx: self.begin_flow(ctx, TrackOrderDraft()),
            menus.BTN_SEARCH: lambda ctx: self.begin_flow(ctx, SearchDraft()),
            menus.BTN_ABOUT: lambda ctx: self.send(ctx.chat_id, views.about(self.settings.SHOP_NAME)),
            menus.BTN_SUPPORT: lambda ctx: self.send(ctx.chat_id, views.support(self.settings.SUPPORT_CONTACT)),
        }
        self._admin_menu = {
            menus.BTN_STATS: self.show_stats,
            menus.BTN_ORDERS_ADMIN: lambda ctx: self.show_admin_orders(ctx, 1),
            menus.BTN_USERS_ADMIN: lambda ctx: self.show_admin_users(ctx, 1),
            menus.BTN_PRODUCTS_ADMIN: lambda ctx: self.show_admin_products(ctx, 1),
            menus.BTN_CATEGORIES_ADMIN: self.show_admin_categories,
            menus.BTN_DISCOUNTS_ADMIN: self.show_admin_discounts,
            menus.BTN_LOW_STOCK: self.show_low_stock,
            menus.BTN_PENDING_PAYMENTS: self.show_pending_payments,
            menus.BTN_BROADCAST: lambda ctx: self.begin_flow(ctx, BroadcastDraft()),
            menus.BTN_BACK_TO_USER: lambda ctx: self.send(ctx.chat_id, USE_MENU, menus.main_menu()),
        }

    # -- plumbing --

    def is_admin(self, user: Users) -> bool:
        if user.is_admin:
            return True
        return self.settings.ADMIN_CHAT_ID is not None and user.chat_id == self.settings.ADMIN_CHAT_ID

    async def send(self, chat_id: int, text: str, keyboard: Optional[Dict[str, Any]] = None):
        return await self.gateway.send_message(chat_id, text, keyboard)

    def home_menu(self, ctx: ChatContext):
        return menus.admin_menu() if ctx.is_admin else menus.main_menu()

    async def begin_flow(self, ctx: ChatContext, draft, intro: Optional[str] = None) -> None:
        state = self.store.get(ctx.chat_id)
        state.flow = draft
        outcome = self.machine.start(draft)
        text = f"{intro}\n\n{outcome.prompt}" if intro else outcome.prompt
        await self.send(ctx.chat_id, text, menus.flow_menu(outcome.choices))

    # -- inbound text / photo --

    async def handle_message(self, ctx: ChatContext, message: Message) -> None:
        text = (message.text or message.caption or "").strip() or None
        photo = message.photo_file_id

        if text == menus.CMD_START:
            self.store.clear(ctx.chat_id)
            await self.send(ctx.chat_id, views.welcome(ctx.user.first_name, self.settings.SHOP_NAME), menus.main_menu())
            return

        if text in (menus.CMD_CANCEL, menus.BTN_CANCEL):
            self.store.get(ctx.chat_id).clear_flow()
            await self.send(ctx.chat_id, FLOW_CANCELLED, self.home_menu(ctx))
            return

        if text == menus.CMD_ADMIN:
            if not ctx.is_admin:
                await self.send(ctx.chat_id, ACCESS_DENIED)
                return
            self.store.get(ctx.chat_id).clear_flow()
            await self.send(ctx.chat_id, "🔐 به پنل مدیریت خوش آمدید.", menus.admin_menu())
            return

        # menu labels win over whatever flow was in progress
        if text in self._admin_menu:
            if not ctx.is_admin:
                await self.send(ctx.chat_id, ACCESS_DENIED)
                return
            self.store.get(ctx.chat_id).clear_flow()
            await self._admin_menu[text](ctx)
            return

        if text in self._user_menu:
            self.store.get(ctx.chat_id).clear_flow()
            await self._user_menu[text](ctx)
            return

        state = self.store.get(ctx.chat_id)
        if state.flow is not None:
            await self.continue_flow(ctx, state, text, photo)
            return

        await self.send(ctx.chat_id, USE_MENU, self.home_menu(ctx))

    async def continue_flow(self, ctx: ChatContext, state: ConversationState, text: Optional[str],
                            photo: Optional[str]) -> StepOutcome:
        outcome = self.machine.feed(state.flow, text, photo)
        if not outcome.finished:
            await self.send(ctx.chat_id, outcome.prompt, menus.flow_menu(outcome.choices))
            return outcome

        draft = outcome.draft
        # terminal: the flow is over whether the commit succeeds or not
        state.clear_flow()
        await self._commits[type(draft)](ctx, state, draft)
        return outcome

    # -- storefront views --

    async def show_categories(self, ctx: ChatContext) -> None:
        async with self.session_factory() as session:
            categories = await categories_repo.list_categories(session)
        text, keyboard = views.categories_view(categories)
        await self.send(ctx.chat_id, text, keyboard)

    async def show_category_products(self, ctx: ChatContext, category_id: int) -> None:
        async with self.session_factory() as session:
            products = await products_repo.list_category_products(session, category_id)
            if products:
                await products_repo.increase_view_count(session, [p.id for p in products])

        if not products:
            text, keyboard = views.empty_category_view()
            await self.send(ctx.chat_id, text, keyboard)
            return

        for product in products:
            caption, keyboard = views.product_card(product, self.settings.SHOP_CURRENCY)
            if product.image_url:
                await self.gateway.send_photo(ctx.chat_id, product.image_url, caption, keyboard)
            else:
                await self.send(ctx.chat_id, caption, keyboard)
            # flood guard
            await self.sleep(self.settings.PRODUCT_SEND_DELAY)

    async def show_cart(self, ctx: ChatContext) -> None:
        state = self.store.get(ctx.chat_id)
        async with self.session_factory() as session:
            cart = await cart_repo.get_cart(session, ctx.user_id)

        quote = state.staged_discount
        code, amount = None, 0
        if quote is not None and not cart.is_empty:
            # preview only; the real check runs again at checkout
            code = quote.code
            amount = quote.discount_amount
        text, keyboard = views.cart_view(cart, self.settings.SHOP_CURRENCY, self.settings.TAX_PERCENTAGE, code, amount)
        await self.send(ctx.chat_id, text, keyboard or self.home_menu(ctx))

    async def start_checkout(self, ctx: ChatContext) -> None:
        async with self.session_factory() as session:
            cart = await cart_repo.get_cart(session, ctx.user_id)
        if cart.is_empty:
            await self.send(ctx.chat_id, "🛒 سبد خرید شما خالی است!", self.home_menu(ctx))
            return
        await self.begin_flow(ctx, CheckoutDraft(), intro="✅ شروع ثبت سفارش")

    async def show_my_orders(self, ctx: ChatContext) -> None:
        async with self.session_factory() as session:
            orders = await orders_repo.list_user_orders(session, ctx.user_id, RECENT_ORDERS_LIMIT)
        text, keyboard = views.orders_list_view(orders, self.settings.SHOP_CURRENCY)
        await self.send(ctx.chat_id, text, keyboard)

    async def show_order(self, ctx: ChatContext, order: Orders, admin_view: bool = False) -> None:
        async with self.session_factory() as session:
            items = await orders_repo.get_order_items(session, order.id)
        if admin_view:
            text, keyboard = views.admin_order_view(order, items, self.settings.SHOP_CURRENCY)
        else:
            text, keyboard = views.order_detail_view(order, items, self.settings.SHOP_CURRENCY, self.settings.CARD_NUMBER)
        await self.send(ctx.chat_id, text, keyboard)

    # -- admin views --

    async def show_stats(self, ctx: ChatContext) -> None:
        async with self.session_factory() as session:
            users = await users_repo.get_user_stats(session)
            orders = await orders_repo.get_order_stats(session)
            products = await products_repo.get_product_stats(session, self.settings.LOW_STOCK_THRESHOLD)
            payments = await payments_repo.get_payment_stats(session)
        await self.send(ctx.chat_id, views.stats_view(users, orders, products, payments, self.settings.SHOP_CURRENCY))

    async def show_admin_orders(self, ctx: ChatContext, page: int) -> None:
        bounds = page_bounds(page, self.settings.PAGE_SIZE)
        async with self.session_factory() as session:
            orders = await orders_repo.list_orders(session, bounds["limit"], bounds["offset"])
            pages = total_pages(await orders_repo.count_orders(session), self.settings.PAGE_SIZE)
        text, keyboard = views.admin_orders_view(orders, bounds["page"], pages, self.settings.SHOP_CURRENCY)
        await self.send(ctx.chat_id, text, keyboard)

    async def show_admin_users(self, ctx: ChatContext, page: int) -> None:
        bounds = page_bounds(page, self.settings.PAGE_SIZE)
        async with self.session_factory() as session:
            users = await users_repo.list_users(session, bounds["limit"], bounds["offset"])
            pages = total_pages(await users_repo.count_users(session), self.settings.PAGE_SIZE)
        text, keyboard = views.admin_users_view(users, bounds["page"], pages, self.settings.ADMIN_CHAT_ID)
        await self.send(ctx.chat_id, text, keyboard)

    async def show_admin_products(self, ctx: ChatContext, page: int) -> None:
        bounds = page_bounds(page, self.settings.PAGE_SIZE)
        async with self.session_factory() as session:
            products = await products_repo.list_products(session, bounds["limit"], bounds["offset"])
            pages = total_pages(await products_repo.count_products(session), self.settings.PAGE_SIZE)
        text, keyboard = views.admin_products_view(products, bounds["page"], pages, self.settings.SHOP_CURRENCY)
        await self.send(ctx.chat_id, text, keyboard)

    async def show_category_picker(self, ctx: ChatContext) -> None:
        async with self.session_factory() as session:
            categories = await categories_repo.list_categories(session, active_only=False)
        text, keyboard = views.category_picker_view(categories)
        await self.send(ctx.chat_id, text, keyboard)

    async def show_admin_categories(self, ctx: ChatContext) -> None:
        async with self.session_factory() as session:
            categories = await categories_repo.list_categories(session, active_only=False)
        text, keyboard = views.admin_categories_view(categories)
        await self.send(ctx.chat_id, text, keyboard)

    async def show_admin_discounts(self, ctx: ChatContext) -> None:
        async with self.session_factory() as session:
            discounts = await discounts_repo.list_active_discounts(session)
        text, keyboard = views.admin_discounts_view(discounts, self.settings.SHOP_CURRENCY)
        await self.send(ctx.chat_id, text, keyboard)

    async def show_low_stock(self, ctx: ChatContext) -> None:
        threshold = self.settings.LOW_STOCK_THRESHOLD
        async with self.session_factory() as session:
            products = await products_repo.get_low_stock_products(session, threshold)
        await self.send(ctx.chat_id, views.low_stock_view(products, threshold))

    async def show_pending_payments(self, ctx: ChatContext) -> None:
        async with self.session_factory() as session:
            rows = await payments_repo.get_pending_verifications(session)
        text, keyboard = views.pending_payments_view(rows, self.settings.SHOP_CURRENCY)
        await self.send(ctx.chat_id, text, keyboard)

    # -- flow commits --

    async def _commit_checkout(self, ctx: ChatContext, state: ConversationState, draft: CheckoutDraft) -> None:
        details = CheckoutDetails(
            full_name=draft.full_name,
            phone=draft.phone,
            address=draft.address,
            postal_code=draft.postal_code,
        )
        try:
            outcome = await place_order(
                self.session_factory,
                ctx.user_id,
                details,
                state.staged_discount,
                tax_percentage=self.settings.TAX_PERCENTAGE,
                low_stock_threshold=self.settings.LOW_STOCK_THRESHOLD,
                tracking_code_factory=self.tracking_code_factory,
            )
        except BusinessRuleError as exc:
            logger.info("checkout.rejected", extra={"user_id": ctx.user_id, "error": exc.message})
            await self.send(ctx.chat_id, f"{exc.message}\n\nلطفاً سبد خرید را بررسی و دوباره تلاش کنید.",
                            self.home_menu(ctx))
            return

        state.staged_discount = None
        await self.send(ctx.chat_id,
                        views.checkout_receipt(outcome, self.settings.SHOP_CURRENCY, self.settings.CARD_NUMBER),
                        self.home_menu(ctx))

        async with self.session_factory() as session:
            items = await orders_repo.get_order_items(session, outcome.order.order_id)
        text, keyboard = views.admin_new_order_alert(
            outcome, ctx.user, details.full_name, details.phone, details.address, details.postal_code,
            items, self.settings.SHOP_CURRENCY,
        )
        await self.notifier.new_order(text, keyboard)
        await self.notifier.low_stock(outcome.order.low_stock)

    async def _commit_product(self, ctx: ChatContext, state: ConversationState, draft: ProductDraft) -> None:
        async with self.session_factory() as session:
            product = await products_repo.create_product(
                session,
                category_id=draft.category_id,
                name=draft.name,
                price=draft.price,
                stock=draft.stock,
                description=draft.description,
                discount_price=draft.discount_price,
                image_url=draft.image_url,
            )
        await self.send(ctx.chat_id, f"✅ محصول «{product.name}» با شناسه {product.id} ثبت شد.", menus.admin_menu())

    @staticmethod
    def _staged_changes(draft, skip=("step", "current")) -> Dict[str, Any]:
        return {f.name: getattr(draft, f.name) for f in fields(draft)
                if f.name not in skip and not f.name.endswith("_id") and getattr(draft, f.name) is not None}

    async def _commit_product_edit(self, ctx: ChatContext, state: ConversationState, draft: ProductEditDraft) -> None:
        changes = self._staged_changes(draft)
        if not changes:
            await self.send(ctx.chat_id, "ℹ️ تغییری اعمال نشد.", menus.admin_menu())
            return
        notice = f"✅ محصول #{draft.product_id} به‌روزرسانی شد."
        kept_discount = draft.current.get("discount_price")
        if draft.price is not None and draft.discount_price is None and kept_discount is not None \
                and kept_discount >= draft.price:
            # a discount price must stay below the list price
            changes["discount_price"] = None
            notice += "\nℹ️ قیمت با تخفیف قبلی از قیمت جدید کمتر نبود و حذف شد."
        async with self.session_factory() as session:
            await products_repo.update_product(session, draft.product_id, changes)
        await self.send(ctx.chat_id, notice, menus.admin_menu())

    async def _commit_category(self, ctx: ChatContext, state: ConversationState, draft: CategoryDraft) -> None:
        async with self.session_factory() as session:
            category = await categories_repo.create_category(
                session, draft.title, icon=draft.icon, description=draft.description, sort_order=draft.sort_order or 0,
            )
        await self.send(ctx.chat_id, f"✅ دسته‌بندی «{category.title}» ثبت شد.", menus.admin_menu())

    async def _commit_category_edit(self, ctx: ChatContext, state: ConversationState,
                                    draft: CategoryEditDraft) -> None:
        changes = self._staged_changes(draft)
        if not changes:
            await self.send(ctx.chat_id, "ℹ️ تغییری اعمال نشد.", menus.admin_menu())
            return
        async with self.session_factory() as session:
            await categories_repo.update_category(session, draft.category_id, changes)
        await self.send(ctx.chat_id, f"✅ دسته‌بندی #{draft.category_id} به‌روزرسانی شد.", menus.admin_menu())

    async def _commit_discount(self, ctx: ChatContext, state: ConversationState, draft: DiscountDraft) -> None:
        async with self.session_factory() as session:
            if await discounts_repo.find_discount_by_code(session, draft.code):
                await self.send(ctx.chat_id, f"❌ کد «{draft.code}» قبلاً ثبت شده است.", menus.admin_menu())
                return
            end_date = now() + timedelta(days=draft.valid_days) if draft.valid_days else None
            discount = await discounts_repo.create_discount(
                session,
                code=draft.code,
                discount_type=draft.discount_type,
                discount_value=draft.discount_value,
                min_purchase=draft.min_purchase or 0,
                max_discount=draft.max_discount,
                usage_limit=draft.usage_limit,
                end_date=end_date,
            )
        await self.send(ctx.chat_id, "✅ کد تخفیف ثبت شد:\n\n" + views.describe_discount(discount, self.settings.SHOP_CURRENCY),
                        menus.admin_menu())

    async def _commit_discount_edit(self, ctx: ChatContext, state: ConversationState,
                                    draft: DiscountEditDraft) -> None:
        changes = self._staged_changes(draft)
        valid_days = changes.pop("valid_days", None)
        if valid_days:
            changes["end_date"] = now() + timedelta(days=valid_days)
        if not changes:
            await self.send(ctx.chat_id, "ℹ️ تغییری اعمال نشد.", menus.admin_menu())
            return
        async with self.session_factory() as session:
            await discounts_repo.update_discount(session, draft.discount_id, changes)
        await self.send(ctx.chat_id, f"✅ کد تخفیف #{draft.discount_id} به‌روزرسانی شد.", menus.admin_menu())

    async def _commit_broadcast(self, ctx: ChatContext, state: ConversationState, draft: BroadcastDraft) -> None:
        if not draft.confirmed:
            await self.send(ctx.chat_id, FLOW_CANCELLED, menus.admin_menu())
            return
        await self.send(ctx.chat_id, "📢 ارسال پیام همگانی آغاز شد...", menus.admin_menu())
        await self.notifier.broadcast(draft.text, report_to=ctx.chat_id)

    async def _commit_discount_entry(self, ctx: ChatContext, state: ConversationState,
                                     draft: DiscountEntryDraft) -> None:
        notice = None
        async with self.session_factory() as session:
            cart = await cart_repo.get_cart(session, ctx.user_id)
            if not cart.is_empty:
                try:
                    state.staged_discount = await validate_discount(session, draft.code, ctx.user_id, cart.subtotal)
                except DiscountRejected as exc:
                    notice = exc.message
        if cart.is_empty:
            await self.send(ctx.chat_id, "🛒 سبد خرید شما خالی است!", self.home_menu(ctx))
            return
        await self.send(ctx.chat_id, notice or f"✅ کد تخفیف {state.staged_discount.code} اعمال شد.")
        await self.show_cart(ctx)

    async def _commit_track_order(self, ctx: ChatContext, state: ConversationState, draft: TrackOrderDraft) -> None:
        async with self.session_factory() as session:
            if draft.query.isdigit():
                order = await orders_repo.find_order(session, int(draft.query))
            else:
                order = await orders_repo.find_order_by_tracking_code(session, draft.query)
        if order is None or (order.user_id != ctx.user_id and not ctx.is_admin):
            await self.send(ctx.chat_id, "❌ سفارشی با این مشخصات یافت نشد.", self.home_menu(ctx))
            return
        await self.show_order(ctx, order)

    async def _commit_receipt(self, ctx: ChatContext, state: ConversationState, draft: ReceiptDraft) -> None:
        async with self.session_factory() as session:
            try:
                order, payment = await submit_receipt(session, draft.order_id, ctx.user_id, draft.receipt_ref)
            except BusinessRuleError as exc:
                await self.send(ctx.chat_id, exc.message, self.home_menu(ctx))
                return
        await self.send(ctx.chat_id, "✅ فیش واریز دریافت شد و پس از بررسی نتیجه اطلاع داده می‌شود.",
                        self.home_menu(ctx))
        caption, keyboard = views.receipt_for_admin(payment.id, order, self.settings.SHOP_CURRENCY)
        await self.notifier.receipt_submitted(draft.receipt_ref, caption, keyboard)

    async def _commit_search(self, ctx: ChatContext, state: ConversationState, draft: SearchDraft) -> None:
        async with self.session_factory() as session:
            products = await products_repo.search_products(session, draft.query)
        text, keyboard = views.search_results_view(draft.query, products, self.settings.SHOP_CURRENCY)
        await self.send(ctx.chat_id, text, keyboard or self.home_menu(ctx))
