from typing import Optional

import httpx
from uuid6 import uuid7

from shopbot.bot.handlers import BLOCKED_NOTICE, ChatContext, ShopBot
from shopbot.callbacks.router import CallbackRouter
from shopbot.common.constants import chat_id_ctx, trace_id_ctx, update_id_ctx
from shopbot.common.exceptions import GatewayError
from shopbot.common.logging_setup import get_logger
from shopbot.gateway.types import ChatUser, Update
from shopbot.users import repository as users_repo

logger = get_logger("shopbot.dispatcher")

APOLOGY = "⚠️ خطایی رخ داد. لطفاً دوباره تلاش کنید یا /start را بزنید."


class UpdateDispatcher:
    """
    Entry point for one inbound update. Binds the log context, resolves the sender, serializes work
    per chat and keeps any failure inside the update that caused it.
    """

    def __init__(self, bot: ShopBot, router: Optional[CallbackRouter] = None):
        self.bot = bot
        self.router = router or CallbackRouter(bot)

    async def _context(self, chat_id: int, sender: Optional[ChatUser], message_id: Optional[int]) -> ChatContext:
        async with self.bot.session_factory() as session:
            user = await users_repo.get_or_create_user(
                session,
                chat_id,
                username=sender.username if sender else None,
                first_name=sender.first_name if sender else None,
                last_name=sender.last_name if sender else None,
            )
        return ChatContext(chat_id=chat_id, user=user, is_admin=self.bot.is_admin(user), message_id=message_id)

    async def dispatch(self, update: Update) -> None:
        if update.callback_query is not None:
            callback = update.callback_query
            chat_id = callback.chat_id
            sender = callback.from_user
            message_id = callback.message.message_id if callback.message else None
        elif update.message is not None:
            callback = None
            chat_id = update.message.chat.id
            sender = update.message.from_user
            message_id = update.message.message_id
        else:
            logger.debug("update.ignored", extra={"update_id": update.update_id})
            return

        tokens = (
            update_id_ctx.set(update.update_id),
            chat_id_ctx.set(chat_id),
            trace_id_ctx.set(str(uuid7())),
        )
        try:
            async with self.bot.store.lock(chat_id):
                await self._handle(update, chat_id, sender, message_id, callback)
        finally:
            trace_id_ctx.reset(tokens[2])
            chat_id_ctx.reset(tokens[1])
            update_id_ctx.reset(tokens[0])

    async def _handle(self, update: Update, chat_id: int, sender, message_id, callback) -> None:
        try:
            ctx = await self._context(chat_id, sender, message_id)
            if ctx.user.is_blocked and not ctx.is_admin:
                logger.info("update.blocked_user", extra={"user_id": ctx.user.id})
                if callback is not None:
                    await self.bot.gateway.answer_callback(callback.id, BLOCKED_NOTICE, True)
                else:
                    await self.bot.send(chat_id, BLOCKED_NOTICE)
                return

            if callback is not None:
                await self.router.route(ctx, callback)
            else:
                await self.bot.handle_message(ctx, update.message)
        except Exception:
            logger.exception("update.failed", extra={"update_id": update.update_id})
            self.bot.store.clear(chat_id)
            await self._apologize(chat_id, callback)

    async def _apologize(self, chat_id: int, callback) -> None:
        try:
            if callback is not None:
                await self.bot.gateway.answer_callback(callback.id, APOLOGY, True)
            else:
                await self.bot.send(chat_id, APOLOGY)
        except (GatewayError, httpx.HTTPError) as exc:
            logger.warning("update.apology_failed", extra={"error": str(exc)})
