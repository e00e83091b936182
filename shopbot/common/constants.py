import contextvars
from typing import Optional

# Context variables for the update being processed
update_id_ctx: contextvars.ContextVar[Optional[int]] = contextvars.ContextVar("update_id", default=None)
chat_id_ctx: contextvars.ContextVar[Optional[int]] = contextvars.ContextVar("chat_id", default=None)
trace_id_ctx: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("trace_id", default=None)

# literal reply meaning "skip this optional field" in every flow
SKIP_SENTINEL = "0"

MAX_MESSAGE_LEN = 4096
MAX_CAPTION_LEN = 1024
MAX_CALLBACK_ANSWER_LEN = 200

MAX_CART_ITEM_QTY = 100
RECENT_ORDERS_LIMIT = 10
