from typing import Any, Dict, List, Optional

from shopbot.categories import repository as categories_repo
from shopbot.common.exceptions import GatewayError
from shopbot.gateway.keyboards import labels
from shopbot.gateway.types import Update
from shopbot.products import repository as products_repo
from shopbot.users import repository as users_repo


ADMIN_CHAT_ID = 1000


async def no_sleep(_delay: float) -> None:
    return None


class FakeGateway:
    """Records every outbound call instead of talking to a bot API."""

    def __init__(self, failing_chats=()):
        self.sent: List[Dict[str, Any]] = []
        self.answers: List[Dict[str, Any]] = []
        self.edits: List[Dict[str, Any]] = []
        self.deleted: List[Any] = []
        self.failing_chats = set(failing_chats)
        self.updates: List[Any] = []

    async def get_me(self):
        return {"id": 1, "username": "test_shop_bot"}

    async def get_updates(self, offset: int = 0, timeout: int = 30):
        if not self.updates:
            return []
        batch = self.updates.pop(0)
        if isinstance(batch, Exception):
            raise batch
        return batch

    async def send_message(self, chat_id: int, text: str, keyboard: Optional[Dict[str, Any]] = None):
        if chat_id in self.failing_chats:
            raise GatewayError("Forbidden: bot was blocked by the user", status_code=403, method="sendMessage")
        self.sent.append({"chat_id": chat_id, "text": text, "keyboard": keyboard})
        return {"message_id": len(self.sent)}

    async def send_photo(self, chat_id: int, photo: str, caption: str = "", keyboard: Optional[Dict[str, Any]] = None):
        if chat_id in self.failing_chats:
            raise GatewayError("Forbidden", status_code=403, method="sendPhoto")
        self.sent.append({"chat_id": chat_id, "text": caption, "photo": photo, "keyboard": keyboard})
        return {"message_id": len(self.sent)}

    async def edit_message_text(self, chat_id: int, message_id: int, text: str, keyboard=None):
        self.edits.append({"chat_id": chat_id, "message_id": message_id, "text": text, "keyboard": keyboard})
        return True

    async def delete_message(self, chat_id: int, message_id: int):
        self.deleted.append((chat_id, message_id))
        return True

    async def answer_callback(self, callback_id: str, text: str = "", alert: bool = False):
        self.answers.append({"id": callback_id, "text": text, "alert": alert})
        return True

    async def aclose(self):
        return None

    # -- helpers for assertions --

    def texts(self, chat_id: Optional[int] = None) -> List[str]:
        return [m["text"] for m in self.sent if chat_id is None or m["chat_id"] == chat_id]

    def last(self, chat_id: Optional[int] = None) -> Dict[str, Any]:
        messages = [m for m in self.sent if chat_id is None or m["chat_id"] == chat_id]
        return messages[-1]

    def last_labels(self, chat_id: Optional[int] = None) -> List[str]:
        keyboard = self.last(chat_id)["keyboard"]
        return labels(keyboard) if keyboard else []

    def callbacks_in_last(self, chat_id: Optional[int] = None) -> List[str]:
        keyboard = self.last(chat_id)["keyboard"] or {}
        return [b["callback_data"] for row in keyboard.get("inline_keyboard", []) for b in row]


_next_update = iter(range(1, 1_000_000))


def text_update(chat_id: int, text: str, first_name: str = "Test") -> Update:
    update_id = next(_next_update)
    return Update.model_validate({
        "update_id": update_id,
        "message": {
            "message_id": update_id,
            "from": {"id": chat_id, "first_name": first_name},
            "chat": {"id": chat_id, "type": "private"},
            "text": text,
        },
    })


def photo_update(chat_id: int, file_id: str) -> Update:
    update_id = next(_next_update)
    return Update.model_validate({
        "update_id": update_id,
        "message": {
            "message_id": update_id,
            "from": {"id": chat_id, "first_name": "Test"},
            "chat": {"id": chat_id, "type": "private"},
            "photo": [
                {"file_id": f"{file_id}-small", "width": 90, "height": 90, "file_size": 100},
                {"file_id": file_id, "width": 800, "height": 800, "file_size": 5000},
            ],
        },
    })


def callback_update(chat_id: int, data: str) -> Update:
    update_id = next(_next_update)
    return Update.model_validate({
        "update_id": update_id,
        "callback_query": {
            "id": f"cb-{update_id}",
            "from": {"id": chat_id, "first_name": "Test"},
            "message": {"message_id": 77, "chat": {"id": chat_id, "type": "private"}, "text": "..."},
            "data": data,
        },
    })


async def seed_user(session_factory, chat_id: int, **flags):
    async with session_factory() as session:
        user = await users_repo.get_or_create_user(session, chat_id, first_name="Test")
        if flags.get("is_blocked"):
            await users_repo.set_user_blocked(session, user.id, True)
        if flags.get("is_admin"):
            await users_repo.set_user_admin(session, user.id, True)
        return await users_repo.find_user_by_id(session, user.id)


async def seed_category(session_factory, title: str = "Books"):
    async with session_factory() as session:
        return await categories_repo.create_category(session, title, icon="📚")


async def seed_product(session_factory, category_id: int, name: str = "Notebook", price: int = 100_000,
                       stock: int = 10, discount_price: Optional[int] = None, **extra):
    async with session_factory() as session:
        return await products_repo.create_product(
            session, category_id=category_id, name=name, price=price, stock=stock,
            discount_price=discount_price, **extra,
        )
