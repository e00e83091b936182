from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class _GatewayModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class ChatUser(_GatewayModel):
    id: int
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_bot: bool = False


class Chat(_GatewayModel):
    id: int
    type: Optional[str] = None


class PhotoSize(_GatewayModel):
    file_id: str
    width: Optional[int] = None
    height: Optional[int] = None
    file_size: Optional[int] = None


class Message(_GatewayModel):
    message_id: int
    from_user: Optional[ChatUser] = Field(default=None, alias="from")
    chat: Chat
    text: Optional[str] = None
    caption: Optional[str] = None
    photo: Optional[List[PhotoSize]] = None

    @property
    def photo_file_id(self) -> Optional[str]:
        # gateways list sizes smallest first
        if not self.photo:
            return None
        return max(self.photo, key=lambda p: (p.file_size or 0, p.width or 0)).file_id


class CallbackQuery(_GatewayModel):
    id: str
    from_user: ChatUser = Field(alias="from")
    message: Optional[Message] = None
    data: Optional[str] = None

    @property
    def chat_id(self) -> int:
        return self.message.chat.id if self.message else self.from_user.id


class Update(_GatewayModel):
    update_id: int
    message: Optional[Message] = None
    callback_query: Optional[CallbackQuery] = None
