from typing import Any, Dict, List, Optional
import httpx
from shopbot.common.circuit_breaker import CircuitBreaker
from shopbot.common.constants import MAX_CALLBACK_ANSWER_LEN, MAX_CAPTION_LEN, MAX_MESSAGE_LEN
from shopbot.common.exceptions import GatewayAuthError, GatewayError
from shopbot.common.logging_setup import get_logger
from shopbot.common.retries import run_with_retry
from shopbot.config.settings import Settings, config_settings
from shopbot.gateway.types import Update

logger = get_logger("shopbot.gateway")


class BotGateway:
    """Thin async client over the bot HTTP API (Bale / Telegram compatible)."""

    def __init__(
        self,
        settings: Settings = config_settings,
        client: Optional[httpx.AsyncClient] = None,
        circuit: Optional[CircuitBreaker] = None,
        retry_attempts: int = 3,
    ):
        self.settings = settings
        self._client = client or httpx.AsyncClient(
            base_url=settings.bot_api_url,
            timeout=httpx.Timeout(settings.HTTP_TIMEOUT),
        )
        self.circuit = circuit or CircuitBreaker(name="gateway", failure_threshold=5, recovery_timeout=30.0)
        self.retry_attempts = retry_attempts

    async def _call(self, method: str, payload: Optional[Dict[str, Any]] = None, *,
                    retry: bool = True, timeout: Optional[float] = None) -> Any:

        async def _do():
            kwargs: Dict[str, Any] = {"json": payload or {}}
            if timeout is not None:
                kwargs["timeout"] = timeout
            resp = await self._client.post(method, **kwargs)
            try:
                body = resp.json()
            except ValueError:
                raise GatewayError(f"{method} returned a non-JSON body", status_code=resp.status_code, method=method)

            if not body.get("ok"):
                raise GatewayError(
                    body.get("description") or f"{method} failed",
                    status_code=body.get("error_code") or resp.status_code,
                    method=method,
                )
            return body.get("result")

        return await run_with_retry(
            _do,
            circuit=self.circuit,
            attempts=self.retry_attempts if retry else 1,
            operation=f"gateway.{method}",
        )

    async def get_me(self) -> Dict[str, Any]:
        try:
            return await self._call("getMe", retry=False)
        except GatewayError as exc:
            raise GatewayAuthError(exc.message or "getMe failed", status_code=exc.status_code, method="getMe") from exc
        except httpx.HTTPError as exc:
            raise GatewayAuthError(f"getMe transport failure: {exc}", method="getMe") from exc

    async def get_updates(self, offset: int = 0, timeout: int = 30) -> List[Update]:
        # long poll; the http timeout has to outlive the server-side wait
        result = await self._call(
            "getUpdates",
            {"offset": offset, "timeout": timeout},
            retry=False,
            timeout=timeout + 10,
        )
        updates = []
        for raw in result or []:
            try:
                updates.append(Update.model_validate(raw))
            except ValueError:
                logger.warning("gateway.update.unparsable", extra={"raw_update_id": raw.get("update_id")})
        return updates

    async def send_message(self, chat_id: int, text: str, keyboard: Optional[Dict[str, Any]] = None) -> Any:
        payload: Dict[str, Any] = {"chat_id": chat_id, "text": text[:MAX_MESSAGE_LEN]}
        if keyboard:
            payload["reply_markup"] = keyboard
        return await self._call("sendMessage", payload)

    async def send_photo(self, chat_id: int, photo: str, caption: str = "",
                         keyboard: Optional[Dict[str, Any]] = None) -> Any:
        payload: Dict[str, Any] = {"chat_id": chat_id, "photo": photo, "caption": caption[:MAX_CAPTION_LEN]}
        if keyboard:
            payload["reply_markup"] = keyboard
        try:
            return await self._call("sendPhoto", payload)
        except (GatewayError, httpx.HTTPError) as exc:
            logger.warning("gateway.send_photo.fallback_to_text", extra={"target_chat": chat_id, "error": str(exc)})
            return await self.send_message(chat_id, caption, keyboard)

    async def edit_message_text(self, chat_id: int, message_id: int, text: str,
                                keyboard: Optional[Dict[str, Any]] = None) -> Any:
        payload: Dict[str, Any] = {"chat_id": chat_id, "message_id": message_id, "text": text[:MAX_MESSAGE_LEN]}
        if keyboard:
            payload["reply_markup"] = keyboard
        return await self._call("editMessageText", payload)

    async def delete_message(self, chat_id: int, message_id: int) -> Any:
        return await self._call("deleteMessage", {"chat_id": chat_id, "message_id": message_id}, retry=False)

    async def answer_callback(self, callback_id: str, text: str = "", alert: bool = False) -> Any:
        return await self._call(
            "answerCallbackQuery",
            {"callback_query_id": callback_id, "text": text[:MAX_CALLBACK_ANSWER_LEN], "show_alert": alert},
            retry=False,
        )

    async def aclose(self) -> None:
        await self._client.aclose()
