from typing import Any, Optional

import httpx

from market_watcher.utils.config_loader import TelegramConfig
from market_watcher.utils.logger import LOGGER as logger


class TelegramAPIError(Exception):
    """A Bot API call failed at the transport level or returned ok=false."""

    def __init__(self, method: str, message: str, error_code: Optional[int] = None) -> None:
        super().__init__(f"{method}: {message}")
        self.method = method
        self.error_code = error_code


def reply_keyboard(*buttons: str) -> dict[str, Any]:
    """Builds a one-row ReplyKeyboardMarkup."""
    return {"keyboard": [[{"text": b} for b in buttons]], "resize_keyboard": True}


class TelegramBotClient:
    """
    Thin async wrapper over the Telegram Bot HTTP API.
    """

    def __init__(
        self,
        config: TelegramConfig,
        access_token: str,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not access_token:
            logger.critical("CRITICAL: TelegramBotClient initialized with an empty access token.")
            raise ValueError("access_token must be a non-empty string.")

        self.config = config
        self._endpoint = f"{config.base_url.rstrip('/')}/bot{access_token}"
        self._client = http_client or httpx.AsyncClient(timeout=config.request_timeout_seconds)
        self._owns_client = http_client is None

    async def _call(self, method: str, payload: Optional[dict[str, Any]] = None, timeout: Optional[float] = None) -> Any:
        request_timeout = timeout if timeout is not None else self.config.request_timeout_seconds
        try:
            response = await self._client.post(f"{self._endpoint}/{method}", json=payload or {}, timeout=request_timeout)
            body = response.json()
        except httpx.TimeoutException as e:
            raise TelegramAPIError(method, f"timed out after {request_timeout}s") from e
        except httpx.RequestError as e:
            # The request URL carries the token, so only the exception type is reported.
            raise TelegramAPIError(method, f"request failed: {type(e).__name__}") from e
        except ValueError as e:
            raise TelegramAPIError(method, f"non-JSON response (HTTP {response.status_code})") from e

        if not isinstance(body, dict) or not body.get("ok"):
            description = body.get("description", "unknown error") if isinstance(body, dict) else "malformed response"
            error_code = body.get("error_code") if isinstance(body, dict) else response.status_code
            raise TelegramAPIError(method, str(description), error_code)
        return body.get("result")

    async def get_me(self) -> dict[str, Any]:
        result: dict[str, Any] = await self._call("getMe")
        return result

    async def get_updates(self, offset: Optional[int] = None, timeout: int = 0) -> list[dict[str, Any]]:
        """
        Long-polls for updates. The HTTP timeout is widened past the poll timeout.
        """
        payload: dict[str, Any] = {"timeout": timeout, "allowed_updates": ["message"]}
        if offset is not None:
            payload["offset"] = offset
        result = await self._call("getUpdates", payload, timeout=timeout + self.config.request_timeout_seconds)
        return list(result or [])

    async def send_message(
        self,
        chat_id: int,
        text: str,
        parse_mode: Optional[str] = None,
        reply_markup: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"chat_id": chat_id, "text": text}
        if parse_mode:
            payload["parse_mode"] = parse_mode
        if reply_markup:
            payload["reply_markup"] = reply_markup
        result: dict[str, Any] = await self._call("sendMessage", payload)
        return result

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
            logger.info("TelegramBotClient HTTP client closed.")
