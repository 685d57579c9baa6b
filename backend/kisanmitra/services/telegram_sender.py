"""Outbound Telegram messages via the Bot API sendMessage method."""
from __future__ import annotations

import logging
from dataclasses import dataclass

import requests

from ..domain_errors import ErrorKind

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER = 60


@dataclass(frozen=True)
class SendResult:
    ok: bool
    error: ErrorKind | None = None
    detail: str | None = None
    retry_after: int | None = None

    @classmethod
    def success(cls) -> "SendResult":
        return cls(ok=True)

    @classmethod
    def failure(cls, error: ErrorKind, detail: str | None = None, *, retry_after: int | None = None) -> "SendResult":
        return cls(ok=False, error=error, detail=detail, retry_after=retry_after)


class TelegramSender:
    """Stateless wrapper around sendMessage. Never retries and never raises for delivery failures."""

    def __init__(
        self,
        bot_token: str | None,
        *,
        api_base: str = "https://api.telegram.org",
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ):
        self._bot_token = bot_token
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self._bot_token)

    def send(self, chat_id: int | str, text: str, *, parse_mode: str | None = "HTML") -> SendResult:
        if not self._bot_token:
            logger.warning("⚠️ TELEGRAM_BOT_TOKEN not configured, message not sent")
            return SendResult.failure(ErrorKind.UNCONFIGURED, "TELEGRAM_BOT_TOKEN not configured")

        url = f"{self._api_base}/bot{self._bot_token}/sendMessage"
        payload: dict[str, object] = {"chat_id": chat_id, "text": text}
        if parse_mode:
            payload["parse_mode"] = parse_mode

        try:
            response = self._session.post(url, json=payload, timeout=self._timeout)
        except requests.Timeout:
            logger.warning(f"⏳ Telegram sendMessage timed out for chat {chat_id}")
            return SendResult.failure(ErrorKind.TIMEOUT, f"Timed out after {self._timeout}s")
        except requests.RequestException as e:
            # Exception text can embed the request URL, which contains the bot token.
            logger.warning(f"❌ Telegram sendMessage transport error for chat {chat_id}: {type(e).__name__}")
            return SendResult.failure(ErrorKind.TRANSPORT, type(e).__name__)

        if 200 <= response.status_code < 300:
            rejected = _rejected_description(response)
            if rejected is not None:
                logger.warning(f"❌ Telegram answered ok=false for chat {chat_id}: {rejected}")
                return SendResult.failure(ErrorKind.PLATFORM_REJECTED, rejected)
            logger.info(f"📨 Sent message to chat {chat_id}")
            return SendResult.success()

        if response.status_code == 429:
            retry_after = _retry_after(response)
            logger.warning(f"⏳ Telegram rate limited chat {chat_id} for {retry_after}s")
            return SendResult.failure(
                ErrorKind.PLATFORM_REJECTED,
                f"RATE_LIMIT:{retry_after}",
                retry_after=retry_after,
            )
        if response.status_code == 403:
            logger.warning(f"🚫 Bot blocked by chat {chat_id}")
            return SendResult.failure(ErrorKind.PLATFORM_REJECTED, "BOT_BLOCKED")

        logger.warning(f"❌ Telegram rejected message for chat {chat_id}: HTTP {response.status_code}")
        return SendResult.failure(
            ErrorKind.PLATFORM_REJECTED,
            f"HTTP_{response.status_code}: {response.text[:200]}",
        )


def _json_body(response: requests.Response) -> dict | None:
    try:
        data = response.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _rejected_description(response: requests.Response) -> str | None:
    """Description of a 2xx body that still says ``ok: false``; None otherwise."""
    data = _json_body(response)
    if data is None or data.get("ok") is not False:
        return None
    return str(data.get("description") or "ok=false")


def _retry_after(response: requests.Response) -> int:
    data = _json_body(response) or {}
    parameters = data.get("parameters")
    if not isinstance(parameters, dict):
        return DEFAULT_RETRY_AFTER
    try:
        return int(parameters.get("retry_after", DEFAULT_RETRY_AFTER))
    except (TypeError, ValueError):
        return DEFAULT_RETRY_AFTER
