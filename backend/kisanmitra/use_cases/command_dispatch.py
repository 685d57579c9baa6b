"""Telegram command dispatch: maps inbound text to a reply and sends it."""
from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from html import escape
from typing import Protocol

from ..domain_errors import ErrorKind, LinkingError
from ..schemas import InboundMessage
from ..services import replies
from ..services.gemini import AiReply, ConversationTurn
from ..services.linking import LinkingRegistry
from ..services.prompts import SUPPORTED_LANGUAGES
from ..services.telegram_sender import SendResult

logger = logging.getLogger(__name__)

ASK_COMMAND = "/ask"


def _is_command(text: str, name: str) -> bool:
    """``name`` alone, addressed as ``name@bot``, or followed by arguments."""
    if not text.startswith(name):
        return False
    rest = text[len(name):]
    return not rest or rest[0] == "@" or rest[0].isspace()


class CommandKind(str, Enum):
    CANNED = "canned"
    AI_DELEGATED = "ai_delegated"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class CommandResult:
    kind: CommandKind
    reply_text: str
    command: str | None = None


@dataclass(frozen=True)
class DispatchOutcome:
    result: CommandResult | None = None
    send: SendResult | None = None
    error: ErrorKind | None = None

    @property
    def replied(self) -> bool:
        return self.send is not None and self.send.ok


class ChatGateway(Protocol):
    def complete_chat(self, history: Sequence[ConversationTurn], language: str = "en") -> AiReply:
        ...


class MessageSender(Protocol):
    def send(self, chat_id: int | str, text: str) -> SendResult:
        ...


class CommandDispatcher:
    """First matching rule wins; matching is a case-sensitive prefix test on the trimmed text."""

    def __init__(
        self,
        *,
        sender: MessageSender,
        gateway: ChatGateway,
        registry: LinkingRegistry | None = None,
        product_name: str = "Kisan Mitra",
        website_url: str = "kisanmitraapp.vercel.app",
        default_language: str = "en",
    ):
        self._sender = sender
        self._gateway = gateway
        self._registry = registry
        self._product_name = product_name
        self._website_url = website_url
        self._default_language = default_language

    def resolve(self, message: InboundMessage) -> CommandResult | None:
        """Pick the reply for a message. None means there is nothing to answer."""
        text = message.text.strip()
        if not text:
            return None

        if text.startswith("/start"):
            return CommandResult(CommandKind.CANNED, replies.welcome_text(self._product_name), "/start")
        if text.startswith("/help"):
            return CommandResult(CommandKind.CANNED, replies.help_text(), "/help")
        if text.startswith("/weather"):
            return CommandResult(CommandKind.CANNED, replies.weather_text(), "/weather")
        if text.startswith("/market"):
            return CommandResult(CommandKind.CANNED, replies.market_text(), "/market")
        if _is_command(text, "/link"):
            return self._link(message)
        if _is_command(text, "/unlink"):
            return self._unlink(message)
        if text == ASK_COMMAND or text.startswith(ASK_COMMAND + " "):
            question = text[len(ASK_COMMAND):].strip()
            reply = self._gateway.complete_chat([ConversationTurn.user(question)], self._language(message))
            return CommandResult(
                CommandKind.AI_DELEGATED,
                replies.ai_response_text(question, reply.text),
                ASK_COMMAND,
            )

        reply = self._gateway.complete_chat([ConversationTurn.user(text)], self._language(message))
        if reply.ok:
            return CommandResult(CommandKind.AI_DELEGATED, escape(reply.text))
        logger.info(f"⚠️ AI unavailable ({reply.error.value}), acknowledging chat {message.chat_id}")
        return CommandResult(CommandKind.UNRECOGNIZED, replies.acknowledgment_text(text, self._website_url))

    def handle(self, message: InboundMessage | None) -> DispatchOutcome:
        """Resolve and send exactly one reply. Delivery failures are reported, never raised."""
        if message is None:
            return DispatchOutcome()

        result = self.resolve(message)
        if result is None:
            return DispatchOutcome()

        try:
            sent = self._sender.send(message.chat_id, result.reply_text)
        except Exception:
            logger.exception(f"❌ Unexpected error sending reply to chat {message.chat_id}")
            return DispatchOutcome(result=result, error=ErrorKind.INTERNAL)

        if not sent.ok:
            logger.warning(f"❌ Reply to chat {message.chat_id} not delivered: {sent.error.value} {sent.detail or ''}")
            return DispatchOutcome(result=result, send=sent, error=sent.error)
        return DispatchOutcome(result=result, send=sent)

    def _language(self, message: InboundMessage) -> str:
        code = (message.language_code or "").split("-")[0].lower()
        return code if code in SUPPORTED_LANGUAGES else self._default_language

    def _link(self, message: InboundMessage) -> CommandResult:
        if self._registry is None:
            return CommandResult(CommandKind.CANNED, replies.link_unavailable_text(), "/link")
        try:
            issued = self._registry.issue(message.telegram_user_id)
        except LinkingError as e:
            logger.warning(f"❌ Could not issue linking code for chat {message.chat_id}: {e.code}")
            return CommandResult(CommandKind.CANNED, replies.link_unavailable_text(), "/link")
        ttl_minutes = int(self._registry.ttl.total_seconds() // 60)
        return CommandResult(
            CommandKind.CANNED,
            replies.link_code_text(issued.code, ttl_minutes, self._product_name),
            "/link",
        )

    def _unlink(self, message: InboundMessage) -> CommandResult:
        if self._registry is None:
            return CommandResult(CommandKind.CANNED, replies.link_unavailable_text(), "/unlink")
        removed = self._registry.revoke(message.telegram_user_id)
        return CommandResult(CommandKind.CANNED, replies.unlink_text(removed), "/unlink")
