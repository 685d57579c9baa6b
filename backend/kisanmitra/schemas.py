"""Pydantic schemas for API."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# Telegram webhook payload (only the fields the bot acts on are modelled)
class TelegramChat(BaseModel):
    id: int
    type: Optional[str] = None
    model_config = ConfigDict(extra="ignore")


class TelegramUser(BaseModel):
    id: int
    first_name: str = ""
    last_name: Optional[str] = None
    username: Optional[str] = None
    language_code: Optional[str] = None
    model_config = ConfigDict(extra="ignore")

    @property
    def display_name(self) -> str:
        return " ".join(name for name in (self.first_name, self.last_name) if name) or "Telegram User"


class TelegramMessage(BaseModel):
    message_id: Optional[int] = None
    chat: TelegramChat
    from_user: Optional[TelegramUser] = Field(default=None, alias="from")
    text: Optional[str] = None
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    def to_inbound(self) -> "InboundMessage":
        sender = self.from_user
        return InboundMessage(
            chat_id=self.chat.id,
            text=self.text or "",
            sender_id=sender.id if sender else None,
            sender_name=sender.display_name if sender else None,
            sender_username=sender.username if sender else None,
            language_code=sender.language_code if sender else None,
        )


class TelegramUpdate(BaseModel):
    """Telegram webhook update payload."""
    update_id: Optional[int] = None
    message: Optional[TelegramMessage] = None
    model_config = ConfigDict(extra="ignore")


@dataclass(frozen=True)
class InboundMessage:
    """Validated message handed to the command dispatcher."""

    chat_id: int
    text: str = ""
    sender_id: int | None = None
    sender_name: str | None = None
    sender_username: str | None = None
    language_code: str | None = None

    @property
    def telegram_user_id(self) -> int:
        # Private chats share the user's id; fall back to it when "from" is absent.
        return self.sender_id if self.sender_id is not None else self.chat_id


# Webhook responses
class WebhookAck(BaseModel):
    ok: bool = True


class LivenessResponse(BaseModel):
    status: str
    timestamp: datetime


# Account linking
class TelegramProfileOut(BaseModel):
    display_name: str
    username: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class LinkedAccountOut(BaseModel):
    app_user_id: str
    telegram_user_id: int
    telegram_profile: TelegramProfileOut
    linked_at: datetime
    model_config = ConfigDict(from_attributes=True)


class LinkVerifyResponse(BaseModel):
    """Successful code verification (camelCase keys are what the web client reads)."""
    userId: str
    telegramUserId: int
    linkedAt: datetime
    account: LinkedAccountOut


class UnlinkResponse(BaseModel):
    ok: bool = True
    message: str
    revoked: int


# AI endpoints
class ChatTurnIn(BaseModel):
    role: Literal["user", "model"] = "user"
    text: str


class ChatRequest(BaseModel):
    messages: list[ChatTurnIn] = Field(min_length=1)
    language: str = "en"


class CropRecommendationRequest(BaseModel):
    soil_type: str = Field(min_length=1)
    location: str = Field(min_length=1)
    season: str = Field(min_length=1)
    language: str = "en"


class AiReplyResponse(BaseModel):
    reply: str
