"""Service providers for FastAPI dependency injection.

Each provider returns a process-wide instance built from settings. Tests swap
them through ``app.dependency_overrides``.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from functools import lru_cache

from .config import settings
from .services.gemini import GeminiGateway
from .services.linking import InMemoryLinkStore, LinkingRegistry, LinkStore, RedisLinkStore
from .services.telegram_sender import TelegramSender
from .use_cases.command_dispatch import CommandDispatcher

logger = logging.getLogger(__name__)


def build_link_store() -> LinkStore:
    ttl = timedelta(minutes=settings.LINK_CODE_TTL_MINUTES)
    retention = timedelta(seconds=settings.LINK_CODE_RETENTION_SECONDS)
    backend = settings.LINK_STORE_BACKEND.lower()
    if backend == "redis":
        logger.info("🔗 Using Redis link store")
        return RedisLinkStore.from_url(settings.REDIS_URL, ttl=ttl, retention=retention)
    if backend != "memory":
        raise RuntimeError(f"Unknown LINK_STORE_BACKEND: {settings.LINK_STORE_BACKEND}")
    return InMemoryLinkStore(retention=retention)


@lru_cache()
def get_link_registry() -> LinkingRegistry:
    return LinkingRegistry(build_link_store(), ttl=timedelta(minutes=settings.LINK_CODE_TTL_MINUTES))


@lru_cache()
def get_sender() -> TelegramSender:
    return TelegramSender(
        settings.TELEGRAM_BOT_TOKEN,
        api_base=settings.TELEGRAM_API_BASE,
        timeout=settings.TELEGRAM_TIMEOUT_SECONDS,
    )


@lru_cache()
def get_ai_gateway() -> GeminiGateway:
    return GeminiGateway(
        settings.GEMINI_API_KEY,
        model=settings.GEMINI_MODEL,
        base_url=settings.GEMINI_BASE_URL,
        timeout=settings.GEMINI_TIMEOUT_SECONDS,
        product_name=settings.PRODUCT_NAME,
    )


@lru_cache()
def get_dispatcher() -> CommandDispatcher:
    return CommandDispatcher(
        sender=get_sender(),
        gateway=get_ai_gateway(),
        registry=get_link_registry(),
        product_name=settings.PRODUCT_NAME,
        website_url=settings.WEBSITE_URL,
        default_language=settings.DEFAULT_LANGUAGE,
    )
