"""
Gemini generateContent gateway.

Builds system-instructed requests (text chat, crop image analysis, crop
recommendation), sends them with a fixed sampling profile per entry point, and
normalizes every outcome into an AiReply whose text is safe to show users.
"""
from __future__ import annotations

import base64
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

import requests

from ..domain_errors import ErrorKind
from .prompts import (
    CROP_PATHOLOGY_PROMPT,
    USER_QUESTION_SEPARATOR,
    build_crop_recommendation_prompt,
    build_system_instruction,
)

logger = logging.getLogger(__name__)

CONFIGURATION_NEEDED_MESSAGE = "Please configure your Gemini API key (GEMINI_API_KEY) to enable the AI assistant."
CHAT_FALLBACK_MESSAGE = "Sorry, I encountered an error. Please try again later."
IMAGE_FALLBACK_MESSAGE = "Sorry, I could not analyze the image. Please try again."
EMPTY_CHAT_MESSAGE = "No response generated."
EMPTY_IMAGE_MESSAGE = "Unable to analyze the image."

DEFAULT_IMAGE_MIME_TYPE = "image/jpeg"


class Role(str, Enum):
    USER = "user"
    MODEL = "model"


@dataclass(frozen=True)
class TextPart:
    text: str

    def to_payload(self) -> dict[str, Any]:
        return {"text": self.text}


@dataclass(frozen=True)
class InlineDataPart:
    """Inline binary content. ``data`` is raw bytes or an already base64-encoded string."""

    data: bytes | str
    mime_type: str = DEFAULT_IMAGE_MIME_TYPE

    def to_payload(self) -> dict[str, Any]:
        if isinstance(self.data, bytes):
            encoded = base64.b64encode(self.data).decode("ascii")
        else:
            encoded = self.data
        return {"inline_data": {"mime_type": self.mime_type, "data": encoded}}


Part = Union[TextPart, InlineDataPart]


@dataclass(frozen=True)
class ConversationTurn:
    role: Role
    parts: tuple[Part, ...]

    @classmethod
    def user(cls, text: str) -> "ConversationTurn":
        return cls(role=Role.USER, parts=(TextPart(text),))

    @classmethod
    def model(cls, text: str) -> "ConversationTurn":
        return cls(role=Role.MODEL, parts=(TextPart(text),))

    @property
    def text(self) -> str:
        for part in self.parts:
            if isinstance(part, TextPart):
                return part.text
        return ""

    def to_payload(self) -> dict[str, Any]:
        return {"role": self.role.value, "parts": [part.to_payload() for part in self.parts]}


@dataclass(frozen=True)
class GenerationProfile:
    temperature: float
    top_k: int
    top_p: float
    max_output_tokens: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "temperature": self.temperature,
            "topK": self.top_k,
            "topP": self.top_p,
            "maxOutputTokens": self.max_output_tokens,
        }


CHAT_PROFILE = GenerationProfile(temperature=0.7, top_k=40, top_p=0.95, max_output_tokens=1024)
IMAGE_ANALYSIS_PROFILE = GenerationProfile(temperature=0.4, top_k=32, top_p=0.95, max_output_tokens=2048)


@dataclass(frozen=True)
class GenerateRequest:
    contents: tuple[ConversationTurn, ...]
    profile: GenerationProfile
    instruction_injected: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "contents": [turn.to_payload() for turn in self.contents],
            "generationConfig": self.profile.to_payload(),
        }


@dataclass(frozen=True)
class AiReply:
    text: str
    error: ErrorKind | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _prepend_instruction(turn: ConversationTurn, instruction: str) -> ConversationTurn:
    parts = list(turn.parts)
    for index, part in enumerate(parts):
        if isinstance(part, TextPart):
            parts[index] = TextPart(instruction + USER_QUESTION_SEPARATOR + part.text)
            break
    else:
        parts.insert(0, TextPart(instruction))
    return ConversationTurn(role=turn.role, parts=tuple(parts))


def build_chat_request(
    history: Iterable[ConversationTurn],
    language: str,
    *,
    product_name: str = "Kisan Mitra",
) -> GenerateRequest:
    """Build a chat request; the system instruction goes into the first user turn only.

    Caller-owned turns are never modified, so rebuilding from the same history
    on a later call yields exactly one copy of the instruction again.
    """
    turns = tuple(history)
    if not turns or turns[0].role != Role.USER:
        return GenerateRequest(contents=turns, profile=CHAT_PROFILE)

    instruction = build_system_instruction(language, product_name=product_name)
    first = _prepend_instruction(turns[0], instruction)
    return GenerateRequest(contents=(first, *turns[1:]), profile=CHAT_PROFILE, instruction_injected=True)


def build_image_analysis_request(
    image: bytes | str,
    question: str,
    *,
    mime_type: str | None = None,
) -> GenerateRequest:
    turn = ConversationTurn(
        role=Role.USER,
        parts=(
            TextPart(CROP_PATHOLOGY_PROMPT + "\n\n" + question),
            InlineDataPart(data=image, mime_type=mime_type or DEFAULT_IMAGE_MIME_TYPE),
        ),
    )
    return GenerateRequest(contents=(turn,), profile=IMAGE_ANALYSIS_PROFILE, instruction_injected=True)


def extract_candidate_text(data: Any) -> str | None:
    """Text of the first candidate's first part; '' when the candidate has no text.

    Returns None when the payload carries no candidate or has an unexpected shape.
    """
    if not isinstance(data, dict):
        return None
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
        return None
    content = candidates[0].get("content")
    if content is None:
        return ""
    if not isinstance(content, dict):
        return None
    parts = content.get("parts")
    if parts is None:
        return ""
    if not isinstance(parts, list):
        return None
    if not parts:
        return ""
    if not isinstance(parts[0], dict):
        return None
    text = parts[0].get("text")
    if text is None:
        return ""
    if not isinstance(text, str):
        return None
    return text


class GeminiGateway:
    """Sends generateContent requests; every failure degrades to a fixed user-facing string."""

    def __init__(
        self,
        api_key: str | None,
        *,
        model: str = "gemini-2.0-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta/models",
        timeout: float = 30.0,
        product_name: str = "Kisan Mitra",
        session: requests.Session | None = None,
    ):
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._product_name = product_name
        self._session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    def complete_chat(self, history: Sequence[ConversationTurn], language: str = "en") -> AiReply:
        request = build_chat_request(history, language, product_name=self._product_name)
        return self._generate(request, fallback=CHAT_FALLBACK_MESSAGE, empty_text=EMPTY_CHAT_MESSAGE)

    def chat(self, history: Sequence[ConversationTurn], language: str = "en") -> str:
        return self.complete_chat(history, language).text

    def complete_image_analysis(
        self,
        image: bytes | str,
        question: str,
        *,
        mime_type: str | None = None,
    ) -> AiReply:
        request = build_image_analysis_request(image, question, mime_type=mime_type)
        return self._generate(request, fallback=IMAGE_FALLBACK_MESSAGE, empty_text=EMPTY_IMAGE_MESSAGE)

    def analyze_image(self, image: bytes | str, question: str, *, mime_type: str | None = None) -> str:
        return self.complete_image_analysis(image, question, mime_type=mime_type).text

    def recommend_crops(self, soil_type: str, location: str, season: str, language: str = "en") -> str:
        prompt = build_crop_recommendation_prompt(soil_type, location, season)
        return self.chat([ConversationTurn.user(prompt)], language)

    def _generate(self, request: GenerateRequest, *, fallback: str, empty_text: str) -> AiReply:
        if not self._api_key:
            logger.warning("⚠️ GEMINI_API_KEY not configured, skipping AI request")
            return AiReply(CONFIGURATION_NEEDED_MESSAGE, ErrorKind.UNCONFIGURED)

        # The key travels as a query parameter; only this key-less URL is ever logged.
        url = f"{self._base_url}/{self._model}:generateContent"
        try:
            response = self._session.post(
                url,
                params={"key": self._api_key},
                json=request.to_payload(),
                timeout=self._timeout,
            )
        except requests.Timeout:
            logger.warning(f"⏳ Gemini request timed out after {self._timeout}s: {url}")
            return AiReply(fallback, ErrorKind.TIMEOUT)
        except requests.RequestException as e:
            logger.warning(f"❌ Gemini transport error ({type(e).__name__}): {url}")
            return AiReply(fallback, ErrorKind.TRANSPORT)

        if not 200 <= response.status_code < 300:
            logger.warning(f"❌ Gemini API error: HTTP {response.status_code}")
            return AiReply(fallback, ErrorKind.PLATFORM_REJECTED)

        try:
            data = response.json()
        except ValueError:
            logger.warning("❌ Gemini returned a non-JSON body")
            return AiReply(fallback, ErrorKind.MALFORMED_RESPONSE)

        text = extract_candidate_text(data)
        if text is None:
            logger.warning("❌ Gemini response has no usable candidate")
            return AiReply(fallback, ErrorKind.MALFORMED_RESPONSE)
        return AiReply(text or empty_text)
