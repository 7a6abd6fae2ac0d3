"""
Text shopping assistant over the hosted model's OpenAI-compatible API.

Provides:
- Conversation history management
- A system prompt carrying the shopper's language and cart contents
- Localized fallbacks instead of exceptions when the model is unavailable
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional
import time

import openai
import structlog
from openai import AsyncOpenAI

from src.storefront.config import Config, get_config
from src.storefront.models import CartLine

logger = structlog.get_logger(__name__)

GEMINI_OPENAI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"

GREETING = {
    "ar": "أهلاً بك! أنا مساعد خضرجي الذكي، كيف يمكنني مساعدتك اليوم؟",
    "en": "Hello! I am your Khodarji AI assistant. How can I help you today?",
}
UNAVAILABLE = {
    "ar": "عذراً، خدمة المساعد الذكي غير متوفرة حالياً.",
    "en": "Sorry, the AI assistant is currently unavailable.",
}
TEMPORARILY_UNAVAILABLE = {
    "ar": "عذراً، الخدمة غير متاحة مؤقتاً. حاول مرة أخرى بعد قليل.",
    "en": "Service temporarily unavailable.",
}
EMPTY_REPLY = {
    "ar": "عذراً، لم أتمكن من معالجة ذلك.",
    "en": "I'm sorry, I couldn't process that.",
}


def _localized(table: Dict[str, str], language: str) -> str:
    return table["ar" if language == "ar" else "en"]


@dataclass
class ConversationTurn:
    """A single turn in the conversation."""
    role: str  # "user" or "assistant"
    content: str
    timestamp: float = field(default_factory=time.time)


class ConversationHistory:
    """Manages conversation history with a rolling window."""

    def __init__(self, max_turns: int = 10):
        self.max_turns = max_turns
        self._turns: List[ConversationTurn] = []

    def add_user_message(self, content: str) -> None:
        self._turns.append(ConversationTurn(role="user", content=content))
        self._trim()

    def add_assistant_message(self, content: str) -> None:
        self._turns.append(ConversationTurn(role="assistant", content=content))
        self._trim()

    def _trim(self) -> None:
        max_messages = self.max_turns * 2
        if len(self._turns) > max_messages:
            self._turns = self._turns[-max_messages:]

    def get_messages(self) -> List[Dict[str, str]]:
        """Get messages in OpenAI format."""
        return [{"role": turn.role, "content": turn.content} for turn in self._turns]

    def clear(self) -> None:
        self._turns.clear()

    def __len__(self) -> int:
        return len(self._turns)


def get_system_prompt(language: str, cart_lines: Iterable[CartLine], store_name: str = "Khodarji") -> str:
    cart_names = ", ".join(line.product.name.get(language) for line in cart_lines)
    language_label = "Arabic" if language == "ar" else "English"
    return f"""You are '{store_name} AI', a friendly shopping assistant for a Jordanian fresh produce store.
The customer's language is {language_label}. Reply only in {language_label}.
Current cart contents: {cart_names or 'Empty'}.
Help users with:
1. Recipe ideas based on their cart.
2. Storage tips for fruits and vegetables.
3. Seasonal advice for Jordan.
Keep responses helpful, concise, and professional. Use local Jordanian context where appropriate."""


class ShoppingAssistant:
    """
    Chat client for the storefront assistant widget.

    `reply()` never raises for model/API failures; the shopper gets a localized
    notice instead.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        *,
        client: Optional[AsyncOpenAI] = None,
        max_turns: int = 10,
    ):
        self.config = config or get_config()
        self.model = self.config.gemini_chat_model
        self._client = client
        if self._client is None and self.config.assistant_enabled:
            self._client = AsyncOpenAI(api_key=self.config.gemini_api_key, base_url=GEMINI_OPENAI_BASE_URL)
        if self._client is None:
            logger.warning("Gemini API key missing; assistant disabled")
        self._history = ConversationHistory(max_turns=max_turns)

    @property
    def available(self) -> bool:
        return self._client is not None

    @property
    def history(self) -> ConversationHistory:
        return self._history

    def greeting(self, language: str) -> str:
        return _localized(GREETING, language)

    async def reply(self, message: str, *, language: str, cart_lines: Iterable[CartLine] = ()) -> str:
        message = (message or "").strip()
        if not message:
            return _localized(EMPTY_REPLY, language)
        if self._client is None:
            return _localized(UNAVAILABLE, language)

        messages = [
            {"role": "system", "content": get_system_prompt(language, cart_lines, self.config.store_name)}
        ]
        messages.extend(self._history.get_messages())
        messages.append({"role": "user", "content": message})

        started = time.time()
        try:
            completion = await self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=0.7,
            )
        except openai.OpenAIError as e:
            logger.error("Assistant request failed", error=str(e))
            return _localized(TEMPORARILY_UNAVAILABLE, language)

        text = ""
        if completion.choices:
            text = (completion.choices[0].message.content or "").strip()
        if not text:
            text = _localized(EMPTY_REPLY, language)

        self._history.add_user_message(message)
        self._history.add_assistant_message(text)
        logger.info("Assistant replied", ms=int((time.time() - started) * 1000), chars=len(text))
        return text

    def clear_history(self) -> None:
        self._history.clear()
