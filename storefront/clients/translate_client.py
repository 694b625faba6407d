"""
HTTP client for translating Arabic customer text to English for drivers.

Talks to a LibreTranslate-compatible endpoint. Translation is best-effort:
any failure returns the original text and never blocks order creation.
"""
import logging
import re
from typing import Optional

import httpx

from ..config import TRANSLATE_API_KEY, TRANSLATE_TIMEOUT, TRANSLATE_URL

logger = logging.getLogger(__name__)

ARABIC_REGEX = re.compile(r"[\u0600-\u06FF\u0750-\u077F\u08A0-\u08FF\uFB50-\uFDFF\uFE70-\uFEFF]")
MAX_TEXT_LENGTH = 5000


def has_arabic(text: Optional[str]) -> bool:
    if not text or not isinstance(text, str):
        return False
    return bool(ARABIC_REGEX.search(text))


class Translator:
    """Arabic to English translation over HTTP."""

    def __init__(
        self,
        url: str = TRANSLATE_URL,
        api_key: str = TRANSLATE_API_KEY,
        timeout: float = TRANSLATE_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    async def _request(self, text: str) -> Optional[str]:
        payload = {
            "q": text[:MAX_TEXT_LENGTH],
            "source": "ar",
            "target": "en",
            "format": "text",
        }
        if self.api_key:
            payload["api_key"] = self.api_key

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(self.url, json=payload)
            if response.status_code != 200:
                logger.warning(f"Translation service returned HTTP {response.status_code}")
                return None
            data = response.json()
            if not isinstance(data, dict):
                logger.warning(f"Translation service returned {type(data).__name__}, expected an object")
                return None
            translated = data.get("translatedText")
            return translated if isinstance(translated, str) else None

    async def translate_to_english(self, text: Optional[str]) -> Optional[str]:
        """
        Translate text to English if it contains Arabic.

        Returns the original text when it has no Arabic or translation fails.
        """
        if not text or not isinstance(text, str):
            return text
        trimmed = text.strip()
        if not trimmed or not has_arabic(trimmed):
            return text

        try:
            translated = await self._request(trimmed)
        except Exception as e:
            logger.warning(f"Translation failed, keeping original text: {e!r}")
            return text

        if translated and translated.strip():
            return translated.strip()
        return text


_translator = Translator()


def get_translator() -> Translator:
    """FastAPI dependency returning the shared translator."""
    return _translator
