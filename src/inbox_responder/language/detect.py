from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Tuple

from langdetect import DetectorFactory, detect_langs
from langdetect.lang_detect_exception import LangDetectException
from openai import AsyncOpenAI, OpenAIError

from inbox_responder.models import Language
from inbox_responder.parsing.parser import strip_quoted

logger = logging.getLogger(__name__)

# langdetect is randomized unless seeded.
DetectorFactory.seed = 0

WHITELIST = {"de": "german", "en": "english"}
CONFIDENCE_THRESHOLD = 0.9
DEFAULT_LANGUAGE: Language = "english"

SYSTEM_PROMPT = (
    "You are a language detection assistant. Determine if the following text is "
    'primarily in German or English. Respond with only "german" or "english".'
)


def heuristic_language(text: str) -> Tuple[Optional[Language], float]:
    """Best whitelisted language and its probability, (None, 0.0) if none."""
    try:
        candidates = detect_langs(text)
    except LangDetectException:
        return None, 0.0
    best: Optional[Language] = None
    best_prob = 0.0
    for candidate in candidates:
        language = WHITELIST.get(candidate.lang)
        if language and candidate.prob > best_prob:
            best, best_prob = language, candidate.prob
    return best, best_prob


class LanguageDetector:
    def __init__(self, client: Optional[Any], model: str, timeout: float = 60.0):
        self.client = client
        self.model = model
        self.timeout = timeout

    @classmethod
    def from_api_key(cls, api_key: str, model: str, timeout: float = 60.0) -> "LanguageDetector":
        return cls(AsyncOpenAI(api_key=api_key, timeout=timeout), model, timeout)

    async def detect(self, text: str) -> Language:
        main_body = strip_quoted(text)
        if not main_body:
            logger.info("Empty main body, defaulting to English")
            return DEFAULT_LANGUAGE

        language, confidence = heuristic_language(main_body)
        if language and confidence >= CONFIDENCE_THRESHOLD:
            logger.info(f"Heuristic detected {language} (confidence: {confidence:.2f})")
            return language

        logger.info(
            f"Heuristic detection ambiguous (language: {language}, confidence: {confidence:.2f}), "
            "falling back to remote detection"
        )
        if self.client is None:
            return language or DEFAULT_LANGUAGE
        try:
            return await asyncio.wait_for(self._remote_detect(main_body), timeout=self.timeout)
        except (OpenAIError, asyncio.TimeoutError, AttributeError, ValueError) as exc:
            logger.error(f"Error detecting language: {exc}, defaulting to English")
            return DEFAULT_LANGUAGE

    async def _remote_detect(self, text: str) -> Language:
        resp = await self.client.responses.create(
            model=self.model,
            input=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": text},
            ],
            max_output_tokens=16,
        )
        answer = (getattr(resp, "output_text", "") or "").strip().lower()
        logger.info(f"Remote detection answered: {answer}")
        return "german" if answer.startswith("german") else "english"
