"""
Generative-text backends for plan generation.

Each generator makes exactly one call per prompt: no retry (the service is
paid per call) and no streaming. Any transport failure, non-2xx status or
empty output becomes GenerationFailedError.
"""

import logging
from typing import Any, Optional, Protocol

import groq
import httpx

from migration_expert.core.errors import GenerationFailedError

logger = logging.getLogger(__name__)


class PlanGenerator(Protocol):
    async def generate(self, prompt: str) -> str:
        """Return the full generated text for prompt."""
        ...


def extract_gemini_text(data: Any) -> Optional[str]:
    """First candidate's text, or None when the response carries none."""
    if not isinstance(data, dict):
        return None
    candidates = data.get("candidates") or []
    if not candidates or not isinstance(candidates[0], dict):
        return None
    parts = (candidates[0].get("content") or {}).get("parts") or []
    text = "".join(part.get("text", "") for part in parts if isinstance(part, dict))
    return text if text.strip() else None


class GeminiPlanGenerator:
    """Google Gemini `generateContent` over HTTPS."""

    def __init__(
        self,
        api_key: Optional[str],
        *,
        model: str = "gemini-2.5-flash",
        api_base: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.url = f"{api_base.rstrip('/')}/models/{model}:generateContent"
        self.timeout = timeout
        self._client = client

    async def _post(self, body: dict) -> httpx.Response:
        headers = {"Content-Type": "application/json", "x-goog-api-key": self.api_key or ""}
        if self._client is not None:
            return await self._client.post(self.url, json=body, headers=headers, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(self.url, json=body, headers=headers)

    async def generate(self, prompt: str) -> str:
        if not self.api_key:
            logger.error("Gemini API key not configured")
            raise GenerationFailedError("Plan generation is unavailable")

        body = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
        try:
            response = await self._post(body)
        except httpx.HTTPError as e:
            logger.error(f"Gemini request failed: {type(e).__name__}")
            raise GenerationFailedError("Failed to reach the AI service") from e

        if response.status_code < 200 or response.status_code >= 300:
            logger.error(f"Gemini returned HTTP {response.status_code}")
            raise GenerationFailedError("Failed to reach the AI service")

        try:
            data = response.json()
        except ValueError as e:
            raise GenerationFailedError("AI service returned an unreadable response") from e

        text = extract_gemini_text(data)
        if text is None:
            logger.error("Gemini response contained no candidate text")
            raise GenerationFailedError("AI service returned no plan")
        return text


class GroqPlanGenerator:
    """Groq chat completions, single user message, non-streaming."""

    def __init__(
        self,
        api_key: Optional[str],
        *,
        model: str = "llama-3.1-8b-instant",
        timeout: float = 60.0,
        client: Optional[Any] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._client = client

    def _get_client(self):
        if self._client is None:
            # max_retries=0: a failed generation is never silently re-billed
            self._client = groq.AsyncGroq(api_key=self.api_key, timeout=self.timeout, max_retries=0)
        return self._client

    async def generate(self, prompt: str) -> str:
        if not self.api_key and self._client is None:
            logger.error("Groq API key not configured")
            raise GenerationFailedError("Plan generation is unavailable")

        try:
            completion = await self._get_client().chat.completions.create(
                messages=[{"role": "user", "content": prompt}],
                model=self.model,
                stream=False,
            )
        except groq.GroqError as e:
            logger.error(f"Groq request failed: {type(e).__name__}")
            raise GenerationFailedError("Failed to reach the AI service") from e

        choices = getattr(completion, "choices", None) or []
        text = choices[0].message.content if choices and choices[0].message else None
        if not text or not text.strip():
            logger.error("Groq response contained no text")
            raise GenerationFailedError("AI service returned no plan")
        return text


def build_plan_generator(cfg) -> PlanGenerator:
    provider = (getattr(cfg, "GENERATION_PROVIDER", "gemini") or "gemini").lower()
    if provider == "groq":
        return GroqPlanGenerator(cfg.GROQ_API_KEY, model=cfg.GROQ_MODEL, timeout=cfg.GENERATION_TIMEOUT_SECONDS)
    return GeminiPlanGenerator(
        cfg.GEMINI_API_KEY,
        model=cfg.GEMINI_MODEL,
        api_base=cfg.GEMINI_API_BASE,
        timeout=cfg.GENERATION_TIMEOUT_SECONDS,
    )
