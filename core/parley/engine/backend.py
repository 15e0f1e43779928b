"""
Model backend adapter.

Turns an ordered list of conversation turns into a single Gemini
``generateContent`` request and extracts the reply text. Failures are raised
once, without retries; the orchestrator decides what the user sees.
"""

from abc import ABC, abstractmethod
from typing import Literal, Optional, Sequence

import httpx
from pydantic import BaseModel

from parley import config
from parley.utils.logging import logger


class Turn(BaseModel):
    """One turn as the model API sees it."""

    role: Literal["user", "model"]
    content: str


class BackendError(Exception):
    """The model backend could not produce a reply."""


class NetworkError(BackendError):
    """Transport failure or a non-2xx response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ParseError(BackendError):
    """The response payload has no reply text where one was expected."""


class ModelBackend(ABC):
    """Stateless text generation from an ordered turn list."""

    @abstractmethod
    async def generate(self, turns: Sequence[Turn]) -> str:
        """Return the model's reply to ``turns``."""


class GeminiBackend(ModelBackend):
    """Calls the Gemini REST API with a fixed API key."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = config.BACKEND_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else config.GEMINI_API_KEY
        self.model = model or config.GEMINI_MODEL
        self.base_url = (base_url or config.GEMINI_BASE_URL).rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @property
    def url(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    @staticmethod
    def build_payload(turns: Sequence[Turn]) -> dict:
        return {
            "contents": [
                {"role": turn.role, "parts": [{"text": turn.content}]}
                for turn in turns
            ]
        }

    async def generate(self, turns: Sequence[Turn]) -> str:
        payload = self.build_payload(turns)
        logger.info(f"Calling {self.model} with {len(turns)} turns")

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                response = await client.post(
                    self.url,
                    params={"key": self.api_key},
                    json=payload,
                )
            except httpx.HTTPError as e:
                raise NetworkError(f"Request to model API failed: {type(e).__name__}") from e

        if not response.is_success:
            raise NetworkError(
                f"API error: {response.status_code} - {self._error_message(response)}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ParseError("Model API returned a non-JSON body") from e

        return self.extract_text(data)

    @staticmethod
    def extract_text(data: object) -> str:
        """Pull ``candidates[0].content.parts[0].text`` out of a response."""
        try:
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as e:
            raise ParseError("Invalid response format from model API") from e
        if not isinstance(text, str):
            raise ParseError("Reply text is not a string")
        return text

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            return response.json()["error"]["message"]
        except (ValueError, KeyError, TypeError):
            return "Unknown error"
