"""
OpenAI-compatible labeling service.

Uses the Chat Completions API with image inputs. ARK (an OpenAI-compatible
endpoint) is preferred when its key is configured, then OpenAI itself.
"""

import json
import logging
import time
from typing import Any

import httpx
from openai import APIConnectionError, APIError, AsyncOpenAI, RateLimitError
from pydantic import ValidationError

from makergrade.core.config import Settings, settings as default_settings
from makergrade.labeling.base import (
    BaseLabelingService,
    LabelingError,
    MalformedResponse,
    NoCredentials,
    UpstreamError,
)
from makergrade.labeling.prompts import (
    ReferenceImage,
    build_user_content,
    get_system_prompt,
    load_reference_images,
)
from makergrade.labeling.schemas import LabelResult

logger = logging.getLogger(__name__)


def parse_json_object(raw: str) -> dict[str, Any]:
    """
    Parse a model reply into a JSON object.

    Tries the whole reply first, then the first balanced ``{...}`` block
    (models sometimes wrap JSON in prose or code fences).

    Raises:
        MalformedResponse: If no JSON object can be recovered
    """
    text = raw.strip()
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        parsed = _first_balanced_object(text)

    if not isinstance(parsed, dict):
        raise MalformedResponse("reply is not a JSON object")
    return parsed


def _first_balanced_object(text: str) -> Any:
    depth = 0
    start = -1
    for i, ch in enumerate(text):
        if ch == "{":
            if depth == 0:
                start = i
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                try:
                    return json.loads(text[start : i + 1])
                except json.JSONDecodeError as e:
                    raise MalformedResponse(f"invalid JSON object in reply: {e}", cause=e)
    raise MalformedResponse("no JSON object in reply")


class OpenAILabelingService(BaseLabelingService):
    """Grades items with a vision model behind an OpenAI-compatible API.

    Example:
        service = OpenAILabelingService.from_settings()
        result = await service.label(
            "https://makerworld.com/zh/models/123",
            ["https://makerworld.bblmw.com/.../cover.jpg"],
        )
        print(result.grade, result.reason)
    """

    provider_name = "openai"

    def __init__(
        self,
        api_key: str | None,
        model: str = "gpt-4o-mini",
        base_url: str | None = None,
        provider_name: str = "openai",
        timeout: int = 120,
        max_images: int = 10,
        reference_dir: str | None = None,
        json_mode: bool = True,
    ):
        """Initialize the labeling service.

        Args:
            api_key: Provider API key; None leaves the service unconfigured
            model: Model name
            base_url: OpenAI-compatible base URL (None = api.openai.com)
            provider_name: Name used in logs and error messages
            timeout: Request timeout in seconds
            max_images: Maximum distinct item images sent per request
            reference_dir: Directory holding S/A/B/C calibration images
            json_mode: Request a JSON object response format
        """
        self.provider_name = provider_name
        self._model = model
        self._max_images = max_images
        self._reference_dir = reference_dir
        self._references: list[ReferenceImage] | None = None
        self._json_mode = json_mode

        self._client: AsyncOpenAI | None = None
        if api_key:
            self._client = AsyncOpenAI(
                api_key=api_key,
                base_url=base_url,
                timeout=httpx.Timeout(timeout, connect=30.0),
            )

        logger.info(
            "Labeling service initialized",
            extra={
                "provider": provider_name,
                "model": model,
                "configured": self._client is not None,
                "timeout": timeout,
            },
        )

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> "OpenAILabelingService":
        """Build the service from settings, preferring ARK over OpenAI."""
        config = config or default_settings
        common = {
            "timeout": config.LABEL_TIMEOUT,
            "max_images": config.LABEL_MAX_IMAGES,
            "reference_dir": config.LABEL_REFERENCE_DIR,
        }
        if config.ARK_API_KEY.strip():
            return cls(
                api_key=config.ARK_API_KEY.strip(),
                model=config.ARK_MODEL.strip(),
                base_url=config.ARK_BASE_URL,
                provider_name="ark",
                json_mode=False,
                **common,
            )
        return cls(
            api_key=config.OPENAI_API_KEY.strip() or None,
            model=config.OPENAI_MODEL,
            provider_name="openai",
            **common,
        )

    @property
    def configured(self) -> bool:
        return self._client is not None

    def references(self) -> list[ReferenceImage]:
        """Calibration images, loaded once."""
        if self._references is None:
            self._references = load_reference_images(self._reference_dir)
        return self._references

    def select_images(self, image_urls: list[str]) -> list[str]:
        """Distinct non-empty URLs in order, capped at ``max_images``."""
        return list(dict.fromkeys(u for u in image_urls if u))[: self._max_images]

    async def label(self, url: str, image_urls: list[str]) -> LabelResult:
        """Grade an item from its images.

        Raises:
            NoCredentials: If no API key is configured
            UpstreamError: If the API call fails
            MalformedResponse: If the reply cannot be parsed or validated
        """
        if self._client is None:
            raise NoCredentials()

        images = self.select_images(image_urls)
        references = self.references()

        request_kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": get_system_prompt(bool(references))},
                {"role": "user", "content": build_user_content(images, references)},
            ],
        }
        if self._json_mode:
            request_kwargs["response_format"] = {"type": "json_object"}

        start_time = time.time()
        try:
            response = await self._client.chat.completions.create(**request_kwargs)
        except RateLimitError as e:
            logger.warning(
                "Labeling rate limit exceeded",
                extra={"provider": self.provider_name, "item_url": url, "error": str(e)},
            )
            raise UpstreamError(f"Rate limit exceeded: {e}", cause=e, provider=self.provider_name)
        except APIConnectionError as e:
            logger.error(
                "Failed to connect to labeling provider",
                extra={"provider": self.provider_name, "error": str(e)},
            )
            raise UpstreamError(f"Connection failed: {e}", cause=e, provider=self.provider_name)
        except APIError as e:
            logger.error(
                "Labeling API error",
                extra={
                    "provider": self.provider_name,
                    "item_url": url,
                    "error": str(e),
                    "status_code": getattr(e, "status_code", None),
                },
            )
            raise UpstreamError(f"API error: {e}", cause=e, provider=self.provider_name)

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise MalformedResponse("Empty response", provider=self.provider_name)

        try:
            result = LabelResult.model_validate(parse_json_object(content))
        except LabelingError as e:
            e.provider = e.provider or self.provider_name
            raise
        except ValidationError as e:
            logger.error(
                "Labeling response validation failed",
                extra={
                    "provider": self.provider_name,
                    "item_url": url,
                    "error": str(e),
                    "response_preview": content[:500],
                },
            )
            raise MalformedResponse(
                f"Invalid response format: {e}", cause=e, provider=self.provider_name
            )

        result = result.with_fallback_reason()
        logger.info(
            "Item labeled",
            extra={
                "provider": self.provider_name,
                "item_url": url,
                "grade": result.grade,
                "image_count": len(images),
                "elapsed_seconds": round(time.time() - start_time, 2),
                "tokens": response.usage.total_tokens if response.usage else None,
            },
        )
        return result
