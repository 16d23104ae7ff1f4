"""
Client for the OpenAI-compatible generative text provider.

Every way a live call can go wrong (network error, timeout, non-2xx status,
empty or unparseable content) surfaces as TransientProviderFailure so callers
can record it against the circuit breaker and fall back. A missing API key is
ConfigurationAbsence instead: that is a permanent condition, not an outage.
"""

from typing import Any, Dict, List, Optional
import json
import re

from openai import OpenAI, OpenAIError

from app.core.config import settings
from app.core.errors import ConfigurationAbsence, TransientProviderFailure
from app.core.logging_config import get_logger

logger = get_logger(__name__)

# Service name the circuit breaker tracks for this provider
PROVIDER_SERVICE = "openai"

_FENCE_RE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)


def parse_json_payload(raw: Optional[str]) -> Dict[str, Any]:
    """Parse a JSON object from model output, tolerating markdown fences."""
    if not raw:
        raise TransientProviderFailure("empty response from AI provider")
    cleaned = _FENCE_RE.sub("", raw).replace("```", "").strip()
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise TransientProviderFailure("AI response is not valid JSON", details={"raw": raw[:200]}) from e
    if not isinstance(parsed, dict):
        raise TransientProviderFailure("AI response is not a JSON object", details={"raw": raw[:200]})
    return parsed


class AIClient:
    """Thin wrapper over the OpenAI SDK with a hard per-request timeout."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[Any] = None,
    ):
        self.api_key = settings.OPENAI_API_KEY if api_key is None else api_key
        self.model = model or settings.OPENAI_MODEL
        self.timeout = timeout or settings.AI_REQUEST_TIMEOUT_SECONDS

        if client is not None:
            self.client = client
        elif self.api_key:
            # Retries are the circuit breaker's job, not the SDK's
            self.client = OpenAI(
                api_key=self.api_key,
                base_url=base_url or settings.OPENAI_BASE_URL,
                timeout=self.timeout,
                max_retries=0,
            )
        else:
            self.client = None

    @property
    def configured(self) -> bool:
        return self.client is not None

    def complete(
        self,
        messages: List[Dict[str, str]],
        max_tokens: int = 200,
        temperature: float = 0.3,
        json_mode: bool = False,
    ) -> str:
        """
        Run a chat completion and return the trimmed text content.

        Raises:
            ConfigurationAbsence: no API key configured
            TransientProviderFailure: any provider-side failure
        """
        if self.client is None:
            raise ConfigurationAbsence("OPENAI_API_KEY is not configured")

        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "timeout": self.timeout,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = self.client.chat.completions.create(**kwargs)
        except OpenAIError as e:
            logger.warning("AI provider call failed", model=self.model, error_type=type(e).__name__, error=str(e))
            raise TransientProviderFailure(f"AI provider call failed: {type(e).__name__}") from e

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError) as e:
            raise TransientProviderFailure("AI response has no choices") from e

        if not content or not content.strip():
            raise TransientProviderFailure("empty response from AI provider")
        return content.strip()

    def complete_json(self, messages: List[Dict[str, str]], **kwargs) -> Dict[str, Any]:
        return parse_json_payload(self.complete(messages, **kwargs))
