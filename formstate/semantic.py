"""Semantic (content-meaning) validation backed by an external text-analysis service.

The SemanticValidator composes the checks a field opts into (professionalism,
appropriateness, free-text custom checks, or a full prompt template) into a
single natural-language request, sends it to a pluggable backend and parses a
structured ``{"valid": ..., "message": ...}`` reply.

The validator is fail-open: any backend or parsing failure yields a passing
result with a soft diagnostic message, so an outage of the analysis service
never blocks a form. There is no retry; callers re-invoke on the next
blur/submit.

Usage:
    >>> validator = SemanticValidator()          # no backend: checks skipped
    >>> validator.is_available
    False
"""

import json
import logging
import re
from typing import Any, Optional

from openai import AsyncOpenAI, OpenAIError
from typing_extensions import NotRequired, Protocol, TypedDict, runtime_checkable

from formstate.errors import SemanticValidationError
from formstate.types import SemanticValidationConfig

logger = logging.getLogger(__name__)

UNAVAILABLE_MESSAGE = "Semantic validation temporarily unavailable"
DEFAULT_INVALID_MESSAGE = "Content does not meet validation criteria"

_SYSTEM_PROMPT = (
    "You review short pieces of text submitted through forms. "
    "Answer strictly with the requested JSON object."
)

_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


class SemanticCheckResult(TypedDict):
    valid: bool
    message: NotRequired[str]


@runtime_checkable
class SemanticBackend(Protocol):
    """Text-in, text-out capability used by SemanticValidator."""

    async def complete(self, prompt: str) -> str:
        ...


class OpenAIBackend:
    """Backend that sends prompts to an OpenAI chat model.

    Isolates the OpenAI SDK from the rest of the package. A single attempt is
    made per request; SDK retries are disabled.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        timeout: float = 30.0,
        client: Optional[Any] = None,
    ):
        """Initialize the backend.

        Args:
            api_key: OpenAI API key
            model: Chat model name
            timeout: Request timeout in seconds
            client: Pre-built async client (mainly for tests)
        """
        self.model = model
        self._client = client or AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    async def complete(self, prompt: str) -> str:
        """Send one prompt and return the reply text.

        Raises:
            SemanticValidationError: If the request fails or the reply is empty
        """
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": _SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=0,
            )
        except OpenAIError as exc:
            raise SemanticValidationError(f"Semantic backend request failed: {exc}") from exc

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise SemanticValidationError("Semantic backend returned an empty reply")
        return content


class SemanticValidator:
    """Fail-open semantic checks over free text.

    Attributes:
        backend: The text-analysis backend, or None when no credential is
            configured (every check then passes without a request)
    """

    def __init__(self, backend: Optional[SemanticBackend] = None):
        self.backend = backend

    @classmethod
    def from_config(cls, config) -> "SemanticValidator":
        """Build a validator from an EngineConfig.

        Without an API key the validator has no backend and skips checks.
        """
        if not config.semantic_api_key:
            logger.info("No semantic validation credential configured; semantic checks are skipped")
            return cls()
        return cls(
            OpenAIBackend(
                api_key=config.semantic_api_key,
                model=config.semantic_model,
                timeout=config.semantic_timeout,
            )
        )

    @property
    def is_available(self) -> bool:
        return self.backend is not None

    def build_prompt(self, value: str, config: SemanticValidationConfig) -> str:
        """Compose the enabled checks into a single request."""
        if config.prompt:
            return config.prompt.replace("{value}", value)

        checks = []
        if config.check_professionalism:
            checks.append("- Is this text professional and appropriate for business communication?")
        if config.check_appropriate:
            checks.append("- Is this text free from offensive, harmful, or inappropriate content?")
        for check in config.custom_checks:
            checks.append(f"- {check}")
        if not checks:
            checks.append("- Is this text appropriate and valid?")

        questions = "\n".join(checks)
        return (
            "Please analyze the following text and answer these questions:\n\n"
            f"{questions}\n\n"
            f'Text: "{value}"\n\n'
            "Respond in JSON format with:\n"
            "{\n"
            '  "valid": true/false,\n'
            '  "message": "explanation if invalid, empty if valid"\n'
            "}\n\n"
            "Only respond with the JSON object, nothing else."
        )

    @staticmethod
    def parse_response(text: str) -> SemanticCheckResult:
        """Parse a backend reply into a check result.

        Structured JSON is preferred. Otherwise a keyword heuristic applies:
        a reply mentioning "invalid" or "false" is a failure, anything else
        passes.

        Examples:
            >>> SemanticValidator.parse_response('{"valid": false, "message": "Too casual"}')
            {'valid': False, 'message': 'Too casual'}
            >>> SemanticValidator.parse_response("Looks fine to me")
            {'valid': True}
        """
        match = _JSON_OBJECT_RE.search(text)
        if match:
            try:
                parsed = json.loads(match.group(0))
            except ValueError:
                parsed = None
            if isinstance(parsed, dict):
                result: SemanticCheckResult = {"valid": parsed.get("valid") is True}
                if parsed.get("message"):
                    result["message"] = str(parsed["message"])
                return result

        lowered = text.lower()
        if "invalid" in lowered or "false" in lowered:
            return {"valid": False, "message": DEFAULT_INVALID_MESSAGE}
        return {"valid": True}

    async def _ask(self, prompt: str) -> SemanticCheckResult:
        if self.backend is None:
            return {"valid": True}
        try:
            reply = await self.backend.complete(prompt)
            return self.parse_response(reply)
        except Exception as exc:
            logger.warning("Semantic validation failed open: %s", exc)
            return {"valid": True, "message": UNAVAILABLE_MESSAGE}

    async def check_text(self, value: str, config: SemanticValidationConfig) -> SemanticCheckResult:
        """Run the checks a field opted into against ``value``.

        Never raises; backend failures produce ``{"valid": True, "message": ...}``.
        """
        return await self._ask(self.build_prompt(value, config))

    async def check_email(self, email: str, professional: bool = True) -> SemanticCheckResult:
        """Ask whether an address is a professional (non-free-provider) or well-formed address."""
        if professional:
            prompt = (
                f'Is "{email}" a professional email address (not from free email providers '
                'like gmail, yahoo, hotmail, etc.)? Respond with JSON: '
                '{"valid": true/false, "message": "reason if invalid"}'
            )
        else:
            prompt = (
                f'Is "{email}" a valid email format? Respond with JSON: '
                '{"valid": true/false, "message": "reason if invalid"}'
            )
        return await self._ask(prompt)


__all__ = [
    "SemanticCheckResult",
    "SemanticBackend",
    "OpenAIBackend",
    "SemanticValidator",
    "UNAVAILABLE_MESSAGE",
    "DEFAULT_INVALID_MESSAGE",
]
