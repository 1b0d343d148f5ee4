"""Gemini REST client (generateContent) with multimodal attachment support."""

import base64
import json
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from career_coach_api.config import get_settings

logger = structlog.get_logger()


class GeminiError(Exception):
    """Base exception for Gemini client errors."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def rate_limited(self) -> bool:
        return False


class GeminiAuthError(GeminiError):
    """Raised when the API key is rejected."""

    pass


class GeminiRateLimitError(GeminiError):
    """Raised when the key's quota or rate limit is exceeded."""

    @property
    def rate_limited(self) -> bool:
        return True


class GeminiModelNotFoundError(GeminiError):
    """Raised when the model name is unknown or not available to the key."""

    pass


@dataclass
class Attachment:
    """A single inline binary input (e.g. an uploaded PDF)."""

    mime_type: str
    data: bytes


@dataclass
class LLMResponse:
    """Response from a generation call."""

    content: str
    tokens_used: int
    finish_reason: str | None = None
    model: str = ""


# Superset of the analysis and scan schemas, so one canned reply serves both.
MOCK_STRUCTURED_RESPONSE: dict[str, Any] = {
    "candidateName": "Alex Doe",
    "suggestedRole": "Senior Frontend Engineer",
    "skills": ["React", "Node.js", "AWS", "TypeScript", "CI/CD"],
    "readinessScore": 72,
    "atsScore": 68,
    "resumeQuality": 70,
    "skillMatch": 75,
    "projectStrength": 60,
    "interviewReadiness": 65,
    "feedback": "Solid hands-on experience; quantify impact and broaden system design depth.",
    "strengths": [
        "Five years of production React",
        "Full-stack exposure with Node.js",
        "Cloud deployment experience on AWS",
    ],
    "gaps": [
        "Little evidence of frontend performance work",
        "No testing strategy mentioned",
        "Limited leadership or mentoring examples",
    ],
    "rewrittenContent": (
        "# Alex Doe\n\n## Experience\n"
        "- Built customer-facing React features for a SaaS dashboard, "
        "cutting page load time by 30%.\n"
        "- Shipped Node.js APIs on AWS Lambda serving 50k daily users.\n\n"
        "## Skills\nReact, TypeScript, Node.js, AWS, Web Vitals, Jest"
    ),
    "addedKeywords": ["TypeScript", "Web Vitals", "Jest"],
    "roadmap": [
        {"title": "Master TypeScript generics", "description": "Type a real component library.", "category": "skill", "order": 1},
        {"title": "Profile a React app", "description": "Measure and fix Web Vitals regressions.", "category": "practice", "order": 2},
        {"title": "Add a testing suite", "description": "Cover a side project with Jest and Playwright.", "category": "project", "order": 3},
        {"title": "Study frontend system design", "description": "Design a design-system rollout.", "category": "skill", "order": 4},
        {"title": "Lead a code review rotation", "description": "Mentor a junior teammate.", "category": "practice", "order": 5},
        {"title": "Mock interview: behavioural", "description": "Prepare three STAR stories.", "category": "interview", "order": 6},
    ],
}

MOCK_FREE_TEXT_RESPONSE = (
    "Thanks for that. This is a mock interviewer reply (MOCK_LLM=true). "
    "Can you walk me through a recent project you are proud of?"
)


class GeminiClient:
    """Async client for the Gemini generateContent API.

    The API key and model are passed per call so a single HTTP client can
    serve every provider the dispatcher tries.
    """

    def __init__(
        self,
        base_url: str | None = None,
        max_output_tokens: int | None = None,
        temperature: float | None = None,
        timeout_seconds: float | None = None,
        mock: bool | None = None,
    ):
        """Initialize the Gemini client.

        Args:
            base_url: API base URL. Defaults to config value.
            max_output_tokens: Maximum tokens in response. Defaults to config value.
            temperature: Sampling temperature. Defaults to config value.
            timeout_seconds: Per-request timeout. Defaults to config value.
            mock: Serve canned responses instead of calling the API. Defaults to config value.
        """
        settings = get_settings()
        self._base_url = base_url or settings.gemini_base_url
        self._max_output_tokens = max_output_tokens or settings.llm_max_output_tokens
        self._temperature = temperature if temperature is not None else settings.llm_temperature
        self._timeout = timeout_seconds or settings.llm_timeout_seconds
        self._mock = settings.mock_llm if mock is None else mock
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "GeminiClient":
        await self.connect()
        return self

    async def __aexit__(self, _exc_type: Any, _exc_val: Any, _exc_tb: Any) -> None:
        await self.close()

    @property
    def is_mock(self) -> bool:
        return self._mock

    async def connect(self) -> None:
        """Create the HTTP client. Skipped in mock mode."""
        if self._mock:
            logger.info("Gemini client in mock mode, skipping HTTP client creation")
            return
        if self._client is not None:
            return

        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"Content-Type": "application/json"},
            timeout=httpx.Timeout(self._timeout, connect=10.0),
        )
        logger.info("Gemini client connected", base_url=self._base_url)

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("Gemini client closed")

    def _build_payload(
        self,
        prompt: str,
        structured: bool,
        attachment: Attachment | None = None,
    ) -> dict[str, Any]:
        """Build the generateContent request body."""
        parts: list[dict[str, Any]] = [{"text": prompt}]
        if attachment is not None:
            parts.append(
                {
                    "inline_data": {
                        "mime_type": attachment.mime_type,
                        "data": base64.b64encode(attachment.data).decode("ascii"),
                    }
                }
            )

        generation_config: dict[str, Any] = {
            "temperature": self._temperature,
            "maxOutputTokens": self._max_output_tokens,
        }
        if structured:
            generation_config["responseMimeType"] = "application/json"

        return {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": generation_config,
        }

    async def generate(
        self,
        api_key: str,
        model: str,
        prompt: str,
        structured: bool = False,
        attachment: Attachment | None = None,
    ) -> LLMResponse:
        """Run one generation call against one key and model.

        Raises:
            GeminiAuthError: The key was rejected.
            GeminiRateLimitError: The key hit its quota.
            GeminiModelNotFoundError: The model is unknown to the API.
            GeminiError: Any other API, network or empty-response failure.
        """
        if self._mock:
            return self._mock_generate(model, structured)

        if not api_key:
            raise GeminiAuthError("Gemini API key is empty")

        if not self._client:
            await self.connect()

        payload = self._build_payload(prompt, structured, attachment)

        try:
            response = await self._client.post(
                f"/models/{model}:generateContent",
                json=payload,
                headers={"x-goog-api-key": api_key},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            self._handle_http_error(e)
            raise
        except httpx.HTTPError as e:
            raise GeminiError(f"Request to Gemini failed: {e}") from e
        except json.JSONDecodeError as e:
            raise GeminiError("Gemini returned a non-JSON body") from e

        if not isinstance(data, dict):
            raise GeminiError("Unexpected Gemini response shape")

        content, finish_reason = self._extract_content(data)
        usage = data.get("usageMetadata") or {}
        tokens_used = usage.get("totalTokenCount") if isinstance(usage, dict) else None
        if not isinstance(tokens_used, int) or isinstance(tokens_used, bool):
            tokens_used = 0

        return LLMResponse(
            content=content,
            tokens_used=tokens_used,
            finish_reason=finish_reason,
            model=model,
        )

    def _extract_content(self, data: dict[str, Any]) -> tuple[str, str | None]:
        """Join the text parts of the first candidate.

        Raises:
            GeminiError: No candidates, empty text, or a body of unexpected shape.
        """
        candidates = data.get("candidates") or []
        if not isinstance(candidates, list):
            raise GeminiError("Unexpected Gemini response shape")
        if not candidates:
            feedback = data.get("promptFeedback")
            reason = feedback.get("blockReason") if isinstance(feedback, dict) else None
            raise GeminiError(f"Gemini returned no candidates ({reason or 'no candidates'})")

        candidate = candidates[0]
        if not isinstance(candidate, dict):
            raise GeminiError("Unexpected Gemini response shape")
        content = candidate.get("content") or {}
        parts = content.get("parts") if isinstance(content, dict) else None
        if not isinstance(parts, list):
            parts = []

        text = "".join(
            str(part.get("text") or "") for part in parts if isinstance(part, dict)
        ).strip()
        finish_reason = candidate.get("finishReason")
        if not text:
            raise GeminiError(f"Gemini response text is empty (finish reason {finish_reason})")
        return text, finish_reason if isinstance(finish_reason, str) else None

    def _handle_http_error(self, error: httpx.HTTPStatusError) -> None:
        """Translate HTTP errors from the Gemini API into client exceptions."""
        status = error.response.status_code
        try:
            detail = error.response.json().get("error", {}).get("message", str(error))
        except Exception:
            detail = str(error)

        if status in (401, 403):
            raise GeminiAuthError(f"Authentication failed: {detail}", status) from error
        elif status == 429:
            raise GeminiRateLimitError(f"Rate limit exceeded: {detail}", status) from error
        elif status == 404:
            raise GeminiModelNotFoundError(f"Model not found: {detail}", status) from error
        else:
            raise GeminiError(f"API error ({status}): {detail}", status) from error

    def _mock_generate(self, model: str, structured: bool) -> LLMResponse:
        """Return a canned response for local development and tests."""
        if structured:
            content = "```json\n" + json.dumps(MOCK_STRUCTURED_RESPONSE, indent=2) + "\n```"
        else:
            content = MOCK_FREE_TEXT_RESPONSE
        return LLMResponse(content=content, tokens_used=50, finish_reason="STOP", model=model)
