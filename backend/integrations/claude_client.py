"""
Claude AI Client: AI analysis for ``gpt`` workflow steps.

Talks to the Anthropic Messages API over httpx. Retrying is left to the
step's retry policy: rate limits, overload and timeouts surface as
``TransientError``, rejected requests as ``ValidationError``.
"""

import json
import re
import time
from typing import Any, Dict, List, Mapping, Optional

import httpx
import structlog

from app.config import Settings, get_settings
from core.exceptions import ConfigurationError, TransientError, ValidationError
from workflow.ports import AIAnalysisClient

logger = structlog.get_logger(__name__)


# ─── Smart JSON Extractor ──────────────────────────────────────
#
# Claude sometimes wraps JSON in explanation text or markdown fences.

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)


def extract_json(text: str) -> Any:
    """Extract clean JSON from a Claude response that may contain markdown or prose.

    Tries a direct parse, then a fenced code block, then the outermost
    ``{ ... }`` block.

    Raises:
        ValueError: if no JSON can be found.
    """
    if not text or not text.strip():
        raise ValueError("Empty response")

    clean = text.strip()
    candidates = [clean]

    match = _FENCE_RE.search(clean)
    if match:
        candidates.append(match.group(1).strip())

    start, end = clean.find("{"), clean.rfind("}")
    if 0 <= start < end:
        candidates.append(clean[start:end + 1])

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue

    raise ValueError(f"Could not extract JSON from response: {clean[:200]}")


ANALYSIS_INSTRUCTIONS = {
    "general": "Answer the question using the business data provided.",
    "sentiment": "Assess the sentiment of the text (positive, neutral or negative).",
    "risk": "Assess the payment / business risk described by the data.",
    "summary": "Summarize the data for a business owner in a few sentences.",
    "classification": "Classify the data into the most fitting category.",
}

RESPONSE_FORMAT = (
    'Respond with JSON only: {"analysis": <your answer>, '
    '"confidence": <number between 0 and 1>}'
)


class ClaudeClient(AIAnalysisClient):
    """
    Claude client used by ``gpt`` steps.

    Config accepted by ``send``:
        query / prompt: The question to answer (required)
        analysis_type: general, sentiment, risk, summary, classification
        context: Mapping of business data passed along with the question
        system: Optional system prompt override
        max_tokens / temperature: Optional overrides
    """

    API_BASE = "https://api.anthropic.com/v1"
    API_VERSION = "2023-06-01"

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.settings.ANTHROPIC_API_KEY)

    def _get_client(self) -> httpx.AsyncClient:
        if not self.is_configured:
            raise ConfigurationError("ANTHROPIC_API_KEY is not configured; AI steps are disabled")
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.API_BASE,
                headers={
                    "x-api-key": self.settings.ANTHROPIC_API_KEY,
                    "anthropic-version": self.API_VERSION,
                    "content-type": "application/json",
                },
                timeout=httpx.Timeout(
                    connect=10.0,
                    read=float(self.settings.CLAUDE_TIMEOUT),
                    write=30.0,
                    pool=10.0,
                ),
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Gracefully close connections."""
        if self._client:
            await self._client.aclose()
            self._client = None

    # ─── Core API Request ──────────────────────────────────────────

    async def _make_request(
        self,
        messages: List[Dict[str, Any]],
        system: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Make one request to the Messages API."""
        client = self._get_client()
        payload: Dict[str, Any] = {
            "model": self.settings.CLAUDE_MODEL,
            "max_tokens": max_tokens or self.settings.CLAUDE_MAX_TOKENS,
            "temperature": temperature if temperature is not None else self.settings.CLAUDE_TEMPERATURE,
            "messages": messages,
        }
        if system:
            payload["system"] = system

        start_time = time.monotonic()
        try:
            response = await client.post("/messages", json=payload)
        except httpx.TimeoutException:
            raise TransientError("Claude request timed out")
        except httpx.RequestError as e:
            raise TransientError(f"Claude request failed: {e}")
        duration_ms = round((time.monotonic() - start_time) * 1000, 2)

        if response.status_code == 200:
            data = response.json()
            usage = data.get("usage", {})
            logger.info(
                "Claude request completed",
                model=payload["model"],
                input_tokens=usage.get("input_tokens", 0),
                output_tokens=usage.get("output_tokens", 0),
                duration_ms=duration_ms,
            )
            return data

        body = response.text[:200]
        if response.status_code in (408, 429, 529) or response.status_code >= 500:
            logger.warning("Claude API unavailable", status=response.status_code, duration_ms=duration_ms)
            raise TransientError(f"Claude API error {response.status_code}: {body}")
        if response.status_code in (401, 403):
            raise ConfigurationError(f"Claude API rejected the credentials ({response.status_code})")
        logger.error("Claude API error", status=response.status_code, body=body)
        raise ValidationError(f"Claude API error {response.status_code}: {body}")

    # ─── High-Level API Methods ────────────────────────────────────

    async def ask(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> str:
        """Send a message and get a text response."""
        response = await self._make_request(
            messages=[{"role": "user", "content": prompt}],
            system=system or self.settings.CLAUDE_SYSTEM_PROMPT,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        return "".join(
            block.get("text", "")
            for block in response.get("content", [])
            if block.get("type") == "text"
        )

    @staticmethod
    def build_prompt(query: str, analysis_type: str, context: Optional[Mapping[str, Any]]) -> str:
        instruction = ANALYSIS_INSTRUCTIONS.get(analysis_type, ANALYSIS_INSTRUCTIONS["general"])
        prompt = f"## Instruction\n{instruction}\n\n## Question\n{query}\n"
        if context:
            prompt += f"\n## Data\n{json.dumps(context, default=str, indent=2)}\n"
        return f"{prompt}\n## Output Format\n{RESPONSE_FORMAT}"

    async def send(self, config: Mapping[str, Any]) -> dict[str, Any]:
        query = config.get("query") or config.get("prompt")
        if not query:
            raise ValidationError("AI analysis needs a query")

        text = await self.ask(
            self.build_prompt(str(query), str(config.get("analysis_type") or "general"), config.get("context")),
            system=config.get("system"),
            max_tokens=config.get("max_tokens"),
            temperature=config.get("temperature"),
        )

        try:
            parsed = extract_json(text)
        except ValueError:
            parsed = None
        if not isinstance(parsed, dict):
            return {"response": text, "analysis": text, "confidence": None}

        confidence = parsed.get("confidence")
        if not isinstance(confidence, (int, float)) or isinstance(confidence, bool):
            confidence = None
        return {
            "response": text,
            "analysis": parsed.get("analysis", parsed),
            "confidence": confidence,
        }
