"""Claude-backed semantic match capability."""
import json
import re
from typing import Any, Dict, List, Optional, Union

import anthropic
from pydantic import BaseModel, Field
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from backend.config.settings import get_settings
from backend.config.logging_config import get_logger
from backend.eligibility.exceptions import SemanticCapabilityError, SemanticCapabilityUnavailable
from backend.semantic.prompt_loader import get_prompt_loader

logger = get_logger(__name__)

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")


class SemanticMatch(BaseModel):
    """Answer from the semantic capability for one term pair."""
    matches: bool
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""
    suggested_class: Optional[str] = None


def parse_semantic_response(text: str) -> SemanticMatch:
    """
    Parse a model reply into a SemanticMatch.

    Accepts bare JSON, a fenced ```json block, or JSON embedded in prose.

    Raises:
        SemanticCapabilityError: If no well-formed answer object is present
    """
    candidates = [text]
    fenced = _FENCED_JSON.search(text)
    if fenced:
        candidates.append(fenced.group(1))

    decoder = json.JSONDecoder()
    payload: Optional[Dict[str, Any]] = None
    for candidate in candidates:
        for start in [i for i, ch in enumerate(candidate) if ch == "{"]:
            try:
                obj, _ = decoder.raw_decode(candidate, start)
            except json.JSONDecodeError:
                continue
            if isinstance(obj, dict) and "match" in obj:
                payload = obj
                break
        if payload is not None:
            break

    if payload is None:
        raise SemanticCapabilityError("No JSON answer found in semantic match response")

    match, confidence, reasoning = payload.get("match"), payload.get("confidence"), payload.get("reasoning", "")
    if not isinstance(match, bool):
        raise SemanticCapabilityError("Semantic match response has a non-boolean 'match'")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        raise SemanticCapabilityError("Semantic match response has a non-numeric 'confidence'")
    if not isinstance(reasoning, str):
        raise SemanticCapabilityError("Semantic match response has a non-string 'reasoning'")

    return SemanticMatch(
        matches=match,
        confidence=max(0.0, min(1.0, float(confidence))),
        reasoning=reasoning,
        suggested_class=payload.get("suggested_class") or payload.get("suggestedClass"),
    )


class ClaudeSemanticClient:
    """
    Semantic term matching through Claude.

    Safe to call concurrently: each call is an independent request on a shared
    AsyncAnthropic client.
    """

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        settings = get_settings()
        api_key = api_key if api_key is not None else settings.anthropic_api_key
        if not api_key:
            raise SemanticCapabilityUnavailable("ANTHROPIC_API_KEY not set")
        self.client = anthropic.AsyncAnthropic(
            api_key=api_key,
            timeout=settings.semantic_timeout_seconds,
        )
        self.model = model or settings.claude_model
        self.max_tokens = settings.semantic_max_output_tokens
        self.temperature = settings.semantic_temperature
        logger.info("Claude semantic client initialized", model=self.model)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((anthropic.APIConnectionError, anthropic.RateLimitError)),
        reraise=True
    )
    async def _make_api_call(self, system: str, prompt: str):
        """Inner method that tenacity retries on transient errors."""
        return await self.client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            system=system,
            messages=[{"role": "user", "content": prompt}]
        )

    async def match(
        self,
        patient_term: str,
        criterion_term: Union[str, List[str]],
        context: str = "",
        cluster_code: Optional[str] = None,
    ) -> SemanticMatch:
        """
        Ask Claude whether a patient term satisfies criterion term(s).

        Args:
            patient_term: Term the patient reported
            criterion_term: Criterion term or list of terms
            context: Original criterion text
            cluster_code: Selects the cluster-specific system prompt

        Returns:
            SemanticMatch with confidence clamped to [0, 1]

        Raises:
            SemanticCapabilityError: On API failure or a malformed reply
        """
        loader = get_prompt_loader()
        system = loader.system_prompt_for(cluster_code)
        prompt = loader.load(
            "semantic/term_match.txt",
            {
                "patient_term": patient_term,
                "criterion_term": criterion_term if isinstance(criterion_term, list) else [criterion_term],
                "context": context or "",
            },
        )

        try:
            message = await self._make_api_call(system=system, prompt=prompt)
        except anthropic.APIConnectionError as e:
            logger.error("Claude API connection error", error=str(e))
            raise SemanticCapabilityError(f"Claude API connection failed: {e}") from e
        except anthropic.RateLimitError as e:
            logger.error("Claude rate limit exceeded", error=str(e))
            raise SemanticCapabilityError(f"Claude rate limit exceeded: {e}") from e
        except anthropic.APIStatusError as e:
            logger.error("Claude API error", status_code=e.status_code, error=str(e))
            raise SemanticCapabilityError(f"Claude API error ({e.status_code}): {e}") from e

        if not message.content:
            raise SemanticCapabilityError("Empty response from Claude (no content blocks)")

        response_text = message.content[0].text
        logger.debug("Claude semantic response received", length=len(response_text))
        return parse_semantic_response(response_text)
