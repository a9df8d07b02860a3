import json
import logging
import re
from typing import Any, Dict, List

import openai
from openai import OpenAI
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from medwatch.config import get_settings
from medwatch.errors import CorrectionFailure, ReviewFailure
from medwatch.flow import Correction
from medwatch.prompts import (
    CORRECTION_PROMPT,
    CORRECTION_SCHEMA,
    REVIEW_PROMPT,
    REVIEW_SCHEMA,
    correction_user_message,
    review_user_message,
)
from medwatch.safety import redact_pii_basic

logger = logging.getLogger(__name__)


class ReviewResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    consistency_check: str = Field(..., alias="consistencyCheck")
    completeness_score: str = Field(..., alias="completenessScore")
    anonymization_check: str = Field(..., alias="anonymizationCheck")
    clarity_assessment: str = Field(..., alias="clarityAssessment")

    def as_text(self) -> str:
        """Readable form stored alongside the transcript."""
        return json.dumps(self.model_dump(by_alias=True), indent=2, ensure_ascii=False)


MOCK_REVIEW = {
    "consistencyCheck": "This is a mock review. No inconsistencies were checked.",
    "completenessScore": "Mock provider: completeness was not assessed.",
    "anonymizationCheck": "Mock provider: free-text fields were not scanned for identifying details.",
    "clarityAssessment": "Mock provider: connect an LLM to receive clarity suggestions.",
}


def _openai_client() -> Any:
    settings = get_settings()
    if not settings.openai_api_key:
        raise RuntimeError("OPENAI_API_KEY is not set.")
    # No SDK retries: the timeout bounds the whole turn.
    return OpenAI(api_key=settings.openai_api_key, timeout=settings.llm_timeout_seconds, max_retries=0)


def _call_llm(messages: List[Dict[str, str]], schema: Dict[str, Any]) -> str:
    """
    Returns assistant text (expected JSON).
    """
    settings = get_settings()
    client = _openai_client()
    try:
        completion = client.chat.completions.create(
            model=settings.model_name,
            temperature=0.2,
            messages=messages,
            response_format={"type": "json_schema", "json_schema": schema},
        )
    except openai.BadRequestError:
        # Model does not support structured outputs; ask for JSON without schema enforcement.
        logger.info("Structured output rejected by %s, retrying with plain JSON", settings.model_name)
        completion = client.chat.completions.create(
            model=settings.model_name,
            temperature=0.2,
            messages=messages + [{"role": "system", "content": "Return ONLY valid JSON. No markdown."}],
        )
    return completion.choices[0].message.content or ""


_JSON_RE = re.compile(r"\{.*\}", re.DOTALL)


def _extract_json(text: str) -> Dict[str, Any]:
    """
    Accepts either pure JSON or a text blob containing a JSON object.
    """
    text = text.strip()
    if not text:
        return {}
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        m = _JSON_RE.search(text)
        if not m:
            return {}
        try:
            data = json.loads(m.group(0))
        except json.JSONDecodeError:
            return {}
    return data if isinstance(data, dict) else {}


def correct_text(text: str, question: str) -> Correction:
    """Spell-correct one answer and summarize its intent. Raises CorrectionFailure."""
    settings = get_settings()
    if settings.llm_provider == "mock":
        return Correction(
            corrected_text=text,
            intent_summary="Mock response: the answer was recorded as typed.",
            product_type=None,
        )

    messages = [
        {"role": "system", "content": CORRECTION_PROMPT},
        {"role": "user", "content": correction_user_message(text, question)},
    ]
    if settings.allow_logging:
        logger.info("CORRECTION_REQUEST %s", redact_pii_basic(text))

    try:
        raw = _call_llm(messages, CORRECTION_SCHEMA)
    except (openai.OpenAIError, RuntimeError) as exc:
        logger.warning("Text correction failed: %s", exc)
        raise CorrectionFailure(str(exc)) from exc

    parsed = _extract_json(raw)
    corrected = parsed.get("correctedText")
    if not isinstance(corrected, str) or (text and not corrected.strip()):
        logger.warning("Text correction returned no corrected text")
        raise CorrectionFailure("model reply did not contain correctedText")

    return Correction(
        corrected_text=corrected.strip(),
        intent_summary=parsed.get("intentSummary") if isinstance(parsed.get("intentSummary"), str) else None,
        product_type=parsed.get("productType") if isinstance(parsed.get("productType"), str) else None,
    )


def review_report(transcript: str) -> ReviewResult:
    """Pre-submission review of the full transcript. Raises ReviewFailure."""
    settings = get_settings()
    if settings.llm_provider == "mock":
        return ReviewResult.model_validate(MOCK_REVIEW)

    messages = [
        {"role": "system", "content": REVIEW_PROMPT},
        {"role": "user", "content": review_user_message(transcript)},
    ]
    try:
        raw = _call_llm(messages, REVIEW_SCHEMA)
    except (openai.OpenAIError, RuntimeError) as exc:
        logger.warning("Pre-submission review failed: %s", exc)
        raise ReviewFailure(str(exc)) from exc

    try:
        return ReviewResult.model_validate(_extract_json(raw))
    except ValidationError as exc:
        raise ReviewFailure(f"model reply is missing review fields: {exc}") from exc
